from __future__ import annotations

from datetime import timedelta
import json
from pathlib import Path
import tempfile
import unittest
import sys

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from futarchy_liquidity.models import BatchResult, OutcomeStatus, TxEvent, utc_now
from futarchy_liquidity.storage import Storage, write_artifact


class StorageTests(unittest.TestCase):
    def setUp(self) -> None:
        self.storage = Storage(":memory:")
        self.addCleanup(self.storage.close)

    def test_report_aggregates_transactions_and_results(self) -> None:
        self.storage.record_events(
            "setup-1",
            [
                TxEvent("approve:GNO", "0x01", 1, 10, 40_000),
                TxEvent("mint:YES_COMPANY/YES_CURRENCY", "0x02", 1, 11, 300_000),
                TxEvent("mint:NO_COMPANY/NO_CURRENCY", "0x03", 0, 12, 90_000),
            ],
        )
        self.storage.record_result("setup-1", "setup", BatchResult("pool-1", OutcomeStatus.SUCCESS))
        self.storage.record_result("setup-1", "setup", BatchResult("pool-2", OutcomeStatus.FAILED, "reverted"))
        self.storage.record_result("remove-1", "remove", BatchResult("pool-a", OutcomeStatus.SKIPPED))

        report = self.storage.report(24)
        self.assertEqual(report["transactions"], 3)
        self.assertEqual(report["reverted"], 1)
        self.assertEqual(report["gas_used"], 430_000)
        self.assertEqual(report["per_transaction_kind"]["mint"], {"count": 2, "gas_used": 390_000})
        self.assertEqual(report["runs"], 2)
        self.assertEqual(report["per_operation"]["setup"], {"success": 1, "failed": 1, "skipped": 0})
        self.assertEqual(report["per_operation"]["remove"]["skipped"], 1)

    def test_report_window_excludes_old_rows(self) -> None:
        old = TxEvent("approve:GNO", "0x01", 1, ts=utc_now() - timedelta(hours=30))
        self.assertEqual(self.storage.record_events("old", [old]), 1)
        self.assertEqual(self.storage.report(24)["transactions"], 0)
        self.assertEqual(self.storage.report(48)["transactions"], 1)

    def test_record_events_without_rows_is_noop(self) -> None:
        self.assertEqual(self.storage.record_events("empty", []), 0)

    def test_file_database_creates_parent_directory(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            storage = Storage(str(Path(tmp) / "nested" / "liquidity.db"))
            storage.close()
            self.assertTrue((Path(tmp) / "nested" / "liquidity.db").exists())


class ArtifactTests(unittest.TestCase):
    def test_write_artifact_uses_prefix_and_timestamp(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = write_artifact(Path(tmp) / "out", "futarchy-pool-setup", {"value": 1, "when": utc_now()})
            self.assertTrue(path.name.startswith("futarchy-pool-setup-"))
            self.assertEqual(path.suffix, ".json")
            payload = json.loads(path.read_text(encoding="utf-8"))
            self.assertEqual(payload["value"], 1)
            self.assertIsInstance(payload["when"], str)


if __name__ == "__main__":
    unittest.main()
