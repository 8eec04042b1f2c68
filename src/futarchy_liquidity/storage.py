from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
import json
import sqlite3
from typing import Any, Iterable

from futarchy_liquidity.models import BatchResult, TxEvent, utc_now, utc_stamp


def write_artifact(directory: str | Path, prefix: str, payload: dict[str, Any]) -> Path:
    out_dir = Path(directory)
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / f"{prefix}-{utc_stamp()}.json"
    path.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
    return path


class Storage:
    def __init__(self, database_path: str) -> None:
        self.path = Path(database_path)
        if str(database_path) != ":memory:":
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(database_path))
        self.conn.row_factory = sqlite3.Row
        self._create_schema()

    def _create_schema(self) -> None:
        cursor = self.conn.cursor()
        cursor.executescript(
            """
            CREATE TABLE IF NOT EXISTS tx_events (
              ts TEXT NOT NULL,
              run_id TEXT NOT NULL,
              label TEXT NOT NULL,
              tx_hash TEXT NOT NULL,
              status INTEGER NOT NULL,
              block_number INTEGER,
              gas_used INTEGER,
              detail_json TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS batch_results (
              ts TEXT NOT NULL,
              run_id TEXT NOT NULL,
              operation TEXT NOT NULL,
              item TEXT NOT NULL,
              status TEXT NOT NULL,
              detail TEXT NOT NULL,
              data_json TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_tx_events_ts ON tx_events(ts);
            CREATE INDEX IF NOT EXISTS idx_batch_results_ts ON batch_results(ts);
            """
        )
        self.conn.commit()

    def record_events(self, run_id: str, events: Iterable[TxEvent]) -> int:
        rows = [
            (
                event.ts.isoformat(),
                run_id,
                event.label,
                event.tx_hash,
                int(event.status),
                event.block_number,
                event.gas_used,
                json.dumps(event.detail, default=str),
            )
            for event in events
        ]
        if rows:
            self.conn.executemany(
                """
                INSERT INTO tx_events (ts, run_id, label, tx_hash, status, block_number, gas_used, detail_json)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
            self.conn.commit()
        return len(rows)

    def record_result(self, run_id: str, operation: str, result: BatchResult) -> None:
        self.conn.execute(
            """
            INSERT INTO batch_results (ts, run_id, operation, item, status, detail, data_json)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                utc_now().isoformat(),
                run_id,
                operation,
                result.item_id,
                result.status.value,
                result.detail,
                json.dumps(result.data, default=str),
            ),
        )
        self.conn.commit()

    def report(self, window_hours: int) -> dict[str, Any]:
        cutoff = datetime.now(tz=timezone.utc) - timedelta(hours=window_hours)
        tx_rows = self.conn.execute(
            """
            SELECT label, status, gas_used
            FROM tx_events
            WHERE ts >= ?
            ORDER BY ts ASC
            """,
            (cutoff.isoformat(),),
        ).fetchall()
        result_rows = self.conn.execute(
            """
            SELECT run_id, operation, status
            FROM batch_results
            WHERE ts >= ?
            ORDER BY ts ASC
            """,
            (cutoff.isoformat(),),
        ).fetchall()

        per_kind: dict[str, dict[str, int]] = {}
        gas_total = 0
        reverted = 0
        for row in tx_rows:
            kind = str(row["label"]).split(":", 1)[0]
            metric = per_kind.setdefault(kind, {"count": 0, "gas_used": 0})
            metric["count"] += 1
            gas = int(row["gas_used"] or 0)
            metric["gas_used"] += gas
            gas_total += gas
            if int(row["status"]) != 1:
                reverted += 1

        per_operation: dict[str, dict[str, int]] = {}
        runs: set[str] = set()
        for row in result_rows:
            runs.add(str(row["run_id"]))
            metric = per_operation.setdefault(str(row["operation"]), {"success": 0, "failed": 0, "skipped": 0})
            status = str(row["status"])
            metric[status] = metric.get(status, 0) + 1

        return {
            "window_hours": window_hours,
            "transactions": len(tx_rows),
            "reverted": reverted,
            "gas_used": gas_total,
            "per_transaction_kind": per_kind,
            "runs": len(runs),
            "per_operation": per_operation,
        }

    def close(self) -> None:
        self.conn.close()
