"""SQLite persistence layer for detector state and the alert ledger."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from .models import AlertRecord


class AlertStore:
    """Repository for monitor state (dedup records) and dispatched alerts."""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _init_database(self) -> None:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS alerts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    identity TEXT NOT NULL,
                    detector TEXT NOT NULL,
                    entity_name TEXT NOT NULL,
                    call_ids TEXT NOT NULL,
                    phone_numbers TEXT NOT NULL,
                    bid_amount TEXT,
                    suppressed BOOLEAN DEFAULT FALSE,
                    sent BOOLEAN DEFAULT FALSE,
                    detected_at DATETIME NOT NULL,
                    UNIQUE (detector, identity)
                )
                """
            )
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_alerts_detected_at ON alerts(detected_at)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_alerts_entity ON alerts(entity_name)")

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS monitor_state (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.commit()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        try:
            yield conn
        finally:
            conn.close()

    def get_state(self, key: str) -> Optional[str]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT value FROM monitor_state WHERE key = ? LIMIT 1", (key,))
            row = cursor.fetchone()
            return row[0] if row else None

    def set_state(self, key: str, value: str) -> None:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO monitor_state (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP
                """,
                (key, value),
            )
            conn.commit()

    def record_alert(self, alert: AlertRecord) -> bool:
        """Insert a ledger row and return True if stored (False if already present)."""
        with self._connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(
                    """
                    INSERT INTO alerts (
                        identity,
                        detector,
                        entity_name,
                        call_ids,
                        phone_numbers,
                        bid_amount,
                        suppressed,
                        sent,
                        detected_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        alert.identity,
                        alert.detector,
                        alert.entity_name,
                        json.dumps(alert.call_ids),
                        json.dumps(alert.phone_numbers),
                        str(alert.bid_amount) if alert.bid_amount is not None else None,
                        1 if alert.suppressed else 0,
                        1 if alert.sent else 0,
                        alert.detected_at.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S"),
                    ),
                )
                conn.commit()
                return True
            except sqlite3.IntegrityError:
                return False

    def fetch_recent_alerts(self, lookback_minutes: int, detector: Optional[str] = None) -> List[AlertRecord]:
        query = """
            SELECT identity, detector, entity_name, call_ids, phone_numbers,
                   bid_amount, suppressed, sent, detected_at
            FROM alerts
            WHERE detected_at >= datetime('now', ?)
        """
        params: list = [f"-{lookback_minutes} minutes"]
        if detector:
            query += " AND detector = ?"
            params.append(detector)
        query += " ORDER BY detected_at DESC"

        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            rows = cursor.fetchall()

        alerts: List[AlertRecord] = []
        for row in rows:
            detected_at = datetime.strptime(row[8], "%Y-%m-%d %H:%M:%S").replace(tzinfo=timezone.utc)
            alerts.append(
                AlertRecord(
                    identity=row[0],
                    detector=row[1],
                    entity_name=row[2],
                    call_ids=json.loads(row[3]),
                    phone_numbers=json.loads(row[4]),
                    bid_amount=Decimal(row[5]) if row[5] is not None else None,
                    suppressed=bool(row[6]),
                    sent=bool(row[7]),
                    detected_at=detected_at,
                )
            )
        return alerts

    def purge_old_alerts(self, older_than_days: int = 30) -> int:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "DELETE FROM alerts WHERE detected_at < datetime('now', ?)",
                (f"-{older_than_days} days",),
            )
            deleted = cursor.rowcount or 0
            conn.commit()
            return deleted

    def get_statistics(self, hours: int = 24) -> Dict[str, object]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    SUM(CASE WHEN sent = 1 THEN 1 ELSE 0 END) AS sent,
                    SUM(CASE WHEN suppressed = 1 THEN 1 ELSE 0 END) AS suppressed
                FROM alerts
                WHERE detected_at >= datetime('now', ?)
                """,
                (f"-{hours} hours",),
            )
            total, sent, suppressed = cursor.fetchone()

            cursor.execute(
                """
                SELECT entity_name, COUNT(*)
                FROM alerts
                WHERE detected_at >= datetime('now', ?)
                GROUP BY entity_name
                ORDER BY COUNT(*) DESC
                LIMIT 5
                """,
                (f"-{hours} hours",),
            )
            top_entities = cursor.fetchall()

        total = total or 0
        sent = sent or 0
        suppressed = suppressed or 0
        return {
            "total": total,
            "sent": sent,
            "suppressed": suppressed,
            "failed": max(0, total - sent - suppressed),
            "top_entities": top_entities,
        }
