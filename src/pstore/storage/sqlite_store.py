"""
SQLite storage for measurement history. One row per measurement, tags
and fields kept as JSON text so new fields don't need a migration.

The appliance reports a rolling window, so consecutive cycles return
overlapping rows. (name, tags, timestamp) is unique and a re-sent row
replaces the stored one.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from pstore.metrics import Measurement
from pstore.sink import Sink

log = logging.getLogger(__name__)

DEFAULT_DB_PATH = "pstore_metrics.db"


class MeasurementStore(Sink):

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self._db_path = db_path
        self._conn = sqlite3.connect(db_path)
        # WAL mode lets `pstore history` read while a gather is writing
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_table()

    def _create_table(self):
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS measurements (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                tags TEXT NOT NULL,
                fields TEXT NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS measurements_point
            ON measurements (name, tags, timestamp)
        """)
        self._conn.commit()

    def add_fields(self, measurement, fields, tags, timestamp):
        # Normalize to UTC so string comparison on timestamp sorts correctly
        ts = timestamp.astimezone(timezone.utc).isoformat()
        self._conn.execute(
            """
            INSERT OR REPLACE INTO measurements (name, timestamp, tags, fields)
            VALUES (?, ?, ?, ?)
            """,
            (
                measurement,
                ts,
                json.dumps(dict(tags), sort_keys=True),
                json.dumps(dict(fields), sort_keys=True),
            ),
        )
        self._conn.commit()

    def save(self, m: Measurement):
        self.add_fields(m.name, m.fields, m.tags, m.timestamp)

    def get_recent(self, minutes: int = 60, name: Optional[str] = None) -> List[Measurement]:
        """Pull measurements whose timestamp falls in the last N minutes.

        Timestamps are stored as UTC ISO strings. The cutoff is computed
        in Python using UTC to match.
        """
        cutoff = (datetime.now(timezone.utc) - timedelta(minutes=minutes)).isoformat()
        query = "SELECT name, timestamp, tags, fields FROM measurements WHERE timestamp >= ?"
        params: list = [cutoff]
        if name is not None:
            query += " AND name = ?"
            params.append(name)
        query += " ORDER BY timestamp ASC, id ASC"

        return [
            Measurement(
                name=row[0],
                timestamp=datetime.fromisoformat(row[1]),
                tags=json.loads(row[2]),
                fields=json.loads(row[3]),
            )
            for row in self._conn.execute(query, params).fetchall()
        ]

    def count(self) -> int:
        cursor = self._conn.execute("SELECT COUNT(*) FROM measurements")
        return cursor.fetchone()[0]

    def close(self):
        self._conn.close()
