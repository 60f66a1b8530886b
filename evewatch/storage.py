# evewatch/storage.py

import json
import logging
import os
import sqlite3
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .config import DB_PATH
from .errors import RecordRejected, SinkUnavailable
from .models import (
    ALERT_STATUSES,
    AlertFilter,
    AlertMatch,
    AlertRecord,
    EventRecord,
)

logger = logging.getLogger(__name__)

# public sort names -> columns
SORT_KEYS: Dict[str, str] = {
    "id": "id",
    "timestamp": "timestamp",
    "alert_id": "alert_id",
    "severity": "severity",
    "source_ip": "source_ip",
    "destination_ip": "destination_ip",
    "protocol": "protocol",
    "message": "message",
    "status": "status",
}

IDENTITY_COLUMNS = ("alert_id", "source_ip", "destination_ip", "protocol", "message")

ALERT_COLUMNS = (
    "id, alert_id, timestamp, severity, source_ip, destination_ip, "
    "protocol, message, status, packet_data"
)


def format_ts(ts: datetime) -> str:
    """UTC, fixed width, so that text order is time order."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _ts_param(ts: datetime) -> str:
    try:
        return format_ts(ts)
    except (OverflowError, ValueError) as e:
        raise RecordRejected(f"timestamp out of range: {e}") from e


def _now() -> str:
    return format_ts(datetime.now(timezone.utc))


def _packet_text(payload) -> Optional[str]:
    if payload is None or isinstance(payload, str):
        return payload
    return json.dumps(payload)


class SQLiteStorage:
    def __init__(self, db_path: str = DB_PATH) -> None:
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None

    def connect(self) -> None:
        if self.db_path != ":memory:":
            directory = os.path.dirname(self.db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    def init_db(self) -> None:
        assert self.conn is not None
        cur = self.conn.cursor()

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                event_type TEXT NOT NULL,
                alert_id TEXT,
                timestamp TEXT NOT NULL,
                severity TEXT,
                source_ip TEXT,
                destination_ip TEXT,
                protocol TEXT,
                message TEXT,
                status TEXT NOT NULL DEFAULT 'new',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS alerts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                alert_id TEXT,
                timestamp TEXT NOT NULL,
                severity TEXT,
                source_ip TEXT,
                destination_ip TEXT,
                protocol TEXT,
                message TEXT,
                status TEXT NOT NULL DEFAULT 'new',
                packet_data TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )

        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_alerts_timestamp ON alerts (timestamp)"
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_alerts_status ON alerts (status)"
        )

        self.conn.commit()

    # -------------- ingestion sink --------------

    def _insert(self, sql: str, params: tuple) -> int:
        assert self.conn is not None
        try:
            with self.conn:
                cur = self.conn.execute(sql, params)
        except (sqlite3.IntegrityError, sqlite3.InterfaceError, sqlite3.DataError,
                ValueError, OverflowError) as e:
            # ValueError covers UnicodeEncodeError on lone surrogates
            raise RecordRejected(str(e)) from e
        except (sqlite3.OperationalError, sqlite3.DatabaseError) as e:
            raise SinkUnavailable(str(e)) from e
        return cur.lastrowid

    def create_event(self, event: EventRecord) -> int:
        now = _now()
        event.id = self._insert(
            """
            INSERT INTO events (event_type, alert_id, timestamp, severity,
                                source_ip, destination_ip, protocol, message,
                                status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.event_type,
                event.alert_id,
                _ts_param(event.timestamp),
                event.severity,
                event.source_ip,
                event.destination_ip,
                event.protocol,
                event.message,
                event.status,
                now,
                now,
            ),
        )
        return event.id

    def create_alert(self, alert: AlertRecord) -> int:
        now = _now()
        alert.id = self._insert(
            """
            INSERT INTO alerts (alert_id, timestamp, severity, source_ip,
                                destination_ip, protocol, message, status,
                                packet_data, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                alert.alert_id,
                _ts_param(alert.timestamp),
                alert.severity,
                alert.source_ip,
                alert.destination_ip,
                alert.protocol,
                alert.message,
                alert.status,
                _packet_text(alert.packet_data),
                now,
                now,
            ),
        )
        return alert.id

    # -------------- read api --------------

    @staticmethod
    def _row_to_alert(row: sqlite3.Row) -> AlertRecord:
        return AlertRecord(
            id=row["id"],
            alert_id=row["alert_id"],
            timestamp=parse_ts(row["timestamp"]),
            severity=row["severity"],
            source_ip=row["source_ip"],
            destination_ip=row["destination_ip"],
            protocol=row["protocol"],
            message=row["message"],
            status=row["status"],
            packet_data=row["packet_data"],
        )

    @staticmethod
    def _where(flt: Optional[AlertFilter]):
        clauses: List[str] = []
        params: List = []
        if flt is None:
            return "", params

        if flt.status:
            clauses.append("status = ?")
            params.append(flt.status)
        if flt.since is not None:
            clauses.append("timestamp >= ?")
            params.append(format_ts(flt.since))
        if flt.until is not None:
            clauses.append("timestamp <= ?")
            params.append(format_ts(flt.until))
        if flt.search:
            # LIKE is case-insensitive for ASCII in sqlite
            pattern = f"%{flt.search}%"
            clauses.append(
                "(source_ip LIKE ? OR destination_ip LIKE ? OR message LIKE ?)"
            )
            params.extend([pattern, pattern, pattern])

        if not clauses:
            return "", params
        return "WHERE " + " AND ".join(clauses), params

    def list_alerts(
        self,
        flt: Optional[AlertFilter] = None,
        sort_key: str = "timestamp",
        sort_order: str = "DESC",
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[AlertRecord]:
        """
        Return stored alerts, ordered by sort_key.

        Rows with equal sort values come back in insertion order for ASC and
        reverse insertion order for DESC, so repeated calls agree.
        """
        assert self.conn is not None
        column = SORT_KEYS.get(sort_key)
        if column is None:
            raise ValueError(f"Unknown sort key: {sort_key}")
        order = sort_order.upper()
        if order not in ("ASC", "DESC"):
            raise ValueError(f"Sort order must be ASC or DESC, got {sort_order}")

        where, params = self._where(flt)
        sql = (
            f"SELECT {ALERT_COLUMNS} FROM alerts {where} "
            f"ORDER BY {column} {order}, id {order}"
        )
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])

        cur = self.conn.execute(sql, params)
        return [self._row_to_alert(row) for row in cur.fetchall()]

    def get_alert(self, pk: int) -> Optional[AlertRecord]:
        assert self.conn is not None
        cur = self.conn.execute(
            f"SELECT {ALERT_COLUMNS} FROM alerts WHERE id = ?", (pk,)
        )
        row = cur.fetchone()
        return self._row_to_alert(row) if row else None

    def count_alerts(self, flt: Optional[AlertFilter] = None) -> int:
        assert self.conn is not None
        where, params = self._where(flt)
        cur = self.conn.execute(f"SELECT COUNT(*) AS c FROM alerts {where}", params)
        return cur.fetchone()["c"]

    def severity_counts(self) -> Dict[str, int]:
        assert self.conn is not None
        cur = self.conn.execute(
            """
            SELECT severity, COUNT(*) AS c
            FROM alerts
            GROUP BY severity
            ORDER BY severity
            """
        )
        return {row["severity"]: row["c"] for row in cur.fetchall()}

    def list_events(self, limit: int = 500) -> List[EventRecord]:
        assert self.conn is not None
        cur = self.conn.execute(
            """
            SELECT id, event_type, alert_id, timestamp, severity, source_ip,
                   destination_ip, protocol, message, status
            FROM events
            ORDER BY timestamp DESC, id DESC
            LIMIT ?
            """,
            (limit,),
        )
        results: List[EventRecord] = []
        for row in cur.fetchall():
            results.append(
                EventRecord(
                    id=row["id"],
                    event_type=row["event_type"],
                    alert_id=row["alert_id"],
                    timestamp=parse_ts(row["timestamp"]),
                    severity=row["severity"],
                    source_ip=row["source_ip"],
                    destination_ip=row["destination_ip"],
                    protocol=row["protocol"],
                    message=row["message"],
                    status=row["status"],
                )
            )
        return results

    # -------------- status updates --------------

    def update_alert_status(self, match: AlertMatch, new_status: str) -> int:
        """
        Set status on every alert matching `match`, in one transaction.
        Returns the number of rows changed.
        """
        assert self.conn is not None
        if new_status not in ALERT_STATUSES:
            raise ValueError(f"Unknown status: {new_status}")

        clauses: List[str] = []
        params: List = []

        if match.id is not None:
            clauses.append("id = ?")
            params.append(match.id)

        for column in IDENTITY_COLUMNS:
            value = getattr(match, column)
            if match.exact_identity:
                # IS treats NULL = NULL as a match
                clauses.append(f"{column} IS ?")
                params.append(value)
            elif value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)

        if match.status is not None:
            clauses.append("status = ?")
            params.append(match.status)

        if not clauses:
            raise ValueError("Refusing to update alerts without any criteria")

        try:
            with self.conn:
                cur = self.conn.execute(
                    f"UPDATE alerts SET status = ?, updated_at = ? "
                    f"WHERE {' AND '.join(clauses)}",
                    [new_status, _now()] + params,
                )
        except sqlite3.OperationalError as e:
            raise SinkUnavailable(str(e)) from e

        logger.info("Set status=%s on %d alert(s)", new_status, cur.rowcount)
        return cur.rowcount
