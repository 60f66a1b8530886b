# evewatch/models.py
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Tuple

STATUS_NEW = "new"
STATUS_ACKNOWLEDGED = "acknowledged"
STATUS_ESCALATED = "escalated"

ALERT_STATUSES = (STATUS_NEW, STATUS_ACKNOWLEDGED, STATUS_ESCALATED)

# (alert_id, source_ip, destination_ip, protocol, message)
IdentityKey = Tuple[Optional[str], Optional[str], Optional[str], Optional[str], Optional[str]]


@dataclass
class EventRecord:
    event_type: str
    timestamp: datetime
    source_ip: Optional[str] = None
    destination_ip: Optional[str] = None
    protocol: Optional[str] = None
    alert_id: Optional[str] = None
    severity: Optional[str] = None
    message: Optional[str] = None
    status: str = STATUS_NEW
    id: Optional[int] = None


@dataclass
class AlertRecord:
    alert_id: Optional[str]
    timestamp: datetime
    severity: str
    source_ip: Optional[str] = None
    destination_ip: Optional[str] = None
    protocol: Optional[str] = None
    message: Optional[str] = None
    status: str = STATUS_NEW
    packet_data: Any = None  # opaque, stored as given
    id: Optional[int] = None

    def identity_key(self) -> IdentityKey:
        return (
            self.alert_id,
            self.source_ip,
            self.destination_ip,
            self.protocol,
            self.message,
        )


@dataclass
class AlertGroup:
    """
    One display row for a burst of identical alerts.

    representative is the alert that opened the group, last_timestamp
    follows the newest merged alert.
    """
    representative: AlertRecord
    last_timestamp: datetime
    count: int = 1

    @property
    def key(self) -> IdentityKey:
        return self.representative.identity_key()

    @property
    def timestamp(self) -> datetime:
        return self.last_timestamp


@dataclass
class AlertMatch:
    """Criteria for status updates. None means "don't filter on this field"."""
    id: Optional[int] = None
    alert_id: Optional[str] = None
    source_ip: Optional[str] = None
    destination_ip: Optional[str] = None
    protocol: Optional[str] = None
    message: Optional[str] = None
    status: Optional[str] = None
    # identity fields compared even when None (IS NULL)
    exact_identity: bool = False

    @classmethod
    def for_group(cls, alert: AlertRecord) -> "AlertMatch":
        return cls(
            alert_id=alert.alert_id,
            source_ip=alert.source_ip,
            destination_ip=alert.destination_ip,
            protocol=alert.protocol,
            message=alert.message,
            status=alert.status,
            exact_identity=True,
        )


@dataclass
class AlertFilter:
    status: Optional[str] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    search: Optional[str] = None   # matched against ips and message


@dataclass
class TailState:
    """Read position for one watched file."""
    path: str
    cursor: int = 0
    pending: str = ""   # unterminated tail of the last read, never holds "\n"
    pending_bytes: bytes = b""   # start of a multi-byte char cut off by the last read
    inode: Optional[int] = None

    def snapshot(self) -> tuple:
        return self.cursor, self.pending, self.pending_bytes, self.inode

    def restore(self, snap: tuple) -> None:
        self.cursor, self.pending, self.pending_bytes, self.inode = snap

    def reset(self) -> None:
        self.cursor = 0
        self.pending = ""
        self.pending_bytes = b""
