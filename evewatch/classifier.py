# evewatch/classifier.py
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from dateutil import parser as date_parser

from .config import ALLOWED_EVENT_TYPES
from .errors import ClassificationError
from .models import AlertRecord, EventRecord, STATUS_NEW

logger = logging.getLogger(__name__)


@dataclass
class Classification:
    event: Optional[EventRecord] = None
    alert: Optional[AlertRecord] = None

    @property
    def records(self) -> list:
        return [r for r in (self.event, self.alert) if r is not None]

    def __bool__(self) -> bool:
        return self.event is not None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def parse_timestamp(value: Any) -> datetime:
    """
    Parse an eve.json timestamp, e.g. 2024-03-01T10:15:32.123456+0000.
    Naive values are taken as UTC.
    """
    if not isinstance(value, str) or not value.strip():
        raise ClassificationError(f"missing or non-string timestamp: {value!r}")
    try:
        ts = date_parser.isoparse(value.strip())
    except (ValueError, OverflowError) as e:
        raise ClassificationError(f"bad timestamp {value!r}: {e}")
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def decode_line(line: str) -> Any:
    try:
        return json.loads(line)
    except (ValueError, RecursionError) as e:
        # JSONDecodeError, oversized ints, absurd nesting
        raise ClassificationError(f"invalid JSON: {e}")


def classify(obj: Any, allowed_types: Iterable[str] = ALLOWED_EVENT_TYPES) -> Classification:
    """
    Turn one decoded eve.json object into records.

    Returns an empty Classification for anything we don't track. Raises
    ClassificationError when an event we do track is missing fields.
    """
    if not isinstance(obj, dict):
        return Classification()

    event_type = obj.get("event_type")
    if event_type is not None and not isinstance(event_type, str):
        raise ClassificationError(f"event_type is not a string: {event_type!r:.80}")
    if event_type not in allowed_types:
        return Classification()

    ts = parse_timestamp(obj.get("timestamp"))

    event = EventRecord(
        event_type=event_type,
        timestamp=ts,
        source_ip=_text(obj.get("src_ip")),
        destination_ip=_text(obj.get("dest_ip")),
        protocol=_text(obj.get("proto")),
        status=STATUS_NEW,
    )

    alert_obj = obj.get("alert")
    if alert_obj is None:
        # flow, dns and friends; also an "alert" event without its sub-object
        event.severity = _text(obj.get("severity"))
        event.message = _text(obj.get("message"))
        return Classification(event=event)

    if not isinstance(alert_obj, dict):
        raise ClassificationError(f"'alert' is not an object in {event_type} event")
    if alert_obj.get("signature_id") is None:
        raise ClassificationError("alert without signature_id")
    if alert_obj.get("severity") is None:
        raise ClassificationError("alert without severity")

    alert_id = str(alert_obj["signature_id"])
    severity = str(alert_obj["severity"])
    message = _text(alert_obj.get("signature"))

    event.alert_id = alert_id
    event.severity = severity
    event.message = message

    alert = AlertRecord(
        alert_id=alert_id,
        timestamp=ts,
        severity=severity,
        source_ip=event.source_ip,
        destination_ip=event.destination_ip,
        protocol=event.protocol,
        message=message,
        status=STATUS_NEW,
        packet_data=obj.get("payload"),
    )
    return Classification(event=event, alert=alert)


def classify_line(line: str, allowed_types: Iterable[str] = ALLOWED_EVENT_TYPES) -> Classification:
    """Main entry point for one complete line of eve.json."""
    return classify(decode_line(line), allowed_types)
