# tests/conftest.py
import json
from datetime import datetime, timedelta, timezone

import pytest

from evewatch.models import AlertRecord
from evewatch.storage import SQLiteStorage

T0 = datetime(2024, 3, 1, 10, 0, 0, tzinfo=timezone.utc)


def eve_line(event_type="alert", seconds=0, sid=2001219, severity=2,
             signature="ET SCAN Potential SSH Scan", src="10.0.0.5",
             dest="192.168.1.10", proto="TCP", **extra) -> str:
    """One eve.json line, the way Suricata writes it."""
    obj = {
        "timestamp": (T0 + timedelta(seconds=seconds)).strftime("%Y-%m-%dT%H:%M:%S.%f+0000"),
        "event_type": event_type,
        "src_ip": src,
        "dest_ip": dest,
        "proto": proto,
    }
    if event_type == "alert" and sid is not None:
        obj["alert"] = {"signature_id": sid, "severity": severity, "signature": signature}
    obj.update(extra)
    return json.dumps(obj, ensure_ascii=False)


def make_alert(seconds=0, sid="2001219", src="10.0.0.5", dest="192.168.1.10",
               proto="TCP", message="ET SCAN Potential SSH Scan",
               status="new", severity="2", pk=None) -> AlertRecord:
    return AlertRecord(
        id=pk,
        alert_id=sid,
        timestamp=T0 + timedelta(seconds=seconds),
        severity=severity,
        source_ip=src,
        destination_ip=dest,
        protocol=proto,
        message=message,
        status=status,
    )


class MemorySink:
    """Collects records; can be told to fail."""

    def __init__(self):
        self.events = []
        self.alerts = []
        self.fail_with = None
        self.fail_after = None

    def _maybe_fail(self):
        if self.fail_with is None:
            return
        if self.fail_after is not None and self.fail_after > 0:
            self.fail_after -= 1
            return
        raise self.fail_with

    def create_event(self, event):
        self._maybe_fail()
        self.events.append(event)
        return len(self.events)

    def create_alert(self, alert):
        self._maybe_fail()
        self.alerts.append(alert)
        return len(self.alerts)


@pytest.fixture
def storage(tmp_path):
    s = SQLiteStorage(str(tmp_path / "test.db"))
    s.connect()
    s.init_db()
    yield s
    s.close()


@pytest.fixture
def sink():
    return MemorySink()
