# tests/test_storage.py
from datetime import datetime, timedelta, timezone

import pytest

from evewatch.classifier import classify_line
from evewatch.errors import RecordRejected, SinkUnavailable
from evewatch.models import AlertFilter, AlertMatch

from conftest import T0, eve_line, make_alert


def test_insert_and_read_back(storage):
    result = classify_line(eve_line(payload={"bytes": [1, 2]}))
    storage.create_event(result.event)
    storage.create_alert(result.alert)

    assert result.alert.id is not None
    stored = storage.get_alert(result.alert.id)
    assert stored.alert_id == "2001219"
    assert stored.timestamp == T0
    assert stored.status == "new"
    assert stored.packet_data == '{"bytes": [1, 2]}'

    events = storage.list_events()
    assert len(events) == 1
    assert events[0].event_type == "alert"
    assert events[0].alert_id == "2001219"


def test_duplicates_are_accepted(storage):
    storage.create_alert(make_alert(0))
    storage.create_alert(make_alert(0))
    assert storage.count_alerts() == 2


def test_list_order_is_stable(storage):
    for s in (20, 0, 10, 10):
        storage.create_alert(make_alert(s))

    asc = storage.list_alerts(sort_order="ASC")
    assert [a.timestamp for a in asc] == sorted(a.timestamp for a in asc)
    tied = [a.id for a in asc if a.timestamp == T0 + timedelta(seconds=10)]
    assert tied == sorted(tied)

    desc = storage.list_alerts(sort_order="desc")
    assert [a.id for a in desc] == [a.id for a in reversed(asc)]


def test_timestamps_from_other_offsets_sort_correctly(storage):
    early = classify_line(eve_line().replace("10:00:00.000000+0000", "11:59:00.000000+0200"))
    late = classify_line(eve_line())
    storage.create_alert(late.alert)
    storage.create_alert(early.alert)

    asc = storage.list_alerts(sort_order="ASC")
    assert [a.id for a in asc] == [early.alert.id, late.alert.id]


def test_filters(storage):
    storage.create_alert(make_alert(0, src="10.1.1.1"))
    storage.create_alert(make_alert(60, message="ET POLICY curl"))
    storage.create_alert(make_alert(120, status="escalated"))

    assert storage.count_alerts(AlertFilter(status="escalated")) == 1
    assert storage.count_alerts(AlertFilter(search="10.1.1")) == 1
    assert storage.count_alerts(AlertFilter(search="policy")) == 1
    window = AlertFilter(since=T0 + timedelta(seconds=30), until=T0 + timedelta(seconds=90))
    assert [a.message for a in storage.list_alerts(window)] == ["ET POLICY curl"]


def test_limit_offset(storage):
    for s in range(5):
        storage.create_alert(make_alert(s))
    page = storage.list_alerts(sort_order="ASC", limit=2, offset=2)
    assert [a.timestamp.second for a in page] == [2, 3]


def test_bad_sort_arguments(storage):
    with pytest.raises(ValueError):
        storage.list_alerts(sort_key="timestamp; DROP TABLE alerts")
    with pytest.raises(ValueError):
        storage.list_alerts(sort_order="sideways")


def test_update_status_by_criteria(storage):
    storage.create_alert(make_alert(0))
    storage.create_alert(make_alert(1, src="10.9.9.9"))

    changed = storage.update_alert_status(AlertMatch(source_ip="10.9.9.9"), "acknowledged")
    assert changed == 1
    assert storage.count_alerts(AlertFilter(status="acknowledged")) == 1


def test_update_status_needs_criteria_and_known_status(storage):
    storage.create_alert(make_alert(0))
    with pytest.raises(ValueError):
        storage.update_alert_status(AlertMatch(), "acknowledged")
    with pytest.raises(ValueError):
        storage.update_alert_status(AlertMatch(id=1), "deleted")


def test_severity_counts(storage):
    storage.create_alert(make_alert(0, severity="1"))
    storage.create_alert(make_alert(1, severity="1"))
    storage.create_alert(make_alert(2, severity="3"))
    assert storage.severity_counts() == {"1": 2, "3": 1}


def test_missing_table_is_unavailable(storage):
    storage.conn.execute("DROP TABLE alerts")
    with pytest.raises(SinkUnavailable):
        storage.create_alert(make_alert(0))


def test_unencodable_text_is_rejected(storage):
    with pytest.raises(RecordRejected):
        storage.create_alert(make_alert(0, message="bad \ud800 text"))
    assert storage.count_alerts() == 0


def test_unrepresentable_timestamp_is_rejected(storage):
    alert = make_alert(0)
    alert.timestamp = datetime(1, 1, 1, tzinfo=timezone(timedelta(hours=1)))
    with pytest.raises(RecordRejected):
        storage.create_alert(alert)
