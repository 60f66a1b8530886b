# tests/test_grouping.py
from datetime import timedelta

import pytest

from evewatch.errors import AlertNotFound
from evewatch.grouping import group_alerts, update_group_status, update_single_status
from evewatch.models import AlertFilter

from conftest import T0, make_alert


def test_burst_within_window_is_one_group():
    groups = group_alerts([make_alert(0), make_alert(10), make_alert(25)])
    assert len(groups) == 1
    assert groups[0].count == 3
    assert groups[0].timestamp == T0 + timedelta(seconds=25)


def test_window_slides_from_last_hit():
    groups = group_alerts([make_alert(0), make_alert(10), make_alert(40)])
    assert [g.count for g in groups] == [2, 1]
    assert groups[0].timestamp == T0 + timedelta(seconds=10)
    assert groups[1].timestamp == T0 + timedelta(seconds=40)


def test_window_edge_is_inclusive():
    assert len(group_alerts([make_alert(0), make_alert(30)])) == 1
    assert len(group_alerts([make_alert(0), make_alert(31)])) == 2


def test_long_steady_flood_stays_one_group():
    groups = group_alerts([make_alert(s) for s in range(0, 600, 20)])
    assert len(groups) == 1
    assert groups[0].count == 30


def test_first_occurrence_order():
    a = dict(sid="1")
    b = dict(sid="2")
    c = dict(sid="3")
    alerts = [
        make_alert(0, **a), make_alert(1, **b), make_alert(2, **a),
        make_alert(3, **c), make_alert(4, **b), make_alert(5, **a),
    ]
    groups = group_alerts(alerts)
    assert [g.representative.alert_id for g in groups] == ["1", "2", "3"]
    assert [g.count for g in groups] == [3, 2, 1]
    assert sum(g.count for g in groups) == len(alerts)


def test_representative_is_first_alert():
    first = make_alert(0, severity="1", pk=7)
    later = make_alert(5, severity="3", pk=8)
    group = group_alerts([first, later])[0]
    assert group.representative is first
    assert group.representative.severity == "1"
    assert group.timestamp == later.timestamp


def test_any_key_field_splits_groups():
    alerts = [
        make_alert(0),
        make_alert(1, src="10.0.0.6"),
        make_alert(2, dest="192.168.1.11"),
        make_alert(3, proto="UDP"),
        make_alert(4, message="other"),
        make_alert(5, sid="9"),
    ]
    assert len(group_alerts(alerts)) == 6


def test_delimiter_in_values_does_not_collide():
    one = make_alert(0, src="10.0.0.1-x", dest="y")
    two = make_alert(1, src="10.0.0.1", dest="x-y")
    assert len(group_alerts([one, two])) == 2


def test_descending_input_groups_the_same():
    alerts = [make_alert(25), make_alert(10), make_alert(0)]
    groups = group_alerts(alerts)
    assert len(groups) == 1
    assert groups[0].count == 3
    assert groups[0].timestamp == T0


def test_custom_window():
    alerts = [make_alert(0), make_alert(10)]
    assert len(group_alerts(alerts, window=5)) == 2
    assert len(group_alerts(alerts, window=timedelta(minutes=1))) == 1


def test_empty_input():
    assert group_alerts([]) == []


def test_group_status_change_respects_current_status(storage):
    for s in (0, 5, 10):
        storage.create_alert(make_alert(s))
    already_acked = make_alert(15, status="acknowledged")
    storage.create_alert(already_acked)
    other = make_alert(20, sid="9")
    storage.create_alert(other)

    shown = group_alerts(storage.list_alerts(AlertFilter(status="new"), sort_order="ASC"))
    assert [g.count for g in shown] == [3, 1]

    changed = update_group_status(storage, shown[0].representative.id, "escalated")
    assert changed == 3

    escalated = storage.list_alerts(AlertFilter(status="escalated"))
    assert len(escalated) == 3
    assert storage.get_alert(already_acked.id).status == "acknowledged"
    assert storage.get_alert(other.id).status == "new"


def test_group_status_change_matches_null_fields(storage):
    storage.create_alert(make_alert(0, message=None))
    storage.create_alert(make_alert(1, message=None))
    storage.create_alert(make_alert(2, message="named"))
    first = storage.list_alerts(sort_order="ASC")[0]

    assert update_group_status(storage, first.id, "acknowledged") == 2


def test_single_status_change(storage):
    storage.create_alert(make_alert(0))
    storage.create_alert(make_alert(1))
    first, second = storage.list_alerts(sort_order="ASC")

    assert update_single_status(storage, first.id, "acknowledged") == 1
    assert storage.get_alert(second.id).status == "new"


def test_status_change_unknown_id(storage):
    with pytest.raises(AlertNotFound):
        update_group_status(storage, 999, "acknowledged")
    with pytest.raises(AlertNotFound):
        update_single_status(storage, 999, "acknowledged")
