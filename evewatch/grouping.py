# evewatch/grouping.py
"""
Collapse bursts of the same alert into one display row.

Two alerts are "the same" when their identity key matches:
(alert_id, source_ip, destination_ip, protocol, message). A burst keeps
growing while each new hit lands within the window of the previous one,
so a steady flood stays one row no matter how long it lasts.
"""
import logging
from datetime import timedelta
from typing import Dict, Iterable, List, Union

from .config import GROUP_WINDOW_SECONDS
from .errors import AlertNotFound
from .models import AlertGroup, AlertMatch, AlertRecord, IdentityKey

logger = logging.getLogger(__name__)

GROUP_WINDOW = timedelta(seconds=GROUP_WINDOW_SECONDS)


def _as_window(window: Union[timedelta, float, int]) -> timedelta:
    if isinstance(window, timedelta):
        return window
    return timedelta(seconds=window)


def group_alerts(
    alerts: Iterable[AlertRecord],
    window: Union[timedelta, float, int] = GROUP_WINDOW,
) -> List[AlertGroup]:
    """
    Group alerts in the order given (as sorted by the caller).

    Returns groups in the order their first alert was seen. The
    representative is that first alert; last_timestamp and count follow
    the merged ones.
    """
    window = _as_window(window)
    groups: List[AlertGroup] = []
    open_groups: Dict[IdentityKey, AlertGroup] = {}

    for alert in alerts:
        key = alert.identity_key()
        group = open_groups.get(key)

        # abs() so DESC ordered input groups the same way
        if group is not None and abs(alert.timestamp - group.last_timestamp) <= window:
            group.count += 1
            group.last_timestamp = alert.timestamp
            continue

        group = AlertGroup(representative=alert, last_timestamp=alert.timestamp)
        open_groups[key] = group
        groups.append(group)

    return groups


def update_group_status(storage, pk: int, new_status: str) -> int:
    """
    Change the status of every stored alert in the same group as alert `pk`.

    Only alerts that share the identity key and still have the status the
    displayed alert has are touched.
    """
    alert = storage.get_alert(pk)
    if alert is None:
        raise AlertNotFound(f"No alert with id {pk}")

    changed = storage.update_alert_status(AlertMatch.for_group(alert), new_status)
    logger.debug("Group of alert %s: %s -> %s (%d rows)",
                 pk, alert.status, new_status, changed)
    return changed


def update_single_status(storage, pk: int, new_status: str) -> int:
    changed = storage.update_alert_status(AlertMatch(id=pk), new_status)
    if changed == 0:
        raise AlertNotFound(f"No alert with id {pk}")
    return changed
