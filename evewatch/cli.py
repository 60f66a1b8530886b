# evewatch/cli.py
import argparse
import logging
import sys
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from .config import load_settings
from .errors import AlertNotFound, ConfigError
from .grouping import group_alerts, update_group_status, update_single_status
from .models import ALERT_STATUSES, AlertFilter, AlertGroup
from .storage import SORT_KEYS, SQLiteStorage
from .watcher import build_monitor

logger = logging.getLogger("evewatch")

# Time frame options for the alert listing
TIME_FRAMES = {
    "15min": timedelta(minutes=15),
    "30min": timedelta(minutes=30),
    "1h": timedelta(hours=1),
    "3h": timedelta(hours=3),
    "12h": timedelta(hours=12),
    "1d": timedelta(days=1),
    "1w": timedelta(weeks=1),
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="evewatch",
        description="Tail a Suricata eve.json log into SQLite and review alerts",
    )
    parser.add_argument("--config", help="YAML config file")
    parser.add_argument("--db", help="SQLite database path (overrides config)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    watch = sub.add_parser("watch", help="Tail the configured eve.json files")
    watch.add_argument("paths", nargs="*", help="Files to watch (overrides config)")
    watch.add_argument("--once", action="store_true",
                       help="Drain what is there now and exit")

    alerts = sub.add_parser("alerts", help="List stored alerts, grouped")
    alerts.add_argument("--status", choices=ALERT_STATUSES)
    alerts.add_argument("--timeframe", choices=list(TIME_FRAMES))
    alerts.add_argument("--since", help="ISO timestamp, with --until")
    alerts.add_argument("--until", help="ISO timestamp, with --since")
    alerts.add_argument("--search", help="Substring of source/destination ip or message")
    alerts.add_argument("--sort-by", default="timestamp", choices=list(SORT_KEYS))
    alerts.add_argument("--order", default="DESC", type=str.upper, choices=["ASC", "DESC"])
    alerts.add_argument("--limit", type=int, default=20, help="Rows to show")
    alerts.add_argument("--no-group", action="store_true", help="Show raw alerts")

    status = sub.add_parser("status", help="Acknowledge or escalate an alert group")
    status.add_argument("id", type=int, help="Database id of a displayed alert")
    status.add_argument("new_status", choices=ALERT_STATUSES)
    status.add_argument("--single", action="store_true",
                        help="Only change this one alert, not its group")

    sub.add_parser("stats", help="Alert totals by severity")

    events = sub.add_parser("events", help="Show the most recent stored events")
    events.add_argument("--limit", type=int, default=20)

    return parser


def _parse_when(value: str) -> datetime:
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def build_filter(args) -> AlertFilter:
    flt = AlertFilter(status=args.status, search=args.search)
    if args.timeframe:
        flt.since = datetime.now(timezone.utc) - TIME_FRAMES[args.timeframe]
    elif args.since and args.until:
        flt.since = _parse_when(args.since)
        flt.until = _parse_when(args.until)
    return flt


def format_group(group: AlertGroup) -> str:
    rep = group.representative
    severity = rep.severity or "-"
    return (
        f"{rep.id:>6}  {group.timestamp.isoformat(timespec='seconds')}  "
        f"x{group.count:<4} sev={severity:<2} {rep.status:<12} "
        f"{rep.source_ip} -> {rep.destination_ip} [{rep.protocol}] "
        f"{rep.alert_id}: {rep.message}"
    )


def cmd_watch(args, settings, storage) -> int:
    if args.paths:
        settings.eve_paths = list(args.paths)
    monitor = build_monitor(settings, storage)

    if args.once:
        stored = monitor.poll_all()
        print(f"Stored {stored} record(s)")
        return 0

    try:
        monitor.run()
    except KeyboardInterrupt:
        monitor.stop()
        logger.info("Stopped")
    return 0


def cmd_alerts(args, settings, storage) -> int:
    flt = build_filter(args)
    alerts = storage.list_alerts(flt, sort_key=args.sort_by, sort_order=args.order)

    if args.no_group:
        groups = [AlertGroup(representative=a, last_timestamp=a.timestamp) for a in alerts]
    else:
        groups = group_alerts(alerts, settings.group_window_seconds)

    shown = groups[: args.limit] if args.limit > 0 else groups
    for group in shown:
        print(format_group(group))
    print(f"{len(shown)} of {len(groups)} row(s), {len(alerts)} alert(s)")
    return 0


def cmd_status(args, settings, storage) -> int:
    try:
        if args.single:
            changed = update_single_status(storage, args.id, args.new_status)
        else:
            changed = update_group_status(storage, args.id, args.new_status)
    except AlertNotFound as e:
        print(e, file=sys.stderr)
        return 1
    print(f"Updated {changed} alert(s) to {args.new_status}")
    return 0


def cmd_stats(args, settings, storage) -> int:
    print(f"Total alerts: {storage.count_alerts()}")
    for severity, count in storage.severity_counts().items():
        print(f"  severity {severity}: {count}")
    return 0


def cmd_events(args, settings, storage) -> int:
    events = storage.list_events(limit=args.limit)
    for ev in events:
        print(
            f"{ev.id:>6}  {ev.timestamp.isoformat(timespec='seconds')}  "
            f"{ev.event_type:<6} {ev.source_ip} -> {ev.destination_ip} [{ev.protocol}] "
            f"{ev.alert_id or ''} {ev.message or ''}".rstrip()
        )
    print(f"{len(events)} event(s)")
    return 0


COMMANDS = {
    "watch": cmd_watch,
    "alerts": cmd_alerts,
    "status": cmd_status,
    "stats": cmd_stats,
    "events": cmd_events,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2

    if args.db:
        settings.db_path = args.db

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    storage = SQLiteStorage(settings.db_path)
    storage.connect()
    storage.init_db()
    try:
        return COMMANDS[args.command](args, settings, storage)
    finally:
        storage.close()


if __name__ == "__main__":
    sys.exit(main())
