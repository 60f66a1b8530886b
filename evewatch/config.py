# evewatch/config.py

import hashlib
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

# Project root: evewatch/..
BASE_DIR = Path(os.path.dirname(os.path.dirname(__file__)))

# Default place for the sqlite file and tail state
DATA_DIR = BASE_DIR / "data"
DB_PATH = str(DATA_DIR / "evewatch.db")
STATE_DIR = str(DATA_DIR / "state")

DEFAULT_CONFIG_PATH = BASE_DIR / "evewatch.yaml"

DEFAULT_EVE_PATH = "/var/log/suricata/eve.json"

ALLOWED_EVENT_TYPES = ("alert", "dns", "http", "tls", "ssh", "smtp", "files", "flow")

GROUP_WINDOW_SECONDS = 30

START_POSITIONS = ("beginning", "end")


@dataclass
class Settings:
    eve_paths: List[str] = field(default_factory=lambda: [DEFAULT_EVE_PATH])
    db_path: str = DB_PATH
    allowed_event_types: frozenset = frozenset(ALLOWED_EVENT_TYPES)
    group_window_seconds: float = GROUP_WINDOW_SECONDS
    poll_interval: float = 1.0
    chunk_size: int = 64 * 1024
    max_pending: int = 1024 * 1024
    start_at: str = "beginning"
    state_dir: Optional[str] = STATE_DIR
    log_level: str = "INFO"

    def state_file_for(self, eve_path: str) -> Optional[str]:
        if not self.state_dir:
            return None
        name = Path(eve_path).name or "eve"
        # keep files for different directories apart
        tag = hashlib.sha1(str(Path(eve_path).resolve()).encode("utf-8")).hexdigest()[:8]
        return str(Path(self.state_dir) / f"{name}.{tag}.state")


def _as_list(value, key: str) -> List[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return list(value)
    raise ConfigError(f"'{key}' must be a string or a list of strings")


def _as_positive(value, key: str, kind=float):
    try:
        number = kind(value)
    except (TypeError, ValueError):
        raise ConfigError(f"'{key}' must be a number, got {value!r}")
    if number <= 0:
        raise ConfigError(f"'{key}' must be greater than zero")
    return number


def settings_from_dict(data: dict) -> Settings:
    """Build Settings from a parsed YAML mapping. Unknown keys are ignored."""
    settings = Settings()

    for key in data:
        if key != "eve_path" and not hasattr(settings, key):
            logger.warning("Ignoring unknown config key: %s", key)

    if "eve_paths" in data:
        settings.eve_paths = _as_list(data["eve_paths"], "eve_paths")
    elif "eve_path" in data:
        settings.eve_paths = _as_list(data["eve_path"], "eve_path")

    if data.get("db_path"):
        settings.db_path = str(data["db_path"])

    if "allowed_event_types" in data:
        types = _as_list(data["allowed_event_types"], "allowed_event_types")
        settings.allowed_event_types = frozenset(types)

    if "group_window_seconds" in data:
        settings.group_window_seconds = _as_positive(
            data["group_window_seconds"], "group_window_seconds")
    if "poll_interval" in data:
        settings.poll_interval = _as_positive(data["poll_interval"], "poll_interval")
    if "chunk_size" in data:
        settings.chunk_size = _as_positive(data["chunk_size"], "chunk_size", int)
    if "max_pending" in data:
        settings.max_pending = _as_positive(data["max_pending"], "max_pending", int)

    if "start_at" in data:
        start_at = str(data["start_at"]).lower()
        if start_at not in START_POSITIONS:
            raise ConfigError(
                f"'start_at' must be one of {', '.join(START_POSITIONS)}")
        settings.start_at = start_at

    if "state_dir" in data:
        # null turns state persistence off
        settings.state_dir = str(data["state_dir"]) if data["state_dir"] else None

    if "log_level" in data:
        level = str(data["log_level"]).upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ConfigError(f"Unknown log_level: {data['log_level']}")
        settings.log_level = level

    return settings


def load_settings(path=None) -> Settings:
    """
    Load settings from a YAML file.

    Lookup order: explicit path, $EVEWATCH_CONFIG, evewatch.yaml in the
    project root. A missing default file just means defaults. $EVEWATCH_DB
    overrides db_path in every case.
    """
    explicit = path or os.environ.get("EVEWATCH_CONFIG")
    config_path = Path(explicit) if explicit else DEFAULT_CONFIG_PATH

    data = {}
    if config_path.exists():
        try:
            with config_path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}")

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {config_path} must contain a mapping")
        logger.debug("Loaded config from %s", config_path)
    elif explicit:
        raise ConfigError(f"Config file does not exist: {config_path}")

    settings = settings_from_dict(data)

    env_db = os.environ.get("EVEWATCH_DB")
    if env_db:
        settings.db_path = env_db

    return settings
