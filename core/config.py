"""
Worker Configuration

Settings for one worker, resolved with priority CLI > profile file > env > default.
The profile file is ``<profile>/config.yaml``; a legacy ``config.json``
(camelCase keys) is still read when no YAML file exists.
"""

import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.yaml"
LEGACY_CONFIG_FILENAME = "config.json"

# Keys written by older releases of the bot.
LEGACY_KEYS = {
    "autoAC": "auto_collector",
    "autoSM": "shard_multiplier",
    "autoCB": "conveyor_booster",
    "autoRefine": "auto_refine",
    "refineHours": "refine_hours",
    "refineMinMinutes": "refine_min_minutes",
    "boostIntervalMs": "boost_interval_ms",
    "boostJitterMs": "boost_jitter_ms",
    "reloadSec": "reload_sec",
    "keepAlive": "keep_alive",
    "startUrl": "start_url",
    "acceptLanguage": "accept_language",
    "chromePath": "chrome_path",
    "slowMo": "slow_mo",
    "showClientLogs": "show_client_logs",
}


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


@dataclass
class BotConfig:
    """Configuration for one worker process."""

    # === Action toggles ===
    auto_collector: bool = True
    shard_multiplier: bool = True
    conveyor_booster: bool = True
    auto_refine: bool = True

    # === Timing ===
    refine_hours: float = 8
    refine_min_minutes: float = 30
    boost_interval_ms: int = int(os.getenv("BOOST_INTERVAL_MS", "300000"))
    boost_jitter_ms: int = int(os.getenv("BOOST_JITTER_MS", "15000"))
    reload_sec: int = int(os.getenv("RELOAD_SEC", "900"))
    keep_alive: bool = True

    # === Browser ===
    headless: bool = _env_bool("HEADLESS", "true")
    proxy: str = os.getenv("PROXY", "")
    proxies: List[str] = field(default_factory=list)
    start_url: str = os.getenv("START_URL", "https://www.geturanium.io/")
    accept_language: str = os.getenv("ACCEPT_LANGUAGE", "en-US,en;q=0.9")
    timezone: str = os.getenv("TIMEZONE", "Europe/Berlin")
    chrome_path: str = os.getenv("CHROME_PATH", "")
    slow_mo: int = 0

    # === Diagnostics ===
    show_client_logs: bool = _env_bool("SHOW_CLIENT_LOGS", "false")
    screenshots: bool = False

    def validate(self) -> List[str]:
        """Return a list of problems; empty means the config is usable."""
        problems = []
        if self.boost_interval_ms <= 0:
            problems.append("boost_interval_ms must be positive")
        if self.boost_jitter_ms < 0:
            problems.append("boost_jitter_ms must not be negative")
        elif self.boost_jitter_ms >= self.boost_interval_ms > 0:
            problems.append("boost_jitter_ms must be smaller than boost_interval_ms")
        if self.refine_hours <= 0:
            problems.append("refine_hours must be positive")
        if self.refine_min_minutes <= 0:
            problems.append("refine_min_minutes must be positive")
        if self.slow_mo < 0:
            problems.append("slow_mo must not be negative")
        return problems

    @property
    def refine_window_ms(self) -> int:
        return int(max(1, self.refine_hours) * 3600 * 1000)

    @property
    def refine_min_gap_ms(self) -> int:
        return int(max(1, self.refine_min_minutes) * 60 * 1000)


def _normalize_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    known = {f.name for f in fields(BotConfig)}
    result = {}
    for key, value in data.items():
        name = LEGACY_KEYS.get(key, key)
        if name in known:
            result[name] = value
        else:
            logger.debug(f"Ignoring unknown config key: {key}")
    return result


def read_config_file(profile_dir) -> Dict[str, Any]:
    """Read the profile's config file (YAML first, then legacy JSON)."""
    profile = Path(profile_dir)
    yaml_path = profile / CONFIG_FILENAME
    json_path = profile / LEGACY_CONFIG_FILENAME
    try:
        if yaml_path.exists():
            data = yaml.safe_load(yaml_path.read_text(encoding="utf-8")) or {}
        elif json_path.exists():
            data = json.loads(json_path.read_text(encoding="utf-8"))
        else:
            return {}
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.warning(f"Could not read config in {profile}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Config in {profile} is not a mapping, ignoring it")
        return {}
    return _normalize_keys(data)


def load_config(profile_dir, overrides: Optional[Dict[str, Any]] = None) -> BotConfig:
    """
    Build the worker config.

    Args:
        profile_dir: Profile directory holding config.yaml
        overrides: CLI values; ``None`` entries are ignored

    Returns:
        BotConfig
    """
    values = read_config_file(profile_dir)
    for key, value in _normalize_keys(overrides or {}).items():
        if value is not None:
            values[key] = value
    if isinstance(values.get("proxies"), str):
        values["proxies"] = [p.strip() for p in values["proxies"].split(",") if p.strip()]
    config = BotConfig(**values)
    for problem in config.validate():
        logger.warning(f"Config problem: {problem}")
    return config
