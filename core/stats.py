"""
Run statistics persisted per profile in ``<profile>/stats.json``.

Only the profile's own worker writes the file; writes go through a temp
file and ``os.replace`` so a reader never sees a half-written document.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from .models import ALL_ACTION_KEYS, RateState

logger = logging.getLogger(__name__)

STATS_FILENAME = "stats.json"

# Field and action names written by older releases of the bot.
LEGACY_FIELDS = {
    "reloadCount": "reload_count",
    "clickCount": "click_count",
    "lastClick": "last_click",
}
LEGACY_ACTIONS = {
    "autoAC": "auto_collector",
    "autoSM": "shard_multiplier",
    "autoCB": "conveyor_booster",
    "autoRefine": "refinery",
}


def _migrate(data: Dict[str, Any]) -> Dict[str, Any]:
    migrated = {}
    for key, value in data.items():
        name = LEGACY_FIELDS.get(key, key)
        if name in migrated and key != name:
            continue
        if isinstance(value, dict):
            value = {LEGACY_ACTIONS.get(k, k): v for k, v in value.items()}
        migrated[name] = value
    return migrated


@dataclass
class RunStats:
    """Reload counter plus one RateState per action key."""
    reload_count: int = 0
    rates: Dict[str, RateState] = field(default_factory=dict)

    def rate_state(self, key: str) -> RateState:
        if key not in self.rates:
            self.rates[key] = RateState()
        return self.rates[key]

    def record_fire(self, key: str, now_ms: int):
        self.rate_state(key).record_fire(now_ms)

    def record_reload(self):
        self.reload_count += 1

    @property
    def click_count(self) -> Dict[str, int]:
        return {k: r.fired_count for k, r in self.rates.items() if r.fired_count}

    @property
    def last_click(self) -> Dict[str, int]:
        return {k: r.last_fired_at for k, r in self.rates.items() if r.last_fired_at is not None}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reload_count": self.reload_count,
            "click_count": self.click_count,
            "last_click": self.last_click,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RunStats":
        data = _migrate(data or {})
        stats = cls(reload_count=int(data.get("reload_count") or 0))
        counts = data.get("click_count") or {}
        lasts = data.get("last_click") or {}
        for key in set(counts) | set(lasts):
            if key not in ALL_ACTION_KEYS:
                logger.debug(f"Ignoring stats for unknown action {key}")
                continue
            last = lasts.get(key)
            stats.rates[key] = RateState(
                last_fired_at=int(last) if last else None,
                fired_count=int(counts.get(key) or 0),
            )
        return stats


def stats_path(profile_dir) -> Path:
    return Path(profile_dir) / STATS_FILENAME


def load_stats(profile_dir) -> RunStats:
    """Load stats for a profile; a missing or corrupt file yields empty stats."""
    path = stats_path(profile_dir)
    if not path.exists():
        return RunStats()
    try:
        with open(path, "r", encoding="utf-8") as f:
            return RunStats.from_dict(json.load(f))
    except (OSError, ValueError) as e:
        logger.warning(f"Could not read {path}: {e}")
        return RunStats()


def save_stats(profile_dir, stats: RunStats) -> Path:
    """Write stats atomically and return the destination path."""
    path = stats_path(profile_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(stats.to_dict(), f, ensure_ascii=False, indent=2)
    os.replace(tmp, path)
    return path
