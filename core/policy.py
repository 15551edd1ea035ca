"""
Timing policy shared by the schedulers.

- BoostPolicy: which short-cycle actions are enabled and how often they fire
- is_eligible: jittered interval check against an action's RateState
- compute_next_visit: next long-horizon visit from the last confirmed fire
"""

import random
from dataclasses import dataclass, field
from typing import Dict, Optional

from .models import BOOST_ACTIONS, RateState

DEFAULT_BOOST_INTERVAL_MS = 300_000
DEFAULT_BOOST_JITTER_MS = 15_000
SAFETY_MARGIN_MS = 90_000


@dataclass
class BoostPolicy:
    """Short-cycle timing and per-action toggles."""
    interval_ms: int = DEFAULT_BOOST_INTERVAL_MS
    jitter_ms: int = DEFAULT_BOOST_JITTER_MS
    enabled: Dict[str, bool] = field(default_factory=lambda: {a.key: True for a in BOOST_ACTIONS})
    keep_alive: bool = True

    def is_enabled(self, key: str) -> bool:
        return self.enabled.get(key, True) is not False

    @classmethod
    def from_config(cls, config) -> "BoostPolicy":
        return cls(
            interval_ms=int(config.boost_interval_ms) or DEFAULT_BOOST_INTERVAL_MS,
            jitter_ms=int(config.boost_jitter_ms) or DEFAULT_BOOST_JITTER_MS,
            enabled={a.key: bool(getattr(config, a.key, True)) for a in BOOST_ACTIONS},
            keep_alive=bool(config.keep_alive),
        )


def is_eligible(
    rate: RateState,
    now_ms: int,
    interval_ms: int,
    jitter_ms: int,
    rng: Optional[random.Random] = None,
) -> bool:
    """
    Check whether an action may be attempted now.

    A fresh jitter in [-jitter, +jitter] is drawn on every call, so the
    effective interval varies from tick to tick. Never fired means eligible.
    """
    if rate.last_fired_at is None:
        return True
    rng = rng or random
    threshold = interval_ms + rng.uniform(-jitter_ms, jitter_ms)
    return now_ms - rate.last_fired_at >= threshold


def compute_next_visit(
    last_fired_at: Optional[int],
    now_ms: int,
    window_ms: int,
    min_gap_ms: int,
) -> int:
    """
    Next long-horizon visit: ``last + window - safety margin``, never earlier
    than ``now + min_gap``. Never fired means visit now.
    """
    if last_fired_at is None:
        return now_ms
    return max(last_fired_at + window_ms - SAFETY_MARGIN_MS, now_ms + min_gap_ms)
