#!/usr/bin/env python3
"""
Shared Data Models for Boostkeeper

Action descriptors, per-action rate state, surface snapshots and the
outcome records returned by the schedulers.
"""

from typing import Optional, Dict, Tuple
from dataclasses import dataclass, field
from enum import Enum


# ============== Enums ==============

class SkipReason(str, Enum):
    """Why an action was not attempted (or not confirmed) this tick."""
    DISABLED = "disabled"
    NOT_ELIGIBLE = "not_eligible"
    NOT_FOUND = "not_found"
    IN_COOLDOWN = "in_cooldown"
    UNCONFIRMED = "unconfirmed"


class RefineryState(str, Enum):
    """Classifier output for the long-horizon surface."""
    READY = "ready"
    COOLDOWN = "cooldown"
    UNKNOWN = "unknown"


# ============== Actions ==============

@dataclass(frozen=True)
class ActionDescriptor:
    """One controllable action on the surface."""
    key: str
    label: str
    ordinal: int = -1


AUTO_COLLECTOR = ActionDescriptor("auto_collector", "auto collector", 0)
SHARD_MULTIPLIER = ActionDescriptor("shard_multiplier", "shard multiplier", 1)
CONVEYOR_BOOSTER = ActionDescriptor("conveyor_booster", "conveyor booster", 2)

BOOST_ACTIONS: Tuple[ActionDescriptor, ...] = (AUTO_COLLECTOR, SHARD_MULTIPLIER, CONVEYOR_BOOSTER)

# The long-horizon action; its toggle lives in BotConfig.auto_refine.
REFINERY = ActionDescriptor("refinery", "refining")

ALL_ACTION_KEYS = tuple(a.key for a in BOOST_ACTIONS) + (REFINERY.key,)


# ============== State ==============

@dataclass
class RateState:
    """
    Firing history for one action.

    Only ``record_fire`` mutates it, and callers invoke it only after a
    confirmed state transition on the surface.
    """
    last_fired_at: Optional[int] = None
    fired_count: int = 0

    def record_fire(self, now_ms: int):
        self.last_fired_at = now_ms
        self.fired_count += 1


@dataclass
class SurfaceState:
    """Snapshot of one action's control as rendered right now."""
    exists: bool
    disabled: bool = False
    in_cooldown: bool = False
    text: str = ""


@dataclass
class Confirmation:
    ok: bool
    reason: str = ""


@dataclass
class ActionOutcome:
    """Result of one pass of the confirmation machine for one action."""
    key: str
    fired: bool
    reason: str = ""
    skipped: Optional[SkipReason] = None
    attempts: int = 0


@dataclass
class ScanResult:
    """Classified refinery page state."""
    state: RefineryState
    cooldown_ms: int = 0
    has_control: bool = False
    control_disabled: bool = False


@dataclass
class RefineryTick:
    """What a long-horizon tick did."""
    ran: bool = False
    fired: bool = False
    navigated: bool = False
    state: Optional[RefineryState] = None
    next_at: Optional[int] = None
    error: Optional[str] = None


@dataclass
class TickOutcome:
    """Everything one outer-loop iteration produced."""
    refinery: RefineryTick = field(default_factory=RefineryTick)
    actions: Dict[str, ActionOutcome] = field(default_factory=dict)
    relocated: bool = False

    @property
    def fired_keys(self) -> Tuple[str, ...]:
        keys = tuple(k for k, o in self.actions.items() if o.fired)
        if self.refinery.fired:
            keys += (REFINERY.key,)
        return keys
