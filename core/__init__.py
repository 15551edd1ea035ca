"""
Core engine for keeping boosts and the refinery running on the surface.

Modules:
- navigation: serialized, retrying page transitions
- readiness: hydration probes and overlay dismissal
- locator: ordered strategies for finding action controls
- actions: click-and-confirm state machine
- scheduler: short-cycle boost pass
- refinery: long-horizon refinery schedule
- reload: periodic hard reload
- worker: one profile's event loop
- orchestrator: many workers as separate processes
"""

from .actions import ActionConfirmationMachine
from .clock import Clock, SYSTEM_CLOCK
from .config import BotConfig, load_config
from .models import ActionDescriptor, ActionOutcome, RateState, RefineryState, ScanResult, TickOutcome
from .navigation import NavigationController
from .orchestrator import WorkerOrchestrator, resolve_accounts
from .readiness import ReadinessProber
from .refinery import RefineryController, parse_cooldown_ms
from .reload import ReloadScheduler, hard_reload
from .scheduler import ShortCycleScheduler
from .stats import RunStats
from .worker import BotWorker, run_worker

__all__ = [
    "ActionConfirmationMachine",
    "ActionDescriptor",
    "ActionOutcome",
    "BotConfig",
    "BotWorker",
    "Clock",
    "NavigationController",
    "RateState",
    "ReadinessProber",
    "RefineryController",
    "RefineryState",
    "ReloadScheduler",
    "RunStats",
    "SYSTEM_CLOCK",
    "ScanResult",
    "ShortCycleScheduler",
    "TickOutcome",
    "WorkerOrchestrator",
    "hard_reload",
    "load_config",
    "parse_cooldown_ms",
    "resolve_accounts",
    "run_worker",
]
