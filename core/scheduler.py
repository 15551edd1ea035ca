"""
Short-Cycle Scheduler

One pass over the boost actions: make sure the surface is showing,
run every enabled and eligible action through the confirmation machine,
and record fires in the run stats.
"""

import logging
import random
from typing import Dict, Optional

from playwright.async_api import Error as PlaywrightError

from .actions import ActionConfirmationMachine
from .clock import Clock, SYSTEM_CLOCK
from .models import BOOST_ACTIONS, ActionOutcome
from .policy import BoostPolicy
from .readiness import ReadinessProber
from .stats import RunStats

logger = logging.getLogger(__name__)

KEEP_ALIVE_PROBABILITY = 0.2

KEEP_ALIVE_JS = """
() => {
  fetch('/favicon.ico', { cache: 'no-store', mode: 'no-cors' }).catch(() => {});
  const b = document.body;
  if (b) {
    const r = b.getBoundingClientRect();
    const x = r.left + Math.random() * r.width;
    const y = r.top + Math.random() * r.height;
    b.dispatchEvent(new MouseEvent('mousemove', { bubbles: true, clientX: x, clientY: y }));
  }
}
"""


class ShortCycleScheduler:
    """Runs the boost actions once per call."""

    def __init__(
        self,
        prober: ReadinessProber,
        machine: ActionConfirmationMachine,
        policy: BoostPolicy,
        clock: Clock = SYSTEM_CLOCK,
        rng: Optional[random.Random] = None,
    ):
        self.prober = prober
        self.machine = machine
        self.policy = policy
        self.clock = clock
        self.rng = rng or random.Random()

    async def keep_alive(self, page):
        try:
            await page.evaluate(KEEP_ALIVE_JS)
        except PlaywrightError as e:
            logger.debug(f"Keep-alive failed: {e}")

    async def run_once(self, page, stats: RunStats) -> Dict[str, ActionOutcome]:
        """
        Run each enabled action once.

        Returns:
            Outcomes keyed by action key; empty when the surface never
            became ready.
        """
        await self.prober.ensure_on_home(page)
        await self.prober.dismiss_overlays(page)

        if not await self.prober.wait_for_surface(page, 45_000, allow_soft_reload=True):
            logger.warning("⚠️ Boost section did not render (slow proxy or render), skipping this cycle")
            return {}

        outcomes: Dict[str, ActionOutcome] = {}
        for action in BOOST_ACTIONS:
            outcome = await self.machine.run_action(page, action, stats.rate_state(action.key), self.policy)
            if outcome.fired:
                stats.record_fire(action.key, self.clock.now_ms())
            outcomes[action.key] = outcome

        if self.policy.keep_alive and self.rng.random() < KEEP_ALIVE_PROBABILITY:
            await self.keep_alive(page)

        return outcomes
