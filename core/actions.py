"""
Action Confirmation Machine

Drives one action from "eligible" to "confirmed fired":

1. Config / eligibility gates
2. Read the control's rendered state; skip if missing or already cooling down
3. Locate the control and click it physically (pointer move, press, hold, release)
4. Poll the rendered state until it shows a transition, or give up

A dispatched click is never counted as a fire; only an observed state
change is.
"""

import logging
import random
import re
from typing import Awaitable, Callable, Dict, Optional, Tuple

from playwright.async_api import Error as PlaywrightError

from .clock import Clock, SYSTEM_CLOCK
from .locator import find_control
from .models import ActionDescriptor, ActionOutcome, Confirmation, RateState, SkipReason, SurfaceState
from .policy import BoostPolicy, is_eligible

logger = logging.getLogger(__name__)


COOLDOWN_MARKERS = re.compile(r"(remaining|time left|expires in|cooldown|active)", re.IGNORECASE)
TIMER_PATTERN = re.compile(r"\d+\s*(m|min|minutes?)|\d+\s*(s|sec|seconds?)", re.IGNORECASE)

CONFIRM_WINDOW_MS = 4_500
CONFIRM_POLL_MS = 300
MAX_ATTEMPTS = 3
LOG_THROTTLE_MS = 60_000

SURFACE_STATE_JS = """
(needle) => {
  const N = s => String(s || '').toLowerCase().replace(/\\s+/g, ' ').trim();
  for (const h3 of Array.from(document.querySelectorAll('h3'))) {
    if (!N(h3.textContent || h3.innerText).includes(needle)) continue;
    let btn = h3.closest('button');
    let p = h3.parentElement;
    for (let k = 0; k < 5 && p && !btn; k++, p = p.parentElement) btn = p.querySelector('button');
    if (!btn) continue;
    const card = btn.closest('button, .rounded-lg, .border, [class*="rounded"], [class*="border"]')
      || btn.parentElement || btn;
    return {
      exists: true,
      disabled: !!(btn.disabled || btn.getAttribute('aria-disabled') === 'true'),
      text: `${N(btn.innerText)} || ${N(card.innerText)}`,
    };
  }
  return { exists: false };
}
"""

SCROLL_INTO_VIEW_JS = "el => { try { el.scrollIntoView({ block: 'center' }); } catch (e) {} }"


async def read_surface_state(page, action: ActionDescriptor) -> SurfaceState:
    """Read the control's current state. Evaluation errors read as "missing"."""
    try:
        raw = await page.evaluate(SURFACE_STATE_JS, action.label)
    except PlaywrightError as e:
        logger.debug(f"State read for {action.key} failed: {e}")
        return SurfaceState(exists=False)
    if not raw or not raw.get("exists"):
        return SurfaceState(exists=False)
    text = raw.get("text") or ""
    return SurfaceState(
        exists=True,
        disabled=bool(raw.get("disabled")),
        in_cooldown=bool(COOLDOWN_MARKERS.search(text)),
        text=text,
    )


def success_signal(before: SurfaceState, after: SurfaceState) -> Confirmation:
    """Compare two snapshots of the same control and report a transition."""
    if not after.exists:
        return Confirmation(False, "missing")
    if not before.disabled and after.disabled:
        return Confirmation(True, "disabled")
    if not before.in_cooldown and after.in_cooldown:
        return Confirmation(True, "cooldown text")
    if COOLDOWN_MARKERS.search(after.text) and TIMER_PATTERN.search(after.text):
        return Confirmation(True, "timer text")
    return Confirmation(False, "no state change")


async def physical_click(page, element, rng: Optional[random.Random] = None, clock: Clock = SYSTEM_CLOCK) -> bool:
    """
    Human-like click: scroll into view, move to a random point inside the
    box, press, hold 40-160ms, release.

    Returns:
        False when the box is absent or empty or the driver failed; the
        caller then falls back to a dispatched click.
    """
    rng = rng or random.Random()
    try:
        await element.evaluate(SCROLL_INTO_VIEW_JS)
        box = await element.bounding_box()
        if not box or not box.get("width") or not box.get("height"):
            return False
        x = box["x"] + rng.random() * box["width"]
        y = box["y"] + rng.random() * box["height"]
        await page.mouse.move(x, y, steps=16)
        await page.mouse.down()
        await clock.sleep(rng.uniform(0.04, 0.16))
        await page.mouse.up()
        return True
    except PlaywrightError as e:
        logger.debug(f"Physical click failed: {e}")
        return False


Locate = Callable[[], Awaitable[Optional[object]]]
Confirm = Callable[[], Awaitable[Confirmation]]


class ActionConfirmationMachine:
    """Click-and-verify loop shared by the short-cycle and long-horizon passes."""

    def __init__(self, clock: Clock = SYSTEM_CLOCK, rng: Optional[random.Random] = None):
        self.clock = clock
        self.rng = rng or random.Random()
        self.clicks = 0
        self._last_logged: Dict[Tuple[str, str], int] = {}

    def _throttled(self, key: str, kind: str, message: str, level: int = logging.INFO):
        """Log at most once per minute per (action, kind)."""
        now = self.clock.now_ms()
        last = self._last_logged.get((key, kind))
        if last is not None and now - last < LOG_THROTTLE_MS:
            return
        self._last_logged[(key, kind)] = now
        logger.log(level, message)

    async def click(self, page, element) -> bool:
        """Physical click with a dispatched-click fallback."""
        self.clicks += 1
        if await physical_click(page, element, self.rng, self.clock):
            return True
        try:
            await element.click(delay=25)
            return True
        except PlaywrightError as e:
            logger.debug(f"Dispatched click failed: {e}")
            return False

    async def poll_confirmation(self, check: Confirm, window_ms: int, poll_ms: int = CONFIRM_POLL_MS) -> Confirmation:
        """Poll ``check`` until it confirms or the window closes."""
        started = self.clock.now_ms()
        last = Confirmation(False, "no state change")
        while self.clock.now_ms() - started < window_ms:
            await self.clock.sleep(poll_ms / 1000)
            last = await check()
            if last.ok:
                return last
        return Confirmation(False, last.reason or "no state change")

    async def click_until_confirmed(
        self,
        page,
        element,
        locate: Locate,
        confirm: Confirm,
        attempts: int = MAX_ATTEMPTS,
    ) -> Tuple[Confirmation, int]:
        """
        Click and confirm up to ``attempts`` times, re-locating between tries.

        Returns:
            (final confirmation, attempts used)
        """
        result = Confirmation(False, "not attempted")
        for attempt in range(1, attempts + 1):
            await self.click(page, element)
            result = await confirm()
            if result.ok:
                return result, attempt
            if attempt < attempts:
                await self.clock.sleep(self.rng.uniform(0.6, 1.1))
                element = await locate() or element
        return result, attempts

    async def run_action(
        self,
        page,
        action: ActionDescriptor,
        rate_state: RateState,
        policy: BoostPolicy,
    ) -> ActionOutcome:
        """
        Attempt one action. RateState is left untouched; the caller records
        the fire when ``outcome.fired`` is True.
        """
        if not policy.is_enabled(action.key):
            return ActionOutcome(action.key, False, "disabled by config", SkipReason.DISABLED)

        if not is_eligible(rate_state, self.clock.now_ms(), policy.interval_ms, policy.jitter_ms, self.rng):
            return ActionOutcome(action.key, False, "interval not elapsed", SkipReason.NOT_ELIGIBLE)

        before = await read_surface_state(page, action)
        if not before.exists:
            self._throttled(action.key, "not_found", f"⚠️ No control found for {action.key}", logging.WARNING)
            return ActionOutcome(action.key, False, "control missing", SkipReason.NOT_FOUND)

        if before.disabled or before.in_cooldown:
            self._throttled(action.key, "cooldown", f"⏳ {action.key}: already cooling down, skipping")
            return ActionOutcome(action.key, False, "already cooling down", SkipReason.IN_COOLDOWN)

        async def locate():
            return await find_control(page, action, self.clock)

        element = await locate()
        if element is None:
            self._throttled(action.key, "not_found", f"⚠️ Could not locate {action.key} on the page", logging.WARNING)
            return ActionOutcome(action.key, False, "locator exhausted", SkipReason.NOT_FOUND)

        async def check():
            return success_signal(before, await read_surface_state(page, action))

        async def confirm():
            return await self.poll_confirmation(check, CONFIRM_WINDOW_MS)

        result, attempts = await self.click_until_confirmed(page, element, locate, confirm)
        if not result.ok:
            logger.warning(f"⚠️ Click on {action.key} not confirmed after {attempts} attempts ({result.reason})")
            return ActionOutcome(action.key, False, result.reason, SkipReason.UNCONFIRMED, attempts)

        logger.info(f"✅ Confirmed {action.key} ({result.reason})")
        await self.clock.sleep(self.rng.uniform(0.5, 1.2))
        return ActionOutcome(action.key, True, result.reason, None, attempts)
