"""
Long-Horizon Scheduler (Refinery)

Visits the refinery page roughly once per refining window, starts a new
run when the control is clickable and re-estimates the next visit from
whatever cooldown text the page shows.
"""

import logging
import re
from datetime import datetime
from typing import Optional

from playwright.async_api import Error as PlaywrightError

from .actions import ActionConfirmationMachine
from .clock import Clock, SYSTEM_CLOCK
from .locator import query_with_retries
from .models import REFINERY, Confirmation, RefineryState, RefineryTick, ScanResult
from .navigation import NavigationController, URL_REFINERY, same_page
from .policy import compute_next_visit
from .stats import RunStats

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_MS = 8 * 3600 * 1000
DEFAULT_MIN_GAP_MS = 30 * 60 * 1000
COOLDOWN_FALLBACK_MS = 10 * 60 * 1000
REFINE_CONFIRM_WINDOW_MS = 12_000
REFINE_CONFIRM_POLL_MS = 1_000

INITIATE_PHRASES = [
    "initiate uranium refining",
    "start refining",
    "begin refining",
    "refine now",
    "start conversion",
    "initiate refining",
]

INITIATE_WORD = re.compile(r"initiate|start|begin|refine now", re.IGNORECASE)
ACTIVE_PROCESS = re.compile(
    r"refining process|converting shards|conversion progress|uranium reactor.*active",
    re.IGNORECASE,
)
MENTIONS_COOLDOWN = re.compile(r"remaining|cooldown|time left|available in|next in", re.IGNORECASE)

_UNIT_MS = (
    ("d", 24 * 3600 * 1000),
    ("h", 3600 * 1000),
    ("m", 60 * 1000),
    ("s", 1000),
)
_UNIT_PATTERNS = [(re.compile(rf"(\d+)\s*{unit}", re.IGNORECASE), ms) for unit, ms in _UNIT_MS]

SCAN_JS = """
() => {
  const N = s => String(s || '').toLowerCase().replace(/\\s+/g, ' ').trim();
  const body = N(document.body?.innerText || document.body?.textContent || '');
  const btns = Array.from(document.querySelectorAll('button'));
  let btn = btns.find(b => /initiate.*refining|start.*refining|begin.*refining|refine now|initiate refining/i
    .test(N(b.textContent || b.innerText))) || null;
  if (!btn) {
    btn = btns.find(b => {
      const r = b.getBoundingClientRect();
      return r && r.width > 250 && r.height > 48
        && /gradient|from-cyan|to-purple|rounded-lg|font-mono/i.test(b.className || '');
    }) || null;
  }
  return {
    body,
    has_control: !!btn,
    control_disabled: !!(btn && btn.disabled),
    control_text: btn ? N(btn.textContent || btn.innerText) : '',
  };
}
"""

FIND_REFINE_JS = """
(needles) => {
  const N = s => String(s || '').toLowerCase().replace(/\\s+/g, ' ').trim();
  const hit = el => needles.some(n => N(el.innerText).includes(n) || N(el.textContent).includes(n));
  for (const b of Array.from(document.querySelectorAll('button'))) if (hit(b)) return b;
  for (const el of Array.from(document.querySelectorAll('a,div,[role="button"]'))) {
    if (hit(el)) return el.closest('button') || el.querySelector('button') || el;
  }
  return null;
}
"""

REFINE_CONFIRM_JS = """
(needles) => {
  const N = s => String(s || '').toLowerCase().replace(/\\s+/g, ' ').trim();
  const txt = N(document.body?.innerText || '');
  if (/refining process|converting shards|conversion progress|uranium reactor.*active|time remaining|completion time/i.test(txt)) {
    return { ok: true, reason: 'process active' };
  }
  for (const el of Array.from(document.querySelectorAll('button, [role="button"], a, div'))) {
    const t = N(el.innerText || el.textContent);
    if (!needles.some(n => t.includes(n))) continue;
    if (el.disabled || /cooldown|processing|activating|active|remaining/i.test(t)) {
      return { ok: true, reason: 'control not clickable' };
    }
    return { ok: false, reason: 'control still clickable' };
  }
  return { ok: true, reason: 'control gone' };
}
"""


def parse_cooldown_ms(text: Optional[str]) -> int:
    """
    Sum ``<n>d``, ``<n>h``, ``<n>m`` and ``<n>s`` tokens into milliseconds.

    Only the first token of each unit counts and missing units are zero,
    so "2h 15m remaining" is 8100000 and "5m 30s" is 330000. Never
    negative, never raises.
    """
    if not text:
        return 0
    total = 0
    for pattern, unit_ms in _UNIT_PATTERNS:
        match = pattern.search(str(text))
        if match:
            total += int(match.group(1)) * unit_ms
    return max(0, total)


def classify_refinery(
    body_text: str,
    has_control: bool,
    control_disabled: bool,
    control_text: str = "",
) -> ScanResult:
    """Turn the raw page extract into a ScanResult."""
    cooldown_ms = 0
    if MENTIONS_COOLDOWN.search(body_text or ""):
        cooldown_ms = parse_cooldown_ms(body_text)
    if has_control:
        cooldown_ms = max(cooldown_ms, parse_cooldown_ms(control_text))

    if has_control and not control_disabled and INITIATE_WORD.search(control_text or ""):
        state = RefineryState.READY
    elif ACTIVE_PROCESS.search(body_text or "") or (has_control and control_disabled) or cooldown_ms > 0:
        state = RefineryState.COOLDOWN
    else:
        state = RefineryState.UNKNOWN

    return ScanResult(state, cooldown_ms, has_control, has_control and control_disabled)


async def scan(page) -> ScanResult:
    raw = await page.evaluate(SCAN_JS)
    raw = raw or {}
    return classify_refinery(
        raw.get("body", ""),
        bool(raw.get("has_control")),
        bool(raw.get("control_disabled")),
        raw.get("control_text", ""),
    )


def _clock_time(ts_ms: int) -> str:
    return datetime.fromtimestamp(ts_ms / 1000).strftime("%H:%M:%S")


class RefineryController:
    """
    Schedules refinery visits.

    ``tick`` never raises for page-level problems; any failure in a pass
    pushes the next visit out by the minimum gap.
    """

    def __init__(
        self,
        navigator: NavigationController,
        machine: ActionConfirmationMachine,
        stats: RunStats,
        enabled: bool = True,
        window_ms: int = DEFAULT_WINDOW_MS,
        min_gap_ms: int = DEFAULT_MIN_GAP_MS,
        url: str = URL_REFINERY,
        clock: Clock = SYSTEM_CLOCK,
    ):
        self.navigator = navigator
        self.machine = machine
        self.stats = stats
        self.enabled = enabled
        self.window_ms = window_ms
        self.min_gap_ms = min_gap_ms
        self.url = url
        self.clock = clock
        self.next_at = compute_next_visit(
            stats.rate_state(REFINERY.key).last_fired_at,
            clock.now_ms(),
            self.window_ms,
            self.min_gap_ms,
        )
        if self.enabled:
            logger.info(f"📅 Next refinery visit ≈ {_clock_time(self.next_at)}")

    def schedule_in_minutes(self, minutes: float):
        self.next_at = self.clock.now_ms() + int(max(1, minutes) * 60 * 1000)

    def _retry_later(self):
        self.next_at = self.clock.now_ms() + self.min_gap_ms

    async def tick(self, page) -> RefineryTick:
        if not self.enabled or self.clock.now_ms() < self.next_at:
            return RefineryTick(ran=False, next_at=self.next_at)

        before = page.url
        result = RefineryTick(ran=True)
        try:
            result.fired, result.state = await self._pass(page)
        except Exception as e:
            logger.error(f"❌ Refinery pass failed: {e}")
            result.error = str(e)
            self._retry_later()
        result.navigated = not same_page(before, page.url)
        result.next_at = self.next_at
        logger.info(f"📅 Next refinery visit ≈ {_clock_time(self.next_at)}")
        return result

    async def _pass(self, page):
        await self.navigator.goto_if_needed(page, self.url, "/refinery")
        try:
            await page.wait_for_selector("body", timeout=8_000)
        except PlaywrightError:
            pass

        state = await scan(page)

        if state.state == RefineryState.READY:
            return await self._start_run(page), state.state

        if state.state == RefineryState.COOLDOWN:
            wait_ms = max(self.min_gap_ms, state.cooldown_ms or COOLDOWN_FALLBACK_MS)
            self.next_at = self.clock.now_ms() + wait_ms
            logger.info(f"⏳ Refinery cooling down, next check in ~{round(wait_ms / 60000)} min")
            return False, state.state

        logger.warning("⚠️ Refinery layout not recognized, checking again later")
        self._retry_later()
        return False, state.state

    async def _start_run(self, page) -> bool:
        async def locate():
            return await query_with_retries(page, FIND_REFINE_JS, INITIATE_PHRASES, tries=8, clock=self.clock, pause=0.3)

        element = await locate()
        if element is None:
            logger.warning("⚠️ Refinery looked ready but the control was not found")
            self._retry_later()
            return False

        async def check():
            try:
                raw = await page.evaluate(REFINE_CONFIRM_JS, INITIATE_PHRASES)
            except PlaywrightError as e:
                return Confirmation(False, str(e))
            raw = raw or {}
            return Confirmation(bool(raw.get("ok")), raw.get("reason", ""))

        async def confirm():
            return await self.machine.poll_confirmation(check, REFINE_CONFIRM_WINDOW_MS, REFINE_CONFIRM_POLL_MS)

        result, _ = await self.machine.click_until_confirmed(page, element, locate, confirm, attempts=1)
        if not result.ok:
            logger.warning(f"⚠️ Refinery click not confirmed ({result.reason}), retrying later")
            self._retry_later()
            return False

        now = self.clock.now_ms()
        self.stats.record_fire(REFINERY.key, now)
        self.next_at = compute_next_visit(now, now, self.window_ms, self.min_gap_ms)
        logger.info(f"⚡ Refinery run started ({result.reason})")
        return True
