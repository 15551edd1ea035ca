"""
Element Locator

Finds the control for an action using an ordered list of strategies.
The first strategy that yields an element wins.
"""

import logging
from typing import Awaitable, Callable, Dict, List, Optional

from playwright.async_api import Error as PlaywrightError

from .clock import Clock, SYSTEM_CLOCK
from .models import ActionDescriptor

logger = logging.getLogger(__name__)


FIND_BY_LABEL_JS = """
(label) => {
  const N = s => String(s || '').toLowerCase().replace(/\\s+/g, ' ').trim();
  const want = N(label);
  for (const h of Array.from(document.querySelectorAll('h3'))) {
    if (!N(h.textContent || h.innerText).includes(want)) continue;
    const btn = h.closest('button');
    if (btn) return btn;
    let p = h.parentElement;
    for (let i = 0; i < 5 && p; i++, p = p.parentElement) {
      const b = p.querySelector('button');
      if (b) return b;
    }
  }
  return null;
}
"""

FIND_BY_GRID_JS = """
(idx) => {
  const big = b => { const r = b.getBoundingClientRect(); return r.width >= 220 && r.height >= 40; };
  const grids = Array.from(document.querySelectorAll('div,section,article'))
    .filter(el => /grid|grid-cols|sm:grid-cols-3|gap-3/i.test(el.className || ''));
  for (const g of grids) {
    const btns = Array.from(g.querySelectorAll('button')).filter(big);
    if (btns.length >= 3) return btns[idx] || null;
  }
  return null;
}
"""

# Section headers above the boost cards
SECTION_HEADER_PATTERN = r"boosters|temporary power-ups"

PROXIMITY_LAYOUT_JS = """
(pattern) => {
  const re = new RegExp(pattern, 'i');
  const headers = Array.from(document.querySelectorAll('h1,h2,h3,h4,div,span'))
    .filter(el => re.test(el.textContent || ''))
    .map(el => ({
      bottom: el.getBoundingClientRect().bottom,
      nested: Array.from(el.children).some(c => re.test(c.textContent || '')),
    }));
  const buttons = Array.from(document.querySelectorAll('button')).map(b => {
    const r = b.getBoundingClientRect();
    return { top: r.top, width: r.width, height: r.height };
  });
  return { headers, buttons };
}
"""

BUTTON_AT_JS = "(i) => document.querySelectorAll('button')[i] || null"

SCROLL_HALF_JS = "() => window.scrollBy(0, Math.round(window.innerHeight * 0.5))"


async def _scroll_and_pause(page, clock: Clock, pause: float, scroll: bool = True):
    if scroll:
        try:
            await page.evaluate(SCROLL_HALF_JS)
        except PlaywrightError:
            pass
    await clock.sleep(pause)


async def query_with_retries(
    page,
    script: str,
    arg=None,
    tries: int = 1,
    clock: Clock = SYSTEM_CLOCK,
    pause: float = 0.2,
    scroll: bool = True,
):
    """
    Evaluate a finder script up to ``tries`` times.

    Between tries the page is scrolled half a viewport so lazily rendered
    parts get a chance to mount.

    Returns:
        An ElementHandle, or None if nothing matched
    """
    for attempt in range(tries):
        try:
            handle = await page.evaluate_handle(script, arg)
            element = handle.as_element()
            if element is not None:
                return element
            await handle.dispose()
        except PlaywrightError as e:
            logger.debug(f"Finder evaluation failed (try {attempt + 1}/{tries}): {e}")
        if attempt + 1 < tries:
            await _scroll_and_pause(page, clock, pause, scroll)
    return None


def pick_below_header(layout: Optional[Dict], ordinal: int) -> Optional[int]:
    """
    Document index of the ``ordinal``-th large button under the lowest section header.

    Matching elements with a matching child wrap the header and are skipped.
    At least three candidate buttons are required.
    """
    if not layout or ordinal < 0:
        return None
    headers = [h for h in layout.get("headers") or [] if not h.get("nested")]
    if not headers:
        return None
    top = max(h["bottom"] for h in headers)
    below = sorted(
        (b["top"], i)
        for i, b in enumerate(layout.get("buttons") or [])
        if b["top"] >= top and b["width"] >= 220 and b["height"] >= 40
    )
    if len(below) < 3 or ordinal >= len(below):
        return None
    return below[ordinal][1]


async def find_by_label(page, action: ActionDescriptor, clock: Clock = SYSTEM_CLOCK):
    return await query_with_retries(page, FIND_BY_LABEL_JS, action.label, tries=6, clock=clock)


async def find_by_grid(page, action: ActionDescriptor, clock: Clock = SYSTEM_CLOCK):
    if action.ordinal < 0:
        return None
    return await query_with_retries(page, FIND_BY_GRID_JS, action.ordinal, tries=2, clock=clock)


async def find_by_proximity(page, action: ActionDescriptor, clock: Clock = SYSTEM_CLOCK, tries: int = 2):
    if action.ordinal < 0:
        return None
    for attempt in range(tries):
        try:
            layout = await page.evaluate(PROXIMITY_LAYOUT_JS, SECTION_HEADER_PATTERN)
        except PlaywrightError as e:
            logger.debug(f"Layout read failed (try {attempt + 1}/{tries}): {e}")
            layout = None
        index = pick_below_header(layout, action.ordinal)
        if index is not None:
            element = await query_with_retries(page, BUTTON_AT_JS, index, clock=clock)
            if element is not None:
                return element
        if attempt + 1 < tries:
            await _scroll_and_pause(page, clock, 0.2)
    return None


Strategy = Callable[..., Awaitable[Optional[object]]]

STRATEGIES: List[Strategy] = [find_by_label, find_by_grid, find_by_proximity]


async def find_control(
    page,
    action: ActionDescriptor,
    clock: Clock = SYSTEM_CLOCK,
    strategies: Optional[List[Strategy]] = None,
):
    """Run the strategies in order and return the first element found."""
    for strategy in strategies or STRATEGIES:
        element = await strategy(page, action, clock)
        if element is not None:
            logger.debug(f"Located {action.key} via {strategy.__name__}")
            return element
    return None
