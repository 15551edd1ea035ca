"""
Readiness Prober

Polls rendered content for evidence that the surface finished hydrating.
The surface only completes lazy rendering when it believes it is visible
and focused, so every unsuccessful poll is followed by a "nudge" (scroll,
synthetic visibility/focus events, idle animation frames).
"""

import logging
import random
from typing import Optional

from playwright.async_api import Error as PlaywrightError

from .clock import Clock, SYSTEM_CLOCK
from .navigation import NavigationController, URL_HOME, same_page, with_cache_buster

logger = logging.getLogger(__name__)


UI_READY_JS = """
(minLen) => {
  if (!document.body) return false;
  const hasNext = !!document.querySelector('#__next, [data-nextjs-router]');
  const txt = (document.body.innerText || document.body.textContent || '').trim();
  const longEnough = txt.length >= minLen;
  const hasKeywords = /\\bboosters\\b/i.test(txt)
    || /temporary power-ups/i.test(txt)
    || /uranium/i.test(txt)
    || /collector|multiplier|conveyor/i.test(txt);
  const hasButtons = document.querySelectorAll('button').length >= 3;
  return hasNext || longEnough || hasKeywords || hasButtons;
}
"""

SURFACE_READY_JS = """
() => {
  const N = (s) => String(s || '').toLowerCase();
  const bodyText = N(document.body?.innerText || document.body?.textContent || '');
  const hasTitle = /\\bboosters\\b/.test(bodyText) || /temporary power-ups/i.test(bodyText);

  let hasGrid = false;
  const grids = Array.from(document.querySelectorAll('div,section,article'))
    .filter(el => /grid|grid-cols|sm:grid-cols-3|gap-3/i.test(el.className || ''));
  for (const g of grids) {
    const wide = Array.from(g.querySelectorAll('button')).filter(b => {
      const r = b.getBoundingClientRect();
      return r && r.width > 250 && r.height > 48;
    });
    if (wide.length >= 3) { hasGrid = true; break; }
  }

  const h3s = Array.from(document.querySelectorAll('h3')).map(h => N(h.textContent || h.innerText));
  const hasH3 = ['auto collector', 'shard multiplier', 'conveyor booster']
    .every(lbl => h3s.some(t => t.includes(lbl)));

  return hasTitle || hasGrid || hasH3;
}
"""

NUDGE_JS = """
() => {
  try { window.scrollTo({ top: 0, behavior: 'auto' }); } catch (e) {}
  document.dispatchEvent(new Event('visibilitychange', { bubbles: true }));
  document.dispatchEvent(new Event('focus', { bubbles: true }));
  if (window.requestAnimationFrame) for (let i = 0; i < 6; i++) requestAnimationFrame(() => {});
  const b = document.body;
  if (b) {
    const r = b.getBoundingClientRect();
    const x = r.left + Math.random() * r.width;
    const y = r.top + Math.random() * r.height;
    b.dispatchEvent(new MouseEvent('mousemove', { bubbles: true, clientX: x, clientY: y }));
  }
}
"""

SCROLL_NUDGE_JS = """
() => {
  window.scrollBy(0, Math.round(window.innerHeight * 0.6));
  const b = document.body;
  if (b) {
    const r = b.getBoundingClientRect();
    const x = r.left + Math.random() * r.width;
    const y = r.top + Math.random() * r.height;
    b.dispatchEvent(new MouseEvent('mousemove', { bubbles: true, clientX: x, clientY: y }));
  }
  document.dispatchEvent(new Event('visibilitychange', { bubbles: true }));
  if (window.requestIdleCallback) requestIdleCallback(() => {});
}
"""

DISMISS_OVERLAYS_JS = """
() => {
  const N = s => String(s || '').toLowerCase().replace(/\\s+/g, ' ').trim();
  const needles = ['accept all', 'accept', 'agree', 'got it', 'ok', 'close', 'start', 'continue',
                   'i understand', 'allow', 'dismiss', 'skip'];
  let clicked = 0;
  for (const el of Array.from(document.querySelectorAll('button,[role="button"],a'))) {
    const t = N(el.innerText || el.textContent);
    if (needles.some(n => t === n || t.includes(' ' + n + ' '))) {
      try { el.click(); clicked++; } catch (e) {}
    }
  }
  Array.from(document.querySelectorAll('[data-headlessui-state="open"],.fixed.inset-0,.modal,.backdrop'))
    .forEach(el => { el.style.display = 'none'; el.setAttribute('data-auto-closed', '1'); });
  return clicked;
}
"""


class ReadinessProber:
    """Bounded polling for surface readiness. Never raises on a slow surface."""

    def __init__(
        self,
        navigator: NavigationController,
        clock: Clock = SYSTEM_CLOCK,
        home_url: str = URL_HOME,
        poll_ms: int = 350,
        rng: Optional[random.Random] = None,
    ):
        self.navigator = navigator
        self.clock = clock
        self.home_url = home_url
        self.poll_ms = poll_ms
        self.rng = rng or random.Random()

    async def _probe(self, page, script: str, arg=None) -> bool:
        try:
            return bool(await page.evaluate(script, arg))
        except PlaywrightError as e:
            logger.debug(f"Readiness probe failed: {e}")
            return False

    async def _run(self, page, script: str):
        try:
            await page.evaluate(script)
        except PlaywrightError:
            pass

    async def nudge(self, page):
        await self._run(page, NUDGE_JS)

    async def dismiss_overlays(self, page):
        await self._run(page, DISMISS_OVERLAYS_JS)

    async def wait_ready(
        self,
        page,
        timeout_ms: int = 25_000,
        poll_ms: Optional[int] = None,
        min_text_len: int = 200,
    ) -> bool:
        """
        Wait until the page shows any sign of a rendered UI.

        Returns False (non-fatal) on timeout; callers proceed and let the
        next tick retry.
        """
        poll = (poll_ms or self.poll_ms) / 1000
        started = self.clock.now_ms()
        while self.clock.now_ms() - started < timeout_ms:
            if await self._probe(page, UI_READY_JS, min_text_len):
                return True
            await self.nudge(page)
            await self.clock.sleep(poll)
        return False

    async def wait_for_surface(
        self,
        page,
        timeout_ms: int = 45_000,
        allow_soft_reload: bool = True,
    ) -> bool:
        """
        Wait for the action section to render.

        On a fruitless probe the page is reloaded once with a cache-busting
        query and probed again with a shorter window and no further escalation.
        """
        started = self.clock.now_ms()
        while self.clock.now_ms() - started < timeout_ms:
            if await self._probe(page, SURFACE_READY_JS):
                return True
            await self._run(page, SCROLL_NUDGE_JS)
            await self.clock.sleep(self.poll_ms / 1000)

        if not allow_soft_reload:
            return False

        logger.info("🔄 Surface did not hydrate, soft reload ...")
        try:
            await self.navigator.safe_goto(page, with_cache_buster(self.home_url, self.clock.now_ms()), "home (soft reload)")
            await self.clock.sleep(1.2)
            await self.dismiss_overlays(page)
        except PlaywrightError as e:
            logger.warning(f"Soft reload failed: {e}")
        return await self.wait_for_surface(page, 25_000, allow_soft_reload=False)

    async def ensure_on_home(self, page):
        """Return to the base location if elsewhere, then encourage hydration."""
        if not same_page(page.url, self.home_url):
            await self.navigator.safe_goto(page, self.home_url, "home")
        try:
            await page.wait_for_selector("body", timeout=10_000)
        except PlaywrightError:
            pass
        await self.nudge(page)

    async def wait_home_ready(self, page, timeout_ms: int = 30_000) -> bool:
        await self.ensure_on_home(page)
        await self.dismiss_overlays(page)
        return await self.wait_for_surface(page, timeout_ms, allow_soft_reload=True)
