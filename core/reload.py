"""
Reload Scheduler

Periodic forced full reload of the surface, independent of the other
schedules. The loop re-arms after every fire, whether the callback
returned or raised.
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import Awaitable, Callable, Optional
from urllib.parse import urlparse

from playwright.async_api import Error as PlaywrightError

from .clock import Clock, SYSTEM_CLOCK
from .errors import is_aborted
from .navigation import NavigationController, URL_HOME, with_cache_buster
from .readiness import ReadinessProber

logger = logging.getLogger(__name__)

AUTH_PATH = re.compile(r"/auth\b")
AUTH_RESTORE_TIMEOUT_MS = 180_000


class ReloadScheduler:
    """
    Calls ``callback`` every ``interval_sec`` seconds until cancelled.

    Usage:
        scheduler = ReloadScheduler(on_reload, 900)
        scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        callback: Callable[[], Awaitable[None]],
        interval_sec: float,
        clock: Clock = SYSTEM_CLOCK,
    ):
        self.callback = callback
        self.interval_ms = int(interval_sec * 1000)
        self.clock = clock
        self.next_at: Optional[int] = None
        self.fires = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def enabled(self) -> bool:
        return self.interval_ms > 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> Optional[asyncio.Task]:
        if not self.enabled:
            logger.info("Scheduled reload disabled")
            return None
        self.cancel()
        self._task = asyncio.create_task(self.run())
        return self._task

    def cancel(self) -> Optional[asyncio.Task]:
        """Cancel the timer without waiting; returns the cancelled task, if any."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        self.next_at = None
        return task

    async def stop(self):
        """Cancel the timer and wait until an in-flight reload has unwound."""
        task = self.cancel()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def fire(self):
        self.fires += 1
        try:
            await self.callback()
        except Exception as e:
            logger.error(f"❌ Scheduled reload failed: {e}")

    async def run(self):
        self.next_at = self.clock.now_ms() + self.interval_ms
        while True:
            await self.clock.sleep(max(0, self.next_at - self.clock.now_ms()) / 1000)
            try:
                await self.fire()
            finally:
                self.next_at = self.clock.now_ms() + self.interval_ms


async def _screenshot(page, directory: Optional[Path], tag: str, now_ms: int):
    if directory is None:
        return
    try:
        directory.mkdir(parents=True, exist_ok=True)
        await page.screenshot(path=str(directory / f"reload_{tag}_{now_ms}.png"))
    except (PlaywrightError, OSError) as e:
        logger.debug(f"Screenshot {tag} failed: {e}")


def on_auth_page(url: Optional[str]) -> bool:
    return bool(AUTH_PATH.search(urlparse(str(url or "")).path))


async def hard_reload(
    page,
    navigator: NavigationController,
    prober: ReadinessProber,
    clock: Clock = SYSTEM_CLOCK,
    home_url: str = URL_HOME,
    screenshot_dir: Optional[Path] = None,
):
    """
    Blank the page, then load the home URL with a cache buster.

    When the session was bounced to the auth page, wait up to three minutes
    for it to restore itself; otherwise give the UI a short warm-up.
    """
    logger.warning("🚨 Hard reload ...")
    await _screenshot(page, screenshot_dir, "before", clock.now_ms())

    await navigator.blank(page)
    await clock.sleep(0.15)

    try:
        await navigator.safe_goto(page, with_cache_buster(home_url, clock.now_ms()), "reload")
    except PlaywrightError as e:
        if not is_aborted(e):
            logger.error(f"Hard reload navigation failed: {e}")

    if on_auth_page(page.url):
        logger.info("🔐 Redirected to auth, waiting for the session to restore ...")
        started = clock.now_ms()
        while clock.now_ms() - started < AUTH_RESTORE_TIMEOUT_MS:
            if not on_auth_page(page.url):
                break
            await clock.sleep(1)
        else:
            logger.warning("⚠️ Session did not restore within 3 minutes")
    else:
        await prober.wait_ready(page, timeout_ms=12_000, poll_ms=300)

    await _screenshot(page, screenshot_dir, "after", clock.now_ms())
