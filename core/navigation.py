"""
Navigation Controller

Serialized, retrying page transitions:
- goto_if_needed: skips the round trip when the page is already there
- safe_goto: up to 3 attempts, soft errors retried with linear backoff + jitter
- one asyncio.Lock per page, so concurrent callers never navigate the same
  page at once
"""

import asyncio
import logging
import random
import weakref
from typing import Optional
from urllib.parse import urlparse

from playwright.async_api import Error as PlaywrightError

from .clock import Clock, SYSTEM_CLOCK
from .errors import get_error_category, is_soft_navigation_error

logger = logging.getLogger(__name__)

URL_HOME = "https://www.geturanium.io/"
URL_REFINERY = "https://www.geturanium.io/refinery"

NAVIGATION_TIMEOUT_MS = 60_000
DEFAULT_ATTEMPTS = 3

# Keyed by the page object itself; entries vanish with the page.
_NAV_LOCKS: "weakref.WeakKeyDictionary" = weakref.WeakKeyDictionary()


def navigation_lock(page) -> asyncio.Lock:
    """Return the lock guarding navigations of this page."""
    lock = _NAV_LOCKS.get(page)
    if lock is None:
        lock = asyncio.Lock()
        _NAV_LOCKS[page] = lock
    return lock


def normalize_url(url: Optional[str]) -> str:
    return str(url or "").rstrip("/")


def same_location(current: Optional[str], target: Optional[str]) -> bool:
    return normalize_url(current) == normalize_url(target)


def same_page(current: Optional[str], target: Optional[str]) -> bool:
    """Host + path comparison that ignores query strings (cache busters)."""
    try:
        cur, dest = urlparse(str(current or "")), urlparse(str(target or ""))
    except ValueError:
        return False
    if not cur.hostname or cur.hostname.lower() != (dest.hostname or "").lower():
        return False
    return (cur.path or "/").rstrip("/") == (dest.path or "/").rstrip("/")


def ensure_url(url: Optional[str], default: str = URL_HOME) -> str:
    """Normalize a configured start URL, falling back to ``default``."""
    if not isinstance(url, str):
        return default
    candidate = url.strip()
    if not candidate:
        return default
    if "://" not in candidate:
        candidate = "https://" + candidate.lstrip("/")
    parsed = urlparse(candidate)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return default
    return candidate


def with_cache_buster(url: str, now_ms: int) -> str:
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}_={now_ms}"


class NavigationController:
    """
    Retrying navigation for one worker.

    Locks are shared module-wide per page, so two controllers driving the
    same page still serialize.
    """

    def __init__(
        self,
        clock: Clock = SYSTEM_CLOCK,
        rng: Optional[random.Random] = None,
        timeout_ms: int = NAVIGATION_TIMEOUT_MS,
    ):
        self.clock = clock
        self.rng = rng or random.Random()
        self.timeout_ms = timeout_ms
        self.navigations = 0

    async def _goto(self, page, url: str, label: str, attempts: int) -> bool:
        for attempt in range(1, attempts + 1):
            try:
                self.navigations += 1
                await page.goto(url, wait_until="networkidle", timeout=self.timeout_ms)
                return True
            except PlaywrightError as e:
                soft = is_soft_navigation_error(e)
                if not soft and attempt == attempts:
                    logger.error(f"Navigation to {label or url} failed ({get_error_category(e).value}): {e}")
                    raise
                logger.debug(f"Navigation attempt {attempt}/{attempts} to {label or url} failed: {e}")
                await self.clock.sleep(0.5 + attempt * 0.4 + self.rng.uniform(0, 0.3))
        logger.warning(f"⚠️ Gave up navigating to {label or url} after {attempts} attempts")
        return False

    async def safe_goto(self, page, url: str, label: str = "", attempts: int = DEFAULT_ATTEMPTS) -> bool:
        """
        Navigate with retries, holding the page's navigation lock.

        Args:
            page: Playwright page
            url: Destination
            label: Human readable name for logs
            attempts: Attempt budget

        Returns:
            True on success, False when soft errors exhausted the budget.
            A hard error on the final attempt is raised.
        """
        async with navigation_lock(page):
            return await self._goto(page, url, label, attempts)

    async def goto_if_needed(self, page, url: str, label: str = "") -> bool:
        """Navigate only when the page is not already at ``url``."""
        async with navigation_lock(page):
            if same_location(page.url, url):
                return True
            logger.info(f"↪️ Navigating to {label or url} ...")
            return await self._goto(page, url, label, DEFAULT_ATTEMPTS)

    async def goto_home_safe(self, page, url: str, label: str = "home") -> bool:
        """Go to the configured home URL, retrying against the default one on error."""
        target = ensure_url(url)
        try:
            return await self.goto_if_needed(page, target, label)
        except PlaywrightError as e:
            logger.warning(f"goto_if_needed({target}) -> {e}. Retrying with {URL_HOME}")
            return await self.goto_if_needed(page, URL_HOME, label)

    async def blank(self, page) -> bool:
        """Park the page on about:blank, one attempt, under the navigation lock."""
        async with navigation_lock(page):
            try:
                self.navigations += 1
                await page.goto("about:blank", timeout=self.timeout_ms)
                return True
            except PlaywrightError as e:
                logger.debug(f"about:blank failed: {e}")
                return False
