"""
Browser Session

One persistent Chromium context per profile (``<profile>/browser_profile``),
so cookies and local storage survive restarts. Handles proxy wiring,
fingerprint basics (user agent, Accept-Language, timezone), the stealth
init script and page-level safety handlers.
"""

import json
import logging
import random
from pathlib import Path
from typing import Any, Dict, List, Optional

from playwright.async_api import BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from .proxy_config import describe_proxy, normalize_proxy

logger = logging.getLogger(__name__)

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36 Edg/131.0.0.0",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
]

VIEWPORT = {"width": 1920, "height": 1080}

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    f"--window-size={VIEWPORT['width']},{VIEWPORT['height']}",
    "--disable-blink-features=AutomationControlled",
    "--disable-notifications",
    "--disable-popup-blocking",
    "--ignore-certificate-errors",
]

STEALTH_SCRIPT = """
// Hide webdriver property
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });

// Mock realistic plugins array
Object.defineProperty(navigator, 'plugins', {
    get: () => {
        const plugins = [
            { name: 'Chrome PDF Plugin', filename: 'internal-pdf-viewer' },
            { name: 'Chrome PDF Viewer', filename: 'mhjfbmdgcfjbbpaeojofohoefgiehjai' },
            { name: 'Native Client', filename: 'internal-nacl-plugin' }
        ];
        plugins.length = 3;
        return plugins;
    }
});

Object.defineProperty(navigator, 'hardwareConcurrency', { get: () => 8 });
Object.defineProperty(navigator, 'deviceMemory', { get: () => 8 });

window.chrome = window.chrome || { runtime: {}, loadTimes: function() {}, csi: function() {}, app: {} };

// Report the surface as visible and focused even in a background window
Object.defineProperty(document, 'visibilityState', { get: () => 'visible' });
Object.defineProperty(document, 'hidden', { get: () => false });
document.hasFocus = () => true;
"""

COOKIE_KEYS = ("name", "value", "domain", "path", "expires", "httpOnly", "secure", "sameSite", "url")
SAME_SITE = {"strict": "Strict", "lax": "Lax", "none": "None", "no_restriction": "None"}


def normalize_cookies(raw: Any) -> List[Dict[str, Any]]:
    """Convert exported cookies (browser extension or puppeteer format) for add_cookies."""
    if isinstance(raw, dict):
        raw = raw.get("cookies", [])
    cookies = []
    for item in raw or []:
        if not isinstance(item, dict) or not item.get("name"):
            continue
        cookie = {k: item[k] for k in COOKIE_KEYS if k in item and item[k] is not None}
        if "expirationDate" in item and "expires" not in cookie:
            cookie["expires"] = item["expirationDate"]
        if "expires" in cookie:
            cookie["expires"] = float(cookie["expires"])
            if cookie["expires"] <= 0:
                del cookie["expires"]
        same_site = SAME_SITE.get(str(cookie.get("sameSite", "")).lower())
        if same_site:
            cookie["sameSite"] = same_site
        else:
            cookie.pop("sameSite", None)
        if "url" not in cookie and "domain" not in cookie:
            continue
        if "domain" in cookie:
            cookie.pop("url", None)
            cookie.setdefault("path", "/")
        cookies.append(cookie)
    return cookies


def bind_page_safety(page: Page, show_client_logs: bool = False):
    """Dismiss dialogs, log page errors and optionally relay console output."""

    async def _dismiss(dialog):
        try:
            await dialog.dismiss()
        except PlaywrightError as e:
            logger.debug(f"Dialog dismiss failed: {e}")

    page.on("dialog", _dismiss)
    page.on("pageerror", lambda error: logger.error(f"Page JS error: {error}"))
    page.on("crash", lambda _: logger.error("💥 Page crashed"))
    if show_client_logs:
        page.on("console", lambda msg: logger.info(f"[client:{msg.type}] {msg.text}"))


class BrowserSession:
    """
    Owns Playwright, the persistent context and the working page.

    Usage:
        session = BrowserSession(profile_dir, config, proxy)
        page = await session.start()
        ...
        await session.close()
    """

    def __init__(self, profile_dir, config, proxy: Optional[str] = None):
        self.profile_dir = Path(profile_dir)
        self.config = config
        self.proxy = proxy or ""
        self.user_agent = random.choice(USER_AGENTS)
        self.playwright: Optional[Playwright] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None

    @property
    def user_data_dir(self) -> Path:
        return self.profile_dir / "browser_profile"

    @property
    def cookies_path(self) -> Path:
        return self.profile_dir / "cookies.json"

    def launch_options(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "headless": bool(self.config.headless),
            "args": list(LAUNCH_ARGS),
            "viewport": dict(VIEWPORT),
            "user_agent": self.user_agent,
            "extra_http_headers": {"Accept-Language": self.config.accept_language} if self.config.accept_language else {},
            "timezone_id": self.config.timezone or None,
            "ignore_https_errors": True,
        }
        if self.config.slow_mo:
            options["slow_mo"] = self.config.slow_mo
        if self.config.chrome_path:
            options["executable_path"] = self.config.chrome_path

        proxy = normalize_proxy(self.proxy)
        if proxy:
            options["proxy"] = proxy
            logger.info(f"🌐 Proxy: {describe_proxy(self.proxy)}")
        elif self.proxy:
            logger.warning(f"⚠️ Invalid proxy string ignored: {self.proxy!r}")
        return {k: v for k, v in options.items() if v is not None}

    async def seed_cookies(self) -> int:
        """Load ``<profile>/cookies.json`` into the context when present."""
        if not self.cookies_path.exists():
            return 0
        try:
            raw = json.loads(self.cookies_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read {self.cookies_path}: {e}")
            return 0
        cookies = normalize_cookies(raw)
        if cookies:
            await self.context.add_cookies(cookies)
            logger.info(f"🍪 Seeded {len(cookies)} cookies")
        return len(cookies)

    async def start(self) -> Page:
        self.user_data_dir.mkdir(parents=True, exist_ok=True)
        self.playwright = await async_playwright().start()
        self.context = await self.playwright.chromium.launch_persistent_context(
            str(self.user_data_dir),
            **self.launch_options(),
        )
        await self.context.add_init_script(STEALTH_SCRIPT)
        await self.seed_cookies()

        self.page = self.context.pages[0] if self.context.pages else await self.context.new_page()
        bind_page_safety(self.page, self.config.show_client_logs)
        logger.info(f"🖥️ Browser started (headless={self.config.headless}, profile={self.user_data_dir})")
        return self.page

    async def close(self):
        """Close the context and stop Playwright. Safe to call twice."""
        context, playwright = self.context, self.playwright
        self.context = self.playwright = self.page = None
        try:
            if context:
                await context.close()
        except PlaywrightError as e:
            logger.debug(f"Context close failed: {e}")
        finally:
            if playwright:
                await playwright.stop()
        if context or playwright:
            logger.info("Browser closed")
