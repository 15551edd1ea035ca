"""
Browser layer: persistent Playwright sessions and proxy handling.

Environment Variables Used:
    HEADLESS - default headless mode for workers
    CHROME_PATH - optional Chromium/Chrome executable
    PROXY - default proxy when neither CLI nor profile sets one
"""

from .proxy_config import normalize_proxy, resolve_proxy
from .session import BrowserSession, bind_page_safety

__all__ = [
    "BrowserSession",
    "bind_page_safety",
    "normalize_proxy",
    "resolve_proxy",
]
