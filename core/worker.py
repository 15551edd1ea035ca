"""
Bot Worker - one profile, one browser, one event loop.

Usage:
    worker = BotWorker(profile_dir, config, proxy)
    exit_code = await run_worker(worker)

Per iteration: refinery pass, re-home if it moved the page, short-cycle
pass, periodic stats flush, sleep. All surface work runs under one lock
so the reload timer never interleaves with a click.
"""

import asyncio
import logging
import random
import signal
from pathlib import Path
from typing import Callable, Optional

from playwright.async_api import Error as PlaywrightError

from browser.session import BrowserSession

from .actions import ActionConfirmationMachine
from .clock import Clock, SYSTEM_CLOCK
from .config import BotConfig
from .errors import WorkerLaunchError
from .logging_config import log_tick
from .models import TickOutcome
from .navigation import NavigationController, ensure_url, same_page
from .policy import BoostPolicy
from .readiness import ReadinessProber
from .refinery import RefineryController
from .reload import ReloadScheduler, hard_reload
from .scheduler import ShortCycleScheduler
from .stats import load_stats, save_stats

logger = logging.getLogger(__name__)

TICK_SLEEP_SEC = 5
PERSIST_EVERY_MS = 5 * 60 * 1000


class BotWorker:
    """Runs the schedules for a single profile until cancelled."""

    def __init__(
        self,
        profile_dir,
        config: BotConfig,
        proxy: Optional[str] = None,
        clock: Clock = SYSTEM_CLOCK,
        rng: Optional[random.Random] = None,
        session_factory: Callable[..., BrowserSession] = BrowserSession,
    ):
        self.profile_dir = Path(profile_dir)
        self.config = config
        self.proxy = proxy
        self.clock = clock
        self.rng = rng or random.Random()
        self.home_url = ensure_url(config.start_url)

        self.stats = load_stats(self.profile_dir)
        self.session = session_factory(self.profile_dir, config, proxy)
        self.page = None

        self.navigator = NavigationController(clock, self.rng)
        self.prober = ReadinessProber(self.navigator, clock, self.home_url, rng=self.rng)
        self.machine = ActionConfirmationMachine(clock, self.rng)
        self.short_cycle = ShortCycleScheduler(
            self.prober, self.machine, BoostPolicy.from_config(config), clock, self.rng
        )
        self.refinery = RefineryController(
            self.navigator,
            self.machine,
            self.stats,
            enabled=config.auto_refine,
            window_ms=config.refine_window_ms,
            min_gap_ms=config.refine_min_gap_ms,
            clock=clock,
        )
        self.reload = ReloadScheduler(self.on_reload, config.reload_sec, clock)

        self.surface_lock = asyncio.Lock()
        self._last_persist_at = clock.now_ms()
        self._closed = False

    @property
    def screenshot_dir(self) -> Optional[Path]:
        return self.profile_dir / "screenshots" if self.config.screenshots else None

    async def start(self):
        """Launch the browser and bring the surface up."""
        try:
            self.page = await self.session.start()
        except (PlaywrightError, OSError) as e:
            raise WorkerLaunchError(f"Browser launch failed: {e}") from e
        logger.info(f"Start URL: {self.home_url}")
        await self.re_home()

    async def re_home(self):
        await self.navigator.goto_home_safe(self.page, self.home_url)
        await self.prober.wait_ready(self.page)
        await self.prober.wait_home_ready(self.page)

    async def on_reload(self):
        async with self.surface_lock:
            try:
                await hard_reload(
                    self.page,
                    self.navigator,
                    self.prober,
                    self.clock,
                    self.home_url,
                    self.screenshot_dir,
                )
            finally:
                self.stats.record_reload()
            await self.re_home()

    async def tick(self) -> TickOutcome:
        """One outer-loop iteration. Page-level failures are logged, never raised."""
        outcome = TickOutcome()
        async with self.surface_lock:
            outcome.refinery = await self.refinery.tick(self.page)
            moved = not same_page(self.page.url, self.home_url)
            if outcome.refinery.ran and (outcome.refinery.navigated or outcome.refinery.fired or moved):
                try:
                    await self.re_home()
                    outcome.relocated = True
                except PlaywrightError as e:
                    logger.error(f"❌ Could not return home after refinery: {e}")

            try:
                outcome.actions = await self.short_cycle.run_once(self.page, self.stats)
            except Exception as e:
                logger.warning(f"⚠️ Boost pass failed: {e}")
        return outcome

    def persist(self):
        try:
            save_stats(self.profile_dir, self.stats)
            self._last_persist_at = self.clock.now_ms()
        except OSError as e:
            logger.warning(f"Could not save stats: {e}")

    def maybe_persist(self):
        if self.clock.now_ms() - self._last_persist_at >= PERSIST_EVERY_MS:
            self.persist()

    async def run(self):
        await self.start()
        self.reload.start()
        while True:
            outcome = await self.tick()
            log_tick(logger, outcome.fired_keys, self.refinery.next_at)
            self.maybe_persist()
            await self.clock.sleep(TICK_SLEEP_SEC)

    async def shutdown(self):
        """Cancel the reload timer, close the browser, flush stats. In that order."""
        if self._closed:
            return
        self._closed = True
        await self.reload.stop()
        try:
            await self.session.close()
        except Exception as e:
            logger.warning(f"Browser close failed: {e}")
        self.persist()
        logger.info("👋 Worker stopped")


def install_signal_handlers(task: asyncio.Task):
    """Cancel the worker task on SIGINT/SIGTERM."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, task.cancel)
        except (NotImplementedError, RuntimeError):
            # Not available on Windows event loops
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(task.cancel))


async def run_worker(worker: BotWorker) -> int:
    """
    Run a worker until a signal arrives.

    Returns:
        Process exit code: 0 on a signal, 1 on a fatal error
    """
    task = asyncio.ensure_future(worker.run())
    install_signal_handlers(task)
    try:
        await task
        return 0
    except asyncio.CancelledError:
        logger.info("Stop requested")
        return 0
    except Exception as e:
        logger.exception(f"FATAL: {e}")
        return 1
    finally:
        await worker.shutdown()
