"""
Bot Worker and Browser Session tests.

The browser is replaced by a FakeSession; page internals are covered by the
engine tests.
"""

import asyncio
import json

import pytest
from playwright.async_api import Error as PlaywrightError

from conftest import FakeClock, FakePage
from core.config import BotConfig
from core.models import ActionOutcome, RefineryTick
from core.navigation import URL_HOME, URL_REFINERY
from core.stats import RunStats, save_stats
from core import worker as worker_module
from core.worker import BotWorker, run_worker
from browser.session import BrowserSession, bind_page_safety, normalize_cookies


class FakeSession:

    def __init__(self, profile_dir, config, proxy, events, fail=False):
        self.events = events
        self.fail = fail
        self.page = FakePage(URL_HOME)

    async def start(self):
        self.events.append("start")
        if self.fail:
            raise PlaywrightError("Executable doesn't exist")
        return self.page

    async def close(self):
        self.events.append("close")


def make_worker(profile_dir, events, fail=False, **config):
    config.setdefault("proxy", "")
    return BotWorker(
        profile_dir,
        BotConfig(**config),
        clock=FakeClock(),
        session_factory=lambda p, c, x: FakeSession(p, c, x, events, fail),
    )


@pytest.fixture
def events():
    return []


@pytest.mark.resilience
class TestShutdown:

    @pytest.mark.asyncio
    async def test_cancel_reload_then_close_then_save(self, profile_dir, events, monkeypatch):
        worker = make_worker(profile_dir, events)

        async def stop():
            events.append("cancel")

        monkeypatch.setattr(worker.reload, "stop", stop)
        monkeypatch.setattr(worker_module, "save_stats", lambda *a: events.append("save"))

        await worker.shutdown()
        await worker.shutdown()

        assert events == ["cancel", "close", "save"]

    @pytest.mark.asyncio
    async def test_in_flight_reload_unwinds_before_browser_closes(self, profile_dir, events, monkeypatch):
        worker = make_worker(profile_dir, events, reload_sec=1)
        worker.page = worker.session.page
        never = asyncio.Event()

        async def stuck_reload(*args):
            events.append("reload started")
            try:
                await never.wait()
            finally:
                events.append("reload unwound")

        monkeypatch.setattr(worker_module, "hard_reload", stuck_reload)
        worker.reload.start()
        for _ in range(100):
            if "reload started" in events:
                break
            await asyncio.sleep(0)

        await worker.shutdown()

        assert events == ["reload started", "reload unwound", "close"]
        assert worker.stats.reload_count == 1

    @pytest.mark.asyncio
    async def test_stats_survive_restart(self, profile_dir, events):
        stats = RunStats()
        stats.record_fire("auto_collector", 123)
        save_stats(profile_dir, stats)

        worker = make_worker(profile_dir, events)
        assert worker.stats.rate_state("auto_collector").last_fired_at == 123

        worker.stats.record_reload()
        await worker.shutdown()
        assert json.loads((profile_dir / "stats.json").read_text())["reload_count"] == 1

    @pytest.mark.asyncio
    async def test_launch_failure_exits_with_one(self, profile_dir, events, monkeypatch):
        monkeypatch.setattr(worker_module, "install_signal_handlers", lambda task: None)
        worker = make_worker(profile_dir, events, fail=True)

        assert await run_worker(worker) == 1
        assert events == ["start", "close"]
        assert (profile_dir / "stats.json").exists()


@pytest.mark.engine
class TestTick:

    def wire(self, worker, events, refinery_tick):
        async def refinery(page):
            events.append("refinery")
            return refinery_tick

        async def boosts(page, stats):
            events.append("boosts")
            return {"auto_collector": ActionOutcome("auto_collector", fired=True, reason="disabled")}

        async def re_home():
            events.append("re_home")

        worker.page = worker.session.page
        worker.refinery.tick = refinery
        worker.short_cycle.run_once = boosts
        worker.re_home = re_home

    @pytest.mark.asyncio
    async def test_refinery_runs_before_boosts(self, profile_dir, events):
        worker = make_worker(profile_dir, events)
        self.wire(worker, events, RefineryTick())

        outcome = await worker.tick()

        assert events == ["refinery", "boosts"]
        assert outcome.fired_keys == ("auto_collector",)
        assert not outcome.relocated

    @pytest.mark.asyncio
    async def test_re_homes_after_refinery_navigation(self, profile_dir, events):
        worker = make_worker(profile_dir, events)
        self.wire(worker, events, RefineryTick(ran=True, navigated=True))
        worker.session.page.url = URL_REFINERY

        outcome = await worker.tick()

        assert events == ["refinery", "re_home", "boosts"]
        assert outcome.relocated

    @pytest.mark.asyncio
    async def test_boost_failure_does_not_escape(self, profile_dir, events):
        worker = make_worker(profile_dir, events)
        self.wire(worker, events, RefineryTick())

        async def broken(page, stats):
            raise PlaywrightError("Execution context was destroyed")

        worker.short_cycle.run_once = broken

        outcome = await worker.tick()
        assert outcome.actions == {}

    @pytest.mark.asyncio
    async def test_reload_counts_even_when_it_fails(self, profile_dir, events, monkeypatch):
        worker = make_worker(profile_dir, events)
        worker.page = worker.session.page

        async def failing_reload(*args):
            raise PlaywrightError("Target closed")

        monkeypatch.setattr(worker_module, "hard_reload", failing_reload)

        with pytest.raises(PlaywrightError):
            await worker.on_reload()
        assert worker.stats.reload_count == 1


class TestBrowserSession:

    def test_launch_options(self, profile_dir):
        config = BotConfig(headless=False, proxy="", timezone="Europe/Berlin", chrome_path="", slow_mo=0)
        options = BrowserSession(profile_dir, config, "user:pw@10.0.0.2:8000").launch_options()

        assert options["headless"] is False
        assert options["proxy"] == {"server": "http://10.0.0.2:8000", "username": "user", "password": "pw"}
        assert options["timezone_id"] == "Europe/Berlin"
        assert "executable_path" not in options
        assert "slow_mo" not in options

    def test_invalid_proxy_is_dropped(self, profile_dir):
        options = BrowserSession(profile_dir, BotConfig(proxy=""), "garbage").launch_options()
        assert "proxy" not in options

    def test_normalize_cookies(self):
        raw = {"cookies": [
            {"name": "sid", "value": "1", "domain": ".geturanium.io", "sameSite": "no_restriction",
             "expirationDate": 1900000000.5},
            {"name": "tmp", "value": "2", "url": "https://www.geturanium.io", "expires": -1, "sameSite": "bogus"},
            {"name": "orphan", "value": "3"},
            {"value": "nameless", "domain": "x"},
        ]}
        cookies = normalize_cookies(raw)

        assert cookies == [
            {"name": "sid", "value": "1", "domain": ".geturanium.io", "sameSite": "None",
             "expires": 1900000000.5, "path": "/"},
            {"name": "tmp", "value": "2", "url": "https://www.geturanium.io"},
        ]

    def test_page_safety_handlers(self):
        page = FakePage(URL_HOME)
        bind_page_safety(page, show_client_logs=True)
        assert set(page.listeners) == {"dialog", "pageerror", "crash", "console"}


class TestWiring:

    def test_refinery_uses_config_timings(self, profile_dir, events):
        worker = make_worker(profile_dir, events, refine_hours=2, refine_min_minutes=10)
        assert worker.refinery.window_ms == 2 * 3600 * 1000
        assert worker.refinery.min_gap_ms == 10 * 60 * 1000
