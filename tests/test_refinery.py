"""
Refinery (long-horizon) tests - cooldown parsing, classification, scheduling.
"""

import pytest
from playwright.async_api import Error as PlaywrightError

from conftest import FakeElement, FakePage
from core.actions import ActionConfirmationMachine
from core.models import REFINERY, RefineryState
from core.navigation import NavigationController, URL_HOME, URL_REFINERY
from core.refinery import (
    COOLDOWN_FALLBACK_MS,
    FIND_REFINE_JS,
    REFINE_CONFIRM_JS,
    SCAN_JS,
    RefineryController,
    classify_refinery,
    parse_cooldown_ms,
)
from core.stats import RunStats

HOUR = 3600 * 1000
MINUTE = 60 * 1000


@pytest.mark.scheduling
class TestParseCooldown:

    def test_hours_and_minutes(self):
        assert parse_cooldown_ms("2h 15m remaining") == 8_100_000

    def test_no_tokens(self):
        assert parse_cooldown_ms("Initiate Uranium Refining") == 0
        assert parse_cooldown_ms("") == 0
        assert parse_cooldown_ms(None) == 0

    def test_days_and_seconds(self):
        assert parse_cooldown_ms("1d 2h 3m 4s") == ((24 + 2) * 60 + 3) * 60_000 + 4_000

    def test_first_occurrence_per_unit(self):
        assert parse_cooldown_ms("5m left, next batch in 50m") == 5 * MINUTE

    def test_missing_units_are_zero(self):
        assert parse_cooldown_ms("45s") == 45_000


@pytest.mark.scheduling
class TestClassify:

    def test_disabled_control_with_cooldown_text(self):
        result = classify_refinery("cooldown active", True, True, "refining in progress")
        assert result.state == RefineryState.COOLDOWN
        assert result.control_disabled

    def test_clickable_labeled_control(self):
        result = classify_refinery("uranium refinery", True, False, "initiate uranium refining")
        assert result.state == RefineryState.READY

    def test_neither(self):
        assert classify_refinery("welcome", False, False).state == RefineryState.UNKNOWN

    def test_active_process_phrase(self):
        assert classify_refinery("converting shards", False, False).state == RefineryState.COOLDOWN

    def test_body_parsed_only_with_cooldown_wording(self):
        assert classify_refinery("level 3 reactor", False, False).cooldown_ms == 0
        assert classify_refinery("time left 3h", False, False).cooldown_ms == 3 * HOUR

    def test_control_label_always_parsed_and_max_wins(self):
        result = classify_refinery("remaining 10m", True, True, "7h 59m")
        assert result.cooldown_ms == 7 * HOUR + 59 * MINUTE


def make_controller(clock, stats=None, enabled=True):
    nav = NavigationController(clock)
    return RefineryController(nav, ActionConfirmationMachine(clock), stats or RunStats(), enabled=enabled, clock=clock)


def refinery_page(scan, confirm=None, element=None):
    page = FakePage(URL_HOME)
    page.scripts[SCAN_JS] = scan
    if confirm is not None:
        page.scripts[REFINE_CONFIRM_JS] = confirm
    page.handles[FIND_REFINE_JS] = element
    return page


READY = {"body": "uranium refinery", "has_control": True, "control_disabled": False,
         "control_text": "initiate uranium refining"}


@pytest.mark.scheduling
class TestRefineryController:

    def test_initial_next_at_from_persisted_fire(self, clock):
        stats = RunStats()
        stats.record_fire(REFINERY.key, clock.now_ms() - HOUR)
        controller = make_controller(clock, stats)
        assert controller.next_at == clock.now_ms() - HOUR + 8 * HOUR - 90_000

    @pytest.mark.asyncio
    async def test_ready_fires_and_schedules_next_window(self, clock):
        stats = RunStats()
        page = refinery_page(READY, {"ok": True, "reason": "process active"}, FakeElement("refine"))
        controller = make_controller(clock, stats)

        tick = await controller.tick(page)

        assert tick.ran and tick.fired and tick.navigated
        assert page.goto_calls == [URL_REFINERY]
        assert stats.rate_state(REFINERY.key).fired_count == 1
        fired_at = stats.rate_state(REFINERY.key).last_fired_at
        assert controller.next_at == fired_at + 8 * HOUR - 90_000

    @pytest.mark.asyncio
    async def test_unconfirmed_click_retries_after_min_gap(self, clock):
        stats = RunStats()
        page = refinery_page(READY, {"ok": False, "reason": "control still clickable"}, FakeElement("refine"))
        controller = make_controller(clock, stats)

        tick = await controller.tick(page)

        assert not tick.fired
        assert stats.rate_state(REFINERY.key).fired_count == 0
        assert controller.next_at == clock.now_ms() + 30 * MINUTE
        assert page.count(REFINE_CONFIRM_JS) == 12

    @pytest.mark.asyncio
    async def test_ready_but_control_missing(self, clock):
        page = refinery_page(READY, element=None)
        controller = make_controller(clock)

        tick = await controller.tick(page)

        assert not tick.fired
        assert page.count(FIND_REFINE_JS) == 8
        assert controller.next_at == clock.now_ms() + 30 * MINUTE

    @pytest.mark.asyncio
    async def test_cooldown_uses_parsed_time(self, clock):
        page = refinery_page({"body": "3h 10m remaining", "has_control": True, "control_disabled": True,
                              "control_text": "refining"})
        controller = make_controller(clock)

        tick = await controller.tick(page)

        assert tick.state == RefineryState.COOLDOWN
        assert controller.next_at == clock.now_ms() + 3 * HOUR + 10 * MINUTE

    @pytest.mark.asyncio
    async def test_cooldown_without_time_uses_fallback_floored_at_min_gap(self, clock):
        page = refinery_page({"body": "converting shards", "has_control": False})
        controller = make_controller(clock)

        await controller.tick(page)

        assert controller.next_at == clock.now_ms() + max(30 * MINUTE, COOLDOWN_FALLBACK_MS)

    @pytest.mark.asyncio
    async def test_unknown_retries_after_min_gap(self, clock):
        page = refinery_page({"body": "404"})
        controller = make_controller(clock)

        tick = await controller.tick(page)

        assert tick.state == RefineryState.UNKNOWN
        assert controller.next_at == clock.now_ms() + 30 * MINUTE

    @pytest.mark.asyncio
    async def test_exception_is_contained(self, clock):
        page = refinery_page(PlaywrightError("Target page, context or browser has been closed"))
        controller = make_controller(clock)

        tick = await controller.tick(page)

        assert tick.ran and tick.error
        assert controller.next_at == clock.now_ms() + 30 * MINUTE

    @pytest.mark.asyncio
    async def test_not_due_does_nothing(self, clock):
        page = refinery_page(READY)
        controller = make_controller(clock)
        controller.schedule_in_minutes(5)

        tick = await controller.tick(page)

        assert not tick.ran
        assert page.goto_calls == []

    @pytest.mark.asyncio
    async def test_disabled(self, clock):
        page = refinery_page(READY)
        tick = await make_controller(clock, enabled=False).tick(page)
        assert not tick.ran
        assert page.goto_calls == []
