"""
Pytest fixtures and configuration for the Boostkeeper test suite.

No browser is launched: pages, clocks and worker processes are fakes
that record what the engine did to them.
"""

import pytest
import asyncio
import os
from collections import defaultdict
from pathlib import Path

# Add project root to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from playwright.async_api import Error as PlaywrightError


# === Clock ===

class FakeClock:
    """Virtual time: sleep() advances now_ms() instantly."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.now = start_ms
        self.sleeps = []

    def now_ms(self) -> int:
        return int(self.now)

    def advance(self, ms: int):
        self.now += ms

    async def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += max(0.0, seconds) * 1000
        await asyncio.sleep(0)


class ExtremeRng:
    """uniform() always returns one end of the range."""

    def __init__(self, pick_max: bool = True, rand: float = 0.5):
        self.pick_max = pick_max
        self.rand = rand

    def uniform(self, a, b):
        return b if self.pick_max else a

    def random(self):
        return self.rand

    def choice(self, seq):
        return seq[0]


# === Page ===

class FakeMouse:
    def __init__(self, page):
        self.page = page
        self.moves = []
        self.downs = 0
        self.ups = 0

    async def move(self, x, y, steps=1):
        self.moves.append((x, y, steps))

    async def down(self):
        self.downs += 1
        if self.page.on_press:
            self.page.on_press()

    async def up(self):
        self.ups += 1


class FakeElement:
    def __init__(self, name: str = "el", box=None, fail_click: bool = False):
        self.name = name
        self.box = box if box is not None else {"x": 100, "y": 200, "width": 300, "height": 60}
        self.clicks = []
        self.fail_click = fail_click
        self.on_click = None

    async def evaluate(self, script, arg=None):
        return None

    async def bounding_box(self):
        return self.box

    async def click(self, delay=0):
        if self.fail_click:
            raise PlaywrightError("Element is not attached to the DOM")
        self.clicks.append(delay)
        if self.on_click:
            self.on_click()

    async def dispose(self):
        pass


class FakeHandle:
    def __init__(self, element=None):
        self.element = element
        self.disposed = False

    def as_element(self):
        return self.element

    async def dispose(self):
        self.disposed = True


class FakePage:
    """
    Minimal stand-in for a Playwright Page.

    ``scripts`` maps a script string to a value, an exception or a callable
    taking the evaluate argument. ``handles`` does the same for
    evaluate_handle and should yield a FakeElement or None.
    """

    def __init__(self, url: str = "about:blank"):
        self.url = url
        self.scripts = {}
        self.handles = {}
        self.goto_calls = []
        self.goto_effects = []
        self.redirects = {}
        self.evaluate_calls = []
        self.screenshots = []
        self.listeners = defaultdict(list)
        self.on_press = None
        self.mouse = FakeMouse(self)

    async def goto(self, url, wait_until=None, timeout=None):
        self.goto_calls.append(url)
        await asyncio.sleep(0)
        if self.goto_effects:
            effect = self.goto_effects.pop(0)
            if effect is not None:
                raise effect
        self.url = self.redirects.get(url, url)

    @staticmethod
    def _resolve(handler, arg):
        if isinstance(handler, BaseException):
            raise handler
        if callable(handler):
            return handler(arg)
        return handler

    async def evaluate(self, script, arg=None):
        self.evaluate_calls.append(script)
        return self._resolve(self.scripts.get(script), arg)

    async def evaluate_handle(self, script, arg=None):
        self.evaluate_calls.append(script)
        return FakeHandle(self._resolve(self.handles.get(script), arg))

    async def wait_for_selector(self, selector, timeout=None):
        return FakeElement(selector)

    async def screenshot(self, path=None):
        self.screenshots.append(path)

    def on(self, event, handler):
        self.listeners[event].append(handler)

    def count(self, script) -> int:
        return self.evaluate_calls.count(script)


# === Processes ===

class FakeStream:
    def __init__(self, lines):
        self.lines = [line.encode() + b"\n" for line in lines]

    async def readline(self):
        await asyncio.sleep(0)
        return self.lines.pop(0) if self.lines else b""


class FakeProcess:
    _next_pid = 40_000

    def __init__(self, lifetime: float = 0.01, code: int = 0, lines=()):
        FakeProcess._next_pid += 1
        self.pid = FakeProcess._next_pid
        self.returncode = None
        self.code = code
        self.stdout = FakeStream(list(lines))
        self._done = asyncio.Event()
        self.loop = asyncio.get_running_loop()
        self._timer = self.loop.call_later(lifetime, self._exit, code)

    def _exit(self, code):
        if self.returncode is None:
            self.returncode = code
            self._done.set()

    def terminate(self):
        self._timer.cancel()
        self._exit(-15)

    async def wait(self):
        await self._done.wait()
        return self.returncode


class FakeSpawner:
    """Records spawned commands and tracks how many processes are alive."""

    def __init__(self, lifetime: float = 0.01, code: int = 0, fail_for=()):
        self.lifetime = lifetime
        self.code = code
        self.fail_for = set(fail_for)
        self.commands = []
        self.processes = []
        self.max_alive = 0

    @property
    def alive(self) -> int:
        return sum(1 for p in self.processes if p.returncode is None)

    async def __call__(self, cmd, env):
        profile = cmd[cmd.index("--profile") + 1]
        if Path(profile).name in self.fail_for:
            raise OSError(f"cannot spawn {profile}")
        self.commands.append(cmd)
        process = FakeProcess(self.lifetime, self.code, lines=[f"hello from {Path(profile).name}"])
        self.processes.append(process)
        self.max_alive = max(self.max_alive, self.alive)
        return process

    def terminate(self, pid):
        """Called from a worker thread, like the real process-tree terminator."""
        for process in self.processes:
            if process.pid == pid:
                process.loop.call_soon_threadsafe(process.terminate)
        return 0


# === Fixtures ===

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def page():
    return FakePage("https://www.geturanium.io/")


@pytest.fixture
def profile_dir(tmp_path):
    path = tmp_path / "acc1"
    path.mkdir()
    return path


@pytest.fixture(autouse=True)
def setup_test_env(tmp_path, monkeypatch):
    """Keep log files and proxy lookups inside the test's temp dir."""
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.chdir(tmp_path)
    yield


# === Markers ===

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "engine: Surface interaction engine tests")
    config.addinivalue_line("markers", "scheduling: Timer and schedule tests")
    config.addinivalue_line("markers", "orchestration: Multi-process orchestration tests")
    config.addinivalue_line("markers", "resilience: Failure and recovery tests")
