"""
Worker Orchestrator - runs many profiles as isolated worker processes.

Usage:
    orchestrator = WorkerOrchestrator(base_dir="profiles", proxies=read_lines("proxies.txt"))
    await orchestrator.launch_batch(resolve_accounts(count=5), concurrency=2)
    await orchestrator.stop_all()

Each worker is a separate ``main.py run`` process with its own profile
directory and proxy. Its output is relayed line by line with a ``[name]``
prefix. One worker failing never affects the others.
"""

import asyncio
import logging
import os
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import psutil

from browser.proxy_config import describe_proxy, pick_by_index

logger = logging.getLogger(__name__)

MAIN_SCRIPT = Path(__file__).resolve().parent.parent / "main.py"
LAUNCH_PAUSE_SEC = 0.3
STOP_TIMEOUT_SEC = 5.0


@dataclass
class WorkerRecord:
    """A running worker process, owned by the orchestrator."""
    name: str
    profile_dir: Path
    proxy: Optional[str]
    process: Any
    started_at: float = field(default_factory=time.time)
    relay_task: Optional[asyncio.Task] = None

    @property
    def alive(self) -> bool:
        return self.process.returncode is None


def read_lines(path) -> List[str]:
    """Non-empty lines of a file with ``#``/``;`` comments stripped."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except (OSError, TypeError):
        return []
    lines = []
    for raw in text.splitlines():
        for marker in ("#", ";"):
            raw = raw.split(marker, 1)[0]
        if raw.strip():
            lines.append(raw.strip())
    return lines


def resolve_accounts(
    accounts: Optional[str] = None,
    accounts_file: Optional[str] = None,
    count: Optional[int] = None,
    base_dir: Optional[str] = None,
) -> List[str]:
    """
    Pick the profile names to run.

    Priority: explicit comma list, accounts file, ``count`` (acc1..accN),
    existing subdirectories of ``base_dir``, then ``["acc1"]``.
    """
    if accounts:
        names = [a.strip() for a in str(accounts).split(",") if a.strip()]
        if names:
            return names
    if accounts_file:
        names = read_lines(accounts_file)
        if names:
            return names
    if count:
        return [f"acc{i + 1}" for i in range(max(1, int(count)))]
    if base_dir and Path(base_dir).is_dir():
        names = sorted(p.name for p in Path(base_dir).iterdir() if p.is_dir())
        if names:
            return names
    return ["acc1"]


def terminate_process_tree(pid: int, timeout: float = STOP_TIMEOUT_SEC) -> int:
    """
    Terminate a process and all of its descendants (browser children included).

    Returns:
        Number of processes that had to be killed after the grace period
    """
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return 0
    procs = parent.children(recursive=True) + [parent]
    for proc in procs:
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            pass
    _, alive = psutil.wait_procs(procs, timeout=timeout)
    for proc in alive:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass
    return len(alive)


async def spawn_process(cmd: Sequence[str], env: Dict[str, str]):
    return await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
        env=env,
    )


class WorkerOrchestrator:
    """Starts, stops and batches worker processes."""

    def __init__(
        self,
        base_dir="profiles",
        proxies: Optional[List[str]] = None,
        worker_args: Optional[List[str]] = None,
        spawner: Callable[..., Awaitable[Any]] = spawn_process,
        terminator: Callable[[int], int] = terminate_process_tree,
        python: str = sys.executable,
        launch_pause: float = LAUNCH_PAUSE_SEC,
    ):
        self.base_dir = Path(base_dir)
        self.proxies = list(proxies or [])
        self.worker_args = list(worker_args or [])
        self.spawner = spawner
        self.terminator = terminator
        self.python = python
        self.launch_pause = launch_pause
        self.workers: Dict[str, WorkerRecord] = {}

    def profile_dir(self, name: str) -> Path:
        return self.base_dir / name

    def command_for(self, name: str, proxy: Optional[str], headless: Optional[bool]) -> List[str]:
        cmd = [self.python, "-u", str(MAIN_SCRIPT), "run", "--profile", str(self.profile_dir(name))]
        if proxy:
            cmd += ["--proxy", proxy]
        if headless is not None:
            cmd.append("--headless" if headless else "--no-headless")
        return cmd + self.worker_args

    def is_running(self, name: str) -> bool:
        record = self.workers.get(name)
        return record is not None and record.alive

    def list_running(self) -> List[str]:
        return [name for name, record in self.workers.items() if record.alive]

    async def _relay(self, record: WorkerRecord):
        stream = getattr(record.process, "stdout", None)
        if stream is None:
            return
        while True:
            line = await stream.readline()
            if not line:
                break
            print(f"[{record.name}] {line.decode('utf-8', errors='replace').rstrip()}", flush=True)

    async def start(self, name: str, proxy: Optional[str] = None, headless: Optional[bool] = None) -> WorkerRecord:
        """Start a worker for ``name`` unless it is already running."""
        if self.is_running(name):
            logger.info(f"[{name}] already running")
            return self.workers[name]

        profile = self.profile_dir(name)
        profile.mkdir(parents=True, exist_ok=True)
        env = dict(os.environ, LOG_DIR=str(profile / "logs"))
        process = await self.spawner(self.command_for(name, proxy, headless), env)

        record = WorkerRecord(name=name, profile_dir=profile, proxy=proxy, process=process)
        record.relay_task = asyncio.create_task(self._relay(record))
        self.workers[name] = record
        logger.info(f"🚀 [LAUNCH] {name} -> profile={profile} proxy={describe_proxy(proxy)}")
        return record

    async def wait(self, name: str) -> Optional[int]:
        record = self.workers.get(name)
        if record is None:
            return None
        code = await record.process.wait()
        if record.relay_task is not None:
            await record.relay_task
        logger.info(f"[{name}] process exited (code {code})")
        return code

    async def stop(self, name: str) -> bool:
        """Terminate a worker and its browser children."""
        record = self.workers.pop(name, None)
        if record is None:
            return False
        if record.alive:
            logger.info(f"🛑 Stopping {name} (pid {record.process.pid})")
            try:
                # Runs in a thread: psutil waits up to STOP_TIMEOUT_SEC for the tree to exit
                await asyncio.to_thread(self.terminator, record.process.pid)
            except psutil.Error as e:
                logger.warning(f"[{name}] terminate failed: {e}")
            try:
                await asyncio.wait_for(record.process.wait(), STOP_TIMEOUT_SEC)
            except asyncio.TimeoutError:
                logger.warning(f"[{name}] did not exit in {STOP_TIMEOUT_SEC}s")
        if record.relay_task is not None:
            record.relay_task.cancel()
        return True

    async def restart(self, name: str, headless: Optional[bool] = None) -> WorkerRecord:
        record = self.workers.get(name)
        proxy = record.proxy if record else None
        await self.stop(name)
        return await self.start(name, proxy, headless)

    async def stop_all(self):
        """Stop every tracked worker; bookkeeping is cleared even if some stops fail."""
        names = list(self.workers)
        results = await asyncio.gather(*(self.stop(n) for n in names), return_exceptions=True)
        for name, result in zip(names, results):
            if isinstance(result, Exception):
                logger.error(f"[{name}] stop failed: {result}")
        self.workers.clear()

    def proxy_for(self, index: int) -> Optional[str]:
        return pick_by_index(self.proxies, index)

    async def launch_batch(
        self,
        selection: List[str],
        headless: Optional[bool] = None,
        concurrency: int = 4,
        sequential: bool = False,
    ) -> Dict[str, Optional[int]]:
        """
        Run the selected profiles with at most ``concurrency`` alive at once.

        As each worker exits (any code) the next queued profile starts.

        Returns:
            Exit code per profile (None when it could not be started)
        """
        limit = 1 if sequential else max(1, int(concurrency))
        semaphore = asyncio.Semaphore(limit)
        results: Dict[str, Optional[int]] = {}

        async def run_one(index: int, name: str):
            async with semaphore:
                if self.is_running(name):
                    logger.info(f"[{name}] already running, skipped")
                    return
                try:
                    await self.start(name, self.proxy_for(index), headless)
                except Exception as e:
                    logger.error(f"❌ [{name}] failed to start: {e}")
                    results[name] = None
                    return
                await asyncio.sleep(self.launch_pause)
                results[name] = await self.wait(name)
                self.workers.pop(name, None)

        logger.info(f"Launching {len(selection)} profiles (concurrency={limit})")
        await asyncio.gather(*(run_one(i, name) for i, name in enumerate(selection)))
        return results
