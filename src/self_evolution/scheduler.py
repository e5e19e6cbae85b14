"""Periodic tick scheduling, injected into the controller."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

TickCallback = Callable[[], Awaitable[None]]


class Scheduler(ABC):
    """Runs callbacks on a fixed interval until shut down."""

    @abstractmethod
    def schedule(self, name: str, interval_seconds: float, callback: TickCallback) -> None:
        """Register ``callback`` to run every ``interval_seconds``."""

    @abstractmethod
    async def shutdown(self) -> None:
        """Stop all scheduled callbacks."""

    @property
    @abstractmethod
    def job_names(self) -> list[str]: ...


async def _run_tick(name: str, callback: TickCallback) -> None:
    try:
        await callback()
    except Exception:
        logger.exception("Scheduled job %s failed", name)


class AsyncioScheduler(Scheduler):
    """Wall-clock scheduler backed by one asyncio task per job."""

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def schedule(self, name: str, interval_seconds: float, callback: TickCallback) -> None:
        if name in self._tasks:
            self._tasks[name].cancel()
        self._tasks[name] = asyncio.create_task(
            self._loop(name, interval_seconds, callback), name=f"tick-{name}"
        )

    async def _loop(self, name: str, interval_seconds: float, callback: TickCallback) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            await _run_tick(name, callback)

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    @property
    def job_names(self) -> list[str]:
        return sorted(self._tasks)


@dataclass
class _ManualJob:
    name: str
    interval: float
    callback: TickCallback
    next_due: float


class ManualScheduler(Scheduler):
    """
    Fake-clock scheduler: nothing runs until ``advance`` is awaited.

    Usage::

        scheduler = ManualScheduler()
        controller = ChallengeController(config, scheduler=scheduler, ...)
        await scheduler.advance(3600)  # fires the hourly diagnosis once
    """

    def __init__(self) -> None:
        self.now = 0.0
        self._jobs: dict[str, _ManualJob] = {}

    def schedule(self, name: str, interval_seconds: float, callback: TickCallback) -> None:
        self._jobs[name] = _ManualJob(
            name=name,
            interval=interval_seconds,
            callback=callback,
            next_due=self.now + interval_seconds,
        )

    async def advance(self, seconds: float) -> int:
        """Move the clock forward, firing due jobs in time order. Returns ticks fired."""
        target = self.now + seconds
        fired = 0
        while self._jobs:
            job = min(self._jobs.values(), key=lambda j: (j.next_due, j.name))
            if job.next_due > target:
                break
            self.now = job.next_due
            job.next_due += job.interval
            await _run_tick(job.name, job.callback)
            fired += 1
        self.now = target
        return fired

    async def shutdown(self) -> None:
        self._jobs.clear()

    @property
    def job_names(self) -> list[str]:
        return sorted(self._jobs)
