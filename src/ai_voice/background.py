"""Tracking for fire-and-forget asyncio work.

The event loop only keeps weak references to tasks, so a detached
``asyncio.create_task`` can be garbage collected mid-flight.  Every
background synthesis and playback goes through BackgroundTasks, which holds
a strong reference until the task finishes, logs anything that escapes it,
and lets the server drain or cancel outstanding work on shutdown.

Usage:
    tasks = BackgroundTasks()

    # Start tracked work and return immediately
    tasks.spawn(selector.synthesize(request), tag="synthesis")

    # Wait for everything to finish (tests, graceful shutdown)
    await tasks.wait_idle(timeout=5)

    # Or drop it all on hard shutdown
    tasks.cancel_all()
"""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine, Optional

from .logging import get_logger

_log = get_logger("ai-voice.background")


class TrackedTask:
    """A background task with the tag it was spawned under."""

    __slots__ = ("task", "tag")

    def __init__(self, task: asyncio.Task, tag: str = ""):
        self.task = task
        self.tag = tag

    @property
    def alive(self) -> bool:
        return not self.task.done()

    def cancel(self) -> None:
        if self.alive:
            self.task.cancel()


class BackgroundTasks:
    """Strong-reference registry for detached asyncio tasks.

    All methods must be called from the event loop thread.
    """

    def __init__(self) -> None:
        self._active: list[TrackedTask] = []

    def spawn(self, coro: Coroutine[Any, Any, Any], *, tag: str = "") -> TrackedTask:
        """Schedule *coro* on the running loop and track it until done."""
        self._prune_done()
        task = asyncio.get_running_loop().create_task(coro)
        tracked = TrackedTask(task, tag=tag)
        self._active.append(tracked)
        task.add_done_callback(lambda t, tr=tracked: self._on_done(tr))
        return tracked

    def _on_done(self, tracked: TrackedTask) -> None:
        try:
            self._active.remove(tracked)
        except ValueError:
            pass
        task = tracked.task
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _log.error("Background task %r failed: %s", tracked.tag or task.get_name(), exc,
                       exc_info=(type(exc), exc, exc.__traceback__))

    def _prune_done(self) -> None:
        self._active[:] = [t for t in self._active if t.alive]

    def active(self, tag: Optional[str] = None) -> list[TrackedTask]:
        """Running tasks, optionally only those spawned with *tag*."""
        self._prune_done()
        if tag is None:
            return list(self._active)
        return [t for t in self._active if t.tag == tag]

    @property
    def active_count(self) -> int:
        return len(self.active())

    def cancel_all(self) -> None:
        """Cancel every tracked task (shutdown only)."""
        to_cancel = self._active[:]
        self._active[:] = []
        for tracked in to_cancel:
            tracked.cancel()

    async def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait until no tracked task is running, including ones spawned meanwhile.

        Returns False if *timeout* seconds elapse first.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while True:
            pending = [t.task for t in self.active()]
            if not pending:
                return True
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return False
            await asyncio.wait(pending, timeout=remaining)
