from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Set, Union

logger = logging.getLogger(__name__)

ScheduledCallback = Callable[[], Union[None, Awaitable[Any]]]


class Scheduler(Protocol):
    def schedule_once(self, delay_seconds: float, callback: ScheduledCallback) -> None:
        ...

    def cancel_scheduled(self, callback: ScheduledCallback) -> bool:
        ...

    def now(self) -> float:
        ...


class AsyncioScheduler:
    """
    Scheduler on top of the running event loop.

    At most one pending call is kept per callback; coroutine callbacks run as tasks.
    """

    def __init__(self, *, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop
        self._handles: Dict[ScheduledCallback, asyncio.TimerHandle] = {}
        self._tasks: Set[asyncio.Task] = set()

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return time.time()

    def schedule_once(self, delay_seconds: float, callback: ScheduledCallback) -> None:
        self.cancel_scheduled(callback)
        handle = self._get_loop().call_later(max(0.0, delay_seconds), self._invoke, callback)
        self._handles[callback] = handle
        logger.debug("Scheduled callback. delay_seconds=%s callback=%s", delay_seconds, callback)

    def cancel_scheduled(self, callback: ScheduledCallback) -> bool:
        handle = self._handles.pop(callback, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    async def close(self) -> None:
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _invoke(self, callback: ScheduledCallback) -> None:
        self._handles.pop(callback, None)
        try:
            result = callback()
        except Exception:
            logger.exception("Scheduled callback failed. callback=%s", callback)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        try:
            task.result()
        except asyncio.CancelledError:
            return
        except Exception:
            logger.exception("Scheduled task failed.")
