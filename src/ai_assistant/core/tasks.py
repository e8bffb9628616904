"""Tracker for fire-and-forget coroutines started by callbacks."""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine

from ai_assistant.log import get_logger

logger = get_logger(__name__)


class BackgroundTasks:
    """Keeps references to spawned tasks, logs their failures, cancels them on shutdown."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str = "") -> asyncio.Task | None:
        if self._closed:
            coro.close()
            logger.warning("background_task_rejected", name=name)
            return None
        task = asyncio.get_running_loop().create_task(coro, name=name or None)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("background_task_failed", name=task.get_name(), error=str(exc))

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def join(self) -> None:
        """Wait until every tracked task, including ones spawned meanwhile, is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("background_tasks_cancelled", count=len(tasks))
