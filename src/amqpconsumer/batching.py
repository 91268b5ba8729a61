"""Group-by accumulator with size and timeout flushing.

ObjectBatcher collects items under a group key and hands a whole group to
an async flush callback as soon as either bound is reached:

- the group holds ``batch_size`` items, or
- ``batch_timeout`` seconds passed since the group's first item arrived.

A group is removed from the accumulator before its flush starts, so an item
added while a flush is running always opens a new group. Everything runs on
one event loop; no locking is needed.

Example:
    >>> async def on_flush(key, items):
    ...     print(key, items)
    >>>
    >>> batcher = ObjectBatcher(on_flush, batch_size=2, batch_timeout=1.0)
    >>> batcher.add("tenant-1", {"id": 1})
    >>> batcher.add("tenant-1", {"id": 2})  # flushes immediately
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Hashable
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

FlushCallback = Callable[[Any, list[T]], Awaitable[Any]]


class ObjectBatcher(Generic[T]):
    """Accumulates items per key and flushes them in groups.

    Args:
        on_flush: Awaited with ``(group_key, items)`` in insertion order.
        batch_size: Flush a group once it holds this many items.
        batch_timeout: Flush a group this many seconds after its first item.
    """

    def __init__(
        self,
        on_flush: FlushCallback[T],
        *,
        batch_size: int,
        batch_timeout: float,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if batch_timeout <= 0:
            raise ValueError(f"batch_timeout must be > 0, got {batch_timeout}")
        self._on_flush = on_flush
        self._batch_size = batch_size
        self._batch_timeout = batch_timeout
        self._groups: dict[Hashable, list[T]] = {}
        self._timers: dict[Hashable, asyncio.TimerHandle] = {}
        self._flush_tasks: set[asyncio.Task[None]] = set()

    @property
    def pending_count(self) -> int:
        """Items accumulated but not yet handed to a flush."""
        return sum(len(items) for items in self._groups.values())

    @property
    def group_keys(self) -> list[Hashable]:
        return list(self._groups)

    @property
    def flushing(self) -> int:
        """Flushes started but not finished."""
        return len(self._flush_tasks)

    def add(self, group_key: Hashable, item: T) -> None:
        """Add an item, flushing its group if it reached ``batch_size``.

        Must be called from a running event loop.
        """
        group = self._groups.get(group_key)
        if group is None:
            group = self._groups[group_key] = []
            loop = asyncio.get_running_loop()
            self._timers[group_key] = loop.call_later(
                self._batch_timeout, self._flush_group, group_key
            )
        group.append(item)
        if len(group) >= self._batch_size:
            self._flush_group(group_key)

    def _flush_group(self, group_key: Hashable) -> asyncio.Task[None] | None:
        items = self._groups.pop(group_key, None)
        timer = self._timers.pop(group_key, None)
        if timer is not None:
            timer.cancel()
        if not items:
            return None
        task = asyncio.ensure_future(self._run_flush(group_key, items))
        self._flush_tasks.add(task)
        task.add_done_callback(self._flush_tasks.discard)
        return task

    async def _run_flush(self, group_key: Hashable, items: list[T]) -> None:
        try:
            await self._on_flush(group_key, items)
        except Exception as e:
            logger.error(
                f"Batch flush callback failed: {e}",
                exc_info=True,
                extra={"group_by": group_key, "count": len(items), "error_type": type(e).__name__},
            )

    def flush_all(self) -> list[asyncio.Task[None]]:
        """Flush every pending group now, regardless of size or age."""
        tasks = [self._flush_group(key) for key in list(self._groups)]
        return [task for task in tasks if task is not None]

    async def wait_flushed(self) -> None:
        """Wait until every started flush has finished."""
        while self._flush_tasks:
            await asyncio.gather(*list(self._flush_tasks), return_exceptions=True)

    def close(self) -> None:
        """Cancel pending timers and drop unflushed groups."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._groups.clear()


__all__ = ["ObjectBatcher"]
