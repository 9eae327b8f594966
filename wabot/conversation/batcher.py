"""Per-contact debounce: collect fragments until the contact goes quiet."""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from wabot.conversation.pause import PauseRegistry


@dataclass
class PendingBatch:
    """Fragments buffered for one contact under one epoch."""

    key: str
    captured_epoch: int
    fragments: list[str] = field(default_factory=list)
    created_at: float = field(default_factory=time.monotonic)
    timer: asyncio.Task | None = field(default=None, repr=False)

    @property
    def combined_text(self) -> str:
        return " ".join(part.strip() for part in self.fragments if part.strip())


BatchHandler = Callable[[PendingBatch], Awaitable[Any]]


class BatchScheduler:
    """
    Debounces inbound fragments per contact.

    Each new fragment re-arms the contact's quiet-window timer. When a timer
    fires, its batch is detached from the pending map and handed to the
    handler under a per-contact lock, so turns for one contact run one at a
    time in the order their windows elapsed.
    """

    def __init__(
        self,
        pauses: PauseRegistry,
        handler: BatchHandler,
        quiet_window_s: float = 10.0,
    ):
        self.pauses = pauses
        self.handler = handler
        self.quiet_window_s = float(quiet_window_s)
        self._pending: dict[str, PendingBatch] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._tasks: set[asyncio.Task] = set()

    def enqueue(self, key: str, fragment: str) -> bool:
        """Buffer a fragment; returns False when the contact is paused."""
        if self.pauses.is_paused(key):
            logger.debug(f"Dropping fragment for paused contact {key}")
            return False

        epoch = self.pauses.current_epoch(key)
        batch = self._pending.get(key)
        if batch is not None and batch.captured_epoch != epoch:
            logger.debug(f"Discarding stale batch for {key} (epoch {batch.captured_epoch} != {epoch})")
            self._cancel(batch)
            self._pending.pop(key, None)
            batch = None

        if batch is None:
            batch = PendingBatch(key=key, captured_epoch=epoch)
            self._pending[key] = batch
        else:
            self._cancel(batch)

        batch.fragments.append(fragment)
        self._arm(batch)
        return True

    def discard(self, key: str) -> bool:
        """Cancel and drop the pending batch for a contact, if any."""
        batch = self._pending.pop(key, None)
        if batch is None:
            return False
        self._cancel(batch)
        logger.debug(f"Discarded pending batch for {key} ({len(batch.fragments)} fragments)")
        return True

    def has_pending(self, key: str) -> bool:
        return key in self._pending

    def pending_keys(self) -> list[str]:
        return list(self._pending)

    async def close(self) -> None:
        """Cancel every armed timer and wait for turns already running."""
        for batch in list(self._pending.values()):
            self._cancel(batch)
        self._pending.clear()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _cancel(self, batch: PendingBatch) -> None:
        if batch.timer is not None and not batch.timer.done():
            batch.timer.cancel()
        batch.timer = None

    def _arm(self, batch: PendingBatch) -> None:
        task = asyncio.create_task(self._fire_after_quiet(batch))
        batch.timer = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _fire_after_quiet(self, batch: PendingBatch) -> None:
        try:
            await asyncio.sleep(self.quiet_window_s)
        except asyncio.CancelledError:
            return

        if self._pending.get(batch.key) is not batch:
            return
        self._pending.pop(batch.key, None)
        batch.timer = None

        lock = self._locks.setdefault(batch.key, asyncio.Lock())
        self._lock_users[batch.key] = self._lock_users.get(batch.key, 0) + 1
        try:
            async with lock:
                logger.info(
                    f"Quiet window elapsed for {batch.key}: {len(batch.fragments)} fragment(s) "
                    f"over {time.monotonic() - batch.created_at:.1f}s"
                )
                try:
                    await self.handler(batch)
                except Exception as e:
                    logger.exception(f"Turn for {batch.key} failed: {e}")
        finally:
            self._release_lock(batch.key)

    def _release_lock(self, key: str) -> None:
        """Drop the per-key lock once no turn holds or awaits it."""
        users = self._lock_users.get(key, 0) - 1
        if users > 0:
            self._lock_users[key] = users
            return
        self._lock_users.pop(key, None)
        self._locks.pop(key, None)
