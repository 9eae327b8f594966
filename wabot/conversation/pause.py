"""Operator pause state and per-contact epochs."""

import time
from collections.abc import Callable

from loguru import logger


class PauseRegistry:
    """
    Per-contact mute windows with a TTL.

    Every pause and every resume bumps the contact's epoch; work captured
    under an older epoch must be dropped.
    """

    def __init__(self, ttl_s: float = 7200.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_s = float(ttl_s)
        self._clock = clock
        self._paused_at: dict[str, float] = {}
        self._epochs: dict[str, int] = {}

    def _bump(self, key: str) -> int:
        epoch = self._epochs.get(key, 0) + 1
        self._epochs[key] = epoch
        return epoch

    def pause(self, key: str) -> None:
        self._paused_at[key] = self._clock()
        epoch = self._bump(key)
        logger.info(f"Paused {key} for {self.ttl_s / 3600:g}h (epoch {epoch})")

    def resume(self, key: str) -> bool:
        """Clear the pause; returns whether the contact was paused."""
        was_paused = self.is_paused(key)
        self._paused_at.pop(key, None)
        epoch = self._bump(key)
        logger.info(f"Resumed {key} (epoch {epoch}, was_paused={was_paused})")
        return was_paused

    def is_paused(self, key: str) -> bool:
        paused_at = self._paused_at.get(key)
        if paused_at is None:
            return False
        if self._clock() - paused_at < self.ttl_s:
            return True
        self._paused_at.pop(key, None)
        logger.debug(f"Pause for {key} expired")
        return False

    def current_epoch(self, key: str) -> int:
        return self._epochs.get(key, 0)

    def sweep(self) -> int:
        """Drop expired pauses; returns how many were removed."""
        now = self._clock()
        expired = [key for key, at in self._paused_at.items() if now - at >= self.ttl_s]
        for key in expired:
            self._paused_at.pop(key, None)
        return len(expired)

    def paused_keys(self) -> list[str]:
        self.sweep()
        return sorted(self._paused_at)
