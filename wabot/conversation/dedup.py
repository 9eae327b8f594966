"""Bounded, time-limited cache of admitted inbound message ids."""

import time
from collections import OrderedDict
from collections.abc import Callable


class DedupCache:
    """
    Admit each message id at most once within a rolling TTL.

    Entries are kept in admission order, so expiry and capacity trimming
    both pop from the oldest end.
    """

    def __init__(
        self,
        ttl_s: float = 600.0,
        capacity: int = 5000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_s = float(ttl_s)
        self.capacity = max(1, int(capacity))
        self._clock = clock
        self._seen: OrderedDict[str, float] = OrderedDict()

    def _evict(self, now: float) -> None:
        while self._seen:
            oldest_id, admitted_at = next(iter(self._seen.items()))
            if now - admitted_at < self.ttl_s:
                break
            self._seen.pop(oldest_id, None)
        while len(self._seen) > self.capacity:
            self._seen.popitem(last=False)

    def admit(self, message_id: str) -> bool:
        """Return False if the id was admitted within the TTL, else record it."""
        now = self._clock()
        self._evict(now)
        if message_id in self._seen:
            return False
        self._seen[message_id] = now
        if len(self._seen) > self.capacity:
            self._seen.popitem(last=False)
        return True

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._seen

    def __len__(self) -> int:
        return len(self._seen)
