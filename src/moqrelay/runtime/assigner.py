"""
Publisher identity assignment.

Every accepted publish request gets a name "pub<N>" from a process-wide
counter. Names are unique for the lifetime of the assigner only: the counter
is not persisted, so a restarted server starts again at pub0.
"""

from __future__ import annotations

import re
import threading

PUBLISHER_PREFIX = "pub"
PUBLISHER_NAME_RE = re.compile(rf"{PUBLISHER_PREFIX}(0|[1-9][0-9]*)")


def is_publisher_name(value: str) -> bool:
    return PUBLISHER_NAME_RE.fullmatch(value) is not None


class PublisherIdentityAssigner:
    """Monotonic "pub<N>" allocator, safe for concurrent callers."""

    def __init__(self, start: int = 0):
        self._next = start
        self._lock = threading.Lock()

    def assign(self) -> str:
        """Return the next publisher name and advance the counter by one."""
        with self._lock:
            n = self._next
            self._next += 1
        return f"{PUBLISHER_PREFIX}{n}"

    def peek(self) -> str:
        """The name the next assign() call will return."""
        with self._lock:
            return f"{PUBLISHER_PREFIX}{self._next}"

    @property
    def next_index(self) -> int:
        with self._lock:
            return self._next
