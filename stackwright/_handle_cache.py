"""Registry of live stack handles keyed by ``(project, stack)``."""

from __future__ import annotations

import logging
import threading
from collections import abc as cabc

from stackwright._backend import StackHandle
from stackwright._errors import StackNotFoundError

logger = logging.getLogger(__name__)

type StackKey = tuple[str, str]


class StackHandleCache:
    """Own the stack handles created by a deployment engine.

    Population is serialised per key: concurrent callers asking for the same
    ``(project, stack)`` pair wait for the first factory call and then share
    its handle. Different keys never block each other beyond the short
    registry lock.

    Examples
    --------
    >>> cache = StackHandleCache()
    >>> handle = cache.get_or_create(("shop", "dev"), lambda: make_handle())
    >>> cache.get(("shop", "dev")) is handle
    True
    """

    def __init__(self) -> None:
        self._handles: dict[StackKey, StackHandle] = {}
        self._key_locks: dict[StackKey, threading.Lock] = {}
        self._deployed: set[StackKey] = set()
        self._lock = threading.Lock()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._handles

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)

    def _key_lock(self, key: StackKey) -> threading.Lock:
        with self._lock:
            return self._key_locks.setdefault(key, threading.Lock())

    def get(self, key: StackKey) -> StackHandle | None:
        with self._lock:
            return self._handles.get(key)

    def require(self, key: StackKey) -> StackHandle:
        """Return the cached handle or raise :class:`StackNotFoundError`."""
        handle = self.get(key)
        if handle is None:
            raise StackNotFoundError(*key)
        return handle

    def get_or_create(
        self,
        key: StackKey,
        factory: cabc.Callable[[], StackHandle],
    ) -> StackHandle:
        """Return the handle for ``key``, creating it with ``factory`` once."""
        with self._key_lock(key):
            handle = self.get(key)
            if handle is not None:
                return handle
            handle = factory()
            with self._lock:
                self._handles[key] = handle
            logger.debug("Cached stack handle for %s/%s", *key)
            return handle

    def mark_deployed(self, key: StackKey) -> None:
        """Record that the handle for ``key`` completed an apply."""
        with self._lock:
            if key in self._handles:
                self._deployed.add(key)

    def is_deployed(self, key: StackKey) -> bool:
        with self._lock:
            return key in self._deployed

    def evict(self, key: StackKey) -> None:
        with self._lock:
            self._handles.pop(key, None)
            self._deployed.discard(key)
        logger.debug("Evicted stack handle for %s/%s", *key)

    def items(self) -> list[tuple[StackKey, StackHandle]]:
        """Snapshot of cached handles in insertion order."""
        with self._lock:
            return list(self._handles.items())
