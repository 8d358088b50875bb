"""Per-target mutual exclusion for the Deploy → Verify → Rollback window.

Two layers, both bounded by a timeout:

1. A ``threading.Lock`` per target name, for runs in this process.
2. A lease row in the target registry, for runs in other processes.

Runs against distinct targets never contend.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from shipwright.core.target_registry import TargetRegistry

logger = logging.getLogger(__name__)


class TargetLockTimeout(TimeoutError):
    """Raised when a target stays locked for longer than the caller waits."""


class TargetLockManager:
    """Hands out exclusive holds on deployment targets.

    Parameters
    ----------
    registry:
        Where cross-process leases are stored.
    lease_ttl:
        Lease lifetime in seconds; a crashed holder's lease expires after this.
    poll_interval:
        Seconds between lease acquisition attempts.
    """

    def __init__(
        self,
        registry: TargetRegistry,
        *,
        lease_ttl: float = 3600.0,
        poll_interval: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._registry = registry
        self._lease_ttl = lease_ttl
        self._poll_interval = poll_interval
        self._clock = clock
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _local_lock(self, target: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(target, threading.Lock())

    @contextmanager
    def hold(self, target: str, owner: str, timeout: float) -> Iterator[None]:
        """Hold *target* exclusively for the body of the ``with`` block."""
        deadline = self._clock() + timeout
        local = self._local_lock(target)
        if not local.acquire(timeout=max(timeout, 0)):
            raise TargetLockTimeout(f"{target} is busy (local holder) after {timeout:g}s")
        try:
            while not self._registry.try_acquire_lease(target, owner, self._lease_ttl):
                if self._clock() >= deadline:
                    holder = self._registry.lease_holder(target)
                    raise TargetLockTimeout(
                        f"{target} is leased by {holder} after waiting {timeout:g}s"
                    )
                time.sleep(self._poll_interval)
            logger.debug("%s locked by %s", target, owner)
            try:
                yield
            finally:
                self._registry.release_lease(target, owner)
                logger.debug("%s released by %s", target, owner)
        finally:
            local.release()
