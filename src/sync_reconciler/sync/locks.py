"""Advisory per-object leases for the ``locking`` rule type.

A lease is keyed by ``(synchronization_id, origin_id)`` and expires after a
TTL so a crashed worker cannot wedge an object forever.  Only reconciliations
whose rules include a ``locking`` rule take part; everything else runs
unlocked.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass

from sync_reconciler.sync.errors import LockedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Lease:
    key: tuple[str, str]
    token: str
    expires_at: float


class LockManager:
    """In-process lease table.

    Args:
        ttl: Default lease duration in seconds.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self._clock = clock
        self._leases: dict[tuple[str, str], Lease] = {}
        self._lock = threading.Lock()

    def acquire(
        self,
        synchronization_id: str,
        origin_id: str,
        ttl: float | None = None,
    ) -> Lease:
        """Take the lease for one object.

        Raises:
            LockedError: If another holder owns an unexpired lease.
        """
        key = (synchronization_id, origin_id)
        now = self._clock()
        with self._lock:
            current = self._leases.get(key)
            if current is not None and current.expires_at > now:
                raise LockedError(
                    f"Object '{origin_id}' is locked by another "
                    f"reconciliation of '{synchronization_id}'"
                )
            if current is not None:
                logger.info("Taking over expired lease on %s/%s", *key)
            lease = Lease(
                key=key,
                token=uuid.uuid4().hex,
                expires_at=now + (ttl if ttl is not None else self.ttl),
            )
            self._leases[key] = lease
            return lease

    def release(self, lease: Lease) -> bool:
        """Release *lease*.  Returns ``False`` if it was already taken over."""
        with self._lock:
            current = self._leases.get(lease.key)
            if current is None or current.token != lease.token:
                return False
            del self._leases[lease.key]
            return True

    def is_locked(self, synchronization_id: str, origin_id: str) -> bool:
        with self._lock:
            current = self._leases.get((synchronization_id, origin_id))
            return current is not None and current.expires_at > self._clock()
