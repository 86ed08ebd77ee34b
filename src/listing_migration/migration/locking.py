"""
Single-flight leases stored in the migration database.

A poll-driven host may fire overlapping requests at the same adapter. Each
sequencer step and queue tick runs under the adapter's lease, so at most
one execution context advances an adapter at any instant.
"""

import time
import uuid
from collections.abc import Callable, Generator
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError

from listing_migration.exceptions import LockBusyError, StateError
from listing_migration.migration.database import MigrationDatabase
from listing_migration.migration.models import AdapterLock
from listing_migration.utils.logging import get_logger

logger = get_logger(__name__)


class SingleFlightLock:
    """
    Lease-based mutual exclusion keyed by name.

    A lease that is not released (crashed worker) becomes stealable once
    ``lease_seconds`` have passed. Holding is reentrant per instance.

    Usage:
        lock = SingleFlightLock(database)
        with lock.hold("directorist"):
            ...  # raises LockBusyError if another worker holds it
    """

    def __init__(
        self,
        database: MigrationDatabase,
        lease_seconds: float = 300,
        owner: str | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the lock.

        Args:
            database: Shared migration database handle
            lease_seconds: Seconds before an unreleased lease is stale
            owner: Holder token (random if omitted)
            clock: Source of the current Unix time
        """
        self.database = database
        self.lease_seconds = lease_seconds
        self.owner = owner or uuid.uuid4().hex
        self._clock = clock
        self._depth: dict[str, int] = {}

    def acquire(self, key: str) -> None:
        """
        Take the lease for a key.

        Args:
            key: Lock name

        Raises:
            LockBusyError: If another owner holds an unexpired lease
            StateError: If the lease cannot be written
        """
        if self._depth.get(key, 0) > 0:
            self._depth[key] += 1
            return

        now = self._clock()

        try:
            with self.database.session() as session:
                lock = session.get(AdapterLock, key)

                if lock is None:
                    session.add(
                        AdapterLock(
                            lock_key=key,
                            owner=self.owner,
                            acquired_at=now,
                            expires_at=now + self.lease_seconds,
                        )
                    )
                elif lock.owner == self.owner or lock.expires_at <= now:
                    if lock.owner != self.owner:
                        logger.warning(
                            "Stealing expired adapter lock",
                            lock_key=key,
                            previous_owner=lock.owner,
                            expired_for=round(now - lock.expires_at, 2),
                        )
                    lock.owner = self.owner
                    lock.acquired_at = now
                    lock.expires_at = now + self.lease_seconds
                else:
                    raise LockBusyError(key, lock.owner)

        except LockBusyError:
            raise

        except StateError as e:
            # Two workers inserted the same key; the other one won
            if isinstance(e.__cause__, IntegrityError):
                raise LockBusyError(key) from e
            raise

        self._depth[key] = 1
        logger.debug("Adapter lock acquired", lock_key=key, owner=self.owner)

    def release(self, key: str) -> None:
        """
        Give up the lease for a key.

        Args:
            key: Lock name
        """
        depth = self._depth.get(key, 0)
        if depth > 1:
            self._depth[key] = depth - 1
            return

        self._depth.pop(key, None)

        with self.database.session() as session:
            session.query(AdapterLock).filter(
                AdapterLock.lock_key == key, AdapterLock.owner == self.owner
            ).delete(synchronize_session=False)

        logger.debug("Adapter lock released", lock_key=key, owner=self.owner)

    @contextmanager
    def hold(self, key: str) -> Generator[None, None, None]:
        """Hold the lease for the duration of the block."""
        self.acquire(key)
        try:
            yield
        finally:
            self.release(key)

    def is_held(self, key: str) -> bool:
        """Check whether any owner holds an unexpired lease on a key."""
        with self.database.session() as session:
            lock = session.get(AdapterLock, key)
            return lock is not None and lock.expires_at > self._clock()

    def force_release(self, key: str) -> bool:
        """
        Remove a lease regardless of its owner.

        Returns:
            True if a lease was removed
        """
        self._depth.pop(key, None)
        with self.database.session() as session:
            count = (
                session.query(AdapterLock)
                .filter(AdapterLock.lock_key == key)
                .delete(synchronize_session=False)
            )

        if count:
            logger.warning("Adapter lock force-released", lock_key=key)
        return count > 0


def pipeline_lock_key(adapter_id: str) -> str:
    """Lock name shared by an adapter's sequencer and batch queue."""
    return f"{adapter_id}:pipeline"
