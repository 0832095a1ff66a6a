"""Per-deployment exclusive leases.

Every mutating operation on a deployment holds the lease for its
``(namespace, name)`` key, so the orchestration client never sees two
overlapping mutations for the same workload. Callers either wait for the
lease (default) or are rejected with ConflictError.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Tuple

from src.devops_agent.errors import ConflictError


logger = logging.getLogger(__name__)


class DeploymentLease:
    """Keyed asyncio locks with reference counting.

    Locks are created on first use and dropped once no holder or waiter
    remains, so the table does not grow with every deployment ever seen.
    """

    def __init__(self) -> None:
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._users: Dict[Tuple[str, str], int] = {}

    def is_held(self, namespace: str, name: str) -> bool:
        lock = self._locks.get((namespace, name))
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(
        self, namespace: str, name: str, wait: bool = True
    ) -> AsyncIterator[None]:
        """Hold the exclusive lease for a deployment.

        Args:
            namespace: Deployment namespace.
            name: Deployment name.
            wait: Block until the lease is free. When False, raise
                  immediately if another operation holds it.

        Raises:
            ConflictError: If ``wait`` is False and the lease is held.
        """
        key = (namespace, name)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock

        if not wait and lock.locked():
            raise ConflictError(
                f"Another operation is in progress for {namespace}/{name}",
                details={"namespace": namespace, "name": name},
            )

        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                logger.debug(
                    "Lease acquired",
                    extra={"namespace": namespace, "name": name},
                )
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]
