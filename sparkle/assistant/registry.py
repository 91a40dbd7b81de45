"""
Operation Registry

Tracks live generation operations by id together with the handle that
cancels each one. Start, cancel and finalize all go through here, so every
access holds the registry lock.
"""

import asyncio
import logging
from typing import Optional

from .errors import DuplicateOperationError
from .providers.base import CancellationHandle

logger = logging.getLogger(__name__)


class OperationRegistry:
    """
    Map of operation id -> (owner, cancellation handle).

    An entry exists from the moment an operation is accepted until either a
    cancel request or the start of finalize removes it. Whoever removes the
    entry first wins; everyone after that sees the operation as gone.
    """

    def __init__(self):
        self._entries: dict[str, tuple[Optional[int], CancellationHandle]] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, operation_id: str) -> bool:
        return operation_id in self._entries

    async def register(
        self,
        operation_id: str,
        handle: CancellationHandle,
        owner: Optional[int] = None,
    ) -> None:
        """
        Insert a new operation, optionally recording the user who owns it.

        Raises:
            DuplicateOperationError: The id is already live (ids must be unique)
        """
        async with self._lock:
            if operation_id in self._entries:
                raise DuplicateOperationError(f"Operation {operation_id} already registered")
            self._entries[operation_id] = (owner, handle)

    async def cancel(self, operation_id: str, user_id: Optional[int] = None) -> bool:
        """
        Signal cancellation and drop the entry.

        With ``user_id`` set, only the recorded owner may cancel; anyone else
        gets False and the operation keeps running. Returns False as well when
        the operation is unknown or already finishing. That is an expected
        race, not an error.
        """
        async with self._lock:
            entry = self._entries.get(operation_id)
            if entry is None:
                logger.debug(f"Cancel for unknown operation {operation_id}")
                return False

            owner, handle = entry
            if user_id is not None and owner is not None and owner != user_id:
                logger.warning(f"User {user_id} tried to cancel operation {operation_id} owned by {owner}")
                return False

            del self._entries[operation_id]

        handle.cancel()
        logger.info(f"Operation {operation_id} cancelled")
        return True

    async def remove(self, operation_id: str) -> Optional[CancellationHandle]:
        """Drop the entry without cancelling. Returns the handle if it was live."""
        async with self._lock:
            entry = self._entries.pop(operation_id, None)
        return entry[1] if entry is not None else None

    async def cancel_all(self) -> int:
        """Cancel every live operation (shutdown). Returns how many were cancelled."""
        async with self._lock:
            handles = [handle for _, handle in self._entries.values()]
            self._entries.clear()

        for handle in handles:
            handle.cancel()
        return len(handles)
