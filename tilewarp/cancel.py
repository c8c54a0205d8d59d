from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

from tilewarp.errors import FetchCancelledError


log = logging.getLogger(__name__)


class CancellationToken:
    """
    Cancellation handle of one in-flight retrieval.

    The token is bound to the asyncio future doing the work; cancelling the token cancels
    that future, and the retrieval observes it at its next await. `reason` tells the
    retrieval which error to raise (explicit cancel or timeout).
    """

    __slots__ = ("task_id", "reason", "_future")

    def __init__(self, task_id: str):
        self.task_id = task_id
        self.reason: Optional[FetchCancelledError] = None
        self._future: Optional[asyncio.Future] = None

    @property
    def cancelled(self) -> bool:
        return self.reason is not None

    def bind(self, future: asyncio.Future) -> None:
        self._future = future
        if self.reason is not None:
            future.cancel()

    def cancel(self, reason: Optional[FetchCancelledError] = None) -> bool:
        """Returns False if the token was already cancelled."""
        if self.reason is not None:
            return False
        self.reason = reason or FetchCancelledError(f"task {self.task_id} cancelled")
        if self._future is not None and not self._future.done():
            self._future.cancel()
        return True


class CancellationRegistry:
    """
    Outstanding tokens grouped by caller task id.

    Groups are created on first registration and deleted when their last token settles or
    when the whole task is cancelled. One registry is shared by every request served by a
    FetchCache; create a separate instance for isolated tests.
    """

    def __init__(self) -> None:
        self._groups: Dict[str, List[CancellationToken]] = {}

    def register(self, task_id: str) -> CancellationToken:
        token = CancellationToken(task_id)
        self._groups.setdefault(task_id, []).append(token)
        return token

    def settle(self, token: CancellationToken) -> None:
        group = self._groups.get(token.task_id)
        if group is None:
            return
        if token in group:
            group.remove(token)
        if not group:
            del self._groups[token.task_id]

    def cancel_task(self, task_id: str) -> int:
        """Cancel every token registered under `task_id`; returns how many were cancelled."""
        group = self._groups.pop(task_id, [])
        count = 0
        for token in group:
            if token.cancel(FetchCancelledError(f"task {task_id} cancelled")):
                count += 1
        if count:
            log.debug("Cancelled task", extra={"extra": {"task_id": task_id, "tokens": count}})
        return count

    def pending(self, task_id: str) -> int:
        return len(self._groups.get(task_id, ()))

    @property
    def group_count(self) -> int:
        return len(self._groups)

    def task_ids(self) -> List[str]:
        return list(self._groups.keys())

    def reset(self) -> None:
        """Cancel everything outstanding and forget all groups."""
        for task_id in list(self._groups):
            self.cancel_task(task_id)
        self._groups.clear()
