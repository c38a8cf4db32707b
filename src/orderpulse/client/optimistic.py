"""Optimistic mutations — apply locally first, reconcile with the server after.

Learn: The UI shouldn't wait a round trip to show an edit. Each mutation:
1. Is applied to the local item list immediately
2. Is tracked as an OptimisticOperation with what's needed to undo it
3. Awaits the server call:
   - success → the server's version replaces the local one
   - failure → the local list is put back exactly as it was, and the
     error is RE-RAISED so the caller can tell the user

Only one operation per key may be in flight. A second create/update/delete
on a key that's still pending raises MutationInProgressError before any
local change — rapid double edits are rejected rather than silently
overwriting the first edit's rollback snapshot.

Cancellation of the server call counts as failure (rolled back). There's
no timeout: a server call that never resolves leaves the change applied.
"""

import copy
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")

CREATE = "create"
UPDATE = "update"
DELETE = "delete"


class MutationInProgressError(Exception):
    """Raised when a key already has an optimistic operation in flight."""


class ItemNotFoundError(LookupError):
    """Raised when updating or deleting a key that isn't in local state."""


@dataclass
class OptimisticOperation(Generic[T]):
    """One in-flight mutation and the data needed to undo it."""

    kind: str  # create | update | delete
    key: str
    started_at: float
    original: Optional[T] = None  # pre-mutation value (update, delete)
    new: Optional[T] = None  # post-mutation value (create, update)
    index: Optional[int] = None  # list position before a delete


class OptimisticMutationTracker(Generic[T]):
    """Local item list with optimistic create/update/delete."""

    def __init__(
        self,
        items: Iterable[T],
        key: Callable[[T], str],
        clock: Callable[[], float] = time.time,
    ):
        self._items: list[T] = list(items)
        self._key = key
        self._clock = clock
        self._pending: dict[str, OptimisticOperation[T]] = {}

    # ─── State ───────────────────────────────────────────

    @property
    def items(self) -> list[T]:
        """A copy of the current local list (optimistic changes included)."""
        return list(self._items)

    def get(self, key: str) -> Optional[T]:
        index = self._index_of(key)
        return None if index is None else self._items[index]

    def is_optimistic(self, key: str) -> bool:
        return key in self._pending

    def get_operation(self, key: str) -> Optional[OptimisticOperation[T]]:
        return self._pending.get(key)

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    # ─── Mutations ───────────────────────────────────────

    async def optimistic_create(
        self, item: T, server_call: Callable[[], Awaitable[T]]
    ) -> T:
        """Append item now; swap in the server's copy, or remove it on failure."""
        key = self._key(item)
        self._claim(key)
        self._items.append(item)
        self._pending[key] = OptimisticOperation(
            kind=CREATE, key=key, started_at=self._clock(), new=item,
        )

        try:
            result = await server_call()
        except BaseException:
            self._remove_exact(item)
            self._settle(key, rolled_back=True)
            raise

        self._replace_exact(item, result)
        self._settle(key)
        return result

    async def optimistic_update(
        self, item: T, server_call: Callable[[], Awaitable[T]]
    ) -> T:
        """Replace the item with the same key now; restore it on failure."""
        key = self._key(item)
        self._claim(key)
        index = self._index_of(key)
        if index is None:
            raise ItemNotFoundError(key)

        original = copy.deepcopy(self._items[index])
        self._items[index] = item
        self._pending[key] = OptimisticOperation(
            kind=UPDATE, key=key, started_at=self._clock(), original=original, new=item,
        )

        try:
            result = await server_call()
        except BaseException:
            self._replace_exact(item, original)
            self._settle(key, rolled_back=True)
            raise

        self._replace_exact(item, result)
        self._settle(key)
        return result

    async def optimistic_delete(
        self, key: str, server_call: Callable[[], Awaitable[Any]]
    ) -> None:
        """Remove the item now; put it back where it was on failure."""
        self._claim(key)
        index = self._index_of(key)
        if index is None:
            raise ItemNotFoundError(key)

        original = self._items.pop(index)
        self._pending[key] = OptimisticOperation(
            kind=DELETE, key=key, started_at=self._clock(), original=original, index=index,
        )

        try:
            await server_call()
        except BaseException:
            self._items.insert(min(index, len(self._items)), original)
            self._settle(key, rolled_back=True)
            raise

        self._settle(key)

    # ─── Internals ───────────────────────────────────────

    def _claim(self, key: str) -> None:
        if key in self._pending:
            raise MutationInProgressError(
                f"{self._pending[key].kind} already in flight for {key}"
            )

    def _settle(self, key: str, rolled_back: bool = False) -> None:
        op = self._pending.pop(key, None)
        if rolled_back and op is not None:
            logger.info("optimistic.rolled_back", kind=op.kind, key=key)

    def _index_of(self, key: str) -> Optional[int]:
        for i, existing in enumerate(self._items):
            if self._key(existing) == key:
                return i
        return None

    # Identity lookups: the exact object this operation placed in the list

    def _position(self, item: T) -> Optional[int]:
        for i, existing in enumerate(self._items):
            if existing is item:
                return i
        return None

    def _remove_exact(self, item: T) -> None:
        index = self._position(item)
        if index is not None:
            del self._items[index]

    def _replace_exact(self, item: T, replacement: T) -> None:
        index = self._position(item)
        if index is not None:
            self._items[index] = replacement
