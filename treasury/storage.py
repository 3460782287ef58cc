"""In-memory record storage with an all-or-nothing unit of work.

Records are plain dicts kept in per-entity tables. Every write made inside
``atomic()`` is journaled with its undo action; if the block raises, the
journal is replayed in reverse so none of its writes survive. Records must be
replaced, never mutated in place, for the journal to restore them.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from functools import partial
from typing import Any, Callable, Hashable, Iterator, Optional
from uuid import UUID

from .exceptions import StorageTimeoutError

_MISSING = object()


class InMemoryStorage:
    def __init__(self, lock_timeout: float = 5.0):
        self.accounts: dict[str, dict] = {}
        self.citizen_index: dict[str, str] = {}
        self.transactions: dict[UUID, dict] = {}
        self.transaction_order: list[UUID] = []
        self.idempotency_index: dict[str, UUID] = {}
        self.items: dict[UUID, dict] = {}
        self.job_assignments: dict[UUID, dict] = {}
        self.lock_timeout = lock_timeout
        self._lock = threading.RLock()
        self._journal: Optional[list[Callable[[], None]]] = None

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """Run a block as one unit: every write lands or none does.

        Nested blocks act as savepoints of the enclosing unit. Raises
        StorageTimeoutError, before touching anything, if the lock cannot be
        acquired within ``lock_timeout`` seconds.
        """
        if not self._lock.acquire(timeout=self.lock_timeout):
            raise StorageTimeoutError("storage is busy")
        outermost = self._journal is None
        if outermost:
            self._journal = []
        mark = len(self._journal)
        try:
            yield
        except BaseException:
            self._undo(mark)
            raise
        finally:
            if outermost:
                self._journal = None
            self._lock.release()

    def put(self, table: dict, key: Hashable, record: Any) -> None:
        with self.atomic():
            previous = table.get(key, _MISSING)
            table[key] = record
            self._journal.append(partial(self._restore, table, key, previous))

    def append_transaction(self, record: dict) -> None:
        with self.atomic():
            self.put(self.transactions, record["id"], record)
            self.transaction_order.append(record["id"])
            self._journal.append(self.transaction_order.pop)

    def transaction_ids(self) -> list[UUID]:
        with self.atomic():
            return list(self.transaction_order)

    def _undo(self, mark: int) -> None:
        while len(self._journal) > mark:
            self._journal.pop()()

    @staticmethod
    def _restore(table: dict, key: Hashable, previous: Any) -> None:
        if previous is _MISSING:
            table.pop(key, None)
        else:
            table[key] = previous
