"""Append-only transaction log."""

from datetime import datetime, timezone
from typing import Iterator, Optional
from uuid import UUID, uuid4

from .models import Transaction, TransactionStatus, TransactionType
from .storage import InMemoryStorage


class TransactionLog:
    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def append(
        self,
        *,
        type: TransactionType,
        amount,
        description: str,
        from_vnt_id: Optional[str] = None,
        to_vnt_id: Optional[str] = None,
        from_citizen_id: Optional[str] = None,
        to_citizen_id: Optional[str] = None,
        item_id: Optional[UUID] = None,
        item_name: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Transaction:
        record = {
            "id": uuid4(),
            "type": type,
            "amount": amount,
            "from_vnt_id": from_vnt_id,
            "to_vnt_id": to_vnt_id,
            "from_citizen_id": from_citizen_id,
            "to_citizen_id": to_citizen_id,
            "description": description,
            "item_id": item_id,
            "item_name": item_name,
            "status": TransactionStatus.COMPLETED,
            "idempotency_key": idempotency_key,
            "created_at": datetime.now(timezone.utc),
        }
        with self.storage.atomic():
            self.storage.append_transaction(record)
            if idempotency_key is not None:
                self.storage.put(self.storage.idempotency_index, idempotency_key, record["id"])
        return Transaction(**record)

    def get(self, transaction_id: UUID) -> Optional[Transaction]:
        record = self.storage.transactions.get(transaction_id)
        return Transaction(**record) if record else None

    def find_by_idempotency_key(self, idempotency_key: str) -> Optional[Transaction]:
        transaction_id = self.storage.idempotency_index.get(idempotency_key)
        return self.get(transaction_id) if transaction_id else None

    def list_for_account(self, vnt_id: str, limit: Optional[int] = None) -> Iterator[Transaction]:
        """Yield transactions touching ``vnt_id``, newest first.

        Reads the persisted order when iteration starts; call again for a
        fresh view.
        """
        return self._iter(lambda t: vnt_id in (t["from_vnt_id"], t["to_vnt_id"]), limit)

    def list_for_citizen(self, citizen_id: str, limit: Optional[int] = None) -> Iterator[Transaction]:
        return self._iter(lambda t: citizen_id in (t["from_citizen_id"], t["to_citizen_id"]), limit)

    def list_all(self, limit: Optional[int] = None) -> Iterator[Transaction]:
        return self._iter(lambda t: True, limit)

    def _iter(self, predicate, limit: Optional[int]) -> Iterator[Transaction]:
        ids = self.storage.transaction_ids()
        yielded = 0
        for transaction_id in reversed(ids):
            if limit is not None and yielded >= limit:
                return
            record = self.storage.transactions[transaction_id]
            if predicate(record):
                yielded += 1
                yield Transaction(**record)
