"""Tests for the storage unit of work, account store and transaction log."""

import re
import threading
from decimal import Decimal
from collections.abc import Iterator

import pytest

from treasury.accounts import AccountStore, generate_vnt_id
from treasury.exceptions import (
    AccountNotFoundError,
    ConflictError,
    InsufficientFundsError,
    OutOfStockError,
    StorageTimeoutError,
)
from treasury.listings import MarketplaceStore
from treasury.models import TransactionType
from treasury.storage import InMemoryStorage
from treasury.transactions import TransactionLog


class TestAtomicUnit:
    def test_writes_survive_a_clean_block(self, storage):
        with storage.atomic():
            storage.put(storage.items, "a", {"stock": 1})

        assert storage.items["a"] == {"stock": 1}

    def test_failed_block_undoes_every_write(self, storage):
        storage.put(storage.items, "a", {"stock": 1})

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.put(storage.items, "a", {"stock": 0})
                storage.put(storage.items, "b", {"stock": 9})
                storage.append_transaction({"id": "t1"})
                raise RuntimeError("boom")

        assert storage.items == {"a": {"stock": 1}}
        assert storage.transactions == {}
        assert storage.transaction_order == []

    def test_nested_block_is_a_savepoint(self, storage):
        with storage.atomic():
            storage.put(storage.items, "a", {"stock": 1})
            with pytest.raises(RuntimeError):
                with storage.atomic():
                    storage.put(storage.items, "b", {"stock": 2})
                    raise RuntimeError("inner")

        assert storage.items == {"a": {"stock": 1}}

    def test_lock_timeout_raises_before_any_write(self):
        storage = InMemoryStorage(lock_timeout=0.05)
        holding = threading.Event()
        release = threading.Event()

        def hold():
            with storage.atomic():
                holding.set()
                release.wait(2)

        holder = threading.Thread(target=hold)
        holder.start()
        holding.wait(2)
        try:
            with pytest.raises(StorageTimeoutError):
                storage.put(storage.items, "a", {"stock": 1})
        finally:
            release.set()
            holder.join()

        assert storage.items == {}


class TestAccountStore:
    def test_vnt_id_format(self):
        assert re.fullmatch(r"VNT-\d{13}-[A-Z0-9]{9}", generate_vnt_id())

    def test_get_or_create_opens_zero_balance_account_once(self, storage):
        store = AccountStore(storage)

        first = store.get_or_create("alice@vandehoeken.org")
        second = store.get_or_create("alice@vandehoeken.org")

        assert first.vnt_id == second.vnt_id
        assert first.balance == Decimal("0")
        assert store.find_by_vnt_id(first.vnt_id).citizen_id == "alice@vandehoeken.org"
        assert len(store.list_accounts()) == 1

    def test_concurrent_first_access_creates_one_account(self, storage):
        store = AccountStore(storage)
        barrier = threading.Barrier(8)
        seen = []

        def open_account():
            barrier.wait()
            seen.append(store.get_or_create("bob@vandehoeken.org").vnt_id)

        threads = [threading.Thread(target=open_account) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(set(seen)) == 1
        assert len(store.list_accounts()) == 1

    def test_apply_delta(self, storage):
        store = AccountStore(storage)
        account = store.get_or_create("alice@vandehoeken.org")

        credited = store.apply_delta(account.vnt_id, Decimal("30"), expected_balance=Decimal("0"))
        debited = store.apply_delta(account.vnt_id, Decimal("-10"), expected_balance=Decimal("30"))

        assert credited.balance == Decimal("30")
        assert debited.balance == Decimal("20")
        assert debited.version == 2

    def test_apply_delta_rejects_stale_expected_balance(self, storage):
        store = AccountStore(storage)
        account = store.get_or_create("alice@vandehoeken.org")
        store.apply_delta(account.vnt_id, Decimal("30"), expected_balance=Decimal("0"))

        with pytest.raises(ConflictError):
            store.apply_delta(account.vnt_id, Decimal("5"), expected_balance=Decimal("0"))

        assert store.find_by_vnt_id(account.vnt_id).balance == Decimal("30")

    def test_apply_delta_never_goes_negative(self, storage):
        store = AccountStore(storage)
        account = store.get_or_create("alice@vandehoeken.org")

        with pytest.raises(InsufficientFundsError):
            store.apply_delta(account.vnt_id, Decimal("-1"), expected_balance=Decimal("0"))

    def test_apply_delta_unknown_account(self, storage):
        with pytest.raises(AccountNotFoundError):
            AccountStore(storage).apply_delta("VNT-0-X", Decimal("1"), expected_balance=Decimal("0"))


class TestTransactionLog:
    def _append(self, log, amount, from_vnt_id=None, to_vnt_id=None, key=None):
        return log.append(
            type=TransactionType.TRANSFER_SENT,
            amount=Decimal(amount),
            description="test",
            from_vnt_id=from_vnt_id,
            to_vnt_id=to_vnt_id,
            idempotency_key=key,
        )

    def test_append_assigns_identity_and_timestamp(self, storage):
        txn = self._append(TransactionLog(storage), 5, "A", "B")

        assert txn.id is not None
        assert txn.created_at is not None
        assert storage.transaction_order == [txn.id]

    def test_list_for_account_newest_first_with_limit(self, storage):
        log = TransactionLog(storage)
        self._append(log, 1, "A", "B")
        self._append(log, 2, "C", "D")
        self._append(log, 3, "B", "A")
        self._append(log, 4, "A", None)

        assert [t.amount for t in log.list_for_account("A")] == [4, 3, 1]
        assert [t.amount for t in log.list_for_account("A", limit=2)] == [4, 3]
        assert [t.amount for t in log.list_all()] == [4, 3, 2, 1]

    def test_listing_is_lazy_and_reads_at_iteration(self, storage):
        log = TransactionLog(storage)
        listing = log.list_for_account("A")
        self._append(log, 1, "A", "B")

        assert isinstance(listing, Iterator)
        assert [t.amount for t in listing] == [1]
        assert list(listing) == []
        assert len(list(log.list_for_account("A"))) == 1

    def test_find_by_idempotency_key(self, storage):
        log = TransactionLog(storage)
        txn = self._append(log, 1, "A", "B", key="k-1")

        assert log.find_by_idempotency_key("k-1").id == txn.id
        assert log.find_by_idempotency_key("k-2") is None


class TestMarketplaceStore:
    def test_decrement_stock(self, storage):
        store = MarketplaceStore(storage)
        item = store.create_item("Stamp", Decimal("2"), 2)

        assert store.decrement_stock(item.id, 1, expected_stock=2).stock == 1
        with pytest.raises(ConflictError):
            store.decrement_stock(item.id, 1, expected_stock=2)
        assert store.decrement_stock(item.id, 1, expected_stock=1).stock == 0
        with pytest.raises(OutOfStockError):
            store.decrement_stock(item.id, 1, expected_stock=0)
