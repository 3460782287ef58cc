"""Account store: one treasury account per citizen."""

import secrets
import string
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from .exceptions import AccountNotFoundError, ConflictError, InsufficientFundsError
from .logging import get_logger
from .models import Account
from .storage import InMemoryStorage

logger = get_logger(__name__)

_VNT_ALPHABET = string.ascii_uppercase + string.digits


def generate_vnt_id() -> str:
    suffix = "".join(secrets.choice(_VNT_ALPHABET) for _ in range(9))
    return f"VNT-{int(time.time() * 1000)}-{suffix}"


class AccountStore:
    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def get_or_create(self, citizen_id: str) -> Account:
        """Return the citizen's account, opening one with a zero balance if needed.

        The index check and the insert run in one atomic unit, so concurrent
        first lookups for the same citizen agree on a single account.
        """
        existing = self.find_by_citizen(citizen_id)
        if existing:
            return existing

        with self.storage.atomic():
            vnt_id = self.storage.citizen_index.get(citizen_id)
            if vnt_id is not None:
                return Account(**self.storage.accounts[vnt_id])

            vnt_id = generate_vnt_id()
            while vnt_id in self.storage.accounts:
                vnt_id = generate_vnt_id()

            now = datetime.now(timezone.utc)
            record = {
                "vnt_id": vnt_id,
                "citizen_id": citizen_id,
                "balance": Decimal("0"),
                "version": 0,
                "created_at": now,
                "updated_at": now,
            }
            self.storage.put(self.storage.accounts, vnt_id, record)
            self.storage.put(self.storage.citizen_index, citizen_id, vnt_id)

        logger.info("account_opened", vnt_id=vnt_id, citizen_id=citizen_id)
        return Account(**record)

    def find_by_vnt_id(self, vnt_id: str) -> Optional[Account]:
        record = self.storage.accounts.get(vnt_id)
        return Account(**record) if record else None

    def find_by_citizen(self, citizen_id: str) -> Optional[Account]:
        vnt_id = self.storage.citizen_index.get(citizen_id)
        return self.find_by_vnt_id(vnt_id) if vnt_id else None

    def list_accounts(self) -> list[Account]:
        with self.storage.atomic():
            records = list(self.storage.accounts.values())
        accounts = [Account(**r) for r in records]
        accounts.sort(key=lambda a: a.created_at)
        return accounts

    def apply_delta(self, vnt_id: str, delta: Decimal, expected_balance: Decimal) -> Account:
        """Move a balance by ``delta`` if it still equals ``expected_balance``."""
        with self.storage.atomic():
            record = self.storage.accounts.get(vnt_id)
            if record is None:
                raise AccountNotFoundError(f"Account {vnt_id} not found")
            if record["balance"] != expected_balance:
                raise ConflictError(f"Account {vnt_id} changed concurrently")

            new_balance = record["balance"] + delta
            if new_balance < 0:
                raise InsufficientFundsError(f"Insufficient balance in account {vnt_id}")

            updated = {
                **record,
                "balance": new_balance,
                "version": record["version"] + 1,
                "updated_at": datetime.now(timezone.utc),
            }
            self.storage.put(self.storage.accounts, vnt_id, updated)
        return Account(**updated)
