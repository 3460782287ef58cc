"""Shared fixtures for treasury tests."""

import pytest

from treasury.config import RetrySettings, Settings
from treasury.notifications import RecordingNotificationSink
from treasury.service import LedgerService
from treasury.storage import InMemoryStorage

ADMIN_EMAIL = "minister@vandehoeken.gov"


@pytest.fixture
def settings():
    return Settings(
        admin_emails=[ADMIN_EMAIL],
        retry=RetrySettings(max_attempts=3, base_delay=0, max_delay=0),
    )


@pytest.fixture
def notifier():
    return RecordingNotificationSink()


@pytest.fixture
def storage():
    return InMemoryStorage(lock_timeout=2.0)


@pytest.fixture
def service(storage, notifier, settings):
    return LedgerService(storage=storage, notifier=notifier, settings=settings)


@pytest.fixture
def funded(service):
    """Open an account for ``citizen_id`` and credit it from the treasury."""

    def fund(citizen_id, amount):
        account = service.get_account(citizen_id)
        if amount:
            service.adjust_balance(account.vnt_id, amount, "Opening balance")
        return service.accounts.find_by_vnt_id(account.vnt_id)

    return fund
