"""Treasury domain exceptions."""

from typing import Optional


class TreasuryError(Exception):
    """Base class for treasury errors.

    ``operation`` names the ledger operation that failed so callers can
    report it without inspecting storage internals.
    """

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.operation = operation

    def __str__(self) -> str:
        if self.operation:
            return f"{self.operation} failed: {self.message}"
        return self.message


class ValidationError(TreasuryError):
    pass


class InvalidAmountError(ValidationError):
    pass


class SelfTransferNotAllowedError(ValidationError):
    pass


class ResourceError(TreasuryError):
    pass


class AccountNotFoundError(ResourceError):
    pass


class ItemNotFoundError(ResourceError):
    pass


class AssignmentNotFoundError(ResourceError):
    pass


class OutOfStockError(ResourceError):
    pass


class ConsistencyError(TreasuryError):
    pass


class InsufficientFundsError(ConsistencyError):
    pass


class ConflictError(ConsistencyError):
    """Stored state changed between read and commit."""


class IdempotencyConflictError(ConsistencyError):
    """An idempotency key was replayed with a different request."""


class InfrastructureError(TreasuryError):
    pass


class StorageError(InfrastructureError):
    pass


class StorageTimeoutError(StorageError):
    pass


class NotificationError(InfrastructureError):
    pass


class UnauthenticatedError(TreasuryError):
    pass
