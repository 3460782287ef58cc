from decimal import Decimal
from typing import Callable, Optional, TypeVar
from uuid import UUID, uuid4

from .accounts import AccountStore
from .config import Settings, get_settings
from .exceptions import (
    AccountNotFoundError,
    IdempotencyConflictError,
    InsufficientFundsError,
    InvalidAmountError,
    OutOfStockError,
    SelfTransferNotAllowedError,
    StorageError,
    TreasuryError,
)
from .listings import MarketplaceStore
from .logging import get_logger
from .models import (
    Account,
    JobAssignment,
    PayrollOutcome,
    PayrollReport,
    PayrollResult,
    SettlementResponse,
    Transaction,
    TransactionHistoryResponse,
    TransactionType,
)
from .notifications import LogNotificationSink, NotificationSink
from .payroll import JobAssignmentStore
from .retry import RetryConfig, retry_sync
from .storage import InMemoryStorage
from .transactions import TransactionLog

logger = get_logger(__name__)

T = TypeVar("T")

# A prepared settlement: called inside the atomic unit with the idempotency key
Plan = Callable[[str], Transaction]


class LedgerService:
    """The only component allowed to move money between accounts.

    Every settlement reads and validates outside the storage lock, then
    applies all balance changes, stock changes and its transaction record in
    one atomic unit guarded by expected-balance checks. Conflicts and storage
    faults are retried; before each attempt the idempotency index is read so
    a settlement that already landed is reported instead of applied twice.
    """

    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        notifier: Optional[NotificationSink] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.storage = storage or InMemoryStorage(lock_timeout=self.settings.storage.lock_timeout)
        self.notifier = notifier or LogNotificationSink()
        self.accounts = AccountStore(self.storage)
        self.transactions = TransactionLog(self.storage)
        self.marketplace = MarketplaceStore(self.storage)
        self.assignments = JobAssignmentStore(self.storage)
        self.retry_config = RetryConfig(
            max_attempts=self.settings.retry.max_attempts,
            base_delay=self.settings.retry.base_delay,
            max_delay=self.settings.retry.max_delay,
        )

    # Accounts

    def get_account(self, citizen_id: str) -> Account:
        return self._execute("get_account", lambda: self.accounts.get_or_create(citizen_id))

    def lookup_account(self, vnt_id: str) -> Account:
        account = self.accounts.find_by_vnt_id(vnt_id)
        if account is None:
            raise AccountNotFoundError(f"Account {vnt_id} not found", operation="lookup_account")
        return account

    def history(self, citizen_id: str, limit: int = 50) -> TransactionHistoryResponse:
        account = self.get_account(citizen_id)
        return TransactionHistoryResponse(
            vnt_id=account.vnt_id,
            transactions=list(self.transactions.list_for_account(account.vnt_id, limit)),
            balance=account.balance,
        )

    # Settlements

    def purchase(self, citizen_id: str, item_id: UUID, idempotency_key: Optional[str] = None) -> SettlementResponse:
        def prepare() -> Plan:
            buyer = self.accounts.find_by_citizen(citizen_id)
            if buyer is None:
                raise AccountNotFoundError("Account not found")
            item = self.marketplace.get(item_id)
            if item.stock < 1:
                raise OutOfStockError(f"{item.name} is out of stock")
            if buyer.balance < item.price:
                raise InsufficientFundsError("Insufficient balance")

            def apply(key: str) -> Transaction:
                self.accounts.apply_delta(buyer.vnt_id, -item.price, expected_balance=buyer.balance)
                self.marketplace.decrement_stock(item.id, 1, expected_stock=item.stock)
                return self.transactions.append(
                    type=TransactionType.PURCHASE,
                    amount=item.price,
                    from_vnt_id=buyer.vnt_id,
                    from_citizen_id=citizen_id,
                    description=f"Purchased: {item.name}",
                    item_id=item.id,
                    item_name=item.name,
                    idempotency_key=key,
                )

            return apply

        transaction, fresh = self._settle(
            "purchase",
            citizen_id,
            idempotency_key,
            prepare,
            matches=lambda t: t.type == TransactionType.PURCHASE and t.item_id == item_id,
        )
        account = self.accounts.find_by_citizen(citizen_id)
        if fresh:
            self._notify(
                citizen_id,
                "Purchase Confirmation - Vandehoeken Marketplace",
                f"Your purchase has been completed!\n\nItem: {transaction.item_name}\n"
                f"Price: {self._money(transaction.amount)}\nNew Balance: {self._money(account.balance)}\n\n"
                "Thank you for your purchase!",
            )
        return self._response(transaction, account, fresh, "Purchase successful")

    def transfer(
        self,
        from_citizen_id: str,
        to_vnt_id: str,
        amount: Decimal,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> SettlementResponse:
        self._check_amount(amount, "transfer")
        description = description or "Money transfer"

        def prepare() -> Plan:
            source = self.accounts.find_by_citizen(from_citizen_id)
            if source is None:
                raise AccountNotFoundError("Your account not found")
            destination = self.accounts.find_by_vnt_id(to_vnt_id)
            if destination is None:
                raise AccountNotFoundError(f"Recipient account {to_vnt_id} not found")
            if source.vnt_id == destination.vnt_id:
                raise SelfTransferNotAllowedError("Cannot transfer to your own account")
            if source.balance < amount:
                raise InsufficientFundsError("Insufficient balance")

            def apply(key: str) -> Transaction:
                self.accounts.apply_delta(source.vnt_id, -amount, expected_balance=source.balance)
                self.accounts.apply_delta(destination.vnt_id, amount, expected_balance=destination.balance)
                return self.transactions.append(
                    type=TransactionType.TRANSFER_SENT,
                    amount=amount,
                    from_vnt_id=source.vnt_id,
                    to_vnt_id=destination.vnt_id,
                    from_citizen_id=from_citizen_id,
                    to_citizen_id=destination.citizen_id,
                    description=description,
                    idempotency_key=key,
                )

            return apply

        transaction, fresh = self._settle(
            "transfer",
            from_citizen_id,
            idempotency_key,
            prepare,
            matches=lambda t: t.to_vnt_id == to_vnt_id and t.amount == amount,
        )
        source = self.accounts.find_by_citizen(from_citizen_id)
        if fresh:
            destination = self.accounts.find_by_vnt_id(transaction.to_vnt_id)
            self._notify(
                from_citizen_id,
                "Transfer Sent - Vandehoeken Treasury",
                f"Your transfer has been completed!\n\nAmount: {self._money(amount)}\n"
                f"To: {transaction.to_vnt_id}\nDescription: {description}\n\n"
                f"New Balance: {self._money(source.balance)}",
            )
            self._notify(
                destination.citizen_id,
                "Transfer Received - Vandehoeken Treasury",
                f"You have received a transfer!\n\nAmount: {self._money(amount)}\n"
                f"From: {transaction.from_vnt_id}\nDescription: {description}\n\n"
                f"New Balance: {self._money(destination.balance)}",
            )
        return self._response(transaction, source, fresh, "Transfer successful")

    def adjust_balance(
        self,
        vnt_id: str,
        amount: Decimal,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> SettlementResponse:
        """Credit an account from the treasury; the only way money enters the ledger."""
        self._check_amount(amount, "adjust_balance")
        transaction, fresh = self._settle(
            "adjust_balance",
            vnt_id,
            idempotency_key,
            lambda: self._treasury_credit(vnt_id, amount, description or "Treasury adjustment"),
            matches=lambda t: t.amount == amount,
        )
        account = self.accounts.find_by_vnt_id(vnt_id)
        if fresh:
            self._notify(
                account.citizen_id,
                "Account Credited - Vandehoeken Treasury",
                f"{self._money(amount)} has been deposited to your account.\n\n"
                f"Description: {transaction.description}\nNew Balance: {self._money(account.balance)}",
            )
        return self._response(transaction, account, fresh, "Adjustment applied")

    # Payroll

    def assign_job(
        self,
        citizen_id: str,
        job_title: str,
        daily_salary: Decimal,
        job_id: Optional[str] = None,
    ) -> JobAssignment:
        assignment = self.assignments.assign(citizen_id, job_title, daily_salary, job_id=job_id)
        logger.info("job_assigned", assignment_id=str(assignment.id), citizen_id=citizen_id, job_title=job_title)
        self._notify(
            citizen_id,
            "Job Assignment - Vandehoeken Government",
            f"You have been assigned to a new position!\n\nJob: {job_title}\n"
            f"Daily Salary: {self._money(daily_salary)}\n\nCongratulations!",
        )
        return assignment

    def run_payroll(self, period: str) -> PayrollReport:
        """Pay one day's salary to every active assignment.

        Each employee settles independently; a failure is recorded in the
        report and the run moves on. Payments are keyed by period and
        assignment, so re-running a period never pays anyone twice.
        """
        results = []
        for assignment in self.assignments.list_active():
            result = PayrollResult(
                assignment_id=assignment.id,
                citizen_id=assignment.citizen_id,
                amount=assignment.daily_salary,
                outcome=PayrollOutcome.FAILED,
            )
            try:
                transaction, fresh = self._pay_salary(assignment, period)
            except TreasuryError as e:
                logger.warning("salary_payment_failed", assignment_id=str(assignment.id), error=str(e))
                result.error = str(e)
                results.append(result)
                continue

            result.outcome = PayrollOutcome.PAID if fresh else PayrollOutcome.ALREADY_PAID
            result.transaction_id = transaction.id
            results.append(result)

        report = PayrollReport(period=period, results=results)
        logger.info(
            "payroll_completed",
            period=period,
            paid=len(report.paid),
            failed=len(report.failed),
            total=str(report.total_paid),
        )
        return report

    def _pay_salary(self, assignment: JobAssignment, period: str) -> tuple[Transaction, bool]:
        def prepare() -> Plan:
            account = self.accounts.get_or_create(assignment.citizen_id)
            return self._treasury_credit(
                account.vnt_id,
                assignment.daily_salary,
                f"Daily salary: {assignment.job_title}",
            )

        transaction, fresh = self._settle(
            "run_payroll",
            period,
            str(assignment.id),
            prepare,
            matches=lambda t: t.to_citizen_id == assignment.citizen_id,
        )
        if fresh:
            account = self.accounts.find_by_vnt_id(transaction.to_vnt_id)
            self._notify(
                assignment.citizen_id,
                "Daily Salary Paid - Vandehoeken Treasury",
                f"Your daily salary of {self._money(assignment.daily_salary)} has been deposited.\n\n"
                f"Job: {assignment.job_title}\nNew Balance: {self._money(account.balance)}",
            )
        return transaction, fresh

    # Internals

    def _treasury_credit(self, vnt_id: str, amount: Decimal, description: str) -> Plan:
        account = self.accounts.find_by_vnt_id(vnt_id)
        if account is None:
            raise AccountNotFoundError(f"Account {vnt_id} not found")

        def apply(key: str) -> Transaction:
            self.accounts.apply_delta(account.vnt_id, amount, expected_balance=account.balance)
            return self.transactions.append(
                type=TransactionType.ADMIN_ADJUSTMENT,
                amount=amount,
                from_citizen_id=self.settings.treasury_email,
                to_vnt_id=account.vnt_id,
                to_citizen_id=account.citizen_id,
                description=description,
                idempotency_key=key,
            )

        return apply

    def _settle(
        self,
        operation: str,
        scope: str,
        idempotency_key: Optional[str],
        prepare: Callable[[], Plan],
        matches: Callable[[Transaction], bool],
    ) -> tuple[Transaction, bool]:
        """Run one settlement; returns the transaction and whether this call applied it.

        Keys are stored as ``operation:scope:key`` so a caller's key never
        collides with another caller's, another operation's or payroll's.
        A replayed key must describe the same request as the settled one.
        """
        key = f"{operation}:{scope}:{idempotency_key or uuid4()}"

        def replay(settled: Transaction) -> tuple[Transaction, bool]:
            if not matches(settled):
                raise IdempotencyConflictError(
                    f"Idempotency key {idempotency_key} was already used for a different request"
                )
            return settled, False

        def attempt() -> tuple[Transaction, bool]:
            settled = self.transactions.find_by_idempotency_key(key)
            if settled:
                return replay(settled)
            plan = prepare()
            with self.storage.atomic():
                settled = self.transactions.find_by_idempotency_key(key)
                if settled:
                    return replay(settled)
                return plan(key), True

        transaction, fresh = self._execute(operation, attempt)
        if fresh:
            logger.info(
                "settled",
                operation=operation,
                transaction_id=str(transaction.id),
                amount=str(transaction.amount),
                from_vnt_id=transaction.from_vnt_id,
                to_vnt_id=transaction.to_vnt_id,
            )
        else:
            logger.info("settlement_replayed", operation=operation, transaction_id=str(transaction.id))
        return transaction, fresh

    def _execute(self, operation: str, fn: Callable[[], T]) -> T:
        try:
            return retry_sync(fn, config=self.retry_config)()
        except StorageError as e:
            logger.error("storage_failure", operation=operation, error=type(e).__name__)
            raise StorageError("ledger storage unavailable", operation=operation) from e
        except TreasuryError as e:
            e.operation = e.operation or operation
            raise

    def _notify(self, citizen_id: str, subject: str, body: str) -> None:
        try:
            self.notifier.send(citizen_id, subject, body)
        except Exception:
            # Settlement already committed; delivery is best-effort
            logger.warning("notification_failed", to=citizen_id, subject=subject, exc_info=True)

    def _money(self, amount: Decimal) -> str:
        return f"{amount} {self.settings.currency}"

    @staticmethod
    def _check_amount(amount: Decimal, operation: str) -> None:
        if not Decimal(amount).is_finite() or amount <= 0:
            raise InvalidAmountError("Amount must be greater than 0", operation=operation)

    @staticmethod
    def _response(transaction: Transaction, account: Account, fresh: bool, message: str) -> SettlementResponse:
        return SettlementResponse(
            transaction=transaction,
            account=account,
            message=message if fresh else f"{message} (already settled, idempotent return)",
        )
