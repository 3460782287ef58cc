from typing import Optional
from uuid import UUID

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, get_settings
from .exceptions import (
    ConsistencyError,
    InfrastructureError,
    OutOfStockError,
    ResourceError,
    TreasuryError,
    UnauthenticatedError,
    ValidationError,
)
from .identity import Citizen, HeaderIdentityProvider
from .logging import bind_context, clear_context, configure_logging
from .models import (
    Account,
    AdjustmentRequest,
    AssignJobRequest,
    AssignmentStatus,
    CreateItemRequest,
    JobAssignment,
    MarketplaceItem,
    PayrollReport,
    PayrollRunRequest,
    PurchaseRequest,
    SettlementResponse,
    Transaction,
    TransactionHistoryResponse,
    TransferRequest,
    UpdateSalaryRequest,
)
from .notifications import HttpEmailSink, LogNotificationSink
from .service import LedgerService


def http_error(e: TreasuryError) -> HTTPException:
    if isinstance(e, ValidationError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(e, OutOfStockError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(e, ResourceError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(e, ConsistencyError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(e, UnauthenticatedError):
        code = status.HTTP_401_UNAUTHORIZED
    elif isinstance(e, InfrastructureError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=str(e))


def get_service(request: Request) -> LedgerService:
    return request.app.state.ledger_service


async def current_citizen(request: Request) -> Citizen:
    # async so the bound log context reaches the endpoint's worker thread
    try:
        citizen = HeaderIdentityProvider(request.headers).current_citizen()
    except UnauthenticatedError as e:
        raise http_error(e)
    bind_context(citizen_id=citizen.ledger_id)
    return citizen


def require_admin(request: Request, citizen: Citizen = Depends(current_citizen)) -> Citizen:
    settings: Settings = request.app.state.settings
    if citizen.email not in settings.admin_emails:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return citizen


def create_app(
    service: Optional[LedgerService] = None,
    settings: Optional[Settings] = None,
    root_path: str = "",
) -> FastAPI:
    settings = settings or get_settings()
    if service is None:
        configure_logging(settings.log_level, settings.log_json)
        endpoint = settings.notifications.email_endpoint
        notifier = HttpEmailSink(endpoint, settings.notifications.timeout) if endpoint else LogNotificationSink()
        service = LedgerService(notifier=notifier, settings=settings)

    app = FastAPI(
        title="Vandehoeken Treasury API",
        description="Citizen accounts, transfers, marketplace purchases and payroll for the Vandehoeken treasury",
        version="1.0.0",
        root_path=root_path,
    )
    app.state.ledger_service = service
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def reset_log_context(request: Request, call_next):
        clear_context()
        bind_context(path=request.url.path, method=request.method)
        return await call_next(request)

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "vandehoeken-treasury", "environment": settings.environment}

    @app.get("/accounts/me", response_model=Account, tags=["Accounts"])
    def my_account(
        citizen: Citizen = Depends(current_citizen),
        ledger: LedgerService = Depends(get_service),
    ) -> Account:
        try:
            return ledger.get_account(citizen.ledger_id)
        except TreasuryError as e:
            raise http_error(e)

    @app.get("/accounts/me/transactions", response_model=TransactionHistoryResponse, tags=["Accounts"])
    def my_transactions(
        limit: int = 50,
        citizen: Citizen = Depends(current_citizen),
        ledger: LedgerService = Depends(get_service),
    ) -> TransactionHistoryResponse:
        try:
            return ledger.history(citizen.ledger_id, limit)
        except TreasuryError as e:
            raise http_error(e)

    @app.get("/accounts/{vnt_id}", response_model=Account, tags=["Accounts"])
    def lookup_account(
        vnt_id: str,
        citizen: Citizen = Depends(current_citizen),
        ledger: LedgerService = Depends(get_service),
    ) -> Account:
        try:
            return ledger.lookup_account(vnt_id)
        except TreasuryError as e:
            raise http_error(e)

    @app.post("/transfers", response_model=SettlementResponse, status_code=status.HTTP_201_CREATED, tags=["Treasury"])
    def transfer(
        request: TransferRequest,
        citizen: Citizen = Depends(current_citizen),
        ledger: LedgerService = Depends(get_service),
    ) -> SettlementResponse:
        try:
            return ledger.transfer(
                citizen.ledger_id,
                request.to_vnt_id,
                request.amount,
                request.description,
                idempotency_key=request.idempotency_key,
            )
        except TreasuryError as e:
            raise http_error(e)

    @app.get("/marketplace/items", response_model=list[MarketplaceItem], tags=["Marketplace"])
    def list_items(ledger: LedgerService = Depends(get_service)) -> list[MarketplaceItem]:
        try:
            return ledger.marketplace.list_items()
        except TreasuryError as e:
            raise http_error(e)

    @app.post("/marketplace/items/{item_id}/purchase", response_model=SettlementResponse, tags=["Marketplace"])
    def purchase(
        item_id: UUID,
        request: Optional[PurchaseRequest] = None,
        citizen: Citizen = Depends(current_citizen),
        ledger: LedgerService = Depends(get_service),
    ) -> SettlementResponse:
        key = request.idempotency_key if request else None
        try:
            return ledger.purchase(citizen.ledger_id, item_id, idempotency_key=key)
        except TreasuryError as e:
            raise http_error(e)

    # Admin console

    @app.get("/admin/accounts", response_model=list[Account], tags=["Admin"])
    def list_accounts(
        admin: Citizen = Depends(require_admin),
        ledger: LedgerService = Depends(get_service),
    ) -> list[Account]:
        try:
            return ledger.accounts.list_accounts()
        except TreasuryError as e:
            raise http_error(e)

    @app.post("/admin/accounts/{vnt_id}/adjustments", response_model=SettlementResponse, tags=["Admin"])
    def adjust_balance(
        vnt_id: str,
        request: AdjustmentRequest,
        admin: Citizen = Depends(require_admin),
        ledger: LedgerService = Depends(get_service),
    ) -> SettlementResponse:
        try:
            return ledger.adjust_balance(vnt_id, request.amount, request.description)
        except TreasuryError as e:
            raise http_error(e)

    @app.get("/admin/transactions", response_model=list[Transaction], tags=["Admin"])
    def list_transactions(
        limit: int = 100,
        admin: Citizen = Depends(require_admin),
        ledger: LedgerService = Depends(get_service),
    ) -> list[Transaction]:
        try:
            return list(ledger.transactions.list_all(limit))
        except TreasuryError as e:
            raise http_error(e)

    @app.post("/admin/marketplace/items", response_model=MarketplaceItem, status_code=status.HTTP_201_CREATED, tags=["Admin"])
    def create_item(
        request: CreateItemRequest,
        admin: Citizen = Depends(require_admin),
        ledger: LedgerService = Depends(get_service),
    ) -> MarketplaceItem:
        try:
            return ledger.marketplace.create_item(**request.model_dump())
        except TreasuryError as e:
            raise http_error(e)

    @app.get("/admin/job-assignments", response_model=list[JobAssignment], tags=["Admin"])
    def list_assignments(
        status_filter: Optional[AssignmentStatus] = None,
        admin: Citizen = Depends(require_admin),
        ledger: LedgerService = Depends(get_service),
    ) -> list[JobAssignment]:
        try:
            return ledger.assignments.list_assignments(status_filter)
        except TreasuryError as e:
            raise http_error(e)

    @app.post("/admin/job-assignments", response_model=JobAssignment, status_code=status.HTTP_201_CREATED, tags=["Admin"])
    def assign_job(
        request: AssignJobRequest,
        admin: Citizen = Depends(require_admin),
        ledger: LedgerService = Depends(get_service),
    ) -> JobAssignment:
        try:
            return ledger.assign_job(request.citizen_id, request.job_title, request.daily_salary, request.job_id)
        except TreasuryError as e:
            raise http_error(e)

    @app.patch("/admin/job-assignments/{assignment_id}/salary", response_model=JobAssignment, tags=["Admin"])
    def update_salary(
        assignment_id: UUID,
        request: UpdateSalaryRequest,
        admin: Citizen = Depends(require_admin),
        ledger: LedgerService = Depends(get_service),
    ) -> JobAssignment:
        try:
            return ledger.assignments.update_salary(assignment_id, request.daily_salary)
        except TreasuryError as e:
            raise http_error(e)

    @app.post("/admin/job-assignments/{assignment_id}/terminate", response_model=JobAssignment, tags=["Admin"])
    def terminate_assignment(
        assignment_id: UUID,
        admin: Citizen = Depends(require_admin),
        ledger: LedgerService = Depends(get_service),
    ) -> JobAssignment:
        try:
            return ledger.assignments.terminate(assignment_id)
        except TreasuryError as e:
            raise http_error(e)

    @app.post("/admin/payroll/runs", response_model=PayrollReport, tags=["Admin"])
    def run_payroll(
        request: PayrollRunRequest,
        admin: Citizen = Depends(require_admin),
        ledger: LedgerService = Depends(get_service),
    ) -> PayrollReport:
        try:
            return ledger.run_payroll(request.period)
        except TreasuryError as e:
            raise http_error(e)

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
