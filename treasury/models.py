from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


class TransactionType(str, Enum):
    PURCHASE = "purchase"
    TRANSFER_SENT = "transfer_sent"
    ADMIN_ADJUSTMENT = "admin_adjustment"


class TransactionStatus(str, Enum):
    # Settlement is synchronous, so a recorded transaction is always completed
    COMPLETED = "completed"


class AssignmentStatus(str, Enum):
    ACTIVE = "active"
    TERMINATED = "terminated"


class ItemCategory(str, Enum):
    GOODS = "goods"
    SERVICES = "services"


class PayrollOutcome(str, Enum):
    PAID = "paid"
    ALREADY_PAID = "already_paid"
    FAILED = "failed"


class Account(BaseModel):
    vnt_id: str
    citizen_id: str
    balance: Decimal
    version: int = 0
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Transaction(BaseModel):
    id: UUID
    type: TransactionType
    amount: Decimal
    from_vnt_id: Optional[str] = None
    to_vnt_id: Optional[str] = None
    from_citizen_id: Optional[str] = None
    to_citizen_id: Optional[str] = None
    description: str
    item_id: Optional[UUID] = None
    item_name: Optional[str] = None
    status: TransactionStatus = TransactionStatus.COMPLETED
    idempotency_key: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MarketplaceItem(BaseModel):
    id: UUID
    name: str
    description: str = ""
    price: Decimal
    stock: int
    category: ItemCategory = ItemCategory.GOODS
    image_url: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class JobAssignment(BaseModel):
    id: UUID
    citizen_id: str
    job_id: Optional[str] = None
    job_title: str
    daily_salary: Decimal
    status: AssignmentStatus = AssignmentStatus.ACTIVE
    start_date: date

    model_config = ConfigDict(from_attributes=True)


class TransferRequest(BaseModel):
    to_vnt_id: str = Field(..., description="Recipient VNT account id")
    amount: Decimal
    description: Optional[str] = None
    idempotency_key: Optional[str] = Field(default=None, description="Repeat-safe key; a replay returns the settled transaction")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "to_vnt_id": "VNT-1718000000000-4K2J9QX1Z",
            "amount": 40,
            "description": "rent",
            "idempotency_key": "rent-2024-06"
        }
    })


class PurchaseRequest(BaseModel):
    idempotency_key: Optional[str] = None


class AdjustmentRequest(BaseModel):
    amount: Decimal
    description: Optional[str] = None


class CreateItemRequest(BaseModel):
    name: str
    description: str = ""
    price: Decimal
    stock: int = Field(..., ge=0)
    category: ItemCategory = ItemCategory.GOODS
    image_url: Optional[str] = None


class AssignJobRequest(BaseModel):
    citizen_id: str
    job_title: str
    daily_salary: Decimal
    job_id: Optional[str] = None


class UpdateSalaryRequest(BaseModel):
    daily_salary: Decimal


class PayrollRunRequest(BaseModel):
    period: str = Field(..., description="Payroll period label, e.g. 2024-06-01")


class SettlementResponse(BaseModel):
    transaction: Transaction
    account: Account
    message: str


class PayrollResult(BaseModel):
    assignment_id: UUID
    citizen_id: str
    amount: Decimal
    outcome: PayrollOutcome
    transaction_id: Optional[UUID] = None
    error: Optional[str] = None


class PayrollReport(BaseModel):
    period: str
    results: list[PayrollResult]

    @property
    def paid(self) -> list[PayrollResult]:
        return [r for r in self.results if r.outcome == PayrollOutcome.PAID]

    @property
    def failed(self) -> list[PayrollResult]:
        return [r for r in self.results if r.outcome == PayrollOutcome.FAILED]

    @property
    def total_paid(self) -> Decimal:
        return sum((r.amount for r in self.paid), Decimal("0"))


class TransactionHistoryResponse(BaseModel):
    vnt_id: str
    transactions: list[Transaction]
    balance: Decimal
