from pydantic import BaseModel
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from app.modules.loans.models import LoanStatus, TenureUnit
from app.modules.transactions.models import TransactionKind, TransactionStatus


class PendingTaskResponse(BaseModel):
    kind: str
    title: str
    priority: str
    reference: Optional[str] = None
    due_date: Optional[date] = None

    class Config:
        from_attributes = True


class QuickActionsResponse(BaseModel):
    can_apply: bool
    can_pay_emi: bool
    needs_documents: bool

    class Config:
        from_attributes = True


class RecentTransaction(BaseModel):
    reference_code: str
    kind: TransactionKind
    amount: Decimal
    status: TransactionStatus
    created_at: datetime

    class Config:
        from_attributes = True


class DashboardResponse(BaseModel):
    """Borrower home screen"""
    full_name: Optional[str] = None
    member_tier: str
    kyc_status: str
    counts_by_status: Dict[str, int]
    total_outstanding: Decimal
    payable_loans: int
    total_repaid: Decimal
    next_emi_due_date: Optional[date] = None
    next_emi_amount: Optional[Decimal] = None
    pending_tasks: List[PendingTaskResponse]
    quick_actions: QuickActionsResponse
    recent_transactions: List[RecentTransaction]


class PortfolioLoanResponse(BaseModel):
    reference: str
    status: LoanStatus
    principal: Decimal
    emi: Decimal
    tenure_units: int
    tenure_unit: TenureUnit
    paid_installments: int
    amount_paid: Decimal
    outstanding: Decimal
    progress_percent: Decimal
    next_emi_date: Optional[date] = None

    class Config:
        from_attributes = True


class PortfolioResponse(BaseModel):
    loans: List[PortfolioLoanResponse]
    total_borrowed: Decimal
    total_repaid: Decimal
    total_outstanding: Decimal
    monthly_emi: Decimal


class CalendarEntryResponse(BaseModel):
    entry_date: date
    reference: str
    amount: Decimal
    kind: str
    installment_number: Optional[int] = None

    class Config:
        from_attributes = True


class PaymentCalendarResponse(BaseModel):
    year: int
    month: int
    entries: List[CalendarEntryResponse]
    total_due: Decimal
