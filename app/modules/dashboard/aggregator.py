"""Read-only aggregation of a borrower's applications, loans and transactions.

Every figure is recomputed from the records passed in; nothing here writes to
a loan or a transaction.
"""
from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from app.modules.loans.calculator import to_money, ZERO
from app.modules.loans.lifecycle import loan_schedule, next_due_date
from app.modules.loans.models import ApplicationStatus, IN_FLIGHT_STATUSES, LoanStatus, TenureUnit
from app.modules.transactions.models import TransactionKind, TransactionStatus
from app.modules.users.kyc_models import DocumentStatus

PAYABLE_LOAN_STATUSES = frozenset({LoanStatus.DISBURSED, LoanStatus.ACTIVE})
CALENDAR_HORIZON = 12
RECENT_TRANSACTION_LIMIT = 5


@dataclass(frozen=True)
class PendingTask:
    kind: str
    title: str
    priority: str = "medium"
    reference: Optional[str] = None
    due_date: Optional[date] = None


@dataclass(frozen=True)
class QuickActions:
    can_apply: bool
    can_pay_emi: bool
    needs_documents: bool


@dataclass(frozen=True)
class DashboardSummary:
    counts_by_status: Dict[str, int]
    total_outstanding: Decimal
    payable_loans: int
    total_repaid: Decimal
    next_emi_due_date: Optional[date]
    next_emi_amount: Optional[Decimal]
    pending_tasks: List[PendingTask] = field(default_factory=list)
    quick_actions: Optional[QuickActions] = None
    recent_transactions: list = field(default_factory=list)


@dataclass(frozen=True)
class PortfolioLoan:
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
    next_emi_date: Optional[date]


@dataclass(frozen=True)
class Portfolio:
    loans: List[PortfolioLoan]
    total_borrowed: Decimal
    total_repaid: Decimal
    total_outstanding: Decimal
    monthly_emi: Decimal


@dataclass(frozen=True)
class CalendarEntry:
    entry_date: date
    reference: str
    amount: Decimal
    kind: str  # due, paid or failed
    installment_number: Optional[int] = None


def loan_outstanding(loan) -> Decimal:
    """``principal − paid × emi``, floored at zero"""
    remaining = Decimal(loan.principal) - loan.paid_installments * Decimal(loan.emi)
    return to_money(max(remaining, ZERO))


def _is_payable(loan) -> bool:
    return loan is not None and LoanStatus(loan.status) in PAYABLE_LOAN_STATUSES


def _repaid(transactions: Iterable) -> Decimal:
    total = sum(
        (-Decimal(t.amount) for t in transactions
         if t.kind == TransactionKind.REPAYMENT and t.status == TransactionStatus.COMPLETED),
        ZERO,
    )
    return to_money(total)


def _pending_tasks(applications, documents, kyc_complete: bool, today: date, window_days: int) -> List[PendingTask]:
    tasks = []
    if not kyc_complete:
        tasks.append(PendingTask(kind="complete_kyc", title="Complete your KYC verification", priority="high"))

    for document in documents:
        if document.status == DocumentStatus.REJECTED:
            tasks.append(PendingTask(
                kind="reupload_document",
                title=f"Re-upload {document.name}",
                priority="high",
            ))
        elif document.status == DocumentStatus.PENDING:
            tasks.append(PendingTask(
                kind="document_under_review",
                title=f"{document.name} is under review",
                priority="low",
            ))

    for application in applications:
        loan = application.loan
        if not _is_payable(loan):
            continue
        due = next_due_date(loan)
        if due is None:
            continue
        if due < today:
            tasks.append(PendingTask(
                kind="overdue_emi",
                title=f"EMI of {to_money(loan.emi):,} is overdue",
                priority="high",
                reference=application.reference,
                due_date=due,
            ))
        elif (due - today).days <= window_days:
            tasks.append(PendingTask(
                kind="pay_emi",
                title=f"EMI of {to_money(loan.emi):,} due on {due.isoformat()}",
                priority="medium",
                reference=application.reference,
                due_date=due,
            ))
    return tasks


def summarize(
    applications: Sequence,
    transactions: Sequence,
    *,
    today: date,
    kyc_complete: bool = False,
    documents: Sequence = (),
    reminder_window_days: int = 7,
) -> DashboardSummary:
    """Counts, outstanding balance, next EMI and the borrower's open tasks"""
    counts = Counter(ApplicationStatus(a.status).value for a in applications)

    payable = [a.loan for a in applications if _is_payable(a.loan)]
    total_outstanding = to_money(sum((loan_outstanding(loan) for loan in payable), ZERO))

    next_due = next_amount = None
    for loan in payable:
        due = next_due_date(loan)
        if due is not None and (next_due is None or due < next_due):
            next_due, next_amount = due, to_money(loan.emi)

    in_flight = any(ApplicationStatus(a.status) in IN_FLIGHT_STATUSES for a in applications)
    has_rejected_documents = any(d.status == DocumentStatus.REJECTED for d in documents)
    quick_actions = QuickActions(
        can_apply=kyc_complete and not in_flight,
        can_pay_emi=any(LoanStatus(loan.status) == LoanStatus.ACTIVE for loan in payable),
        needs_documents=not kyc_complete or has_rejected_documents,
    )

    # SQLite hands back naive datetimes, compare on wall-clock UTC
    recent = sorted(
        transactions, key=lambda t: t.created_at.replace(tzinfo=None), reverse=True
    )[:RECENT_TRANSACTION_LIMIT]

    return DashboardSummary(
        counts_by_status=dict(counts),
        total_outstanding=total_outstanding,
        payable_loans=len(payable),
        total_repaid=_repaid(transactions),
        next_emi_due_date=next_due,
        next_emi_amount=next_amount,
        pending_tasks=_pending_tasks(applications, documents, kyc_complete, today, reminder_window_days),
        quick_actions=quick_actions,
        recent_transactions=recent,
    )


def build_portfolio(applications: Sequence) -> Portfolio:
    """Per-loan repayment progress plus portfolio totals"""
    entries = []
    total_borrowed = total_repaid = total_outstanding = monthly_emi = ZERO
    for application in applications:
        loan = application.loan
        if loan is None or LoanStatus(loan.status) in (LoanStatus.APPROVED, LoanStatus.CANCELLED, LoanStatus.REJECTED):
            continue
        status = LoanStatus(loan.status)
        paid = _repaid(loan.transactions)
        outstanding = loan_outstanding(loan) if status in PAYABLE_LOAN_STATUSES else ZERO
        progress = Decimal(loan.paid_installments * 100) / loan.tenure_units
        if status == LoanStatus.COMPLETED:
            progress = Decimal(100)
        entries.append(PortfolioLoan(
            reference=application.reference,
            status=status,
            principal=to_money(loan.principal),
            emi=to_money(loan.emi),
            tenure_units=loan.tenure_units,
            tenure_unit=TenureUnit(loan.tenure_unit),
            paid_installments=loan.paid_installments,
            amount_paid=paid,
            outstanding=outstanding,
            progress_percent=to_money(progress),
            next_emi_date=next_due_date(loan) if status in PAYABLE_LOAN_STATUSES else None,
        ))
        total_borrowed += Decimal(loan.principal)
        total_repaid += paid
        total_outstanding += outstanding
        if status in PAYABLE_LOAN_STATUSES and TenureUnit(loan.tenure_unit) == TenureUnit.MONTH:
            monthly_emi += Decimal(loan.emi)

    return Portfolio(
        loans=entries,
        total_borrowed=to_money(total_borrowed),
        total_repaid=to_money(total_repaid),
        total_outstanding=to_money(total_outstanding),
        monthly_emi=to_money(monthly_emi),
    )


def payment_calendar(applications: Sequence, year: int, month: int) -> List[CalendarEntry]:
    """Installments due in a calendar month plus repayments settled in it"""
    entries = []
    for application in applications:
        loan = application.loan
        if loan is None:
            continue

        if _is_payable(loan) and loan.disbursal_date is not None:
            upcoming = [row for row in loan_schedule(loan) if not row.paid][:CALENDAR_HORIZON]
            for row in upcoming:
                if row.due_date.year == year and row.due_date.month == month:
                    entries.append(CalendarEntry(
                        entry_date=row.due_date,
                        reference=application.reference,
                        amount=row.emi,
                        kind="due",
                        installment_number=row.index,
                    ))

        for txn in loan.transactions:
            if txn.kind != TransactionKind.REPAYMENT or txn.status == TransactionStatus.PENDING:
                continue
            settled = (txn.settled_at or txn.created_at).date()
            if settled.year == year and settled.month == month:
                entries.append(CalendarEntry(
                    entry_date=settled,
                    reference=application.reference,
                    amount=to_money(-Decimal(txn.amount)),
                    kind="paid" if txn.status == TransactionStatus.COMPLETED else "failed",
                    installment_number=txn.installment_number,
                ))

    entries.sort(key=lambda e: (e.entry_date, e.reference))
    return entries
