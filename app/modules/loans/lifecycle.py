"""Loan application state machine.

The transition table below is the only place that decides which status can
follow which. Every method checks all of its preconditions before touching
the application, so a refused transition leaves every record as it was; the
calling service persists the result (status change plus any new loan or
transaction rows) in a single database transaction.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, FrozenSet, Iterable, List, Optional

from app.core.exceptions import (
    ConcurrentApplicationError, EligibilityBlockedError, InvalidTermsError, InvalidTransitionError
)
from app.modules.loans.calculator import (
    PreclosureQuote, build_schedule, compute_emi, due_date, periodic_rate, to_money, ZERO
)
from app.modules.loans.eligibility import EligibilityResult
from app.modules.loans.models import (
    ApplicationStatus, IN_FLIGHT_STATUSES, Loan, LoanApplication, LoanStatus, TenureUnit
)
from app.modules.loans.policy import LendingPolicy, TierPolicy
from app.modules.transactions.models import Transaction, TransactionKind, TransactionStatus

logger = logging.getLogger(__name__)

S = ApplicationStatus

ALLOWED_TRANSITIONS: Dict[ApplicationStatus, FrozenSet[ApplicationStatus]] = {
    S.SUBMITTED: frozenset({S.UNDER_REVIEW, S.REJECTED, S.CANCELLED}),
    S.UNDER_REVIEW: frozenset({S.APPROVED, S.REJECTED, S.CANCELLED}),
    S.APPROVED: frozenset({S.DISBURSED, S.REJECTED, S.CANCELLED}),
    S.DISBURSED: frozenset({S.ACTIVE}),
    S.ACTIVE: frozenset({S.COMPLETED, S.DEFAULTED}),
    S.COMPLETED: frozenset(),
    S.REJECTED: frozenset(),
    S.CANCELLED: frozenset(),
    S.DEFAULTED: frozenset(),
}

# Application states a materialized loan follows
_LOAN_STATUS_FOR = {
    S.APPROVED: LoanStatus.APPROVED,
    S.DISBURSED: LoanStatus.DISBURSED,
    S.ACTIVE: LoanStatus.ACTIVE,
    S.COMPLETED: LoanStatus.COMPLETED,
    S.REJECTED: LoanStatus.REJECTED,
    S.CANCELLED: LoanStatus.CANCELLED,
    S.DEFAULTED: LoanStatus.DEFAULTED,
}


def can_transition(current: ApplicationStatus, target: ApplicationStatus) -> bool:
    return ApplicationStatus(target) in ALLOWED_TRANSITIONS[ApplicationStatus(current)]


def ensure_transition(application: LoanApplication, target: ApplicationStatus) -> None:
    current = ApplicationStatus(application.status)
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Cannot move application {application.reference} from {current.value} to {ApplicationStatus(target).value}"
        )


def generate_reference(prefix: str) -> str:
    return f"{prefix}{uuid.uuid4().hex[:12].upper()}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_reason(reason: Optional[str], action: str) -> str:
    if reason is None or not reason.strip():
        raise InvalidTransitionError(f"A reason is required to {action} an application")
    return reason.strip()


def loan_periodic_rate(loan: Loan) -> Decimal:
    return periodic_rate(loan.interest_rate, TenureUnit(loan.tenure_unit))


def loan_schedule(loan: Loan):
    """Installment schedule of a loan, recomputed from its locked terms"""
    return build_schedule(
        loan.principal,
        loan_periodic_rate(loan),
        loan.tenure_units,
        start_date=loan.disbursal_date,
        tenure_unit=TenureUnit(loan.tenure_unit),
        paid_installments=loan.paid_installments,
        emi=Decimal(loan.emi),
    )


def loan_outstanding_principal(loan: Loan) -> Decimal:
    """Principal still owed according to the amortization schedule"""
    if loan.preclosed or LoanStatus(loan.status) == LoanStatus.COMPLETED:
        return ZERO
    schedule = loan_schedule(loan)
    paid = min(loan.paid_installments, len(schedule))
    if paid == 0:
        return to_money(loan.principal)
    return schedule[paid - 1].remaining_balance


def next_installment(loan: Loan):
    """The first unpaid schedule entry, or None once the schedule is exhausted"""
    for entry in loan_schedule(loan):
        if not entry.paid:
            return entry
    return None


def next_due_date(loan: Loan) -> Optional[date]:
    if loan.disbursal_date is None:
        return None
    return due_date(loan.disbursal_date, loan.paid_installments + 1, TenureUnit(loan.tenure_unit))


@dataclass
class LoanLifecycle:
    """Applies lifecycle transitions to applications and their loans"""

    policy: LendingPolicy = field(default_factory=LendingPolicy)

    # ------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------

    def _move(self, application: LoanApplication, target: ApplicationStatus, now: datetime) -> None:
        previous = ApplicationStatus(application.status)
        application.status = target
        application.updated_at = now
        loan = application.loan
        if loan is not None and target in _LOAN_STATUS_FOR:
            loan.status = _LOAN_STATUS_FOR[target]
            loan.updated_at = now
        logger.info(f"Application {application.reference}: {previous.value} -> {target.value}")

    def add_transaction(
        self,
        loan: Loan,
        kind: TransactionKind,
        amount: Decimal,
        status: TransactionStatus,
        description: str,
        now: datetime,
        installment_number: Optional[int] = None,
    ) -> Transaction:
        txn = Transaction(
            reference_code=generate_reference("TXN-"),
            user_id=loan.user_id,
            kind=kind,
            amount=to_money(amount),
            currency=self.policy.currency,
            status=status,
            description=description,
            installment_number=installment_number,
            created_at=now,
            settled_at=now if status != TransactionStatus.PENDING else None,
        )
        loan.transactions.append(txn)
        return txn

    def _require_loan(self, application: LoanApplication) -> Loan:
        if application.loan is None:
            raise InvalidTransitionError(f"Application {application.reference} has no loan")
        return application.loan

    # ------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------

    def submit(
        self,
        user_id: int,
        tier: TierPolicy,
        principal: Decimal,
        tenure_units: int,
        tenure_unit: TenureUnit,
        purpose: str,
        eligibility: EligibilityResult,
        in_flight_statuses: Iterable[ApplicationStatus] = (),
        now: Optional[datetime] = None,
        **applicant_details,
    ) -> LoanApplication:
        """Create a new application in the Submitted state"""
        now = now or _utcnow()
        open_statuses = {ApplicationStatus(s) for s in in_flight_statuses} & IN_FLIGHT_STATUSES
        if open_statuses:
            raise ConcurrentApplicationError(
                "You already have a loan application in progress",
                reasons=[f"Existing application status: {s.value}" for s in sorted(open_statuses)],
            )
        if not eligibility.is_eligible:
            raise EligibilityBlockedError(eligibility)

        application = LoanApplication(
            reference=generate_reference("CL"),
            user_id=user_id,
            tier_code=tier.code,
            principal=to_money(principal),
            tenure_units=tenure_units,
            tenure_unit=TenureUnit(tenure_unit),
            quoted_rate=tier.interest_rate,
            purpose=purpose,
            status=ApplicationStatus.SUBMITTED,
            applied_at=now,
            created_at=now,
            updated_at=now,
            loan=None,
            **applicant_details,
        )
        logger.info(f"Application {application.reference} submitted by user {user_id}")
        return application

    def start_review(self, application: LoanApplication, now: Optional[datetime] = None) -> None:
        now = now or _utcnow()
        ensure_transition(application, S.UNDER_REVIEW)
        application.reviewed_at = now
        self._move(application, S.UNDER_REVIEW, now)

    def approve(
        self,
        application: LoanApplication,
        tier: TierPolicy,
        eligibility: EligibilityResult,
        now: Optional[datetime] = None,
    ) -> Loan:
        """Materialize the loan with the tier's current rate locked in"""
        now = now or _utcnow()
        ensure_transition(application, S.APPROVED)
        if application.loan is not None:
            raise InvalidTransitionError(f"Application {application.reference} already has a loan")
        if not eligibility.is_eligible:
            raise EligibilityBlockedError(eligibility, message="Application no longer meets eligibility rules")
        if tier.tenure_unit != TenureUnit(application.tenure_unit):
            raise InvalidTermsError(
                f"Tier {tier.code} is a {tier.tenure_unit.value} product, "
                f"application is in {TenureUnit(application.tenure_unit).value}s"
            )

        principal = to_money(application.principal)
        emi = compute_emi(principal, periodic_rate(tier.interest_rate, tier.tenure_unit), application.tenure_units)
        processing_fee = to_money(min(principal * self.policy.processing_fee_rate, self.policy.processing_fee_cap))
        insurance = to_money(principal * self.policy.insurance_rate)

        loan = Loan(
            user_id=application.user_id,
            principal=principal,
            interest_rate=tier.interest_rate,
            tenure_units=application.tenure_units,
            tenure_unit=TenureUnit(application.tenure_unit),
            emi=emi,
            processing_fee=processing_fee,
            insurance_amount=insurance,
            status=LoanStatus.APPROVED,
            paid_installments=0,
            preclosed=False,
            approved_at=now,
            created_at=now,
            updated_at=now,
            transactions=[],
        )
        application.loan = loan
        if processing_fee > 0:
            self.add_transaction(loan, TransactionKind.FEE, -processing_fee, TransactionStatus.PENDING,
                              "Loan processing fee", now)
        if insurance > 0:
            self.add_transaction(loan, TransactionKind.FEE, -insurance, TransactionStatus.PENDING,
                              "Loan insurance premium", now)

        application.decision_at = now
        self._move(application, S.APPROVED, now)
        return loan

    def reject(self, application: LoanApplication, reason: str, now: Optional[datetime] = None) -> None:
        now = now or _utcnow()
        ensure_transition(application, S.REJECTED)
        reason = _require_reason(reason, "reject")
        application.decision_at = now
        application.decision_reason = reason
        self._fail_pending_fees(application, now)
        self._move(application, S.REJECTED, now)

    def cancel(self, application: LoanApplication, reason: str, now: Optional[datetime] = None) -> None:
        now = now or _utcnow()
        ensure_transition(application, S.CANCELLED)
        reason = _require_reason(reason, "cancel")
        application.cancelled_at = now
        application.cancellation_reason = reason
        self._fail_pending_fees(application, now)
        self._move(application, S.CANCELLED, now)

    def _fail_pending_fees(self, application: LoanApplication, now: datetime) -> None:
        if application.loan is None:
            return
        for txn in application.loan.transactions:
            if txn.kind == TransactionKind.FEE and txn.status == TransactionStatus.PENDING:
                txn.status = TransactionStatus.FAILED
                txn.settled_at = now

    def disburse(
        self,
        application: LoanApplication,
        disbursal_date: Optional[date],
        bank_account_verified: bool,
        now: Optional[datetime] = None,
    ) -> Transaction:
        now = now or _utcnow()
        ensure_transition(application, S.DISBURSED)
        loan = self._require_loan(application)
        reasons = []
        if disbursal_date is None:
            reasons.append("A disbursal date is required")
        if not bank_account_verified:
            reasons.append("Borrower bank account is not verified")
        if reasons:
            raise InvalidTransitionError(f"Cannot disburse application {application.reference}", reasons=reasons)

        loan.disbursal_date = disbursal_date
        loan.disbursed_at = now
        txn = self.add_transaction(loan, TransactionKind.DISBURSAL, loan.principal, TransactionStatus.COMPLETED,
                                "Loan amount disbursed", now)
        self._move(application, S.DISBURSED, now)
        return txn

    def activation_date(self, loan: Loan) -> Optional[date]:
        if loan.disbursal_date is None:
            return None
        return loan.disbursal_date + timedelta(days=self.policy.activation_grace_days)

    def activate(self, application: LoanApplication, now: Optional[datetime] = None) -> None:
        """Mark a disbursed loan payable"""
        now = now or _utcnow()
        ensure_transition(application, S.ACTIVE)
        loan = self._require_loan(application)
        loan.activated_at = now
        self._move(application, S.ACTIVE, now)

    def record_payment(
        self,
        application: LoanApplication,
        transaction: Transaction,
        now: Optional[datetime] = None,
    ) -> bool:
        """Count a completed repayment; returns True when it completes the loan"""
        now = now or _utcnow()
        if ApplicationStatus(application.status) != S.ACTIVE:
            raise InvalidTransitionError(
                f"Payments are accepted only on active loans (application {application.reference} "
                f"is {ApplicationStatus(application.status).value})"
            )
        loan = self._require_loan(application)
        if transaction.kind != TransactionKind.REPAYMENT or transaction.status != TransactionStatus.COMPLETED:
            raise InvalidTransitionError("Only completed repayment transactions count as payments")
        if transaction not in loan.transactions:
            raise InvalidTransitionError(f"Transaction {transaction.reference_code} does not belong to this loan")

        loan.paid_installments += 1
        loan.updated_at = now
        if loan.paid_installments >= loan.tenure_units or loan_outstanding_principal(loan) <= 0:
            loan.closed_at = now
            self._move(application, S.COMPLETED, now)
            return True
        return False

    def preclose(
        self,
        application: LoanApplication,
        quote: PreclosureQuote,
        now: Optional[datetime] = None,
    ) -> List[Transaction]:
        """Settle the outstanding principal plus charges and complete the loan"""
        now = now or _utcnow()
        ensure_transition(application, S.COMPLETED)
        loan = self._require_loan(application)
        if loan.paid_installments < self.policy.preclosure_min_paid_installments:
            raise InvalidTransitionError(
                f"Pre-closure is available after {self.policy.preclosure_min_paid_installments} paid installments "
                f"({loan.paid_installments} paid so far)"
            )
        if quote.paid_installments != loan.paid_installments:
            raise InvalidTransitionError("Pre-closure quote is stale, request a new one")

        transactions = [
            self.add_transaction(loan, TransactionKind.REPAYMENT, -quote.outstanding_principal,
                              TransactionStatus.COMPLETED, "Loan pre-closure", now)
        ]
        if quote.charges > 0:
            transactions.append(
                self.add_transaction(loan, TransactionKind.FEE, -quote.charges, TransactionStatus.COMPLETED,
                                  "Pre-closure charges", now)
            )
        loan.preclosed = True
        loan.closed_at = now
        self._move(application, S.COMPLETED, now)
        return transactions

    def is_overdue(self, loan: Loan, today: date) -> bool:
        due = next_due_date(loan)
        if due is None:
            return False
        return due + timedelta(days=self.policy.default_grace_days) < today

    def mark_defaulted(self, application: LoanApplication, today: date, now: Optional[datetime] = None) -> None:
        """Default an active loan whose next installment is past due"""
        now = now or _utcnow()
        ensure_transition(application, S.DEFAULTED)
        loan = self._require_loan(application)
        if not self.is_overdue(loan, today):
            raise InvalidTransitionError(f"Loan for application {application.reference} is not overdue")
        if loan_outstanding_principal(loan) <= 0:
            raise InvalidTransitionError(f"Loan for application {application.reference} has no outstanding balance")
        loan.closed_at = now
        self._move(application, S.DEFAULTED, now)


@dataclass(frozen=True)
class TimelineStep:
    status: ApplicationStatus
    description: str
    completed: bool
    at: Optional[datetime] = None


@dataclass(frozen=True)
class StatusTimeline:
    status: ApplicationStatus
    steps: List[TimelineStep]
    progress_percent: int
    next_action: str


_HAPPY_PATH = [
    (S.SUBMITTED, "Application submitted"),
    (S.UNDER_REVIEW, "Under review by our team"),
    (S.APPROVED, "Loan approved"),
    (S.DISBURSED, "Loan amount disbursed"),
    (S.ACTIVE, "Repayments in progress"),
    (S.COMPLETED, "Loan closed"),
]


def _reached_at(application: LoanApplication, status: ApplicationStatus) -> Optional[datetime]:
    loan = application.loan
    if status == S.SUBMITTED:
        return application.applied_at
    if status == S.UNDER_REVIEW:
        return application.reviewed_at
    if loan is None:
        return None
    return {
        S.APPROVED: loan.approved_at,
        S.DISBURSED: loan.disbursed_at,
        S.ACTIVE: loan.activated_at,
        S.COMPLETED: loan.closed_at,
    }.get(status)


def _next_action(application: LoanApplication) -> str:
    current = ApplicationStatus(application.status)
    loan = application.loan
    if current == S.SUBMITTED:
        return "Wait for your application to be picked up for review"
    if current == S.UNDER_REVIEW:
        return "Wait for approval"
    if current == S.APPROVED:
        return "Keep your bank account verified to receive the disbursal"
    if current == S.DISBURSED:
        return "Your loan activates shortly"
    if current == S.ACTIVE and loan is not None:
        due = next_due_date(loan)
        return f"Pay EMI of {to_money(loan.emi):,} by {due.isoformat()}" if due else "Pay your next EMI"
    if current == S.REJECTED:
        return f"Application rejected: {application.decision_reason}"
    if current == S.CANCELLED:
        return "Application cancelled, you can apply again"
    if current == S.DEFAULTED:
        return "Contact support to regularize your loan"
    return "No action required"


def status_timeline(application: LoanApplication) -> StatusTimeline:
    """Ordered progress of an application along the happy path"""
    current = ApplicationStatus(application.status)
    order = [status for status, _ in _HAPPY_PATH]

    if current in order:
        reached = order.index(current)
    else:
        # Terminal branch: count the happy-path steps recorded before leaving it
        reached = max(
            i for i, status in enumerate(order[:-1])
            if i == 0 or _reached_at(application, status) is not None
        )

    steps = [
        TimelineStep(
            status=status,
            description=description,
            completed=index <= reached,
            at=_reached_at(application, status) if index <= reached else None,
        )
        for index, (status, description) in enumerate(_HAPPY_PATH)
    ]
    if current not in order:
        steps.append(TimelineStep(
            status=current,
            description=f"Application {current.value.replace('_', ' ')}",
            completed=True,
            at=application.decision_at or application.cancelled_at or application.updated_at,
        ))

    progress = (reached + 1) * 100 // len(_HAPPY_PATH)
    return StatusTimeline(status=current, steps=steps, progress_percent=progress, next_action=_next_action(application))
