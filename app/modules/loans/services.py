from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.attributes import set_committed_value
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple
import logging

from app.core.config import settings
from app.core.database import lock_row
from app.core.exceptions import (
    ConcurrentApplicationError, InvalidPaymentError, InvalidTransitionError, LendingError, NotFoundError
)
from app.modules.loans.calculator import (
    InstallmentScheduleEntry, PreclosureQuote, build_schedule, compute_emi, compute_preclosure,
    compute_total_interest, periodic_rate, to_money
)
from app.modules.loans.eligibility import (
    Applicant, EligibilityEvaluator, EligibilityResult, KycFlags, TenureOption
)
from app.modules.loans.lifecycle import (
    LoanLifecycle, StatusTimeline, loan_outstanding_principal, loan_periodic_rate, loan_schedule,
    next_installment, status_timeline
)
from app.modules.loans.models import (
    ApplicationStatus, IN_FLIGHT_STATUSES, Loan, LoanApplication, MembershipTier, TenureUnit
)
from app.modules.loans.policy import DEFAULT_TIERS, LendingPolicy, TierPolicy
from app.modules.loans import schemas
from app.modules.transactions.models import (
    STATUS_TRANSITIONS, Transaction, TransactionKind, TransactionStatus
)
from app.modules.users.models import User

logger = logging.getLogger(__name__)

IN_FLIGHT_INDEX = "uq_loan_applications_user_in_flight"


def is_in_flight_violation(error: IntegrityError) -> bool:
    """Postgres names the partial index; SQLite reports the indexed column"""
    message = str(error.orig)
    return IN_FLIGHT_INDEX in message or "loan_applications.user_id" in message


class LoanService:
    """Loan applications and servicing on top of the lending engine.

    Each mutating method runs the engine against freshly loaded rows and
    commits once; any lending error rolls the session back so no partial
    transition is ever persisted.
    """

    def __init__(self, db: AsyncSession, policy: Optional[LendingPolicy] = None):
        self.db = db
        self.policy = policy or LendingPolicy.from_settings(settings)
        self.evaluator = EligibilityEvaluator(self.policy)
        self.lifecycle = LoanLifecycle(self.policy)

    # ------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            if not is_in_flight_violation(e):
                logger.error(f"Loan write rejected by a constraint: {e.orig}")
                raise
            logger.warning(f"Concurrent application refused by {IN_FLIGHT_INDEX}")
            raise ConcurrentApplicationError(
                "You already have a loan application in progress",
                reasons=["A concurrent request created an application first"],
            ) from e

    async def _rollback_on_error(self, error: LendingError) -> None:
        await self.db.rollback()
        logger.info(f"Loan operation refused: {error.message} {error.reasons}")

    async def _lock_user(self, user_id: int) -> User:
        """Serialize check-then-act sequences per borrower"""
        user = await lock_row(self.db, User, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user

    async def _lock_application(self, application: LoanApplication) -> LoanApplication:
        """
        Take the borrower lock, then reload the application, its loan and the
        loan's transactions so the transition runs on committed state.
        """
        await self._lock_user(application.user_id)
        fresh = await lock_row(self.db, LoanApplication, application.id)
        if fresh is None:
            raise NotFoundError(f"Loan application {application.reference} not found")

        result = await self.db.execute(
            select(Loan)
            .where(Loan.application_id == fresh.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        loan = result.scalar_one_or_none()
        if loan is not None:
            txns = await self.db.execute(
                select(Transaction)
                .where(Transaction.loan_id == loan.id)
                .order_by(Transaction.id)
                .execution_options(populate_existing=True)
            )
            set_committed_value(loan, "transactions", list(txns.scalars().all()))
        set_committed_value(fresh, "loan", loan)
        return fresh

    async def _in_flight_statuses(self, user_id: int, exclude_id: Optional[int] = None) -> List[ApplicationStatus]:
        query = select(LoanApplication.status).where(
            LoanApplication.user_id == user_id,
            LoanApplication.status.in_(sorted(IN_FLIGHT_STATUSES)),
        )
        if exclude_id is not None:
            query = query.where(LoanApplication.id != exclude_id)
        result = await self.db.execute(query)
        return [ApplicationStatus(s) for s in result.scalars().all()]

    # ------------------------------------------------------------
    # Rate card
    # ------------------------------------------------------------

    @staticmethod
    async def init_default_tiers(db: AsyncSession) -> int:
        """Seed the rate card when it is empty; returns the number of tiers created"""
        result = await db.execute(select(func.count(MembershipTier.id)))
        if result.scalar():
            return 0
        for tier in DEFAULT_TIERS:
            db.add(MembershipTier(**tier))
        await db.commit()
        logger.info(f"Seeded {len(DEFAULT_TIERS)} membership tiers")
        return len(DEFAULT_TIERS)

    async def list_tiers(self) -> List[MembershipTier]:
        result = await self.db.execute(
            select(MembershipTier).where(MembershipTier.is_active == True).order_by(MembershipTier.min_amount)
        )
        return result.scalars().all()

    async def get_tier(self, code: str) -> TierPolicy:
        result = await self.db.execute(select(MembershipTier).where(MembershipTier.code == code))
        tier = result.scalar_one_or_none()
        if tier is None:
            raise NotFoundError(f"Membership tier '{code}' not found")
        return TierPolicy.from_model(tier)

    # ------------------------------------------------------------
    # Calculator and eligibility
    # ------------------------------------------------------------

    async def calculate(self, request: schemas.EMICalculationRequest) -> dict:
        if request.tier_code is not None:
            tier = await self.get_tier(request.tier_code)
            rate, unit = tier.interest_rate, tier.tenure_unit
        else:
            rate, unit = request.interest_rate, request.tenure_unit

        periodic = periodic_rate(rate, unit)
        emi = compute_emi(request.principal, periodic, request.tenure)
        total_interest = compute_total_interest(request.principal, emi, request.tenure)
        schedule = (
            build_schedule(request.principal, periodic, request.tenure, tenure_unit=unit, emi=emi)
            if request.include_schedule else []
        )
        return {
            "principal": to_money(request.principal),
            "tenure": request.tenure,
            "tenure_unit": unit,
            "interest_rate": rate,
            "emi": emi,
            "total_interest": total_interest,
            "total_payable": to_money(request.principal + total_interest),
            "schedule": schedule,
        }

    def build_applicant(self, user: User, tier: TierPolicy) -> Applicant:
        return Applicant(
            user_id=user.id,
            tier=tier,
            verified_monthly_income=user.verified_monthly_income,
            kyc=KycFlags(
                identity_verified=user.identity_verified,
                bank_account_verified=user.bank_account_verified,
                email_verified=user.email_verified,
                phone_verified=user.phone_verified,
            ),
            existing_emis=Decimal(user.existing_emis or 0),
            credit_score=user.credit_score,
        )

    async def check_eligibility(
        self, user: User, request: schemas.EligibilityRequest
    ) -> Tuple[TierPolicy, EligibilityResult, List[TenureOption]]:
        tier = await self.get_tier(user.member_tier)
        applicant = self.build_applicant(user, tier)
        result = self.evaluator.evaluate(
            applicant,
            request.amount,
            request.tenure,
            request.tenure_unit or tier.tenure_unit,
            in_flight_statuses=await self._in_flight_statuses(user.id),
        )
        options = self.evaluator.affordability_options(applicant, request.amount)
        return tier, result, options

    # ------------------------------------------------------------
    # Borrower operations
    # ------------------------------------------------------------

    async def apply(self, user_id: int, request: schemas.LoanApplicationRequest) -> LoanApplication:
        """Submit an application under the borrower's lock"""
        try:
            user = await self._lock_user(user_id)
            tier = await self.get_tier(user.member_tier)
            unit = request.tenure_unit or tier.tenure_unit
            in_flight = await self._in_flight_statuses(user.id)
            eligibility = self.evaluator.evaluate(
                self.build_applicant(user, tier), request.amount, request.tenure, unit,
                in_flight_statuses=in_flight,
            )
            application = self.lifecycle.submit(
                user.id, tier, request.amount, request.tenure, unit, request.purpose, eligibility,
                in_flight_statuses=in_flight,
                employment_type=user.employment_type.value if user.employment_type else None,
                company_name=user.company_name,
                monthly_income=user.verified_monthly_income,
            )
        except LendingError as e:
            await self._rollback_on_error(e)
            raise

        self.db.add(application)
        await self._commit()
        return application

    async def list_applications(self, user_id: int) -> List[LoanApplication]:
        result = await self.db.execute(
            select(LoanApplication)
            .where(LoanApplication.user_id == user_id)
            .order_by(LoanApplication.applied_at.desc(), LoanApplication.id.desc())
        )
        return result.scalars().all()

    async def get_application(self, reference: str, user_id: Optional[int] = None) -> LoanApplication:
        query = select(LoanApplication).where(LoanApplication.reference == reference)
        if user_id is not None:
            query = query.where(LoanApplication.user_id == user_id)
        result = await self.db.execute(query)
        application = result.scalar_one_or_none()
        if application is None:
            raise NotFoundError(f"Loan application {reference} not found")
        return application

    def timeline(self, application: LoanApplication) -> StatusTimeline:
        return status_timeline(application)

    def _require_loan(self, application: LoanApplication) -> Loan:
        if application.loan is None:
            raise InvalidTransitionError(f"Application {application.reference} has not been approved")
        return application.loan

    def schedule(self, application: LoanApplication) -> Tuple[List[InstallmentScheduleEntry], Decimal]:
        loan = self._require_loan(application)
        return loan_schedule(loan), loan_outstanding_principal(loan)

    def preclosure_quote(self, application: LoanApplication) -> Tuple[PreclosureQuote, bool]:
        """Quote plus whether the loan may be pre-closed right now"""
        loan = self._require_loan(application)
        quote = compute_preclosure(
            loan.principal,
            loan_periodic_rate(loan),
            loan.paid_installments,
            Decimal(loan.emi),
            num_periods=loan.tenure_units,
            charge_rate=self.policy.preclosure_charge_rate,
        )
        eligible = (
            ApplicationStatus(application.status) == ApplicationStatus.ACTIVE
            and loan.paid_installments >= self.policy.preclosure_min_paid_installments
        )
        return quote, eligible

    async def cancel(self, application: LoanApplication, reason: str) -> LoanApplication:
        try:
            application = await self._lock_application(application)
            self.lifecycle.cancel(application, reason)
        except LendingError as e:
            await self._rollback_on_error(e)
            raise
        await self._commit()
        return application

    async def make_payment(self, application: LoanApplication, amount: Optional[Decimal] = None) -> Tuple[Transaction, bool]:
        """Pay the next installment; the amount, when given, must match the schedule row"""
        try:
            application = await self._lock_application(application)
            if ApplicationStatus(application.status) != ApplicationStatus.ACTIVE:
                raise InvalidTransitionError(
                    f"Payments are accepted only on active loans (application is {ApplicationStatus(application.status).value})"
                )
            loan = self._require_loan(application)
            row = next_installment(loan)
            if row is None:
                raise InvalidPaymentError("No installment is due on this loan")
            if amount is not None and to_money(amount) != row.emi:
                raise InvalidPaymentError(
                    "Payment amount does not match the installment due",
                    reasons=[f"Installment {row.index} is {row.emi:,}, received {to_money(amount):,}"],
                )

            now = datetime.now(timezone.utc)
            txn = self.lifecycle.add_transaction(
                loan, TransactionKind.REPAYMENT, -row.emi, TransactionStatus.COMPLETED,
                f"EMI {row.index} of {loan.tenure_units}", now, installment_number=row.index,
            )
            completed = self.lifecycle.record_payment(application, txn, now)
        except LendingError as e:
            await self._rollback_on_error(e)
            raise

        await self._commit()
        logger.info(f"Installment {txn.installment_number} paid on {application.reference}")
        return txn, completed

    async def preclose(self, application: LoanApplication) -> List[Transaction]:
        try:
            application = await self._lock_application(application)
            quote, _ = self.preclosure_quote(application)
            transactions = self.lifecycle.preclose(application, quote)
        except LendingError as e:
            await self._rollback_on_error(e)
            raise
        await self._commit()
        return transactions

    # ------------------------------------------------------------
    # Back-office operations
    # ------------------------------------------------------------

    async def start_review(self, application: LoanApplication) -> LoanApplication:
        try:
            application = await self._lock_application(application)
            self.lifecycle.start_review(application)
        except LendingError as e:
            await self._rollback_on_error(e)
            raise
        await self._commit()
        return application

    async def approve(self, application: LoanApplication) -> LoanApplication:
        """Re-run eligibility under the borrower's lock, then materialize the loan"""
        try:
            application = await self._lock_application(application)
            user = await self.db.get(User, application.user_id)
            tier = await self.get_tier(application.tier_code)
            others = await self._in_flight_statuses(user.id, exclude_id=application.id)
            eligibility = self.evaluator.evaluate(
                self.build_applicant(user, tier),
                application.principal,
                application.tenure_units,
                TenureUnit(application.tenure_unit),
                in_flight_statuses=others,
            )
            self.lifecycle.approve(application, tier, eligibility)
        except LendingError as e:
            await self._rollback_on_error(e)
            raise
        await self._commit()
        return application

    async def reject(self, application: LoanApplication, reason: str) -> LoanApplication:
        try:
            application = await self._lock_application(application)
            self.lifecycle.reject(application, reason)
        except LendingError as e:
            await self._rollback_on_error(e)
            raise
        await self._commit()
        return application

    async def disburse(self, application: LoanApplication, disbursal_date: Optional[date] = None) -> LoanApplication:
        """Disburse an approved loan; with no activation grace it becomes payable at once"""
        disbursal_date = disbursal_date or date.today()
        try:
            application = await self._lock_application(application)
            user = await self.db.get(User, application.user_id)
            self.lifecycle.disburse(application, disbursal_date, user.bank_account_verified)
            if self.policy.activation_grace_days == 0:
                self.lifecycle.activate(application)
        except LendingError as e:
            await self._rollback_on_error(e)
            raise
        await self._commit()
        return application

    async def activate(self, application: LoanApplication) -> LoanApplication:
        try:
            application = await self._lock_application(application)
            self.lifecycle.activate(application)
        except LendingError as e:
            await self._rollback_on_error(e)
            raise
        await self._commit()
        return application

    async def mark_defaulted(self, application: LoanApplication, today: Optional[date] = None) -> LoanApplication:
        try:
            application = await self._lock_application(application)
            self.lifecycle.mark_defaulted(application, today or date.today())
        except LendingError as e:
            await self._rollback_on_error(e)
            raise
        await self._commit()
        return application

    async def _applications_in(self, status: ApplicationStatus) -> List[LoanApplication]:
        result = await self.db.execute(
            select(LoanApplication).where(LoanApplication.status == status).order_by(LoanApplication.id)
        )
        return result.scalars().all()

    async def activate_matured_disbursals(self, today: Optional[date] = None) -> List[str]:
        """Move disbursed loans whose activation date has arrived to Active"""
        today = today or date.today()
        activated = []
        for candidate in await self._applications_in(ApplicationStatus.DISBURSED):
            try:
                application = await self._lock_application(candidate)
                if ApplicationStatus(application.status) != ApplicationStatus.DISBURSED:
                    await self.db.rollback()
                    continue
                activation = self.lifecycle.activation_date(application.loan)
                if activation is None or activation > today:
                    await self.db.rollback()
                    continue
                self.lifecycle.activate(application)
            except LendingError as e:
                await self._rollback_on_error(e)
                continue
            await self._commit()
            activated.append(application.reference)
        logger.info(f"Activation sweep for {today.isoformat()}: {len(activated)} loan(s) activated")
        return activated

    async def mark_overdue_defaults(self, today: Optional[date] = None) -> List[str]:
        """Default active loans whose next installment is past due"""
        today = today or date.today()
        defaulted = []
        for candidate in await self._applications_in(ApplicationStatus.ACTIVE):
            try:
                application = await self._lock_application(candidate)
                loan = application.loan
                if (
                    ApplicationStatus(application.status) != ApplicationStatus.ACTIVE
                    or not self.lifecycle.is_overdue(loan, today)
                    or loan_outstanding_principal(loan) <= 0
                ):
                    await self.db.rollback()
                    continue
                self.lifecycle.mark_defaulted(application, today)
            except LendingError as e:
                await self._rollback_on_error(e)
                continue
            await self._commit()
            defaulted.append(application.reference)
        logger.info(f"Default sweep for {today.isoformat()}: {len(defaulted)} loan(s) defaulted")
        return defaulted

    def _check_settled_repayment(self, application: LoanApplication, txn: Transaction) -> None:
        """A repayment settles only as the next installment, for exactly its amount"""
        if ApplicationStatus(application.status) != ApplicationStatus.ACTIVE:
            raise InvalidTransitionError(
                f"Repayments settle only on active loans (application is {ApplicationStatus(application.status).value})"
            )
        row = next_installment(application.loan)
        if row is None:
            raise InvalidPaymentError("No installment is due on this loan")
        reasons = []
        if txn.installment_number != row.index:
            reasons.append(f"Installment {row.index} is due, transaction is for {txn.installment_number}")
        received = to_money(-Decimal(txn.amount))
        if received != row.emi:
            reasons.append(f"Installment {row.index} is {row.emi:,}, received {received:,}")
        if reasons:
            raise InvalidPaymentError("Repayment does not match the installment due", reasons=reasons)

    async def settle_transaction(self, reference_code: str, new_status: TransactionStatus) -> Transaction:
        """Settle a pending transaction; a completed repayment counts as a payment"""
        result = await self.db.execute(
            select(Transaction.id, LoanApplication)
            .join(Loan, Loan.id == Transaction.loan_id)
            .join(LoanApplication, LoanApplication.id == Loan.application_id)
            .where(Transaction.reference_code == reference_code)
        )
        found = result.one_or_none()
        if found is None:
            raise NotFoundError(f"Transaction {reference_code} not found")
        txn_id, application = found

        try:
            application = await self._lock_application(application)
            txn = next(t for t in application.loan.transactions if t.id == txn_id)
            current = TransactionStatus(txn.status)
            if new_status not in STATUS_TRANSITIONS[current]:
                raise InvalidTransitionError(
                    f"Cannot move transaction {reference_code} from {current.value} to {new_status.value}"
                )

            now = datetime.now(timezone.utc)
            if txn.kind == TransactionKind.REPAYMENT and new_status == TransactionStatus.COMPLETED:
                self._check_settled_repayment(application, txn)
                txn.status = new_status
                txn.settled_at = now
                self.lifecycle.record_payment(application, txn, now)
            else:
                txn.status = new_status
                txn.settled_at = now
        except LendingError as e:
            await self._rollback_on_error(e)
            raise

        await self._commit()
        logger.info(f"Transaction {reference_code} settled as {new_status.value}")
        return txn
