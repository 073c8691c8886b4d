from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from app.core.database import get_db
from app.core.dependencies import get_current_active_user
from app.modules.users.models import User
from app.modules.loans import schemas
from app.modules.loans.services import LoanService

router = APIRouter(prefix="/api/v1/loans", tags=["loans"])


def get_loan_service(db: AsyncSession = Depends(get_db)) -> LoanService:
    return LoanService(db)


@router.get("/tiers", response_model=List[schemas.MembershipTierResponse])
async def list_tiers(service: LoanService = Depends(get_loan_service)):
    """Active membership tiers and their rate cards"""
    return await service.list_tiers()


@router.post("/calculator", response_model=schemas.EMICalculationResponse)
async def calculate_emi(
    request: schemas.EMICalculationRequest,
    service: LoanService = Depends(get_loan_service)
):
    """
    EMI, total interest and amortization schedule.

    - Month products use an annual rate, day products a daily rate
    - Money is rounded half up to the paisa
    """
    return await service.calculate(request)


@router.post("/eligibility", response_model=schemas.EligibilityResponse)
async def check_eligibility(
    request: schemas.EligibilityRequest,
    current_user: User = Depends(get_current_active_user),
    service: LoanService = Depends(get_loan_service)
):
    """Every blocking reason and warning for the requested amount and tenure"""
    tier, result, options = await service.check_eligibility(current_user, request)
    return {
        "is_eligible": result.is_eligible,
        "blocking_reasons": list(result.blocking_reasons),
        "warnings": list(result.warnings),
        "tier_code": tier.code,
        "interest_rate": result.interest_rate,
        "projected_emi": result.projected_emi,
        "total_interest": result.total_interest,
        "max_affordable_emi": result.max_affordable_emi,
        "options": options,
    }


@router.post("/apply", response_model=schemas.LoanApplicationResponse, status_code=status.HTTP_201_CREATED)
async def apply_loan(
    request: schemas.LoanApplicationRequest,
    current_user: User = Depends(get_current_active_user),
    service: LoanService = Depends(get_loan_service)
):
    """
    Submit a loan application.

    - Only one application may be in progress per borrower
    - Ineligible requests are refused with every blocking reason
    """
    return await service.apply(current_user.id, request)


@router.get("", response_model=List[schemas.LoanApplicationResponse])
async def list_my_applications(
    current_user: User = Depends(get_current_active_user),
    service: LoanService = Depends(get_loan_service)
):
    return await service.list_applications(current_user.id)


@router.get("/{reference}", response_model=schemas.LoanApplicationResponse)
async def get_application(
    reference: str,
    current_user: User = Depends(get_current_active_user),
    service: LoanService = Depends(get_loan_service)
):
    return await service.get_application(reference, current_user.id)


@router.get("/{reference}/status", response_model=schemas.StatusTimelineResponse)
async def get_application_status(
    reference: str,
    current_user: User = Depends(get_current_active_user),
    service: LoanService = Depends(get_loan_service)
):
    """Status timeline with progress and the next action"""
    application = await service.get_application(reference, current_user.id)
    timeline = service.timeline(application)
    return {
        "reference": application.reference,
        "status": timeline.status,
        "steps": timeline.steps,
        "progress_percent": timeline.progress_percent,
        "next_action": timeline.next_action,
    }


@router.post("/{reference}/cancel", response_model=schemas.LoanApplicationResponse)
async def cancel_application(
    reference: str,
    request: schemas.CancelRequest,
    current_user: User = Depends(get_current_active_user),
    service: LoanService = Depends(get_loan_service)
):
    """Cancel an application that has not been disbursed yet"""
    application = await service.get_application(reference, current_user.id)
    return await service.cancel(application, request.reason)


@router.get("/{reference}/emi-schedule", response_model=schemas.EMIScheduleResponse)
async def get_emi_schedule(
    reference: str,
    current_user: User = Depends(get_current_active_user),
    service: LoanService = Depends(get_loan_service)
):
    application = await service.get_application(reference, current_user.id)
    schedule, outstanding = service.schedule(application)
    return {
        "reference": application.reference,
        "emi": application.loan.emi,
        "paid_installments": application.loan.paid_installments,
        "outstanding_principal": outstanding,
        "schedule": schedule,
    }


@router.get("/{reference}/preclosure", response_model=schemas.PreclosureQuoteResponse)
async def get_preclosure_quote(
    reference: str,
    current_user: User = Depends(get_current_active_user),
    service: LoanService = Depends(get_loan_service)
):
    """Amount needed to close the loan today, with charges and interest saved"""
    application = await service.get_application(reference, current_user.id)
    quote, eligible = service.preclosure_quote(application)
    return {
        "reference": application.reference,
        "eligible": eligible,
        "outstanding_principal": quote.outstanding_principal,
        "charges": quote.charges,
        "total_payable": quote.total_payable,
        "savings": quote.savings,
        "remaining_interest": quote.remaining_interest,
        "remaining_installments": quote.remaining_installments,
        "paid_installments": quote.paid_installments,
        "min_paid_installments": service.policy.preclosure_min_paid_installments,
    }


@router.post("/{reference}/preclose", response_model=schemas.LoanApplicationResponse)
async def preclose_loan(
    reference: str,
    current_user: User = Depends(get_current_active_user),
    service: LoanService = Depends(get_loan_service)
):
    """Repay the outstanding principal plus charges and close the loan"""
    application = await service.get_application(reference, current_user.id)
    await service.preclose(application)
    return application


@router.post("/{reference}/payments", response_model=schemas.PaymentResponse, status_code=status.HTTP_201_CREATED)
async def pay_installment(
    reference: str,
    request: schemas.PaymentRequest,
    current_user: User = Depends(get_current_active_user),
    service: LoanService = Depends(get_loan_service)
):
    """
    Pay the next installment.

    If an amount is sent it must equal the installment due.
    """
    application = await service.get_application(reference, current_user.id)
    txn, completed = await service.make_payment(application, request.amount)
    return {
        "reference": application.reference,
        "transaction": txn,
        "paid_installments": application.loan.paid_installments,
        "loan_completed": completed,
    }
