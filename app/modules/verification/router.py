from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.dependencies import get_current_active_user
from app.core.security import mask_account_number
from app.modules.users.models import User
from app.modules.verification import schemas
from app.modules.verification.providers import VerificationProvider, get_verification_provider
from app.modules.verification.services import VerificationService

router = APIRouter(prefix="/api/v1/verification", tags=["verification"])


def get_verification_service(
    db: AsyncSession = Depends(get_db),
    provider: VerificationProvider = Depends(get_verification_provider)
) -> VerificationService:
    return VerificationService(db, provider)


@router.post("/credit-profile", response_model=schemas.CreditProfileResponse)
async def fetch_credit_profile(
    force: bool = Query(False, description="Bypass the cached report"),
    current_user: User = Depends(get_current_active_user),
    service: VerificationService = Depends(get_verification_service)
):
    """
    Fetch the borrower's credit profile.

    Reports are reused for CREDIT_PROFILE_CACHE_DAYS unless `force` is set.
    """
    report, cached = await service.fetch_credit_profile(current_user, force=force)
    return {
        "score": report.score,
        "trend": report.trend,
        "factors": report.factors,
        "fetched_at": report.fetched_at,
        "cached": cached,
    }


@router.post("/pan", response_model=schemas.PANVerificationResponse)
async def verify_pan(
    request: schemas.PANVerificationRequest,
    current_user: User = Depends(get_current_active_user),
    service: VerificationService = Depends(get_verification_service)
):
    """Verify PAN and record the borrower's verified monthly income"""
    user = await service.verify_identity(current_user, request.pan_number)
    return {
        "pan_number": user.pan_number,
        "identity_verified": user.identity_verified,
        "verified_monthly_income": user.verified_monthly_income,
    }


@router.post("/bank", response_model=schemas.BankVerificationResponse)
async def verify_bank_account(
    current_user: User = Depends(get_current_active_user),
    service: VerificationService = Depends(get_verification_service)
):
    """Verify the registered disbursal bank account"""
    verified = await service.verify_bank_account(current_user)
    account = current_user.bank_account
    return {
        "account_number": mask_account_number(account.account_number),
        "verified": verified,
        "account_holder_name": account.account_holder_name,
        "bank_name": account.bank_name,
    }


@router.get("/status", response_model=schemas.VerificationStatusResponse)
async def get_verification_status(
    current_user: User = Depends(get_current_active_user),
    service: VerificationService = Depends(get_verification_service)
):
    return await service.get_status(current_user)
