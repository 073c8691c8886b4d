from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
from redis import asyncio as aioredis

from app.core.database import get_db, get_redis
from app.core.dependencies import get_current_active_user, oauth2_scheme
from app.core.exceptions import NotFoundError
from app.core.security import mask_account_number, mask_phone
from app.modules.users.models import User, ProfileStep
from app.modules.users import schemas
from app.modules.users.services import AuthService, ProfileService, missing_kyc_items

auth_router = APIRouter(prefix="/api/v1/auth", tags=["auth"])
router = APIRouter(prefix="/api/v1/users", tags=["users"])


@auth_router.post("/otp/send", response_model=schemas.OTPSendResponse)
async def send_otp(
    request: schemas.OTPSendRequest,
    redis: aioredis.Redis = Depends(get_redis)
):
    """
    Send a login OTP to a mobile number.

    - Works for new and returning borrowers
    - OTP expires after OTP_EXPIRY_MINUTES
    """
    expires_in = await AuthService.send_login_otp(redis, request.mobile_number)
    return {
        "message": "OTP sent successfully",
        "mobile_number": mask_phone(request.mobile_number),
        "expires_in": expires_in,
    }


@auth_router.post("/otp/verify", response_model=schemas.TokenResponse)
async def verify_otp(
    request: schemas.OTPVerifyRequest,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis)
):
    """
    Verify the login OTP and return JWT access and refresh tokens.

    - Creates the borrower on first login
    - Locks the OTP after repeated invalid attempts
    """
    user, is_new_user = await AuthService.verify_login_otp(db, redis, request.mobile_number, request.otp)
    return AuthService.create_tokens(user, is_new_user)


@auth_router.post("/refresh", response_model=schemas.TokenResponse)
async def refresh_tokens(
    request: schemas.RefreshTokenRequest,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis)
):
    """Exchange a refresh token for a new token pair"""
    return await AuthService.refresh_tokens(db, redis, request.refresh_token)


@auth_router.post("/logout", status_code=status.HTTP_200_OK)
async def logout(
    token: str = Depends(oauth2_scheme),
    current_user: User = Depends(get_current_active_user),
    redis: aioredis.Redis = Depends(get_redis)
):
    """Logout current user by revoking the access token"""
    await AuthService.logout(redis, token)
    return {"message": "Successfully logged out"}


@router.get("/me", response_model=schemas.UserProfileResponse)
async def get_my_profile(current_user: User = Depends(get_current_active_user)):
    """Get current user's profile"""
    return current_user


@router.put("/me/profile", response_model=schemas.UserProfileResponse)
async def update_my_profile(
    data: schemas.ProfileUpdateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    Save profile sections.

    - Sections unlock in order: personal, employment, address
    - Saving the address completes the profile step of KYC
    """
    return await ProfileService.update_profile(db, current_user, data)


@router.post("/me/email", status_code=status.HTTP_200_OK)
async def add_email(
    data: schemas.EmailUpdateRequest,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    current_user: User = Depends(get_current_active_user)
):
    """Attach an email address and send a verification code"""
    await ProfileService.request_email_verification(db, redis, current_user, data.email)
    return {"message": "Email verification code sent"}


@router.post("/me/email/verify", status_code=status.HTTP_200_OK)
async def verify_email(
    data: schemas.EmailVerificationRequest,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    current_user: User = Depends(get_current_active_user)
):
    """Verify email address with OTP"""
    await ProfileService.verify_email(db, redis, current_user, data.otp)
    return {"message": "Email verified successfully"}


def _bank_account_response(account) -> schemas.BankAccountResponse:
    response = schemas.BankAccountResponse.model_validate(account)
    return response.model_copy(update={"account_number": mask_account_number(account.account_number)})


@router.put("/me/bank-account", response_model=schemas.BankAccountResponse)
async def save_bank_account(
    data: schemas.BankAccountRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    Register the disbursal bank account.

    The account stays unverified until POST /api/v1/verification/bank succeeds.
    """
    account = await ProfileService.save_bank_account(db, current_user, data)
    return _bank_account_response(account)


@router.get("/me/bank-account", response_model=schemas.BankAccountResponse)
async def get_bank_account(current_user: User = Depends(get_current_active_user)):
    if current_user.bank_account is None:
        raise NotFoundError("No bank account registered")
    return _bank_account_response(current_user.bank_account)


@router.post("/me/documents", response_model=schemas.DocumentResponse, status_code=status.HTTP_201_CREATED)
async def add_document(
    data: schemas.DocumentCreateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Register a KYC document for review"""
    return await ProfileService.add_document(db, current_user, data)


@router.get("/me/documents", response_model=List[schemas.DocumentResponse])
async def list_documents(current_user: User = Depends(get_current_active_user)):
    return current_user.documents


@router.get("/me/kyc-status", response_model=schemas.KYCStatusResponse)
async def get_kyc_status(current_user: User = Depends(get_current_active_user)):
    """KYC progress and what is still missing"""
    return {
        "kyc_status": current_user.kyc_status,
        "profile_step": current_user.profile_step,
        "profile_completed": current_user.profile_step >= ProfileStep.COMPLETED,
        "phone_verified": current_user.phone_verified,
        "email_verified": current_user.email_verified,
        "identity_verified": current_user.identity_verified,
        "bank_account_verified": current_user.bank_account_verified,
        "documents": current_user.documents,
        "missing": missing_kyc_items(current_user),
    }
