from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from fastapi import HTTPException, status
from datetime import datetime, timezone
from typing import List, Optional
import logging

from redis import asyncio as aioredis

from app.core.config import settings
from app.core.exceptions import NotFoundError
from app.core.security import (
    REFRESH_TOKEN,
    create_access_token,
    create_refresh_token,
    decode_token,
    generate_otp,
    mask_phone,
    remaining_lifetime,
    revocation_key,
)
from app.modules.users.models import User, KYCStatus, ProfileStep
from app.modules.users.kyc_models import BankAccount, Document, DocumentStatus
from app.modules.users import schemas

logger = logging.getLogger(__name__)

MAX_OTP_ATTEMPTS = 5


def refresh_kyc_status(user: User) -> KYCStatus:
    """Derive the KYC status from profile completion and verification flags"""
    profile_done = user.profile_step >= ProfileStep.COMPLETED
    if profile_done and user.identity_verified and user.bank_account_verified:
        user.kyc_status = KYCStatus.COMPLETED
    elif user.profile_step > ProfileStep.MOBILE_VERIFIED or user.identity_verified or user.bank_account_verified:
        user.kyc_status = KYCStatus.IN_PROGRESS
    else:
        user.kyc_status = KYCStatus.PENDING
    return user.kyc_status


def missing_kyc_items(user: User) -> List[str]:
    missing = []
    if user.profile_step < ProfileStep.COMPLETED:
        missing.append("profile")
    if not user.identity_verified:
        missing.append("pan_verification")
    if not user.bank_account_verified:
        missing.append("bank_account_verification")
    return missing


class AuthService:
    """Mobile OTP login and token lifecycle"""

    @staticmethod
    async def send_login_otp(redis: aioredis.Redis, mobile_number: str) -> int:
        """Generate and store a login OTP, returning its lifetime in seconds"""
        otp = generate_otp()
        ttl = settings.OTP_EXPIRY_MINUTES * 60

        await redis.setex(f"login_otp:{mobile_number}", ttl, otp)
        await redis.delete(f"login_otp_attempts:{mobile_number}")

        # Delivery goes through the SMS gateway, the value itself is never logged
        logger.info(f"Login OTP issued for {mask_phone(mobile_number)}")
        return ttl

    @staticmethod
    async def _consume_otp(redis: aioredis.Redis, key: str, otp: str) -> None:
        stored_otp = await redis.get(key)
        if not stored_otp:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="OTP expired or not found"
            )

        if stored_otp != otp:
            attempts = await redis.incr(f"{key}_attempts")
            await redis.expire(f"{key}_attempts", settings.OTP_EXPIRY_MINUTES * 60)
            if attempts >= MAX_OTP_ATTEMPTS:
                await redis.delete(key)
                raise HTTPException(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    detail="Too many invalid attempts. Request a new OTP."
                )
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid OTP"
            )

        await redis.delete(key)
        await redis.delete(f"{key}_attempts")

    @staticmethod
    async def verify_login_otp(db: AsyncSession, redis: aioredis.Redis, mobile_number: str, otp: str):
        """Consume the OTP, creating the borrower on first login"""
        await AuthService._consume_otp(redis, f"login_otp:{mobile_number}", otp)

        result = await db.execute(select(User).where(User.mobile_number == mobile_number))
        user = result.scalar_one_or_none()
        is_new_user = user is None

        if is_new_user:
            user = User(
                mobile_number=mobile_number,
                member_tier=settings.DEFAULT_MEMBER_TIER,
                kyc_status=KYCStatus.PENDING,
                profile_step=ProfileStep.MOBILE_VERIFIED.value,
                existing_emis=0,
                documents=[],
                bank_account=None,
            )
            db.add(user)
        elif not user.is_active:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Account is disabled. Please contact support."
            )

        user.phone_verified = True
        user.last_login_at = datetime.now(timezone.utc)

        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Login failed. Please try again."
            )

        logger.info(f"User {user.id} logged in ({'new' if is_new_user else 'returning'})")
        return user, is_new_user

    @staticmethod
    def create_tokens(user: User, is_new_user: bool = False) -> dict:
        """Create access and refresh tokens"""
        return {
            "access_token": create_access_token(user.id),
            "refresh_token": create_refresh_token(user.id),
            "token_type": "bearer",
            "expires_in": settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            "is_new_user": is_new_user,
            "profile_step": user.profile_step,
        }

    @staticmethod
    async def refresh_tokens(db: AsyncSession, redis: aioredis.Redis, refresh_token: str) -> dict:
        payload = decode_token(refresh_token, expected_type=REFRESH_TOKEN)
        if await redis.get(revocation_key(payload)):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid refresh token"
            )

        user = await db.get(User, int(payload["sub"]))
        if user is None or not user.is_active:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid refresh token"
            )

        # Refresh tokens are single use
        await redis.setex(revocation_key(payload), remaining_lifetime(payload), "1")
        return AuthService.create_tokens(user)

    @staticmethod
    async def logout(redis: aioredis.Redis, token: str) -> None:
        """Revoke an access token for the rest of its lifetime"""
        payload = decode_token(token)
        await redis.setex(revocation_key(payload), remaining_lifetime(payload), "1")


class ProfileService:
    """Multi-step profile completion, contact details, bank account and documents"""

    @staticmethod
    async def update_profile(db: AsyncSession, user: User, data: schemas.ProfileUpdateRequest) -> User:
        """Save profile sections in order: personal, employment, address"""
        if data.personal is None and data.employment is None and data.address is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="At least one profile section is required"
            )

        if data.personal is not None:
            user.full_name = data.personal.full_name
            user.date_of_birth = data.personal.date_of_birth
            user.gender = data.personal.gender
            user.profile_step = max(user.profile_step, ProfileStep.PERSONAL_DETAILS.value)

        if data.employment is not None:
            if user.profile_step < ProfileStep.PERSONAL_DETAILS:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Complete personal details first"
                )
            user.employment_type = data.employment.employment_type
            user.company_name = data.employment.company_name
            user.declared_monthly_income = data.employment.declared_monthly_income
            user.existing_emis = data.employment.existing_emis
            user.profile_step = max(user.profile_step, ProfileStep.EMPLOYMENT_DETAILS.value)

        if data.address is not None:
            if user.profile_step < ProfileStep.EMPLOYMENT_DETAILS:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Complete employment details first"
                )
            user.address_line = data.address.address_line
            user.city = data.address.city
            user.state = data.address.state
            user.pincode = data.address.pincode
            user.profile_step = ProfileStep.COMPLETED.value

        refresh_kyc_status(user)
        await db.commit()
        logger.info(f"User {user.id} profile saved at step {user.profile_step}")
        return user

    @staticmethod
    async def request_email_verification(db: AsyncSession, redis: aioredis.Redis, user: User, email: str) -> None:
        """Attach an email address and send a verification OTP"""
        result = await db.execute(select(User).where(User.email == email, User.id != user.id))
        if result.scalar_one_or_none():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Email already registered"
            )

        user.email = email
        user.email_verified = False
        await db.commit()

        await redis.setex(f"email_otp:{user.id}", settings.OTP_EXPIRY_MINUTES * 60, generate_otp())
        logger.info(f"Email verification OTP issued for user {user.id}")

    @staticmethod
    async def verify_email(db: AsyncSession, redis: aioredis.Redis, user: User, otp: str) -> User:
        if not user.email:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="No email address on file"
            )
        await AuthService._consume_otp(redis, f"email_otp:{user.id}", otp)
        user.email_verified = True
        await db.commit()
        return user

    @staticmethod
    async def save_bank_account(db: AsyncSession, user: User, data: schemas.BankAccountRequest) -> BankAccount:
        """Register or replace the borrower's bank account; a new account starts unverified"""
        account = user.bank_account
        if account is None:
            account = BankAccount(user_id=user.id)
            db.add(account)
            user.bank_account = account

        account.account_number = data.account_number
        account.ifsc_code = data.ifsc_code.upper()
        account.account_holder_name = data.account_holder_name
        account.bank_name = data.bank_name
        account.account_type = data.account_type
        account.verified = False
        account.verified_at = None

        user.bank_account_verified = False
        refresh_kyc_status(user)
        await db.commit()
        return account

    @staticmethod
    async def add_document(db: AsyncSession, user: User, data: schemas.DocumentCreateRequest) -> Document:
        document = Document(
            user_id=user.id,
            document_type=data.document_type,
            name=data.name,
            file_reference=data.file_reference,
            status=DocumentStatus.PENDING,
        )
        user.documents.append(document)
        await db.commit()
        return document

    @staticmethod
    async def review_document(
        db: AsyncSession,
        document_id: int,
        new_status: DocumentStatus,
        reviewer_id: int,
        remarks: Optional[str] = None,
    ) -> Document:
        """Admin decision on a pending document"""
        document = await db.get(Document, document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found")
        if new_status == DocumentStatus.PENDING:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Review must verify or reject the document"
            )
        if new_status == DocumentStatus.REJECTED and not remarks:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Remarks are required when rejecting a document"
            )

        document.status = new_status
        document.remarks = remarks
        document.reviewed_by = reviewer_id
        document.verified_at = datetime.now(timezone.utc) if new_status == DocumentStatus.VERIFIED else None
        await db.commit()
        logger.info(f"Document {document.id} marked {new_status.value} by admin {reviewer_id}")
        return document
