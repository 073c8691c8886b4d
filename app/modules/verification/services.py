from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional, Tuple
import logging

from app.core.config import settings
from app.core.exceptions import InvalidTermsError, NotFoundError, VerificationError
from app.core.security import mask_account_number
from app.modules.loans.calculator import to_money
from app.modules.users.models import KYCStatus, User
from app.modules.users.services import refresh_kyc_status
from app.modules.verification.models import CreditReport
from app.modules.verification.providers import VerificationProvider, validate_pan

logger = logging.getLogger(__name__)

MONTHS_PER_YEAR = 12


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo on the way back, treat naive values as UTC"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class VerificationService:
    """Runs bureau, PAN and bank checks and records their outcome on the borrower"""

    def __init__(self, db: AsyncSession, provider: VerificationProvider):
        self.db = db
        self.provider = provider

    async def get_credit_report(self, user_id: int) -> Optional[CreditReport]:
        result = await self.db.execute(select(CreditReport).where(CreditReport.user_id == user_id))
        return result.scalar_one_or_none()

    def _is_fresh(self, report: CreditReport, now: datetime) -> bool:
        return as_utc(report.fetched_at) > now - timedelta(days=settings.CREDIT_PROFILE_CACHE_DAYS)

    async def fetch_credit_profile(self, user: User, force: bool = False) -> Tuple[CreditReport, bool]:
        """Return the borrower's credit report, reusing a fresh cached one unless forced"""
        if not user.pan_number:
            raise InvalidTermsError("PAN number is required for a credit check")

        now = datetime.now(timezone.utc)
        report = await self.get_credit_report(user.id)
        if report is not None and not force and self._is_fresh(report, now):
            return report, True

        profile = await self.provider.fetch_credit_profile(user.pan_number)
        if report is None:
            report = CreditReport(user_id=user.id)
            self.db.add(report)
        report.score = profile.score
        report.trend = profile.trend
        report.factors = profile.factors
        report.fetched_at = profile.fetched_at

        user.credit_score = profile.score
        await self.db.commit()
        logger.info(f"Credit profile refreshed for user {user.id}")
        return report, False

    async def verify_identity(self, user: User, pan_number: str) -> User:
        """Verify the PAN and derive verified monthly income from the latest filing"""
        pan_number = validate_pan(pan_number)
        result = await self.db.execute(
            select(User.id).where(User.pan_number == pan_number, User.id != user.id)
        )
        if result.scalar_one_or_none() is not None:
            raise InvalidTermsError("PAN number is already linked to another account")

        identity = await self.provider.verify_identity(pan_number)
        if not identity.valid:
            raise VerificationError("PAN could not be verified", reasons=[f"PAN {pan_number} is not valid"])

        user.pan_number = pan_number
        user.identity_verified = True
        annual_income = identity.latest_annual_income
        if annual_income is not None:
            user.verified_monthly_income = to_money(Decimal(annual_income) / MONTHS_PER_YEAR)

        refresh_kyc_status(user)
        await self.db.commit()
        logger.info(f"Identity verified for user {user.id}")
        return user

    async def verify_bank_account(self, user: User) -> bool:
        """Verify the registered bank account; returns whether the partner accepted it"""
        account = user.bank_account
        if account is None:
            raise NotFoundError("No bank account registered")

        outcome = await self.provider.verify_bank_account(account.account_number, account.ifsc_code)
        logger.info(
            f"Bank account {mask_account_number(account.account_number)} "
            f"{'verified' if outcome.valid else 'rejected'} for user {user.id}"
        )
        if not outcome.valid:
            return False

        account.verified = True
        account.verified_at = datetime.now(timezone.utc)
        if outcome.bank_name:
            account.bank_name = outcome.bank_name
        user.bank_account_verified = True
        refresh_kyc_status(user)
        await self.db.commit()
        return True

    async def get_status(self, user: User) -> dict:
        now = datetime.now(timezone.utc)
        report = await self.get_credit_report(user.id)
        account = user.bank_account
        checks = [
            user.kyc_status == KYCStatus.COMPLETED,
            report is not None,
            user.identity_verified,
            user.bank_account_verified,
        ]
        return {
            "kyc_status": user.kyc_status.value if isinstance(user.kyc_status, KYCStatus) else user.kyc_status,
            "credit": {
                "verified": report is not None,
                "last_updated": report.fetched_at if report else None,
                "needs_update": report is None or not self._is_fresh(report, now),
            },
            "credit_score": user.credit_score,
            "pan": {"verified": user.identity_verified, "needs_update": not user.identity_verified},
            "bank": {
                "verified": user.bank_account_verified,
                "last_updated": account.verified_at if account else None,
                "needs_update": not user.bank_account_verified,
            },
            "completion_percentage": 25 * sum(checks),
            "all_verified": all(checks),
        }
