"""Third-party verification capability (credit bureau, PAN, bank account)."""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Protocol

import httpx

from app.core.config import Settings, settings
from app.core.exceptions import InvalidTermsError, VerificationError
from app.core.security import mask_account_number

logger = logging.getLogger(__name__)

PAN_PATTERN = re.compile(r"^[A-Z]{5}[0-9]{4}[A-Z]$")
IFSC_PATTERN = re.compile(r"^[A-Z]{4}0[A-Z0-9]{6}$")


@dataclass(frozen=True)
class CreditProfile:
    score: int
    trend: str
    fetched_at: datetime
    factors: dict = field(default_factory=dict)


@dataclass(frozen=True)
class IncomeFiling:
    year: str
    annual_income: Decimal


@dataclass(frozen=True)
class IdentityResult:
    pan_number: str
    name: str
    valid: bool
    filings: List[IncomeFiling] = field(default_factory=list)

    @property
    def latest_annual_income(self) -> Optional[Decimal]:
        if not self.filings:
            return None
        return max(self.filings, key=lambda f: f.year).annual_income


@dataclass(frozen=True)
class BankVerificationResult:
    account_number: str
    ifsc_code: str
    valid: bool
    account_holder_name: Optional[str] = None
    bank_name: Optional[str] = None


class VerificationProvider(Protocol):
    async def fetch_credit_profile(self, pan_number: str) -> CreditProfile:
        ...

    async def verify_identity(self, pan_number: str) -> IdentityResult:
        ...

    async def verify_bank_account(self, account_number: str, ifsc_code: str) -> BankVerificationResult:
        ...


def validate_pan(pan_number: str) -> str:
    pan_number = (pan_number or "").strip().upper()
    if not PAN_PATTERN.match(pan_number):
        raise InvalidTermsError("Invalid PAN format", reasons=["PAN must look like ABCDE1234F"])
    return pan_number


class MockVerificationProvider:
    """Deterministic stand-in for the bureau and KYC partners, used in development"""

    async def fetch_credit_profile(self, pan_number: str) -> CreditProfile:
        pan_number = validate_pan(pan_number)
        score = 650 + ord(pan_number[4]) % 100
        return CreditProfile(
            score=score,
            trend="improving" if score > 700 else "stable",
            fetched_at=datetime.now(timezone.utc),
            factors={
                "payment_history": "good" if score >= 700 else "fair",
                "credit_utilization": "good" if score >= 720 else "fair",
            },
        )

    async def verify_identity(self, pan_number: str) -> IdentityResult:
        pan_number = validate_pan(pan_number)
        base = Decimal(750000) + Decimal(int(pan_number[5:9]) % 250) * 1000
        return IdentityResult(
            pan_number=pan_number,
            name="MOCK NAME FROM PAN API",
            valid=True,
            filings=[
                IncomeFiling(year="2023-24", annual_income=base + Decimal(150000)),
                IncomeFiling(year="2022-23", annual_income=base + Decimal(100000)),
                IncomeFiling(year="2021-22", annual_income=base),
            ],
        )

    async def verify_bank_account(self, account_number: str, ifsc_code: str) -> BankVerificationResult:
        ifsc_code = (ifsc_code or "").strip().upper()
        valid = bool(IFSC_PATTERN.match(ifsc_code)) and account_number.isdigit() and 9 <= len(account_number) <= 18
        return BankVerificationResult(
            account_number=account_number,
            ifsc_code=ifsc_code,
            valid=valid,
            account_holder_name="VERIFIED ACCOUNT HOLDER" if valid else None,
            bank_name="Mock Bank" if valid else None,
        )


class HttpVerificationProvider:
    """Verification partner reached over HTTP"""

    def __init__(self, base_url: str, api_key: str, timeout: float = 10.0, transport=None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    async def _post(self, path: str, payload: dict) -> dict:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.post(path, json=payload, headers=headers)
                response.raise_for_status()
                return response.json()
        except httpx.TimeoutException as e:
            logger.warning(f"Verification call {path} timed out after {self.timeout}s")
            raise VerificationError("Verification service timed out") from e
        except httpx.HTTPStatusError as e:
            logger.warning(f"Verification call {path} failed with status {e.response.status_code}")
            raise VerificationError(
                "Verification service rejected the request", reasons=[f"HTTP {e.response.status_code}"]
            ) from e
        except httpx.HTTPError as e:
            logger.warning(f"Verification call {path} failed: {e}")
            raise VerificationError("Verification service is unavailable") from e

    async def fetch_credit_profile(self, pan_number: str) -> CreditProfile:
        data = await self._post("/credit-profile", {"pan_number": validate_pan(pan_number)})
        return CreditProfile(
            score=int(data["score"]),
            trend=data.get("trend", "stable"),
            fetched_at=datetime.now(timezone.utc),
            factors=data.get("factors", {}),
        )

    async def verify_identity(self, pan_number: str) -> IdentityResult:
        data = await self._post("/pan/verify", {"pan_number": validate_pan(pan_number)})
        return IdentityResult(
            pan_number=data.get("pan_number", pan_number),
            name=data.get("name", ""),
            valid=data.get("status") == "valid",
            filings=[
                IncomeFiling(year=f["year"], annual_income=Decimal(str(f["income"])))
                for f in data.get("filings", [])
                if f.get("status", "filed") == "filed"
            ],
        )

    async def verify_bank_account(self, account_number: str, ifsc_code: str) -> BankVerificationResult:
        logger.info(f"Verifying bank account {mask_account_number(account_number)}")
        data = await self._post("/bank/verify", {"account_number": account_number, "ifsc_code": ifsc_code})
        return BankVerificationResult(
            account_number=account_number,
            ifsc_code=ifsc_code,
            valid=bool(data.get("is_valid")),
            account_holder_name=data.get("account_holder_name"),
            bank_name=data.get("bank_name"),
        )


def build_verification_provider(config: Settings) -> VerificationProvider:
    if config.VERIFICATION_PROVIDER == "http":
        return HttpVerificationProvider(
            config.VERIFICATION_API_URL,
            config.VERIFICATION_API_KEY,
            timeout=config.VERIFICATION_TIMEOUT_SECONDS,
        )
    return MockVerificationProvider()


def get_verification_provider() -> VerificationProvider:
    """FastAPI dependency selecting the provider configured by VERIFICATION_PROVIDER"""
    return build_verification_provider(settings)
