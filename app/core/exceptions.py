"""Lending error hierarchy and its HTTP mapping."""
from typing import List, Optional, TYPE_CHECKING

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

if TYPE_CHECKING:
    from app.modules.loans.eligibility import EligibilityResult


class LendingError(Exception):
    """Base exception for all lending errors."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, reasons: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.reasons = list(reasons or [])


class InvalidTermsError(LendingError, ValueError):
    """Raised when loan terms or borrower-supplied details are outside their valid range."""


class InvalidTransitionError(LendingError):
    """Raised when a lifecycle transition is not allowed from the current state."""

    status_code = status.HTTP_409_CONFLICT


class ConcurrentApplicationError(LendingError):
    """Raised when a user already has a non-terminal loan application."""

    status_code = status.HTTP_409_CONFLICT


class EligibilityBlockedError(LendingError):
    """Raised when an operation needs a passing eligibility result and did not get one."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, result: "EligibilityResult", message: str = "Applicant is not eligible"):
        super().__init__(message, reasons=list(result.blocking_reasons))
        self.result = result


class InvalidPaymentError(LendingError):
    """Raised when a repayment does not match what is due."""


class NotFoundError(LendingError):
    """Raised when a referenced entity does not exist."""

    status_code = status.HTTP_404_NOT_FOUND


class VerificationError(LendingError):
    """Raised when a third-party verification call fails."""

    status_code = status.HTTP_502_BAD_GATEWAY


async def lending_error_handler(request: Request, exc: LendingError) -> JSONResponse:
    """Render a lending error with every collected reason"""
    content = {"detail": exc.message, "reasons": exc.reasons}
    if isinstance(exc, EligibilityBlockedError):
        content["warnings"] = list(exc.result.warnings)
    return JSONResponse(status_code=exc.status_code, content=content)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LendingError, lending_error_handler)
