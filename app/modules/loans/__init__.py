# Loans module
from app.modules.loans.models import (
    MembershipTier, LoanApplication, Loan,
    TenureUnit, ApplicationStatus, LoanStatus, IN_FLIGHT_STATUSES, TERMINAL_STATUSES
)

__all__ = [
    "MembershipTier", "LoanApplication", "Loan",
    "TenureUnit", "ApplicationStatus", "LoanStatus", "IN_FLIGHT_STATUSES", "TERMINAL_STATUSES",
]
