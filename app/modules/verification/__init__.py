# Verification module
from app.modules.verification.models import CreditReport

__all__ = ["CreditReport"]
