# Users module
from app.modules.users.models import User, EmploymentType, KYCStatus, ProfileStep
from app.modules.users.kyc_models import Document, DocumentType, DocumentStatus, BankAccount

__all__ = [
    "User", "EmploymentType", "KYCStatus", "ProfileStep",
    "Document", "DocumentType", "DocumentStatus", "BankAccount",
]
