# Admin module
from app.modules.admin.models import AuditLog

__all__ = ["AuditLog"]
