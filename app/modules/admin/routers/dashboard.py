"""
Admin dashboard endpoints.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from app.core.database import get_db
from app.core.dependencies import require_admin
from app.modules.admin.schemas import AuditLogListResponse, DashboardStats, PendingApprovals
from app.modules.admin.services import AdminService
from app.modules.users.models import User

router = APIRouter(prefix="/dashboard", tags=["admin-dashboard"])


@router.get("", response_model=DashboardStats)
async def get_dashboard_stats(
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    """Get dashboard statistics"""
    return await AdminService(db).get_dashboard_stats()


@router.get("/pending-approvals", response_model=PendingApprovals)
async def get_pending_approvals(
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    """Documents, applications and transactions waiting on a decision"""
    return await AdminService(db).get_pending_approvals()


@router.get("/audit-logs", response_model=AuditLogListResponse)
async def get_audit_logs(
    admin_id: Optional[int] = None,
    action: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_reference: Optional[str] = None,
    success: Optional[bool] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    logs, total = await AdminService(db).get_audit_logs(
        admin_id=admin_id, action=action, resource_type=resource_type,
        resource_reference=resource_reference, success=success,
        page=page, page_size=page_size
    )
    return {"logs": logs, "total": total, "page": page, "page_size": page_size}
