"""
Admin customer management endpoints.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from app.core.database import get_db
from app.core.dependencies import require_admin
from app.modules.admin import schemas
from app.modules.admin.services import AdminService
from app.modules.users.models import User, KYCStatus

router = APIRouter(prefix="/customers", tags=["admin-customers"])


@router.get("", response_model=schemas.CustomerListResponse)
async def list_customers(
    search: Optional[str] = None,
    kyc_status: Optional[KYCStatus] = None,
    is_active: Optional[bool] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    """Search borrowers by mobile number, email or name"""
    users, total = await AdminService(db).get_users(
        search=search, kyc_status=kyc_status, is_active=is_active, page=page, page_size=page_size
    )
    return {
        "users": users,
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": (total + page_size - 1) // page_size
    }


@router.get("/{user_id}", response_model=schemas.CustomerResponse)
async def get_customer(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    return await AdminService(db).get_user(user_id)


@router.put("/{user_id}/tier", response_model=schemas.CustomerResponse)
async def assign_tier(
    user_id: int,
    body: schemas.TierAssignmentRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    """Move a borrower to another membership tier"""
    admin_id = admin.id
    service = AdminService(db)
    user = await service.get_user(user_id)
    old_tier = user.member_tier
    user = await service.set_member_tier(user_id, body.tier_code)
    await service.log_action(
        admin_id, "assign_tier", "user", str(user_id),
        old_values={"member_tier": old_tier},
        new_values={"member_tier": body.tier_code},
    )
    return user


@router.put("/{user_id}/admin", response_model=schemas.CustomerResponse)
async def set_admin_flag(
    user_id: int,
    body: schemas.AdminFlagRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    admin_id = admin.id
    service = AdminService(db)
    user = await service.set_admin(user_id, body.is_admin)
    await service.log_action(
        admin_id, "set_admin", "user", str(user_id),
        new_values={"is_admin": body.is_admin},
    )
    return user


@router.post("/{user_id}/suspend", response_model=schemas.CustomerResponse)
async def suspend_customer(
    user_id: int,
    body: schemas.ReasonRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    """Disable a borrower's access"""
    admin_id = admin.id
    service = AdminService(db)
    user = await service.suspend_user(user_id)
    await service.log_action(
        admin_id, "suspend", "user", str(user_id),
        description=body.reason,
        new_values={"is_active": False},
    )
    return user


@router.post("/{user_id}/reactivate", response_model=schemas.CustomerResponse)
async def reactivate_customer(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    admin_id = admin.id
    service = AdminService(db)
    user = await service.reactivate_user(user_id)
    await service.log_action(
        admin_id, "reactivate", "user", str(user_id),
        new_values={"is_active": True},
    )
    return user
