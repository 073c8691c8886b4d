"""
Admin KYC management endpoints.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from app.core.database import get_db
from app.core.dependencies import require_admin
from app.modules.admin import schemas
from app.modules.admin.services import AdminService
from app.modules.users.kyc_models import DocumentStatus
from app.modules.users.models import User, KYCStatus
from app.modules.users.services import ProfileService, missing_kyc_items

router = APIRouter(prefix="/kyc", tags=["admin-kyc"])


@router.get("/documents", response_model=List[schemas.AdminDocumentResponse])
async def list_documents(
    status: Optional[DocumentStatus] = DocumentStatus.PENDING,
    user_id: Optional[int] = None,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    """Documents waiting for review, oldest first"""
    return await AdminService(db).list_documents(status=status, user_id=user_id)


@router.post("/documents/{document_id}/review", response_model=schemas.AdminDocumentResponse)
async def review_document(
    document_id: int,
    body: schemas.DocumentReviewRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    """Verify or reject a document; rejection needs remarks"""
    admin_id = admin.id
    document = await ProfileService.review_document(db, document_id, body.status, admin_id, body.remarks)
    await AdminService(db).log_action(
        admin_id, "review_document", "document", str(document_id),
        description=body.remarks,
        old_values={"status": DocumentStatus.PENDING.value},
        new_values={"status": body.status.value},
    )
    return document


@router.get("/stats")
async def get_kyc_stats(
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    """Get KYC statistics"""
    service = AdminService(db)
    stats = {}
    for kyc_status in KYCStatus:
        _, total = await service.get_users(kyc_status=kyc_status, page_size=1)
        stats[kyc_status.value] = total
    return stats


@router.get("/{user_id}")
async def get_kyc_details(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    """KYC checklist of a borrower"""
    user = await AdminService(db).get_user(user_id)
    return {
        "user_id": user.id,
        "kyc_status": user.kyc_status,
        "profile_step": user.profile_step,
        "identity_verified": user.identity_verified,
        "bank_account_verified": user.bank_account_verified,
        "missing": missing_kyc_items(user),
        "documents": [schemas.AdminDocumentResponse.model_validate(d) for d in user.documents],
    }
