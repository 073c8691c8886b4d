"""
Back-office API: loan review queue, settlements, KYC review, customers and
portfolio statistics. Every route requires an administrator.
"""
from fastapi import APIRouter, Depends

from app.core.dependencies import require_admin
from app.modules.admin.routers.dashboard import router as dashboard_router
from app.modules.admin.routers.customers import router as customers_router
from app.modules.admin.routers.kyc import router as kyc_router
from app.modules.admin.routers.transactions import router as transactions_router
from app.modules.admin.routers.loans import router as loans_router

router = APIRouter(prefix="/api/v1/admin", tags=["admin"], dependencies=[Depends(require_admin)])

for sub_router in (dashboard_router, customers_router, kyc_router, transactions_router, loans_router):
    router.include_router(sub_router)
