"""
Admin loan management endpoints.
"""
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Awaitable, Callable, Optional
from datetime import date
from decimal import Decimal

from app.core.database import get_db
from app.core.dependencies import require_admin
from app.core.exceptions import LendingError
from app.modules.admin import schemas
from app.modules.admin.services import AdminService
from app.modules.loans.models import ApplicationStatus, LoanApplication
from app.modules.loans.services import LoanService
from app.modules.users.models import User

router = APIRouter(prefix="/loans", tags=["admin-loans"])


async def _audited(
    request: Request,
    db: AsyncSession,
    admin: User,
    application: LoanApplication,
    action: str,
    operation: Callable[[], Awaitable],
    description: Optional[str] = None,
) -> LoanApplication:
    """Run a lifecycle operation and record the outcome in the audit log"""
    # A failed operation rolls the session back and expires every instance
    admin_id = admin.id
    reference = application.reference
    old_status = ApplicationStatus(application.status).value
    ip_address = request.client.host if request.client else None
    admin_service = AdminService(db)

    try:
        await operation()
    except LendingError as e:
        await admin_service.log_action(
            admin_id, action, "loan_application", reference,
            description=description,
            old_values={"status": old_status},
            success=False,
            error_message=e.message,
            ip_address=ip_address,
        )
        raise

    await admin_service.log_action(
        admin_id, action, "loan_application", reference,
        description=description,
        old_values={"status": old_status},
        new_values={"status": ApplicationStatus(application.status).value},
        ip_address=ip_address,
    )
    return application


@router.get("", response_model=schemas.LoanApplicationListResponse)
async def list_applications(
    status: Optional[ApplicationStatus] = None,
    user_id: Optional[int] = None,
    min_amount: Optional[Decimal] = None,
    max_amount: Optional[Decimal] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    """List loan applications with filtering, oldest first"""
    applications, total = await AdminService(db).list_applications(
        status=status, user_id=user_id, min_amount=min_amount, max_amount=max_amount,
        page=page, page_size=page_size
    )
    return {
        "applications": applications,
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": (total + page_size - 1) // page_size
    }


@router.get("/{reference}", response_model=schemas.AdminLoanApplicationResponse)
async def get_application(
    reference: str,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    return await LoanService(db).get_application(reference)


@router.post("/{reference}/review", response_model=schemas.AdminLoanApplicationResponse)
async def start_review(
    reference: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    """Pick up a submitted application for review"""
    service = LoanService(db)
    application = await service.get_application(reference)
    return await _audited(request, db, admin, application, "start_review",
                          lambda: service.start_review(application))


@router.post("/{reference}/approve", response_model=schemas.AdminLoanApplicationResponse)
async def approve_application(
    reference: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    """
    Approve an application under review.

    Eligibility is evaluated again against current data; the loan, its EMI and
    the pending fee transactions are created with the status change.
    """
    service = LoanService(db)
    application = await service.get_application(reference)
    return await _audited(request, db, admin, application, "approve",
                          lambda: service.approve(application))


@router.post("/{reference}/reject", response_model=schemas.AdminLoanApplicationResponse)
async def reject_application(
    reference: str,
    body: schemas.ReasonRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    service = LoanService(db)
    application = await service.get_application(reference)
    return await _audited(request, db, admin, application, "reject",
                          lambda: service.reject(application, body.reason), body.reason)


@router.post("/{reference}/cancel", response_model=schemas.AdminLoanApplicationResponse)
async def cancel_application(
    reference: str,
    body: schemas.ReasonRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    service = LoanService(db)
    application = await service.get_application(reference)
    return await _audited(request, db, admin, application, "cancel",
                          lambda: service.cancel(application, body.reason), body.reason)


@router.post("/{reference}/disburse", response_model=schemas.AdminLoanApplicationResponse)
async def disburse_loan(
    reference: str,
    body: schemas.DisburseRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    """Disburse an approved loan to the borrower's verified bank account"""
    service = LoanService(db)
    application = await service.get_application(reference)
    return await _audited(request, db, admin, application, "disburse",
                          lambda: service.disburse(application, body.disbursal_date))


@router.post("/{reference}/activate", response_model=schemas.AdminLoanApplicationResponse)
async def activate_loan(
    reference: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    service = LoanService(db)
    application = await service.get_application(reference)
    return await _audited(request, db, admin, application, "activate",
                          lambda: service.activate(application))


@router.post("/{reference}/default", response_model=schemas.AdminLoanApplicationResponse)
async def mark_defaulted(
    reference: str,
    body: schemas.SweepRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    """Default an active loan whose next installment is overdue"""
    service = LoanService(db)
    application = await service.get_application(reference)
    return await _audited(request, db, admin, application, "mark_defaulted",
                          lambda: service.mark_defaulted(application, body.as_of))


@router.post("/sweeps/activation", response_model=schemas.SweepResponse)
async def run_activation_sweep(
    body: schemas.SweepRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    """Activate every disbursed loan whose grace period has elapsed"""
    admin_id = admin.id
    as_of = body.as_of or date.today()
    references = await LoanService(db).activate_matured_disbursals(as_of)
    await AdminService(db).log_action(
        admin_id, "activation_sweep", "loan_application",
        description=f"{len(references)} loan(s) activated as of {as_of.isoformat()}",
        new_values={"references": references},
    )
    return {"as_of": as_of, "references": references, "count": len(references)}


@router.post("/sweeps/defaults", response_model=schemas.SweepResponse)
async def run_default_sweep(
    body: schemas.SweepRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    """Default every active loan with an overdue installment"""
    admin_id = admin.id
    as_of = body.as_of or date.today()
    references = await LoanService(db).mark_overdue_defaults(as_of)
    await AdminService(db).log_action(
        admin_id, "default_sweep", "loan_application",
        description=f"{len(references)} loan(s) defaulted as of {as_of.isoformat()}",
        new_values={"references": references},
    )
    return {"as_of": as_of, "references": references, "count": len(references)}
