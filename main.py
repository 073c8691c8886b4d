from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from app.core.database import AsyncSessionLocal, Base, async_engine, close_redis
from app.core.config import settings
from app.core.exceptions import register_exception_handlers
from app.core.logging import setup_logging
from app.modules.users.router import auth_router, router as users_router
from app.modules.verification.router import router as verification_router
from app.modules.loans.router import router as loans_router
from app.modules.loans.services import LoanService
from app.modules.transactions.router import router as transactions_router
from app.modules.dashboard.router import router as dashboard_router
from app.modules.admin.router import router as admin_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events"""
    # Startup
    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)

    async with async_engine.begin() as conn:
        # Create all tables (for development - use Alembic in production)
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as session:
        await LoanService.init_default_tiers(session)

    logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} started ({settings.ENVIRONMENT})")

    yield

    # Shutdown
    await close_redis()
    await async_engine.dispose()


app = FastAPI(
    title="PocketCredit API",
    description="Consumer lending: EMI calculator, eligibility, loan lifecycle and borrower dashboard",
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Include routers
app.include_router(auth_router)
app.include_router(users_router)
app.include_router(verification_router)
app.include_router(loans_router)
app.include_router(transactions_router)
app.include_router(dashboard_router)
app.include_router(admin_router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "ok",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT
    }


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": f"Welcome to {settings.APP_NAME} API",
        "version": settings.APP_VERSION,
        "docs": "/docs"
    }
