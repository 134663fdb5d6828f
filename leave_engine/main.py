"""HTTP entry point: ``uvicorn leave_engine.main:app``."""

import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine import __version__
from leave_engine.common.exceptions import register_exception_handlers
from leave_engine.common.logging import setup_logging
from leave_engine.common.rate_limit import limiter
from leave_engine.config import settings
from leave_engine.core_hr.router import employees_router
from leave_engine.database import engine, get_db
from leave_engine.leave.router import router as leave_router

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"

system_router = APIRouter(tags=["system"])


@system_router.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    await db.execute(text("SELECT 1"))
    return {
        "status": "healthy",
        "version": __version__,
        "environment": settings.ENVIRONMENT,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Leave engine %s starting (%s)", __version__, settings.ENVIRONMENT)
    yield
    await engine.dispose()
    logger.info("Leave engine stopped")


def _install_middleware(app: FastAPI) -> None:
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH"],
        allow_headers=["*"],
    )


def create_app() -> FastAPI:
    setup_logging(settings.LOG_LEVEL)
    public_docs = settings.ENVIRONMENT != "production"

    app = FastAPI(
        title="Leave Engine",
        description="Leave requests, approval delegation and balance ledger",
        version=__version__,
        docs_url="/api/docs" if public_docs else None,
        redoc_url="/api/redoc" if public_docs else None,
        lifespan=lifespan,
    )
    register_exception_handlers(app)
    _install_middleware(app)

    app.include_router(system_router, prefix=API_PREFIX)
    app.include_router(employees_router, prefix=f"{API_PREFIX}/employees")
    app.include_router(leave_router, prefix=f"{API_PREFIX}/leave")
    return app


app = create_app()
