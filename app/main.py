"""
Super Package Pricing API - Main application entry point.

Imports pre-priced travel packages from spreadsheets, prices them for a
group and keeps quotes built on them in sync with the package prices.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api import quotes, super_packages
from app.config import get_settings
from app.database import create_session_factory
from app.services.package_errors import PackageDatabaseError, SuperPackageError
from app.services.quote_price_sync import RecalculationLocks

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting %s...", settings.app_name)
    engine, session_factory = create_session_factory(settings)
    app.state.session_factory = session_factory
    app.state.recalculation_locks = RecalculationLocks()

    yield

    # Shutdown
    await engine.dispose()
    logger.info("Shutting down %s...", settings.app_name)


app = FastAPI(
    title=settings.app_name,
    description="""
    ## Super Package Pricing API

    - **CSV import**: spreadsheet price grids to validated packages, with line-level diagnostics
    - **Pricing**: group size, duration and arrival date to a package price
    - **Version history**: every package edit is snapshotted, compared and restorable
    - **Quote price sync**: detect when a quote drifts from its package price
    """,
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SuperPackageError)
async def super_package_error_handler(request: Request, exc: SuperPackageError):
    if isinstance(exc, PackageDatabaseError):
        # Internal detail was logged where it happened
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "code": exc.code},
        )
    logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code, "details": exc.details},
    )


# Include routers
app.include_router(super_packages.router, prefix="/super-packages", tags=["Super Packages"])
app.include_router(quotes.router, prefix="/quotes", tags=["Quote Pricing"])


@app.get("/", tags=["Health"])
async def root():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": "1.0.0",
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """Detailed health check."""
    return {
        "status": "healthy",
        "database": "configured" if getattr(app.state, "session_factory", None) else "not_initialized",
    }
