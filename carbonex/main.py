"""
CarbonEx - carbon credit ledger and marketplace

FastAPI application entry point.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError

# Import observability modules
from carbonex.config import settings
from carbonex.errors import LedgerError, StoreUnavailable
from carbonex.logging_config import configure_logging, get_logger
from carbonex.sentry_config import configure_sentry
from carbonex.middleware.logging import LoggingMiddleware
from carbonex.routes.metrics import router as metrics_router

# Import route modules
from carbonex.routes.registrations import router as registrations_router
from carbonex.routes.organisations import router as organisations_router
from carbonex.routes.employees import router as employees_router
from carbonex.routes.marketplace import router as marketplace_router

# Initialize logging first
configure_logging()

# Initialize Sentry (if SENTRY_DSN is set)
configure_sentry()

log = get_logger(component="api")

# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Carbon credit ledger, onboarding workflow and marketplace settlement",
)

# Add logging middleware FIRST (runs before other middleware)
app.add_middleware(LoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    """Render typed ledger errors as structured JSON."""
    log.info("ledger_error", route=request.url.path, error=exc.code, detail=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(DBAPIError)
async def store_error_handler(request: Request, exc: DBAPIError):
    """Database failures outside a commit surface as store_unavailable."""
    log.error("store_unavailable", route=request.url.path, error=str(exc))
    error = StoreUnavailable("Persistence layer failed")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


# Include metrics endpoint FIRST (so it's always available)
app.include_router(metrics_router)

app.include_router(registrations_router)
app.include_router(organisations_router)
app.include_router(employees_router)
app.include_router(marketplace_router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health():
    """Detailed health check."""
    return {
        "status": "healthy",
        "database": "connected"
    }
