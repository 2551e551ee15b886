"""
Identity Reconciliation API
===========================
HTTP API for customer identity reconciliation.

This API provides:
- POST /identify: resolve an email and/or phone number to one consolidated
  customer identity, linking and merging stored contacts as needed
- Health check and contact statistics

Usage:
    uvicorn api.main:app --host 0.0.0.0 --port 8000 --reload

Or via the entrypoint script:
    python scripts/run_api.py
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api import __version__
from api.deps import shutdown_engine
from api.routers import health_router, identify_router
from api.schemas import ErrorDetail, ErrorResponse
from reconcile.linking.errors import IdentityError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup/shutdown events.
    """
    logger.info("Identity Reconciliation API starting up...")
    yield
    logger.info("Identity Reconciliation API shutting down...")
    shutdown_engine()


app = FastAPI(
    title="Identity Reconciliation API",
    description="""
## Identity Reconciliation API

Links customer contact details across purchases.

- **POST /identify**: submit an email and/or phone number; receive the
  primary contact id, every known email and phone number, and the ids of
  all secondary contacts
- Contacts sharing an email or phone number are linked; two identities are
  merged when one request connects them, the older contact staying primary
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


def _error_response(request: Request, status_code: int, message: str, code: str,
                    details=None) -> JSONResponse:
    body = ErrorResponse(
        error=ErrorDetail(message=message, code=code, details=details),
        path=request.url.path
    )
    return JSONResponse(status_code=status_code, content=body.to_content())


@app.exception_handler(IdentityError)
async def identity_error_handler(request: Request, exc: IdentityError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message}", exc_info=exc)
    else:
        logger.warning(f"{exc.code} on {request.url.path}: {exc.message}")
    return _error_response(request, exc.status_code, exc.message, exc.code, exc.details)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    issues = [
        {
            "path": ".".join(str(p) for p in err.get("loc", ()) if p != "body"),
            "message": err.get("msg"),
            "code": err.get("type"),
        }
        for err in exc.errors()
    ]
    return _error_response(request, 400, "Request validation failed", "VALIDATION_ERROR",
                           {"issues": issues})


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return _error_response(request, 500, "Internal server error", "INTERNAL_ERROR")


# Include routers
app.include_router(health_router)
app.include_router(identify_router)


# Root endpoint
@app.get("/", tags=["Root"])
def root():
    """
    API root - returns welcome message and links.
    """
    return {
        "message": "Welcome to the Identity Reconciliation API",
        "version": __version__,
        "docs": "/docs",
        "redoc": "/redoc",
        "endpoints": {
            "identify": "/identify",
            "identify_v1": "/api/v1/identify",
            "health": "/api/v1/health",
            "stats": "/api/v1/meta/stats"
        }
    }
