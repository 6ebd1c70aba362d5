"""
Pharmacy POS Backend: inventory ledger and point-of-sale API.

ARCHITECTURE:
- FastAPI Backend: auth, tenancy, business rules, persistence
- SQLite (single shop) or PostgreSQL/MySQL: source of truth for stock and sales
- Web frontend: till, inventory screens, dashboard and reports

SAFETY MODEL:
- Every drug and sale belongs to one pharmacy, resolved from the caller's token
- A sale validates every line before any stock moves and commits as one unit
- Stock never goes negative, sale numbers are never reused
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from pharmacy.api.routes import auth, dashboard, drugs, reports, sales, users
from pharmacy.core.config import settings
from pharmacy.core.exceptions import PharmacyError, StorageFailure
from pharmacy.db.init_db import init_db

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup: create database tables.
    """
    logger.info("Initializing database...")
    init_db()
    logger.info(f"{settings.PROJECT_NAME} ready ({settings.ENVIRONMENT})")
    yield
    logger.info("Shutting down")


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Pharmacy inventory and point-of-sale API. Validate every line, then commit the whole sale.",
    version="1.0.0",
    lifespan=lifespan,
)

# SECURITY: Trust only configured hosts
app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.ALLOWED_HOSTS)

# SECURITY: Restrict CORS to specific methods and headers (not wildcards)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "Authorization",
        "Accept",
        "Origin",
    ],
    max_age=600,
    expose_headers=["Content-Type", "Content-Disposition"],
)


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


# ==============================================================================
# ERROR MAPPING
# ==============================================================================

@app.exception_handler(PharmacyError)
async def pharmacy_error_handler(request: Request, exc: PharmacyError):
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()), headers=headers)


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    failure = StorageFailure(exc)
    return JSONResponse(status_code=failure.status_code, content=failure.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = jsonable_encoder(exc.errors())
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ())[1:]) or None
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "success": False,
            "error": "validation_error",
            "message": first.get("msg", "Invalid request"),
            "field": field,
            "errors": errors,
        },
    )


app.include_router(auth.router, prefix="/auth", tags=["auth"])
app.include_router(users.router, prefix="/users", tags=["users"])
app.include_router(drugs.router, prefix="/drugs", tags=["drugs"])
app.include_router(sales.router, prefix="/sales", tags=["sales"])
app.include_router(dashboard.router, prefix="/dashboard", tags=["dashboard"])
app.include_router(reports.router, prefix="/reports", tags=["reports"])


@app.get("/health")
def health():
    return {"status": "ok", "service": settings.PROJECT_NAME}
