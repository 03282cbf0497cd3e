import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError

from src.config.settings import settings
from src.database import client as db_client
from src.features.auth.router import router as auth_router
from src.features.user.router import router as user_router
from src.shared.errors import AuthError, AuthErrorKind
from src.shared.rate_limit import limiter

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

ERROR_STATUS_CODES: dict[AuthErrorKind, int] = {
    AuthErrorKind.DUPLICATE_IDENTITY: status.HTTP_409_CONFLICT,
    AuthErrorKind.INVALID_CREDENTIALS: status.HTTP_401_UNAUTHORIZED,
    AuthErrorKind.ACCOUNT_LOCKED: status.HTTP_423_LOCKED,
    AuthErrorKind.ACCOUNT_INACTIVE: status.HTTP_403_FORBIDDEN,
    AuthErrorKind.INVALID_OR_EXPIRED_TOKEN: status.HTTP_401_UNAUTHORIZED,
    AuthErrorKind.INVALID_TWO_FACTOR_CODE: status.HTTP_400_BAD_REQUEST,
    AuthErrorKind.TWO_FACTOR_NOT_CONFIGURED: status.HTTP_400_BAD_REQUEST,
    AuthErrorKind.TWO_FACTOR_ALREADY_ENABLED: status.HTTP_400_BAD_REQUEST,
    AuthErrorKind.TWO_FACTOR_NOT_ENABLED: status.HTTP_400_BAD_REQUEST,
    AuthErrorKind.ALREADY_VERIFIED: status.HTTP_400_BAD_REQUEST,
    AuthErrorKind.EMAIL_NOT_VERIFIED: status.HTTP_403_FORBIDDEN,
    AuthErrorKind.INTERNAL_FAILURE: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map a domain error kind to its HTTP status."""
    status_code = ERROR_STATUS_CODES.get(exc.kind, status.HTTP_400_BAD_REQUEST)
    headers = {"WWW-Authenticate": "Bearer"} if status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "error": exc.kind.value},
        headers=headers,
    )


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Storage faults surface as a generic internal failure."""
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error", "error": AuthErrorKind.INTERNAL_FAILURE.value},
    )


async def rate_limit_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle rate limit exceeded errors."""
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={"detail": "Rate limit exceeded"},
    )


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Handle startup and shutdown events."""
    # Startup
    await db_client.init_db()
    if settings.database_create_tables:
        await db_client.create_tables()
    yield
    # Shutdown
    await db_client.close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_exception_handler(AuthError, auth_error_handler)
app.add_exception_handler(SQLAlchemyError, database_error_handler)

# Add rate limiting middleware
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.client_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Router Registration

routers: list[APIRouter] = [
    auth_router,
    user_router,
]

for router in routers:
    app.include_router(router, prefix=settings.api_prefix)


@app.get("/")
async def root():
    return {"message": settings.app_name, "status": "running"}


@app.get("/health")
async def health():
    return {"status": "healthy", "environment": settings.environment}
