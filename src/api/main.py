from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from src import config
from src.api.dependencies import get_auth_settings, get_identity_provider
from src.api.limiter import limiter
from src.api.logging_config import LOG_FILE
from src.api.routers import auth
from src.identity_gateway.exceptions import IdentityGatewayError
from src.identity_gateway.models.database import init_database


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize services on startup"""
    logger.info("=" * 60)
    logger.info(f"Starting {config.APP_NAME} ({config.ENVIRONMENT})...")
    logger.info(f"Log file: {LOG_FILE}")
    logger.info("=" * 60)

    # Refuses to start in production with the default signing secret
    get_auth_settings()

    try:
        init_database()
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        logger.exception("Database initialization traceback:")

    # Keycloak realm/client/roles; failures are logged by the provider
    get_identity_provider().ensure_setup()

    logger.info("Server ready to accept requests")
    yield
    logger.info(f"Shutting down {config.APP_NAME}...")


app = FastAPI(
    title=config.APP_NAME,
    description="Identity and authentication gateway with South African ID based KYC",
    version=config.APP_VERSION,
    lifespan=lifespan,
)

# Add rate limiter to app state (exemptions handled per-route)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


def _error_response(status_code: int, message: str, error_code: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"message": message, "errorCode": error_code},
    )


@app.exception_handler(IdentityGatewayError)
async def identity_gateway_error_handler(request: Request, exc: IdentityGatewayError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.error_code} {exc}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.error_code}")
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    response = _error_response(exc.status_code, exc.message, exc.error_code)
    if headers:
        response.headers.update(headers)
    return response


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    fields = [".".join(str(part) for part in error["loc"][1:]) for error in exc.errors()]
    logger.warning(f"Invalid request body for {request.url.path}: {fields}")
    message = "Invalid request data"
    if fields:
        message = f"Invalid request data: {', '.join(f for f in fields if f)}"
    return _error_response(400, message, "VALIDATION_ERROR")


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return _error_response(500, "An unexpected error occurred", "INTERNAL_ERROR")


@app.get("/api/health")
async def health():
    """Health check endpoint"""
    return {"status": "online", "app": config.APP_NAME, "version": config.APP_VERSION}


app.include_router(auth.router, prefix="/api/auth", tags=["auth"])

# Configure CORS
origins = list(get_auth_settings().allowed_origins)
if not origins:
    logger.warning("ALLOWED_ORIGINS is empty; cross-origin requests will be refused")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)


if __name__ == "__main__":
    uvicorn.run("src.api.main:app", host=config.BACKEND_HOST, port=config.BACKEND_PORT)
