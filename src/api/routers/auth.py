from dataclasses import asdict

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from loguru import logger

from src.api import schemas
from src.api.dependencies import get_auth_service, get_bearer_token, get_client_ip
from src.api.limiter import (
    LOGIN_RATE,
    REFRESH_RATE,
    REGISTER_RATE,
    RESET_PASSWORD_RATE,
    exempt_when_testing,
    limiter,
)
from src.identity_gateway.services.auth_service import (
    AuthenticationService,
    RegistrationRequest,
)

router = APIRouter()

_ERRORS = {
    400: {"model": schemas.ErrorResponse},
    401: {"model": schemas.ErrorResponse},
    409: {"model": schemas.ErrorResponse},
    423: {"model": schemas.ErrorResponse},
    503: {"model": schemas.ErrorResponse},
}


@router.post(
    "/register",
    response_model=schemas.RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    responses={code: _ERRORS[code] for code in (400, 409, 503)},
)
@limiter.limit(REGISTER_RATE, exempt_when=exempt_when_testing)
def register(
    request: Request,
    payload: schemas.RegisterRequest,
    background_tasks: BackgroundTasks,
    auth: AuthenticationService = Depends(get_auth_service),
    ip_address: str = Depends(get_client_ip),
):
    """
    Register a new customer with KYC validation of the South African ID number.
    The welcome / verification email is sent after the response.
    """
    logger.info(f"Registration request received for email: {payload.email}")
    result = auth.register(
        RegistrationRequest(
            username=payload.username,
            email=payload.email,
            password=payload.password,
            national_id=payload.south_african_id_number,
            first_name=payload.first_name,
            last_name=payload.last_name,
            phone_number=payload.phone_number,
            address=payload.address,
            city=payload.city,
            province=payload.province,
            postal_code=payload.postal_code,
        ),
        ip_address=ip_address,
        defer=background_tasks.add_task,
    )
    logger.info(f"User registered successfully: {payload.email}")
    return schemas.RegisterResponse(
        user_id=result.user_id,
        email=result.email,
        message=result.message,
        email_verification_required=result.email_verification_required,
    )


@router.post(
    "/login",
    response_model=schemas.LoginResponse,
    responses={code: _ERRORS[code] for code in (400, 401, 423, 503)},
)
@limiter.limit(LOGIN_RATE, exempt_when=exempt_when_testing)
def login(
    request: Request,
    payload: schemas.LoginRequest,
    auth: AuthenticationService = Depends(get_auth_service),
    ip_address: str = Depends(get_client_ip),
):
    """
    Authenticate and return an access/refresh token pair.

    Rate limited per client IP. Accounts lock after repeated failures.
    """
    logger.info(f"Login attempt for user: {payload.username} from IP: {ip_address}")
    result = auth.login(payload.username, payload.password, ip_address)
    logger.info(f"Login successful for user: {payload.username}")
    return schemas.LoginResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        token_type=result.token_type,
        expires_in=result.expires_in,
        user=schemas.UserInfo(**asdict(result.user)),
    )


@router.post(
    "/refresh",
    response_model=schemas.TokenResponse,
    responses={code: _ERRORS[code] for code in (400, 401)},
)
@limiter.limit(REFRESH_RATE, exempt_when=exempt_when_testing)
def refresh(
    request: Request,
    payload: schemas.RefreshTokenRequest,
    auth: AuthenticationService = Depends(get_auth_service),
    ip_address: str = Depends(get_client_ip),
):
    """Exchange a refresh token for a new token pair."""
    result = auth.refresh(payload.refresh_token, ip_address)
    return schemas.TokenResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        token_type=result.token_type,
        expires_in=result.expires_in,
    )


@router.get(
    "/validate",
    response_model=schemas.TokenValidationResponse,
    responses={401: _ERRORS[401]},
)
def validate(
    token: str = Depends(get_bearer_token),
    auth: AuthenticationService = Depends(get_auth_service),
):
    """Validate a bearer access token and return the identity it carries."""
    result = auth.validate(token)
    return schemas.TokenValidationResponse(
        valid=result.valid,
        username=result.username,
        authorities=result.authorities,
        expires_at=result.expires_at,
    )


@router.post(
    "/logout",
    response_model=schemas.LogoutResponse,
    responses={code: _ERRORS[code] for code in (400, 401)},
)
def logout(
    payload: schemas.LogoutRequest,
    token: str = Depends(get_bearer_token),
    auth: AuthenticationService = Depends(get_auth_service),
    ip_address: str = Depends(get_client_ip),
):
    """
    Log out: end the user's identity provider sessions.

    Requires a valid access token. Already issued tokens stay valid until they expire.
    """
    auth.validate(token)
    logger.info(f"Logout request received from IP: {ip_address}")
    result = auth.logout(payload.refresh_token, ip_address)
    return schemas.LogoutResponse(message=result.message, timestamp=result.timestamp)


@router.post(
    "/reset-password",
    response_model=schemas.PasswordResetResponse,
    responses={400: _ERRORS[400]},
)
@limiter.limit(RESET_PASSWORD_RATE, exempt_when=exempt_when_testing)
def reset_password(
    request: Request,
    payload: schemas.PasswordResetRequest,
    background_tasks: BackgroundTasks,
    auth: AuthenticationService = Depends(get_auth_service),
    ip_address: str = Depends(get_client_ip),
):
    """Start a password reset. The response is identical whether or not the account exists."""
    result = auth.reset_password(payload.email, ip_address, defer=background_tasks.add_task)
    return schemas.PasswordResetResponse(message=result.message)
