import threading
from typing import Generator, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from loguru import logger
from sqlalchemy.orm import Session

from src import config
from src.config import AuthSettings, KeycloakSettings, MailSettings
from src.identity_gateway.exceptions import InvalidTokenError
from src.identity_gateway.models.database import (
    create_engine_instance,
    create_session_factory,
    create_tables,
)
from src.identity_gateway.providers.base_provider import BaseIdentityProvider
from src.identity_gateway.providers.keycloak_provider import KeycloakIdentityProvider
from src.identity_gateway.providers.local_provider import LocalIdentityProvider
from src.identity_gateway.services.audit_service import AuditRecorder
from src.identity_gateway.services.auth_service import AuthenticationService
from src.identity_gateway.services.lockout_service import AccountLockoutService
from src.identity_gateway.services.notification_service import (
    NotificationService,
    create_mail_sender,
)
from src.identity_gateway.utils.jwt_utils import TokenService
from src.identity_gateway.utils.national_id import default_codec
from src.api.limiter import client_ip

# Process-wide collaborators, built once from configuration
_auth_settings: Optional[AuthSettings] = None
_token_service: Optional[TokenService] = None
_lockout_service: Optional[AccountLockoutService] = None
_identity_provider: Optional[BaseIdentityProvider] = None
_notification_service: Optional[NotificationService] = None
_audit_recorder: Optional[AuditRecorder] = None

_tables_initialized_url: Optional[str] = None
_tables_initialized_engine_id: Optional[int] = None
_tables_init_lock = threading.Lock()

bearer_scheme = HTTPBearer(auto_error=False)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get a database session.
    Auto-commits on success, rolls back on exception.
    """
    global _tables_initialized_url, _tables_initialized_engine_id
    engine = create_engine_instance()
    engine_url = str(engine.url)
    engine_id = id(engine)
    if (
        _tables_initialized_url != engine_url
        or _tables_initialized_engine_id != engine_id
    ):
        with _tables_init_lock:
            if (
                _tables_initialized_url != engine_url
                or _tables_initialized_engine_id != engine_id
            ):
                create_tables()
                _tables_initialized_url = engine_url
                _tables_initialized_engine_id = engine_id

    session_local = create_session_factory()
    db = session_local()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_auth_settings() -> AuthSettings:
    global _auth_settings
    if _auth_settings is None:
        _auth_settings = AuthSettings.from_config()
        logger.info(
            f"Auth settings loaded: max_attempts={_auth_settings.max_login_attempts}, "
            f"lockout={_auth_settings.lockout_duration_minutes}min, "
            f"access_ttl={_auth_settings.access_token_ttl_minutes}min"
        )
    return _auth_settings


def get_token_service() -> TokenService:
    global _token_service
    if _token_service is None:
        _token_service = TokenService(get_auth_settings())
    return _token_service


def get_lockout_service() -> AccountLockoutService:
    global _lockout_service
    if _lockout_service is None:
        _lockout_service = AccountLockoutService(get_auth_settings())
    return _lockout_service


def get_identity_provider() -> BaseIdentityProvider:
    """Identity provider selected by IDENTITY_PROVIDER (local or keycloak)."""
    global _identity_provider
    if _identity_provider is None:
        provider_name = config.get("IDENTITY_PROVIDER", "local").lower()
        if provider_name == "keycloak":
            settings = KeycloakSettings.from_config()
            logger.info(
                f"Initializing KeycloakIdentityProvider: {settings.server_url} realm={settings.realm}"
            )
            _identity_provider = KeycloakIdentityProvider(settings)
        else:
            logger.info("Initializing LocalIdentityProvider")
            _identity_provider = LocalIdentityProvider(create_session_factory())
    return _identity_provider


def get_notification_service() -> NotificationService:
    global _notification_service
    if _notification_service is None:
        sender = create_mail_sender(MailSettings.from_config())
        logger.info(f"Initializing NotificationService with {type(sender).__name__}")
        _notification_service = NotificationService(sender, config.APP_BASE_URL)
    return _notification_service


def get_audit_recorder() -> AuditRecorder:
    global _audit_recorder
    if _audit_recorder is None:
        _audit_recorder = AuditRecorder(create_session_factory())
    return _audit_recorder


def get_auth_service(
    db: Session = Depends(get_db),
    settings: AuthSettings = Depends(get_auth_settings),
    identity_provider: BaseIdentityProvider = Depends(get_identity_provider),
    notifications: NotificationService = Depends(get_notification_service),
    audit: AuditRecorder = Depends(get_audit_recorder),
    tokens: TokenService = Depends(get_token_service),
    ledger: AccountLockoutService = Depends(get_lockout_service),
) -> AuthenticationService:
    return AuthenticationService(
        settings=settings,
        db=db,
        identity_provider=identity_provider,
        notifications=notifications,
        audit=audit,
        tokens=tokens,
        ledger=ledger,
        codec=default_codec,
    )


def get_client_ip(request: Request) -> str:
    return client_ip(request)


def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """Raw token from ``Authorization: Bearer <token>``; 401 when absent."""
    if credentials is None or not credentials.credentials:
        raise InvalidTokenError(InvalidTokenError.MALFORMED, "Missing bearer token")
    return credentials.credentials


def reset_providers():
    """Drop cached collaborators so the next request rebuilds them (tests, config reload)."""
    global _auth_settings, _token_service, _lockout_service
    global _identity_provider, _notification_service, _audit_recorder
    _auth_settings = None
    _token_service = None
    _lockout_service = None
    _identity_provider = None
    _notification_service = None
    _audit_recorder = None
