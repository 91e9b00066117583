"""
Centralized configuration module for the KYC Identity Gateway.
Reads configuration from env.properties file.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent.absolute()

CONFIG_FILE = PROJECT_ROOT / "env.properties"

INSECURE_DEFAULT_SECRET = "INSECURE_DEFAULT_CHANGE_IN_PRODUCTION"

_config_cache: dict = {}


def _load_config() -> dict:
    """Load configuration from env.properties file."""
    global _config_cache
    if _config_cache:
        return _config_cache

    config = {}
    if CONFIG_FILE.exists():
        with open(CONFIG_FILE, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, value = line.split("=", 1)
                    config[key.strip()] = value.strip()

    _config_cache = config
    return config


def get(key: str, default: Optional[str] = None) -> str:
    """Get a configuration value by key."""
    config = _load_config()
    # Environment variables take precedence
    env_value = os.environ.get(key)
    if env_value is not None:
        return env_value
    return config.get(key, default or "")


def get_int(key: str, default: int = 0) -> int:
    """Get a configuration value as integer."""
    value = get(key, str(default))
    try:
        return int(value)
    except ValueError:
        return default


def get_float(key: str, default: float = 0.0) -> float:
    """Get a configuration value as float."""
    value = get(key, str(default))
    try:
        return float(value)
    except ValueError:
        return default


def get_bool(key: str, default: bool = False) -> bool:
    """Get a configuration value as boolean."""
    value = get(key, str(default)).lower()
    return value in ("true", "1", "yes", "on")


def get_list(key: str, default: str = "") -> Tuple[str, ...]:
    """Get a comma-separated configuration value as a tuple of strings."""
    return tuple(item.strip() for item in get(key, default).split(",") if item.strip())


def reload():
    """Reload configuration from file."""
    global _config_cache
    _config_cache = {}
    _load_config()


# Server Configuration
BACKEND_HOST = get("BACKEND_HOST", "0.0.0.0")
BACKEND_PORT = get_int("BACKEND_PORT", 8080)

# Database Configuration
DATABASE_NAME = get("DATABASE_NAME", "identity_gateway.db")
DATA_DIR = PROJECT_ROOT / get("DATA_DIR", "data")
DATABASE_PATH = DATA_DIR / DATABASE_NAME

# Logging Configuration
LOGS_DIR = PROJECT_ROOT / get("LOGS_DIR", "logs")

# Application Settings
APP_NAME = get("APP_NAME", "KYC Identity Gateway")
APP_VERSION = get("APP_VERSION", "1.0.0")
ENVIRONMENT = get("ENVIRONMENT", "development")  # development, staging, production
APP_BASE_URL = get("APP_BASE_URL", "http://localhost:3000")

# Security Settings
ALLOWED_ORIGINS = get(
    "ALLOWED_ORIGINS",
    "http://localhost:3000,http://localhost:8080",
)  # Comma-separated CORS origins

# Ensure directories exist
DATA_DIR.mkdir(parents=True, exist_ok=True)
LOGS_DIR.mkdir(parents=True, exist_ok=True)


@dataclass(frozen=True)
class AuthSettings:
    """
    Immutable authentication settings handed to each component at start-up.

    Build one with ``AuthSettings.from_config()`` (env vars and env.properties)
    or construct it directly in tests.
    """

    max_login_attempts: int = 5
    lockout_duration_minutes: int = 30
    access_token_ttl_minutes: int = 15
    refresh_token_ttl_days: int = 7
    password_reset_ttl_minutes: int = 60
    signing_secret: str = INSECURE_DEFAULT_SECRET
    token_issuer: str = "kyc-identity-gateway"
    bcrypt_rounds: int = 12
    allowed_origins: Tuple[str, ...] = ()
    environment: str = "development"

    def __post_init__(self):
        if self.max_login_attempts < 1:
            raise ValueError("max_login_attempts must be at least 1")
        if self.lockout_duration_minutes < 1:
            raise ValueError("lockout_duration_minutes must be at least 1")
        if self.bcrypt_rounds < 10:
            # Cost factors below 10 are too cheap for stored credentials
            object.__setattr__(self, "bcrypt_rounds", 10)
        if (
            self.environment == "production"
            and self.signing_secret == INSECURE_DEFAULT_SECRET
        ):
            raise ValueError(
                "CRITICAL SECURITY ERROR: JWT_SECRET_KEY must be set to a secure value in production. "
                "Generate one with: python -c 'import secrets; print(secrets.token_hex(64))'"
            )

    @classmethod
    def from_config(cls) -> "AuthSettings":
        return cls(
            max_login_attempts=get_int("MAX_LOGIN_ATTEMPTS", 5),
            lockout_duration_minutes=get_int("LOCKOUT_DURATION_MINUTES", 30),
            access_token_ttl_minutes=get_int("ACCESS_TOKEN_TTL_MINUTES", 15),
            refresh_token_ttl_days=get_int("REFRESH_TOKEN_TTL_DAYS", 7),
            password_reset_ttl_minutes=get_int("PASSWORD_RESET_TTL_MINUTES", 60),
            signing_secret=get("JWT_SECRET_KEY", INSECURE_DEFAULT_SECRET),
            token_issuer=get("JWT_ISSUER", "kyc-identity-gateway"),
            bcrypt_rounds=get_int("BCRYPT_ROUNDS", 12),
            allowed_origins=get_list("ALLOWED_ORIGINS", ALLOWED_ORIGINS),
            environment=get("ENVIRONMENT", "development"),
        )


@dataclass(frozen=True)
class KeycloakSettings:
    """Connection details for the Keycloak admin REST API."""

    server_url: str
    realm: str
    client_id: str
    client_secret: str = ""
    admin_username: str = ""
    admin_password: str = ""
    admin_realm: str = "master"
    timeout_seconds: float = 10.0

    @classmethod
    def from_config(cls) -> "KeycloakSettings":
        return cls(
            server_url=get("KEYCLOAK_SERVER_URL", "http://localhost:8180").rstrip("/"),
            realm=get("KEYCLOAK_REALM", "nomcebo-bank"),
            client_id=get("KEYCLOAK_CLIENT_ID", "auth-service"),
            client_secret=get("KEYCLOAK_CLIENT_SECRET", ""),
            admin_username=get("KEYCLOAK_ADMIN_USERNAME", ""),
            admin_password=get("KEYCLOAK_ADMIN_PASSWORD", ""),
            admin_realm=get("KEYCLOAK_ADMIN_REALM", "master"),
            timeout_seconds=get_float("EXTERNAL_CALL_TIMEOUT_SECONDS", 10.0),
        )


@dataclass(frozen=True)
class MailSettings:
    """SMTP settings for outbound account mail."""

    backend: str = "log"  # log, smtp
    server: str = ""
    port: int = 587
    username: str = ""
    password: str = ""
    from_address: str = "no-reply@localhost"
    use_tls: bool = True
    timeout_seconds: float = 10.0

    @classmethod
    def from_config(cls) -> "MailSettings":
        return cls(
            backend=get("MAIL_BACKEND", "log"),
            server=get("SMTP_SERVER", ""),
            port=get_int("SMTP_PORT", 587),
            username=get("SMTP_USERNAME", ""),
            password=get("SMTP_PASSWORD", ""),
            from_address=get("MAIL_FROM", "no-reply@localhost"),
            use_tls=get_bool("SMTP_USE_TLS", True),
            timeout_seconds=get_float("EXTERNAL_CALL_TIMEOUT_SECONDS", 10.0),
        )

