"""
Authentication orchestrator.

Coordinates the national ID codec, the lockout ledger, the token service, the
identity provider and the audit recorder into the register / login / refresh /
validate / logout / reset-password flows.

Each flow collects its audit events in an AuditTrail. The business transaction
is committed or rolled back first and the trail is flushed afterwards, once,
whatever the outcome.
"""

import hashlib
import secrets
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.config import AuthSettings
from src.identity_gateway.exceptions import (
    AuthenticationError,
    ConflictError,
    DependencyError,
    InvalidNationalIdError,
    InvalidTokenError,
    LockedError,
    ValidationError,
)
from src.identity_gateway.models.audit_log import AuditEventType
from src.identity_gateway.models.database import UserAccount
from src.identity_gateway.providers.base_provider import BaseIdentityProvider, NewIdentity
from src.identity_gateway.services.audit_service import AuditRecorder, AuditTrail
from src.identity_gateway.services.lockout_service import AccountLockoutService
from src.identity_gateway.services.notification_service import NotificationService
from src.identity_gateway.services.user_service import UserService
from src.identity_gateway.utils.jwt_utils import TokenService
from src.identity_gateway.utils.national_id import NationalIdCodec, NationalIdError, mask
from src.identity_gateway.utils.password_utils import (
    MAX_PASSWORD_BYTES,
    get_password_hash,
    password_too_long,
)

# Runs fn(*args) later, e.g. FastAPI's BackgroundTasks.add_task
Deferrer = Callable[..., None]

DEFAULT_ROLES = ["USER"]
TOKEN_TYPE = "Bearer"
REGISTRATION_MESSAGE = "Registration successful. Please check your email to verify your account."
LOGOUT_MESSAGE = "Logout successful"
PASSWORD_RESET_MESSAGE = (
    "If an account with this email exists, you will receive a password reset link."
)


@dataclass(frozen=True)
class RegistrationRequest:
    username: str
    email: str
    password: str
    national_id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    postal_code: Optional[str] = None


@dataclass(frozen=True)
class UserSummary:
    """User fields that are safe to return to the account holder."""

    username: str
    roles: List[str]
    id: Optional[str] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    date_of_birth: Optional[date] = None

    @classmethod
    def from_account(cls, user: UserAccount) -> "UserSummary":
        return cls(
            username=user.username,
            roles=list(user.roles or DEFAULT_ROLES),
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            phone_number=user.phone_number,
            date_of_birth=user.date_of_birth,
        )


@dataclass
class RegistrationResult:
    user_id: str
    email: str
    message: str = REGISTRATION_MESSAGE
    email_verification_required: bool = True
    trail: AuditTrail = field(default_factory=AuditTrail)


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = TOKEN_TYPE
    trail: AuditTrail = field(default_factory=AuditTrail)


@dataclass
class LoginResult(TokenPair):
    user: Optional[UserSummary] = None


@dataclass
class TokenValidation:
    valid: bool
    username: str
    authorities: List[str]
    expires_at: datetime


@dataclass
class LogoutResult:
    message: str
    timestamp: datetime
    sessions_invalidated: bool = False
    trail: AuditTrail = field(default_factory=AuditTrail)


@dataclass
class PasswordResetResult:
    message: str = PASSWORD_RESET_MESSAGE
    trail: AuditTrail = field(default_factory=AuditTrail)


def hash_reset_token(token: str) -> str:
    """Digest stored in place of a password-reset token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class AuthenticationService:
    """
    Request-scoped orchestrator. Build one per request with that request's
    database session; everything else is shared and stateless.
    """

    def __init__(
        self,
        settings: AuthSettings,
        db: Session,
        identity_provider: BaseIdentityProvider,
        notifications: NotificationService,
        audit: AuditRecorder,
        tokens: Optional[TokenService] = None,
        ledger: Optional[AccountLockoutService] = None,
        codec: Optional[NationalIdCodec] = None,
        users: Optional[UserService] = None,
    ):
        self.settings = settings
        self.db = db
        self.identity_provider = identity_provider
        self.notifications = notifications
        self.audit = audit
        self.tokens = tokens or TokenService(settings)
        self.ledger = ledger or AccountLockoutService(settings)
        self.codec = codec or NationalIdCodec()
        self.users = users or UserService()

    # -- transaction helpers --------------------------------------------

    @contextmanager
    def _flow(self, trail: AuditTrail):
        try:
            yield trail
        finally:
            # Anything not committed by the flow is abandoned before the trail is written
            if self.db.in_transaction():
                self.db.rollback()
            self.audit.flush(trail)

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database commit failed: {e}")
            raise DependencyError("database") from e

    # -- register -------------------------------------------------------

    def register(
        self,
        request: RegistrationRequest,
        ip_address: Optional[str] = None,
        defer: Optional[Deferrer] = None,
    ) -> RegistrationResult:
        """
        Register a new user with KYC validation of the national ID.

        The local row is inserted and flushed first so the storage uniqueness
        constraints decide duplicates, then the identity provider account is
        created, then the local transaction commits. A provider failure rolls
        the local row back; a commit failure deletes the provider account again.

        Raises:
            InvalidNationalIdError: ID fails format, date or checksum checks
            ValidationError: password longer than bcrypt accepts
            ConflictError: email, username or national ID already registered
            DependencyError: identity provider or database unavailable
        """
        trail = AuditTrail()
        with self._flow(trail):
            result = self._register(request, ip_address, defer, trail)
            result.trail = trail
            return result

    def _register(
        self,
        request: RegistrationRequest,
        ip_address: Optional[str],
        defer: Optional[Deferrer],
        trail: AuditTrail,
    ) -> RegistrationResult:
        email = request.email

        try:
            details = self.codec.decode(request.national_id)
        except NationalIdError as e:
            logger.warning(
                f"Registration rejected for '{request.username}': {e.kind} "
                f"(ID {mask(request.national_id)})"
            )
            trail.emit(
                AuditEventType.REGISTRATION_FAILED,
                email,
                ip_address,
                "Invalid SA ID number format",
            )
            raise InvalidNationalIdError() from e

        national_id = details.id_number

        if password_too_long(request.password):
            trail.emit(
                AuditEventType.REGISTRATION_FAILED, email, ip_address, "Password too long"
            )
            raise ValidationError(f"Password must not exceed {MAX_PASSWORD_BYTES} bytes")

        if self.users.exists_by_email(self.db, email):
            trail.emit(
                AuditEventType.REGISTRATION_FAILED, email, ip_address, "Email already exists"
            )
            raise ConflictError("User with this email already exists")

        if self.users.exists_by_national_id(self.db, national_id):
            trail.emit(
                AuditEventType.REGISTRATION_FAILED,
                email,
                ip_address,
                "SA ID number already exists",
            )
            raise ConflictError("User with this SA ID number already exists")

        if self.users.exists_by_username(self.db, request.username):
            trail.emit(
                AuditEventType.REGISTRATION_FAILED, email, ip_address, "Username already exists"
            )
            raise ConflictError("User with this username already exists")

        user = UserAccount(
            username=request.username,
            email=email,
            national_id=national_id,
            password_hash=get_password_hash(request.password, rounds=self.settings.bcrypt_rounds),
            roles=list(DEFAULT_ROLES),
            first_name=request.first_name,
            last_name=request.last_name,
            phone_number=request.phone_number,
            date_of_birth=details.date_of_birth,
            gender=details.gender.value,
            address=request.address,
            city=request.city,
            province=request.province,
            postal_code=request.postal_code,
            is_active=True,
            is_email_verified=False,
            failed_login_attempts=0,
            registration_ip=ip_address,
        )

        try:
            self.users.add(self.db, user)
        except ConflictError:
            trail.emit(
                AuditEventType.REGISTRATION_FAILED,
                email,
                ip_address,
                "Uniqueness constraint violated",
            )
            raise

        try:
            self.identity_provider.create_user(
                NewIdentity(
                    username=request.username,
                    email=email,
                    password=request.password,
                    national_id=national_id,
                    first_name=request.first_name,
                    last_name=request.last_name,
                )
            )
        except (DependencyError, ConflictError) as e:
            self.db.rollback()
            logger.error(
                f"Identity provider rejected registration of '{request.username}': {e.message}"
            )
            trail.emit(
                AuditEventType.REGISTRATION_FAILED,
                email,
                ip_address,
                "Identity provider account creation failed",
            )
            raise

        try:
            self._commit()
        except DependencyError:
            self._delete_provider_account(request.username)
            trail.emit(
                AuditEventType.REGISTRATION_FAILED,
                email,
                ip_address,
                "Local account could not be saved",
            )
            raise

        name = request.first_name or request.username
        if defer is not None:
            defer(self._send_welcome_email, email, name)
        else:
            self._send_welcome_email(email, name)

        trail.emit(
            AuditEventType.REGISTRATION_SUCCESS, email, ip_address, "User registered successfully"
        )
        logger.info(f"Registered user '{request.username}' (ID {mask(national_id)})")

        return RegistrationResult(user_id=user.id, email=email)

    def _delete_provider_account(self, username: str) -> None:
        try:
            self.identity_provider.delete_user(username)
            logger.warning(f"Removed identity provider account '{username}' after failed commit")
        except DependencyError as e:
            logger.error(
                f"Orphaned identity provider account '{username}' needs manual cleanup: {e}"
            )

    def _send_welcome_email(self, email: str, name: str) -> None:
        try:
            self.notifications.send_welcome_email(email, name)
        except DependencyError as e:
            logger.error(f"Failed to send welcome email to {email}: {e}")

    # -- login ----------------------------------------------------------

    def login(
        self, username: str, password: str, ip_address: Optional[str] = None
    ) -> LoginResult:
        """
        Authenticate against the identity provider.

        A locked account is rejected before the provider is contacted. Unknown
        users, wrong passwords and inactive accounts all fail with the same
        AuthenticationError.

        Raises:
            LockedError: account inside its lockout window
            AuthenticationError: credentials rejected
            DependencyError: identity provider unavailable (counter untouched)
        """
        trail = AuditTrail()
        with self._flow(trail):
            result = self._login(username, password, ip_address, trail)
            result.trail = trail
            return result

    def _login(
        self, username: str, password: str, ip_address: Optional[str], trail: AuditTrail
    ) -> LoginResult:
        user = self.users.get_by_username(self.db, username)

        if user is not None and self.ledger.check_lockout(user):
            logger.warning(f"Login attempt for locked account '{username}'")
            trail.emit(
                AuditEventType.LOGIN_FAILED_LOCKED,
                username,
                ip_address,
                "Account locked due to multiple failed attempts",
            )
            raise LockedError()

        try:
            accepted = self.identity_provider.verify_credentials(username, password)
        except DependencyError:
            trail.emit(
                AuditEventType.LOGIN_FAILED,
                username,
                ip_address,
                "Authentication failed: identity provider unavailable",
            )
            raise

        if not accepted:
            description = "Authentication failed: invalid credentials"
            if user is not None:
                outcome = self.ledger.record_failure(self.db, user)
                self._commit()
                if outcome.newly_locked:
                    trail.emit(
                        AuditEventType.ACCOUNT_LOCKED,
                        username,
                        ip_address,
                        f"Account locked due to {outcome.attempts} failed attempts",
                    )
            trail.emit(AuditEventType.LOGIN_FAILED, username, ip_address, description)
            raise AuthenticationError()

        if user is not None and not user.is_active:
            trail.emit(
                AuditEventType.LOGIN_FAILED,
                username,
                ip_address,
                "Authentication failed: account inactive",
            )
            raise AuthenticationError()

        if user is not None:
            self.ledger.record_success(self.db, user, ip_address)
            self._commit()
            summary = UserSummary.from_account(user)
        else:
            # Account known only to the identity provider
            summary = UserSummary(username=username, roles=list(DEFAULT_ROLES))

        access_token = self.tokens.issue_access_token(summary.username, summary.roles)
        refresh_token = self.tokens.issue_refresh_token(summary.username, summary.roles)

        trail.emit(
            AuditEventType.LOGIN_SUCCESS, username, ip_address, "User authenticated successfully"
        )
        return LoginResult(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.tokens.access_token_ttl_seconds,
            user=summary,
        )

    # -- tokens ---------------------------------------------------------

    def refresh(self, refresh_token: str, ip_address: Optional[str] = None) -> TokenPair:
        """
        Exchange a refresh token for a new access/refresh pair.

        Raises:
            InvalidTokenError: token malformed, tampered with, expired or not a refresh token
        """
        trail = AuditTrail()
        with self._flow(trail):
            try:
                claims = self.tokens.verify_refresh(refresh_token)
            except InvalidTokenError as e:
                trail.emit(
                    AuditEventType.TOKEN_REFRESH_FAILED,
                    self.tokens.subject_of(refresh_token),
                    ip_address,
                    f"Invalid refresh token ({e.reason})",
                )
                raise

            pair = TokenPair(
                access_token=self.tokens.issue_access_token(claims.subject, claims.roles),
                refresh_token=self.tokens.issue_refresh_token(claims.subject, claims.roles),
                expires_in=self.tokens.access_token_ttl_seconds,
                trail=trail,
            )
            trail.emit(
                AuditEventType.TOKEN_REFRESH_SUCCESS,
                claims.subject,
                ip_address,
                "Token refreshed successfully",
            )
            return pair

    def validate(self, access_token: str) -> TokenValidation:
        claims = self.tokens.verify_access(access_token)
        return TokenValidation(
            valid=True,
            username=claims.subject,
            authorities=list(claims.roles),
            expires_at=claims.expires_at,
        )

    # -- logout ---------------------------------------------------------

    def logout(self, refresh_token: Optional[str], ip_address: Optional[str] = None) -> LogoutResult:
        """
        End the user's identity provider sessions.

        Session invalidation is best effort: an unreadable token or a provider
        failure is logged and the logout still succeeds. Tokens already issued
        stay valid until they expire.
        """
        trail = AuditTrail()
        with self._flow(trail):
            subject = self.tokens.subject_of(refresh_token)
            invalidated = False

            if subject is None:
                logger.warning("Logout with an unreadable refresh token; no sessions invalidated")
            else:
                try:
                    invalidated = self.identity_provider.invalidate_sessions(subject)
                except DependencyError as e:
                    logger.error(f"Failed to invalidate tokens for user {subject}: {e}")

            trail.emit(
                AuditEventType.LOGOUT_SUCCESS, subject, ip_address, "User logged out successfully"
            )
            return LogoutResult(
                message=LOGOUT_MESSAGE,
                timestamp=self.ledger.now(),
                sessions_invalidated=invalidated,
                trail=trail,
            )

    # -- password reset -------------------------------------------------

    def reset_password(
        self,
        email: str,
        ip_address: Optional[str] = None,
        defer: Optional[Deferrer] = None,
    ) -> PasswordResetResult:
        """
        Start a password reset. The response never reveals whether the email
        belongs to an account: unknown and unverified addresses get the same
        message and nothing is stored, and a token that cannot be stored or
        mailed is only logged.
        """
        trail = AuditTrail()
        with self._flow(trail):
            user = self.users.get_by_email(self.db, email)
            if user is None or not user.is_email_verified or not user.is_active:
                logger.info("Password reset requested for an unknown or unverified address")
                return PasswordResetResult(trail=trail)

            reset_token = secrets.token_urlsafe(32)
            expires_at = self.ledger.now() + timedelta(
                minutes=self.settings.password_reset_ttl_minutes
            )
            self.users.set_password_reset_token(
                self.db, user, hash_reset_token(reset_token), expires_at
            )
            try:
                self._commit()
            except DependencyError:
                logger.error("Password reset token not stored; no reset mail sent")
                return PasswordResetResult(trail=trail)

            name = user.first_name or user.username
            if defer is not None:
                defer(self._send_password_reset_email, user.email, name, reset_token)
            else:
                self._send_password_reset_email(user.email, name, reset_token)

            trail.emit(
                AuditEventType.PASSWORD_RESET_INITIATED,
                email,
                ip_address,
                "Password reset initiated",
            )
            return PasswordResetResult(trail=trail)

    def _send_password_reset_email(self, email: str, name: str, reset_token: str) -> None:
        try:
            self.notifications.send_password_reset_email(email, name, reset_token)
        except DependencyError as e:
            logger.error(f"Failed to send password reset email to {email}: {e}")
