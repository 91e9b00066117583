"""
JWT token utilities for bearer authentication.

Issues and verifies self-contained access and refresh tokens signed with
HS512. Verification is fully stateless: signature, expiry and token type.
"""

import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

import jwt
from loguru import logger

from src.config import INSECURE_DEFAULT_SECRET, AuthSettings
from src.identity_gateway.exceptions import InvalidTokenError

JWT_ALGORITHM = "HS512"
ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


@dataclass(frozen=True)
class TokenClaims:
    """Claims carried by an issued token."""

    subject: str
    roles: List[str]
    token_type: str
    issued_at: datetime
    expires_at: datetime
    token_id: Optional[str] = None


class TokenService:
    """
    Issuer/verifier for access and refresh tokens.

    Args:
        settings: Immutable auth settings (signing secret, TTLs, issuer)
        clock: Callable returning the current aware UTC datetime
    """

    def __init__(self, settings: AuthSettings, clock=None):
        self.settings = settings
        self._secret = settings.signing_secret
        self._issuer = settings.token_issuer
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.access_token_ttl = timedelta(minutes=settings.access_token_ttl_minutes)
        self.refresh_token_ttl = timedelta(days=settings.refresh_token_ttl_days)

        if self._secret == INSECURE_DEFAULT_SECRET:
            logger.warning(
                "JWT_SECRET_KEY is using the default insecure value. "
                "Set JWT_SECRET_KEY in the environment or env.properties."
            )

    @property
    def access_token_ttl_seconds(self) -> int:
        return int(self.access_token_ttl.total_seconds())

    def _issue(self, subject: str, roles: Sequence[str], token_type: str, ttl: timedelta) -> str:
        if not subject:
            raise ValueError("Token subject is required")

        now = self._clock()
        expire = now + ttl
        payload: Dict[str, Any] = {
            "sub": subject,
            "roles": list(roles),
            "type": token_type,
            "iat": now,
            "exp": expire,
            "iss": self._issuer,
            "jti": uuid.uuid4().hex,
        }
        encoded = jwt.encode(payload, self._secret, algorithm=JWT_ALGORITHM)
        logger.debug(f"Created {token_type} token for subject: {subject}, expires: {expire}")
        return encoded

    def issue_access_token(self, subject: str, roles: Sequence[str]) -> str:
        """Issue a short-lived access token (type=access)."""
        return self._issue(subject, roles, ACCESS_TOKEN_TYPE, self.access_token_ttl)

    def issue_refresh_token(self, subject: str, roles: Sequence[str]) -> str:
        """Issue a long-lived refresh token (type=refresh)."""
        return self._issue(subject, roles, REFRESH_TOKEN_TYPE, self.refresh_token_ttl)

    def _decode(self, token: Optional[str], verify_exp: bool = True) -> Dict[str, Any]:
        if not token or not token.strip():
            raise InvalidTokenError(InvalidTokenError.MALFORMED)

        try:
            # Expiry is checked against the injected clock below, not PyJWT's
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[JWT_ALGORITHM],
                issuer=self._issuer,
                options={
                    "verify_signature": True,
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": ["exp", "iat", "sub", "type"],
                },
            )
        except jwt.InvalidSignatureError:
            logger.warning("Token signature verification failed")
            raise InvalidTokenError(InvalidTokenError.BAD_SIGNATURE)
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid token: {e}")
            raise InvalidTokenError(InvalidTokenError.MALFORMED)

        if verify_exp:
            expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
            if expires_at <= self._clock():
                logger.debug("Token has expired")
                raise InvalidTokenError(InvalidTokenError.EXPIRED)

        return payload

    @staticmethod
    def _to_claims(payload: Dict[str, Any]) -> TokenClaims:
        roles = payload.get("roles") or []
        if not isinstance(roles, list):
            raise InvalidTokenError(InvalidTokenError.MALFORMED)
        return TokenClaims(
            subject=payload["sub"],
            roles=[str(role) for role in roles],
            token_type=payload["type"],
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            token_id=payload.get("jti"),
        )

    def verify(self, token: Optional[str]) -> TokenClaims:
        """
        Verify signature and expiry of any token this service issued.

        Args:
            token: Encoded JWT

        Returns:
            TokenClaims

        Raises:
            InvalidTokenError: reason is malformed, bad_signature or expired
        """
        return self._to_claims(self._decode(token))

    def _verify_type(self, token: Optional[str], expected: str) -> TokenClaims:
        claims = self.verify(token)
        if claims.token_type != expected:
            logger.warning(f"Token type mismatch: expected {expected}, got {claims.token_type}")
            raise InvalidTokenError(InvalidTokenError.WRONG_TYPE)
        return claims

    def verify_access(self, token: Optional[str]) -> TokenClaims:
        """Verify a token and require type=access."""
        return self._verify_type(token, ACCESS_TOKEN_TYPE)

    def verify_refresh(self, token: Optional[str]) -> TokenClaims:
        """Verify a token and require type=refresh."""
        return self._verify_type(token, REFRESH_TOKEN_TYPE)

    def subject_of(self, token: Optional[str]) -> Optional[str]:
        """
        Subject of a token with a valid signature, ignoring expiry.

        Used where a best-effort identity is enough (logout). Returns None
        instead of raising.
        """
        try:
            return self._decode(token, verify_exp=False)["sub"]
        except InvalidTokenError:
            return None


def generate_secret_key() -> str:
    """
    Generate a secure random secret key for HS512 signing.

    Returns:
        A random 512-bit (64-byte) key encoded as hex string
    """
    return secrets.token_hex(64)
