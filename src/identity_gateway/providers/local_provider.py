"""
Local identity provider - development fallback when no Keycloak is configured
Credentials are checked against the bcrypt hash stored on the gateway's own users table
"""

from typing import Callable, List

from loguru import logger
from sqlalchemy.orm import Session

from src.identity_gateway.models.database import UserAccount
from src.identity_gateway.utils.password_utils import verify_password

from .base_provider import BaseIdentityProvider, IdentitySummary, NewIdentity


class LocalIdentityProvider(BaseIdentityProvider):
    """Identity provider backed by the local users table"""

    name = "local"

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def create_user(self, identity: NewIdentity) -> str:
        # The local row written by the registration flow is the account
        logger.debug(f"Local provider: account '{identity.username}' lives in the users table")
        return identity.username

    def verify_credentials(self, username: str, password: str) -> bool:
        session = self._session_factory()
        try:
            password_hash = (
                session.query(UserAccount.password_hash)
                .filter(UserAccount.username == username)
                .scalar()
            )
        finally:
            session.close()

        if password_hash is None:
            return False
        return verify_password(password, password_hash)

    def invalidate_sessions(self, username: str) -> bool:
        # Sessions are not tracked locally; tokens expire on their own
        logger.debug(f"Local provider: no session store to invalidate for '{username}'")
        return True

    def list_users(self, first: int = 0, max_results: int = 100) -> List[IdentitySummary]:
        session = self._session_factory()
        try:
            rows = (
                session.query(UserAccount)
                .order_by(UserAccount.created_at)
                .offset(first)
                .limit(max_results)
                .all()
            )
            return [
                IdentitySummary(
                    id=row.id, username=row.username, email=row.email, enabled=row.is_active
                )
                for row in rows
            ]
        finally:
            session.close()

    def delete_user(self, username: str) -> bool:
        logger.debug(f"Local provider: nothing to delete for '{username}'")
        return True
