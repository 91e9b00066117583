from datetime import datetime
from typing import Optional

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.identity_gateway.exceptions import ConflictError
from src.identity_gateway.models.database import UserAccount


class UserService:
    """Repository for UserAccount rows. Uniqueness is enforced by the table."""

    def get_by_username(self, db: Session, username: str) -> Optional[UserAccount]:
        return db.query(UserAccount).filter(UserAccount.username == username).first()

    def get_by_email(self, db: Session, email: str) -> Optional[UserAccount]:
        return db.query(UserAccount).filter(UserAccount.email == email).first()

    def exists_by_email(self, db: Session, email: str) -> bool:
        return db.query(UserAccount.id).filter(UserAccount.email == email).first() is not None

    def exists_by_username(self, db: Session, username: str) -> bool:
        return db.query(UserAccount.id).filter(UserAccount.username == username).first() is not None

    def exists_by_national_id(self, db: Session, national_id: str) -> bool:
        return (
            db.query(UserAccount.id).filter(UserAccount.national_id == national_id).first()
            is not None
        )

    def add(self, db: Session, user: UserAccount) -> UserAccount:
        """
        Insert a user and flush so the uniqueness constraints fire now.

        The pre-insert existence checks are only an optimisation; two
        concurrent registrations can both pass them. The table constraint
        decides, and its violation is reported as ConflictError.
        """
        db.add(user)
        try:
            db.flush()
        except IntegrityError as e:
            db.rollback()
            logger.warning(f"Uniqueness constraint rejected user '{user.username}': {e.orig}")
            raise ConflictError() from e
        return user

    def set_password_reset_token(
        self, db: Session, user: UserAccount, token_digest: str, expires_at: datetime
    ) -> None:
        user.password_reset_token = token_digest
        user.password_reset_expiry = expires_at
        db.flush()
