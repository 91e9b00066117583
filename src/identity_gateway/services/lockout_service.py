"""
Account lockout ledger for failed login protection.

Per-user state lives on the UserAccount row:

- Unlocked(n): ``locked_until`` empty or in the past, ``failed_login_attempts == n``
- Locked(until): ``locked_until`` in the future

Expiry is evaluated lazily at read time; nothing sweeps old locks. Counter
changes are single SQL UPDATE statements evaluated by the database, so
concurrent failures for the same user serialize on the row instead of
overwriting each other.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from loguru import logger
from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from src.config import AuthSettings
from src.identity_gateway.models.database import UserAccount, ensure_aware


@dataclass(frozen=True)
class FailureOutcome:
    """Result of recording a failed login."""

    locked: bool
    attempts: int
    locked_until: Optional[datetime] = None
    newly_locked: bool = False


class AccountLockoutService:
    """Service for managing account lockout after failed logins."""

    def __init__(
        self,
        settings: AuthSettings,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.max_attempts = settings.max_login_attempts
        self.lockout_duration = timedelta(minutes=settings.lockout_duration_minutes)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        return self._clock()

    def locked_until(self, user: UserAccount) -> Optional[datetime]:
        """End of the active lockout window, or None when the account is unlocked."""
        until = ensure_aware(user.locked_until)
        if until is not None and until > self.now():
            return until
        return None

    def check_lockout(self, user: UserAccount) -> bool:
        """
        Check if account is currently locked.

        Args:
            user: Account to check

        Returns:
            True while ``now < locked_until``
        """
        return self.locked_until(user) is not None

    def _not_locked(self, now: datetime):
        return or_(UserAccount.locked_until.is_(None), UserAccount.locked_until <= now)

    def record_success(self, db: Session, user: UserAccount, ip_address: Optional[str] = None):
        """
        Reset the failure counter after a successful login.

        Args:
            db: Database session
            user: Account that authenticated
            ip_address: Client IP of the login
        """
        now = self.now()
        db.execute(
            update(UserAccount)
            .where(UserAccount.id == user.id)
            .values(
                failed_login_attempts=0,
                locked_until=None,
                last_login_time=now,
                last_login_ip=ip_address,
            )
            .execution_options(synchronize_session=False)
        )
        db.refresh(user)
        logger.info(f"Reset failed login attempts for '{user.username}' after successful login")

    def record_failure(self, db: Session, user: UserAccount) -> FailureOutcome:
        """
        Record a failed login attempt and lock the account at the threshold.

        An expired lock counts as unlocked with its stored counter, so the
        first failure after expiry takes the count past the threshold and
        locks again. While a lock is active the counter is left alone.

        Args:
            db: Database session
            user: Account whose credentials were rejected

        Returns:
            FailureOutcome(locked, attempts, locked_until, newly_locked)
        """
        now = self.now()
        counted = db.execute(
            update(UserAccount)
            .where(UserAccount.id == user.id, self._not_locked(now))
            .values(
                failed_login_attempts=UserAccount.failed_login_attempts + 1,
                locked_until=None,
                last_failed_login_time=now,
            )
            .execution_options(synchronize_session=False)
        )

        newly_locked = False
        if counted.rowcount:
            lockout_until = now + self.lockout_duration
            locked = db.execute(
                update(UserAccount)
                .where(
                    UserAccount.id == user.id,
                    UserAccount.failed_login_attempts >= self.max_attempts,
                    self._not_locked(now),
                )
                .values(locked_until=lockout_until)
                .execution_options(synchronize_session=False)
            )
            newly_locked = locked.rowcount == 1

        db.refresh(user)
        until = self.locked_until(user)

        if newly_locked:
            logger.warning(
                f"Account '{user.username}' locked after {user.failed_login_attempts} failed attempts. "
                f"Locked until {until}"
            )
        elif until is not None:
            logger.warning(
                f"Failed login attempt for locked account '{user.username}'. Locked until {until}"
            )
        else:
            logger.info(
                f"Recorded failed login attempt {user.failed_login_attempts}/{self.max_attempts} "
                f"for '{user.username}'"
            )

        return FailureOutcome(
            locked=until is not None,
            attempts=user.failed_login_attempts,
            locked_until=until,
            newly_locked=newly_locked,
        )

    def unlock(self, db: Session, user: UserAccount, admin_username: str = "system") -> bool:
        """
        Manually unlock an account (admin action).

        Returns:
            True if the account was locked before the call
        """
        was_locked = self.check_lockout(user)
        db.execute(
            update(UserAccount)
            .where(UserAccount.id == user.id)
            .values(failed_login_attempts=0, locked_until=None)
            .execution_options(synchronize_session=False)
        )
        db.refresh(user)
        logger.info(f"Admin '{admin_username}' manually unlocked account '{user.username}'")
        return was_locked
