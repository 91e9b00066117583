"""
Audit event model for the compliance trail.

Rows are insert-only: nothing in the code base updates or deletes them.
"""

import uuid
from enum import Enum

from sqlalchemy import Column, DateTime, String, Text

# Import Base from database module
from src.identity_gateway.models.database import Base, utcnow


class AuditEventType(str, Enum):
    """Fixed set of audit event identifiers."""

    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGIN_FAILED_LOCKED = "LOGIN_FAILED_LOCKED"
    REGISTRATION_SUCCESS = "REGISTRATION_SUCCESS"
    REGISTRATION_FAILED = "REGISTRATION_FAILED"
    TOKEN_REFRESH_SUCCESS = "TOKEN_REFRESH_SUCCESS"
    TOKEN_REFRESH_FAILED = "TOKEN_REFRESH_FAILED"
    LOGOUT_SUCCESS = "LOGOUT_SUCCESS"
    PASSWORD_RESET_INITIATED = "PASSWORD_RESET_INITIATED"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"


class AuditEvent(Base):
    """
    Audit trail entry.

    Tracks:
    - Login successes, failures and lockouts
    - Registrations
    - Token refreshes and logouts
    - Password reset requests
    """

    __tablename__ = "audit_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    timestamp = Column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True,
    )
    event_type = Column(String(50), nullable=False, index=True)

    # Username or email of the actor; "unknown" when it cannot be determined
    actor = Column(String(255), nullable=True, index=True)
    ip_address = Column(String(45), nullable=True, index=True)  # IPv6 max length

    description = Column(Text, nullable=False)

    def __repr__(self):
        return f"<AuditEvent(id={self.id}, type={self.event_type}, actor={self.actor}, time={self.timestamp})>"
