"""
Audit recorder for the compliance trail.

Flows collect events into an AuditTrail while they run and hand the trail to
AuditRecorder.flush() once, when the flow ends (successfully or not). The
recorder writes with its own session so an audit row survives a rolled-back
business transaction, and a failure to write is logged, never raised.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterator, List, Optional, Union

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.identity_gateway.models.audit_log import AuditEvent, AuditEventType
from src.identity_gateway.models.database import utcnow

UNKNOWN_ACTOR = "unknown"

_WARNING_EVENTS = {
    AuditEventType.LOGIN_FAILED,
    AuditEventType.LOGIN_FAILED_LOCKED,
    AuditEventType.REGISTRATION_FAILED,
    AuditEventType.TOKEN_REFRESH_FAILED,
}


@dataclass(frozen=True)
class PendingAuditEvent:
    """An audit event emitted by a flow but not yet persisted."""

    event_type: AuditEventType
    actor: str
    ip_address: Optional[str]
    description: str
    timestamp: datetime


@dataclass
class AuditTrail:
    """Ordered list of events a single flow wants recorded."""

    events: List[PendingAuditEvent] = field(default_factory=list)

    def emit(
        self,
        event_type: AuditEventType,
        actor: Optional[str],
        ip_address: Optional[str],
        description: str,
    ) -> PendingAuditEvent:
        event = PendingAuditEvent(
            event_type=AuditEventType(event_type),
            actor=actor or UNKNOWN_ACTOR,
            ip_address=ip_address,
            description=description,
            timestamp=utcnow(),
        )
        self.events.append(event)
        return event

    @property
    def event_types(self) -> List[AuditEventType]:
        return [event.event_type for event in self.events]

    def __iter__(self) -> Iterator[PendingAuditEvent]:
        return iter(self.events)

    def __len__(self) -> int:
        return len(self.events)


class AuditRecorder:
    """
    Append-only writer for AuditEvent rows.

    Args:
        session_factory: Callable returning a new Session (e.g. a sessionmaker)
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def flush(self, trail: Union[AuditTrail, List[PendingAuditEvent]]) -> int:
        """
        Persist every event of a trail in one transaction.

        Returns:
            Number of rows written (0 when persisting failed)
        """
        events = list(trail)
        if not events:
            return 0

        for event in events:
            log_level = "warning" if event.event_type in _WARNING_EVENTS else "info"
            getattr(logger, log_level)(
                f"AUDIT[{event.event_type.value}]: {event.description} | "
                f"Actor: {event.actor} | IP: {event.ip_address or 'N/A'}"
            )

        session = self._session_factory()
        try:
            session.add_all(
                [
                    AuditEvent(
                        timestamp=event.timestamp,
                        event_type=event.event_type.value,
                        actor=event.actor,
                        ip_address=event.ip_address,
                        description=event.description,
                    )
                    for event in events
                ]
            )
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to persist {len(events)} audit event(s): {e}")
            return 0
        finally:
            session.close()

        return len(events)

    def record(
        self,
        event_type: AuditEventType,
        actor: Optional[str],
        ip_address: Optional[str],
        description: str,
    ) -> int:
        """Record a single event immediately."""
        trail = AuditTrail()
        trail.emit(event_type, actor, ip_address, description)
        return self.flush(trail)

    def recent_events(self, actor: Optional[str] = None, limit: int = 50) -> List[AuditEvent]:
        """Most recent events first, optionally for one actor."""
        session = self._session_factory()
        try:
            query = session.query(AuditEvent)
            if actor:
                query = query.filter(AuditEvent.actor == actor)
            return query.order_by(AuditEvent.timestamp.desc()).limit(limit).all()
        finally:
            session.close()
