"""
Tests for the audit trail and recorder.
"""

from unittest.mock import Mock

from sqlalchemy.exc import OperationalError

from src.identity_gateway.models.audit_log import AuditEvent, AuditEventType
from src.identity_gateway.services.audit_service import (
    UNKNOWN_ACTOR,
    AuditRecorder,
    AuditTrail,
)


class TestAuditTrail:
    def test_emit_collects_events_in_order(self):
        trail = AuditTrail()
        trail.emit(AuditEventType.LOGIN_FAILED, "sipho", "10.0.0.1", "Bad password")
        trail.emit(AuditEventType.ACCOUNT_LOCKED, "sipho", "10.0.0.1", "Locked")

        assert len(trail) == 2
        assert trail.event_types == [AuditEventType.LOGIN_FAILED, AuditEventType.ACCOUNT_LOCKED]

    def test_missing_actor_becomes_unknown(self):
        trail = AuditTrail()
        event = trail.emit(AuditEventType.LOGOUT_SUCCESS, None, None, "Logged out")
        assert event.actor == UNKNOWN_ACTOR

    def test_event_type_accepts_plain_string(self):
        trail = AuditTrail()
        event = trail.emit("LOGIN_SUCCESS", "sipho", None, "ok")
        assert event.event_type is AuditEventType.LOGIN_SUCCESS


class TestAuditRecorder:
    def test_flush_persists_every_event(self, audit_recorder, session_factory):
        trail = AuditTrail()
        trail.emit(AuditEventType.REGISTRATION_FAILED, "a@example.com", "10.0.0.2", "Invalid ID")
        trail.emit(AuditEventType.REGISTRATION_SUCCESS, "b@example.com", "10.0.0.3", "ok")

        assert audit_recorder.flush(trail) == 2

        session = session_factory()
        rows = session.query(AuditEvent).all()
        session.close()
        assert sorted(row.event_type for row in rows) == [
            "REGISTRATION_FAILED",
            "REGISTRATION_SUCCESS",
        ]
        assert {row.ip_address for row in rows} == {"10.0.0.2", "10.0.0.3"}

    def test_flush_empty_trail_writes_nothing(self, audit_recorder):
        assert audit_recorder.flush(AuditTrail()) == 0

    def test_record_single_event(self, audit_recorder):
        assert audit_recorder.record(
            AuditEventType.PASSWORD_RESET_INITIATED, "sipho@example.com", None, "Reset"
        ) == 1
        events = audit_recorder.recent_events(actor="sipho@example.com")
        assert [event.event_type for event in events] == ["PASSWORD_RESET_INITIATED"]

    def test_recent_events_filters_and_limits(self, audit_recorder):
        for i in range(5):
            audit_recorder.record(AuditEventType.LOGIN_FAILED, "sipho", None, f"attempt {i}")
        audit_recorder.record(AuditEventType.LOGIN_SUCCESS, "thandi", None, "ok")

        assert len(audit_recorder.recent_events(actor="sipho")) == 5
        assert len(audit_recorder.recent_events(limit=3)) == 3
        assert len(audit_recorder.recent_events()) == 6

    def test_persistence_failure_is_swallowed(self):
        session = Mock()
        session.commit.side_effect = OperationalError("INSERT", {}, Exception("disk I/O error"))
        recorder = AuditRecorder(lambda: session)

        trail = AuditTrail()
        trail.emit(AuditEventType.LOGIN_SUCCESS, "sipho", None, "ok")

        assert recorder.flush(trail) == 0
        session.rollback.assert_called_once()
        session.close.assert_called_once()

    def test_recorder_has_no_mutation_api(self):
        public = {name for name in dir(AuditRecorder) if not name.startswith("_")}
        assert public == {"flush", "record", "recent_events"}
