"""
Tests for the operator scripts under src/scripts.
"""

from contextlib import contextmanager

from src.identity_gateway.models.audit_log import AuditEventType
from src.identity_gateway.services.audit_service import AuditRecorder
from src.scripts import clear_lockout as clear_lockout_script
from src.scripts import show_audit_log as show_audit_log_script


def test_clear_lockout_unlocks_account(monkeypatch, test_db_session, registered_user, capsys):
    registered_user.failed_login_attempts = 5
    test_db_session.commit()

    @contextmanager
    def fake_session():
        yield test_db_session
        test_db_session.commit()

    monkeypatch.setattr(clear_lockout_script, "get_session", fake_session)

    assert clear_lockout_script.clear_lockout("thandi") is True
    test_db_session.refresh(registered_user)
    assert registered_user.failed_login_attempts == 0
    assert "Lockout cleared for thandi" in capsys.readouterr().out


def test_clear_lockout_unknown_user(monkeypatch, test_db_session, capsys):
    @contextmanager
    def fake_session():
        yield test_db_session

    monkeypatch.setattr(clear_lockout_script, "get_session", fake_session)

    assert clear_lockout_script.clear_lockout("ghost") is False
    assert "NOT found" in capsys.readouterr().out


def test_show_audit_log(monkeypatch, session_factory, capsys):
    AuditRecorder(session_factory).record(
        AuditEventType.LOGIN_FAILED, "thandi", "10.0.0.1", "Authentication failed"
    )
    monkeypatch.setattr(show_audit_log_script, "create_session_factory", lambda: session_factory)

    events = show_audit_log_script.show_audit_log(actor="thandi")

    assert [event.event_type for event in events] == ["LOGIN_FAILED"]
    assert "LOGIN_FAILED" in capsys.readouterr().out


def test_show_audit_log_respects_limit(monkeypatch, session_factory, capsys):
    recorder = AuditRecorder(session_factory)
    for _ in range(3):
        recorder.record(AuditEventType.LOGIN_FAILED, "thandi", "10.0.0.1", "Authentication failed")
    monkeypatch.setattr(show_audit_log_script, "create_session_factory", lambda: session_factory)

    events = show_audit_log_script.show_audit_log(limit=2)

    assert len(events) == 2
    assert capsys.readouterr().out.count("LOGIN_FAILED") == 2
