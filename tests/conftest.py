"""
Pytest configuration and fixtures for identity gateway tests

This file ensures:
1. Clean database state for each test
2. Proper test isolation
3. Deterministic time and collaborators (identity provider, mail)
"""
import os
from datetime import datetime, timedelta, timezone
from typing import Dict, List

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.config import AuthSettings
from src.identity_gateway.exceptions import ConflictError, DependencyError
from src.identity_gateway.models.audit_log import AuditEvent
from src.identity_gateway.models.database import Base, UserAccount
from src.identity_gateway.providers.base_provider import (
    BaseIdentityProvider,
    IdentitySummary,
    NewIdentity,
)
from src.identity_gateway.services.audit_service import AuditRecorder
from src.identity_gateway.services.auth_service import AuthenticationService
from src.identity_gateway.services.lockout_service import AccountLockoutService
from src.identity_gateway.services.notification_service import (
    LogMailSender,
    NotificationService,
)
from src.identity_gateway.utils.jwt_utils import TokenService
from src.identity_gateway.utils.national_id import NationalIdCodec
from src.identity_gateway.utils.password_utils import get_password_hash

# Valid South African ID numbers (check digits computed with the Luhn rule)
VALID_ID = "9001015009081"        # 1990-01-01, male, citizen
VALID_ID_FEMALE = "9203120456083"  # 1992-03-12, female, citizen
VALID_ID_OTHER = "8506155123088"   # 1985-06-15, male, citizen
VALID_ID_RESIDENT = "7511205800184"  # 1975-11-20, male, permanent resident

TEST_SECRET = "test-signing-secret-" + "x" * 64
TEST_PASSWORD = "Sup3rSecret!"


class FakeClock:
    """Mutable UTC clock shared by the ledger, the token service and the codec."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def today(self):
        return self.current.date()

    def advance(self, **kwargs):
        self.current = self.current + timedelta(**kwargs)


class FakeIdentityProvider(BaseIdentityProvider):
    """In-memory identity provider with switchable failures and call counters."""

    name = "fake"

    def __init__(self):
        self.accounts: Dict[str, str] = {}
        self.fail_create = False
        self.fail_verify = False
        self.fail_invalidate = False
        self.fail_delete = False
        self.create_calls = 0
        self.verify_calls = 0
        self.invalidated: List[str] = []
        self.deleted: List[str] = []

    def create_user(self, identity: NewIdentity) -> str:
        self.create_calls += 1
        if self.fail_create:
            raise DependencyError(self.name, "Identity provider unavailable")
        if identity.username in self.accounts:
            raise ConflictError()
        self.accounts[identity.username] = identity.password
        return f"kc-{identity.username}"

    def verify_credentials(self, username: str, password: str) -> bool:
        self.verify_calls += 1
        if self.fail_verify:
            raise DependencyError(self.name, "Identity provider unavailable")
        return self.accounts.get(username) == password

    def invalidate_sessions(self, username: str) -> bool:
        if self.fail_invalidate:
            raise DependencyError(self.name, "Identity provider unavailable")
        self.invalidated.append(username)
        return username in self.accounts

    def list_users(self, first: int = 0, max_results: int = 100) -> List[IdentitySummary]:
        names = sorted(self.accounts)[first:first + max_results]
        return [IdentitySummary(id=f"kc-{name}", username=name) for name in names]

    def delete_user(self, username: str) -> bool:
        if self.fail_delete:
            raise DependencyError(self.name, "Identity provider unavailable")
        self.deleted.append(username)
        return self.accounts.pop(username, None) is not None


@pytest.fixture(autouse=True)
def testing_environment():
    """
    Prevent tests from touching the real database and disable rate limiting.
    This fixture runs automatically for all tests.
    """
    original_env = os.environ.get('DATABASE_URL')
    original_testing = os.environ.get('TESTING')

    os.environ['DATABASE_URL'] = 'sqlite:///:memory:'
    os.environ['TESTING'] = '1'

    yield

    if original_env:
        os.environ['DATABASE_URL'] = original_env
    elif 'DATABASE_URL' in os.environ:
        del os.environ['DATABASE_URL']

    if original_testing:
        os.environ['TESTING'] = original_testing
    elif 'TESTING' in os.environ:
        del os.environ['TESTING']


@pytest.fixture(scope="function")
def test_db_engine():
    """
    Create a fresh in-memory SQLite database for each test.
    This ensures complete isolation between tests.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_db_engine):
    return sessionmaker(bind=test_db_engine, expire_on_commit=False)


@pytest.fixture(scope="function")
def test_db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def auth_settings():
    return AuthSettings(signing_secret=TEST_SECRET, bcrypt_rounds=10)


@pytest.fixture
def identity_provider():
    return FakeIdentityProvider()


@pytest.fixture
def mail_sender():
    return LogMailSender()


@pytest.fixture
def notifications(mail_sender):
    return NotificationService(mail_sender, "https://bank.example")


@pytest.fixture
def audit_recorder(session_factory):
    return AuditRecorder(session_factory)


@pytest.fixture
def token_service(auth_settings, clock):
    return TokenService(auth_settings, clock=clock)


@pytest.fixture
def ledger(auth_settings, clock):
    return AccountLockoutService(auth_settings, clock=clock)


@pytest.fixture
def codec(clock):
    return NationalIdCodec(clock=clock.today)


@pytest.fixture
def auth_service(
    auth_settings,
    test_db_session,
    identity_provider,
    notifications,
    audit_recorder,
    token_service,
    ledger,
    codec,
):
    return AuthenticationService(
        settings=auth_settings,
        db=test_db_session,
        identity_provider=identity_provider,
        notifications=notifications,
        audit=audit_recorder,
        tokens=token_service,
        ledger=ledger,
        codec=codec,
    )


@pytest.fixture
def audit_events(session_factory):
    """Callable returning the persisted audit event types."""

    def _events(actor=None):
        session = session_factory()
        try:
            query = session.query(AuditEvent)
            if actor is not None:
                query = query.filter(AuditEvent.actor == actor)
            return [event.event_type for event in query.all()]
        finally:
            session.close()

    return _events


@pytest.fixture
def registered_user(test_db_session, identity_provider):
    """A verified, active user known to both the local table and the identity provider."""
    user = UserAccount(
        username="thandi",
        email="thandi@example.com",
        national_id=VALID_ID_FEMALE,
        password_hash=get_password_hash(TEST_PASSWORD, rounds=10),
        roles=["USER"],
        first_name="Thandi",
        last_name="Nkosi",
        is_active=True,
        is_email_verified=True,
    )
    test_db_session.add(user)
    test_db_session.commit()
    test_db_session.refresh(user)
    identity_provider.accounts[user.username] = TEST_PASSWORD
    return user


@pytest.fixture
def client(
    test_db_session,
    auth_settings,
    identity_provider,
    notifications,
    audit_recorder,
    token_service,
    ledger,
):
    """FastAPI test client wired to the test database and fake collaborators."""
    from src.api import dependencies
    from src.api.main import app

    def override_get_db():
        try:
            yield test_db_session
        finally:
            pass

    app.dependency_overrides[dependencies.get_db] = override_get_db
    app.dependency_overrides[dependencies.get_auth_settings] = lambda: auth_settings
    app.dependency_overrides[dependencies.get_identity_provider] = lambda: identity_provider
    app.dependency_overrides[dependencies.get_notification_service] = lambda: notifications
    app.dependency_overrides[dependencies.get_audit_recorder] = lambda: audit_recorder
    app.dependency_overrides[dependencies.get_token_service] = lambda: token_service
    app.dependency_overrides[dependencies.get_lockout_service] = lambda: ledger

    yield TestClient(app)

    app.dependency_overrides.clear()
    dependencies.reset_providers()
