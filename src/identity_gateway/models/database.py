import os
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Generator, Optional

from loguru import logger
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Integer,
    String,
    Text,
    create_engine,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

# Create base class for all models
Base = declarative_base()

_engine_instance = None
_engine_url = None


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored here is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _new_id() -> str:
    return str(uuid.uuid4())


class UserAccount(Base):
    """Identity record for a registered customer"""
    __tablename__ = 'users'

    id = Column(String(36), primary_key=True, default=_new_id)
    username = Column(String(35), unique=True, nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    national_id = Column(String(13), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    roles = Column(JSON, nullable=False, default=lambda: ["USER"])

    # KYC profile
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    phone_number = Column(String(30), nullable=True)
    date_of_birth = Column(Date, nullable=True)
    gender = Column(String(1), nullable=True)  # M, F
    address = Column(Text, nullable=True)
    city = Column(String(100), nullable=True)
    province = Column(String(100), nullable=True)
    postal_code = Column(String(10), nullable=True)

    # Lockout ledger
    failed_login_attempts = Column(Integer, default=0, nullable=False)
    last_failed_login_time = Column(DateTime(timezone=True), nullable=True)
    locked_until = Column(DateTime(timezone=True), nullable=True)
    last_login_time = Column(DateTime(timezone=True), nullable=True)
    last_login_ip = Column(String(45), nullable=True)  # IPv6 max length

    # Password reset (SHA-256 digest of the emailed token)
    password_reset_token = Column(String(64), nullable=True, index=True)
    password_reset_expiry = Column(DateTime(timezone=True), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    is_email_verified = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    registration_ip = Column(String(45), nullable=True)

    def __repr__(self):
        return (
            f"<UserAccount(id={self.id}, username={self.username}, "
            f"attempts={self.failed_login_attempts}, locked={self.locked_until})>"
        )


# Database setup functions
def get_database_path() -> str:
    """Get the path to the SQLite database file"""
    from src import config
    config.DATA_DIR.mkdir(parents=True, exist_ok=True)
    return str(config.DATABASE_PATH)


def create_engine_instance():
    """Create SQLAlchemy engine instance"""
    global _engine_instance, _engine_url
    database_url = os.environ.get("DATABASE_URL", "").strip()
    if database_url:
        target_url = database_url
    else:
        db_path = get_database_path()
        target_url = f"sqlite:///{db_path}"

    if _engine_instance is not None and _engine_url == target_url:
        return _engine_instance

    logger.info(f"Creating database engine: {target_url}")
    connect_args = {"check_same_thread": False} if target_url.startswith("sqlite") else {}
    engine_kwargs = {}
    if target_url in {"sqlite:///:memory:", "sqlite://"}:
        # Keep one shared in-memory DB connection for tests.
        engine_kwargs["poolclass"] = StaticPool

    engine = create_engine(
        target_url,
        echo=False,
        connect_args=connect_args,
        **engine_kwargs,
    )

    _engine_instance = engine
    _engine_url = target_url

    return engine


def create_session_factory():
    """Create session factory"""
    engine = create_engine_instance()
    return sessionmaker(bind=engine, expire_on_commit=False)


def create_tables():
    """Create all database tables"""
    engine = create_engine_instance()
    logger.info("Creating database tables...")
    Base.metadata.create_all(engine)
    logger.info("Database tables created successfully")


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Get database session (context manager)"""
    SessionLocal = create_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_database():
    """Initialize the database schema."""
    logger.info("Initializing database...")
    create_tables()
    logger.info("Database initialized successfully")


# Audit models share Base and must be registered before create_all()
from src.identity_gateway.models import audit_log  # noqa: E402,F401
