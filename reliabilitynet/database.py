"""
Database schema and connection management.

Uses SQLAlchemy. SQLite is the default store; PostgreSQL works unchanged.
Every pseudonymous key on NetworkIdentity and the property side of
IdentityLink carry a uniqueness constraint, and creates go through
insert_or_ignore() so concurrent writers converge on one row.
"""

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

Base = declarative_base()

DbLocation = Union[str, Path]


def new_id() -> str:
    return str(uuid4())


class Business(Base):
    """Business account. Only the fields the core consumes as guards."""

    __tablename__ = "businesses"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    network_synced = Column(Boolean, nullable=False, default=False)
    customer_count_limit = Column(Integer, nullable=True)  # None = unlimited
    created_at = Column(DateTime, nullable=False, default=datetime.now)


class Customer(Base):
    """Business-owned customer record. Never shared across businesses."""

    __tablename__ = "customers"

    id = Column(String, primary_key=True, default=new_id)
    business_id = Column(String, ForeignKey("businesses.id"), nullable=False, index=True)
    full_name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    email = Column(String, nullable=True)
    address = Column(String, nullable=True)
    city = Column(String, nullable=True)
    state = Column(String, nullable=True)
    county = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)


class Event(Base):
    """Severity-tagged note a business logged against one of its customers."""

    __tablename__ = "events"
    __table_args__ = (
        CheckConstraint("severity BETWEEN 1 AND 5", name="ck_events_severity_range"),
    )

    id = Column(String, primary_key=True, default=new_id)
    customer_id = Column(String, ForeignKey("customers.id"), nullable=False, index=True)
    business_id = Column(String, ForeignKey("businesses.id"), nullable=False, index=True)
    severity = Column(Integer, nullable=False)
    note_type = Column(String, nullable=True)
    note_text = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)


class PropertyRecord(Base):
    """External property-data row. Read-only here; a separate scraper fills it."""

    __tablename__ = "property_records"

    id = Column(String, primary_key=True, default=new_id)
    county = Column(String, nullable=True, index=True)
    municipality = Column(String, nullable=True)
    address_full = Column(String, nullable=True)
    owner_name = Column(String, nullable=True)
    owner_name_secondary = Column(String, nullable=True)
    property_class = Column(String, nullable=True)


class NetworkIdentity(Base):
    """Pseudonymous cross-business aggregate keyed by hashed contact details."""

    __tablename__ = "network_identities"

    id = Column(String, primary_key=True, default=new_id)
    source = Column(String, nullable=False, default="network")  # network, property_enrichment, merged

    phone_hash = Column(String(64), nullable=True, unique=True)
    email_hash = Column(String(64), nullable=True, unique=True)
    address_hash = Column(String(64), nullable=True, unique=True)
    phone_last_four = Column(String(4), nullable=True)
    email_domain = Column(String, nullable=True)
    address_partial = Column(String, nullable=True)

    weighted_score = Column(Integer, nullable=False, default=0)
    risk_tier = Column(String, nullable=False, default="unknown")
    total_incidents = Column(Integer, nullable=False, default=0)
    total_positive_events = Column(Integer, nullable=False, default=0)
    clean_streak_months = Column(Integer, nullable=False, default=0)
    seen_by_business_count = Column(Integer, nullable=False, default=0)

    first_seen_at = Column(DateTime, nullable=False, default=datetime.now)
    last_seen_at = Column(DateTime, nullable=False, default=datetime.now)
    last_incident_at = Column(DateTime, nullable=True)


class IdentityLink(Base):
    """Join between an external property record and a NetworkIdentity."""

    __tablename__ = "identity_links"
    __table_args__ = (
        CheckConstraint(
            "match_confidence >= 0.0 AND match_confidence <= 1.0",
            name="ck_identity_links_confidence_range",
        ),
    )

    id = Column(String, primary_key=True, default=new_id)
    property_record_id = Column(
        String, ForeignKey("property_records.id"), nullable=False, unique=True
    )
    identity_id = Column(
        String, ForeignKey("network_identities.id"), nullable=False, index=True
    )
    match_type = Column(String, nullable=False)  # address, auto_generated, name
    match_confidence = Column(Float, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)


class IdentitySighting(Base):
    """One business having counted toward an identity's seen_by_business_count."""

    __tablename__ = "identity_sightings"
    __table_args__ = (
        UniqueConstraint("business_id", "identity_id", name="uq_identity_sightings_business_identity"),
    )

    id = Column(String, primary_key=True, default=new_id)
    business_id = Column(String, ForeignKey("businesses.id"), nullable=False)
    identity_id = Column(
        String, ForeignKey("network_identities.id"), nullable=False, index=True
    )
    created_at = Column(DateTime, nullable=False, default=datetime.now)


def database_url(db: DbLocation) -> str:
    """
    Turn a filesystem path or a SQLAlchemy URL into a URL.

    Args:
        db: Path to a SQLite file, or any SQLAlchemy database URL

    Returns:
        Database URL string
    """
    text = str(db)
    if "://" in text:
        return text
    path = Path(text)
    path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{path}"


def _enable_sqlite_savepoints(engine: Engine) -> None:
    # pysqlite's implicit transaction handling breaks SAVEPOINT; let
    # SQLAlchemy emit BEGIN itself.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_store_engine(db: DbLocation) -> Engine:
    url = database_url(db)
    engine = create_engine(url)
    if engine.dialect.name == "sqlite":
        _enable_sqlite_savepoints(engine)
    return engine


def init_database(db: DbLocation) -> None:
    """
    Initialize database and create tables.

    Args:
        db: Path to SQLite database file or database URL
    """
    engine = create_store_engine(db)
    Base.metadata.create_all(engine)
    engine.dispose()


def session_factory(db: DbLocation) -> sessionmaker:
    """
    Build a session factory bound to one engine.

    Args:
        db: Path to SQLite database file or database URL

    Returns:
        SQLAlchemy sessionmaker
    """
    return sessionmaker(bind=create_store_engine(db), expire_on_commit=False)


def get_session(db: DbLocation) -> Session:
    """
    Get database session.

    Args:
        db: Path to SQLite database file or database URL

    Returns:
        SQLAlchemy session
    """
    return session_factory(db)()


def _dialect_insert(dialect_name: str):
    if dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
        return insert
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
        return insert
    return None


def insert_or_ignore(session: Session, model, values: Dict[str, Any]) -> Optional[str]:
    """
    Insert a row unless a unique constraint already holds one of its keys.

    Runs as a single INSERT ... ON CONFLICT DO NOTHING RETURNING id, so the
    existence check and the write cannot be separated by another writer.
    Dialects without that clause fall back to a savepoint-guarded insert.

    Args:
        session: Active session
        model: Mapped class with a string ``id`` primary key
        values: Column values for the new row

    Returns:
        The new row id, or None if a conflicting row already exists
    """
    insert = _dialect_insert(session.get_bind().dialect.name)
    if insert is not None:
        stmt = (
            insert(model)
            .values(**values)
            .on_conflict_do_nothing()
            .returning(model.id)
        )
        return session.execute(stmt).scalar_one_or_none()

    row = model(**values)
    try:
        with session.begin_nested():
            session.add(row)
    except IntegrityError:
        return None
    return row.id
