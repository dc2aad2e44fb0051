#provisioning_engine\infrastructure\database\models.py
"""SQLAlchemy ORM models for database tables."""

from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Integer, DateTime, Text, ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship

from provisioning_engine.infrastructure.database.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApplicationORM(Base):
    """
    Applications table - one row per provisioning target.

    Indexes:
    - Unique (host, username, application_name): saving the same target merges
    - Index on (host, username) for listing a server account's applications
    """

    __tablename__ = "applications"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Identity
    host = Column(String(255), nullable=False)
    username = Column(String(255), nullable=False)
    application_name = Column(String(255), nullable=False)
    port = Column(Integer, nullable=False, default=22)

    # Credentials (stored verbatim)
    ssh_private_key = Column(Text, nullable=True)
    github_token = Column(Text, nullable=True)
    github_username = Column(String(255), nullable=True)

    # Derived state
    selected_repo = Column(String(255), nullable=True)
    domain = Column(String(255), nullable=True)
    pathname = Column(String(1024), nullable=True)
    private_key_secret_name = Column(String(255), nullable=True)
    php_version = Column(String(20), nullable=True)
    db_type = Column(String(20), nullable=True)
    session_id = Column(String(64), nullable=True)

    # Lifecycle
    status = Column(String(32), nullable=False, default="pending")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    steps = relationship("ApplicationStepORM", back_populates="application", cascade="all, delete-orphan")
    databases = relationship("DatabaseORM", back_populates="application", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("host", "username", "application_name", name="uq_applications_target"),
        Index("idx_applications_host_user", "host", "username"),
    )

    def __repr__(self):
        return f"<ApplicationORM(id={self.id}, target={self.username}@{self.host}, app={self.application_name})>"


class ApplicationStepORM(Base):
    """
    Step log table - latest outcome per (application, step).

    Re-running a step overwrites status/message; created_at keeps the first run.
    """

    __tablename__ = "application_steps"

    id = Column(Integer, primary_key=True, autoincrement=True)
    application_id = Column(
        Integer,
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
    )
    step = Column(String(64), nullable=False)
    status = Column(String(16), nullable=False)
    message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    application = relationship("ApplicationORM", back_populates="steps")

    __table_args__ = (
        UniqueConstraint("application_id", "step", name="uq_application_steps_step"),
        Index("idx_application_steps_created", "application_id", "created_at"),
    )

    def __repr__(self):
        return f"<ApplicationStepORM(app={self.application_id}, step={self.step}, status={self.status})>"


class DatabaseORM(Base):
    """Databases provisioned for an application."""

    __tablename__ = "databases"

    id = Column(Integer, primary_key=True, autoincrement=True)
    application_id = Column(
        Integer,
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
    )
    db_type = Column(String(20), nullable=False)
    db_name = Column(String(64), nullable=False)
    db_username = Column(String(64), nullable=False)
    db_password = Column(Text, nullable=True)
    db_port = Column(Integer, nullable=True)
    status = Column(String(32), nullable=False, default="created")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    application = relationship("ApplicationORM", back_populates="databases")

    __table_args__ = (
        UniqueConstraint("application_id", "db_name", name="uq_databases_name"),
    )


class AdminUserORM(Base):
    """Operator accounts for the admin dashboard (table only, no API)."""

    __tablename__ = "admin_users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(255), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class SuggestionORM(Base):
    """Previously entered form values with a usage counter."""

    __tablename__ = "suggestions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(String(32), nullable=False)
    value = Column(String(255), nullable=False)
    usage_count = Column(Integer, nullable=False, default=1)
    last_used = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("type", "value", name="uq_suggestions_value"),
        Index("idx_suggestions_type_usage", "type", "usage_count"),
    )
