#provisioning_engine\infrastructure\database\repository.py

"""SQLAlchemy repositories for applications, step logs, databases and suggestions."""

import logging
from dataclasses import fields
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from provisioning_engine.core.errors import ApplicationNotFound, ProvisioningPersistenceError
from provisioning_engine.domain.models import (
    ApplicationRecord,
    ApplicationStatus,
    DatabaseConfigRecord,
    StepLogEntry,
    Suggestion,
)
from provisioning_engine.infrastructure.database.database import SessionLocal
from provisioning_engine.infrastructure.database.models import (
    ApplicationORM,
    ApplicationStepORM,
    DatabaseORM,
    SuggestionORM,
    utcnow,
)

logger = logging.getLogger(__name__)


# ============================================
# Mapping Functions
# ============================================

APPLICATION_FIELDS = [f.name for f in fields(ApplicationRecord)]
APPLICATION_IDENTITY = ("host", "username", "application_name")


def application_to_domain(orm: ApplicationORM) -> ApplicationRecord:
    return ApplicationRecord(**{name: getattr(orm, name) for name in APPLICATION_FIELDS})


def step_to_domain(orm: ApplicationStepORM) -> StepLogEntry:
    return StepLogEntry(
        id=orm.id,
        application_id=orm.application_id,
        step=orm.step,
        status=orm.status,
        message=orm.message,
        created_at=orm.created_at,
        updated_at=orm.updated_at,
    )


def database_to_domain(orm: DatabaseORM) -> DatabaseConfigRecord:
    return DatabaseConfigRecord(
        id=orm.id,
        application_id=orm.application_id,
        db_type=orm.db_type,
        db_name=orm.db_name,
        db_username=orm.db_username,
        db_password=orm.db_password,
        db_port=orm.db_port,
        status=orm.status,
        created_at=orm.created_at,
    )


def suggestion_to_domain(orm: SuggestionORM) -> Suggestion:
    return Suggestion(
        type=orm.type,
        value=orm.value,
        usage_count=orm.usage_count,
        last_used=orm.last_used,
    )


def _insert(session: Session, table):
    """Dialect-specific INSERT that supports ON CONFLICT DO UPDATE."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise ProvisioningPersistenceError(f"Upsert not supported for dialect {dialect}")


# ============================================
# Base
# ============================================

class _Repository:

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        """
        Args:
            session_factory: SQLAlchemy session factory. If None, uses default production factory.
        """
        self._session_factory = session_factory or SessionLocal

    def _get_session(self) -> Session:
        return self._session_factory()

    def _fail(self, session: Session, action: str, error: SQLAlchemyError):
        session.rollback()
        logger.error(f"[db] {action} failed: {error}")
        raise ProvisioningPersistenceError(f"Failed to {action}: {error}") from error


# ============================================
# Applications
# ============================================

class ApplicationRepository(_Repository):
    """Applications keyed by (host, username, application_name)."""

    # -------------------------
    # UPSERT
    # -------------------------

    def save(self, record: ApplicationRecord) -> ApplicationRecord:
        """
        Insert or merge an application.

        Only fields that are set on `record` overwrite the stored row, so a
        partial save never clears previously discovered state.
        """
        values: Dict[str, Any] = {
            name: getattr(record, name)
            for name in APPLICATION_FIELDS
            if name not in ("id", "created_at", "updated_at") and getattr(record, name) is not None
        }
        updates = {k: v for k, v in values.items() if k not in APPLICATION_IDENTITY + ("status",)}
        updates["updated_at"] = utcnow()

        session = self._get_session()
        try:
            stmt = _insert(session, ApplicationORM).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=list(APPLICATION_IDENTITY),
                set_=updates,
            )
            session.execute(stmt)
            session.commit()

            orm = session.execute(
                select(ApplicationORM).where(
                    ApplicationORM.host == record.host,
                    ApplicationORM.username == record.username,
                    ApplicationORM.application_name == record.application_name,
                )
            ).scalar_one()
            logger.info(f"[db] saved application {record.application_name} ({record.username}@{record.host}) -> id={orm.id}")
            return application_to_domain(orm)
        except SQLAlchemyError as e:
            self._fail(session, "save application", e)
        finally:
            session.close()

    # -------------------------
    # READ
    # -------------------------

    def get(self, host: str, username: str, application_name: str) -> Optional[ApplicationRecord]:
        session = self._get_session()
        try:
            orm = session.execute(
                select(ApplicationORM).where(
                    ApplicationORM.host == host,
                    ApplicationORM.username == username,
                    ApplicationORM.application_name == application_name,
                )
            ).scalar_one_or_none()
            return application_to_domain(orm) if orm else None
        finally:
            session.close()

    def get_by_id(self, application_id: int) -> Optional[ApplicationRecord]:
        session = self._get_session()
        try:
            orm = session.get(ApplicationORM, application_id)
            return application_to_domain(orm) if orm else None
        finally:
            session.close()

    def list_by_host_user(self, host: str, username: str) -> List[ApplicationRecord]:
        session = self._get_session()
        try:
            rows = session.execute(
                select(ApplicationORM)
                .where(ApplicationORM.host == host, ApplicationORM.username == username)
                .order_by(ApplicationORM.created_at.desc(), ApplicationORM.id.desc())
            ).scalars().all()
            return [application_to_domain(orm) for orm in rows]
        finally:
            session.close()

    # -------------------------
    # UPDATE
    # -------------------------

    def update_fields(self, application_id: int, **changes: Any) -> ApplicationRecord:
        """Overwrite selected columns of an existing application."""
        unknown = set(changes) - set(APPLICATION_FIELDS)
        if unknown:
            raise ValueError(f"Unknown application fields: {', '.join(sorted(unknown))}")

        session = self._get_session()
        try:
            orm = session.get(ApplicationORM, application_id)
            if orm is None:
                raise ApplicationNotFound(f"Application {application_id} not found")
            for name, value in changes.items():
                setattr(orm, name, value)
            session.commit()
            logger.info(f"[db] application {application_id} updated: {', '.join(sorted(changes))}")
            return application_to_domain(orm)
        except SQLAlchemyError as e:
            self._fail(session, "update application", e)
        finally:
            session.close()

    def update_status(self, application_id: int, status: ApplicationStatus) -> ApplicationRecord:
        changes: Dict[str, Any] = {"status": status.value}
        if status == ApplicationStatus.COMPLETED:
            changes["completed_at"] = utcnow()
        return self.update_fields(application_id, **changes)


# ============================================
# Step log
# ============================================

class StepLogRepository(_Repository):
    """Latest outcome per (application_id, step); re-recording overwrites."""

    def record(self, application_id: int, step: str, status: str, message: Optional[str]) -> StepLogEntry:
        session = self._get_session()
        try:
            stmt = _insert(session, ApplicationStepORM).values(
                application_id=application_id,
                step=step,
                status=status,
                message=message,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["application_id", "step"],
                set_={"status": status, "message": message, "updated_at": utcnow()},
            )
            session.execute(stmt)
            session.commit()

            orm = session.execute(
                select(ApplicationStepORM).where(
                    ApplicationStepORM.application_id == application_id,
                    ApplicationStepORM.step == step,
                )
            ).scalar_one()
            logger.info(f"[db] step {step} for application {application_id} -> {status}")
            return step_to_domain(orm)
        except SQLAlchemyError as e:
            self._fail(session, "record step", e)
        finally:
            session.close()

    def get(self, application_id: int, step: str) -> Optional[StepLogEntry]:
        session = self._get_session()
        try:
            orm = session.execute(
                select(ApplicationStepORM).where(
                    ApplicationStepORM.application_id == application_id,
                    ApplicationStepORM.step == step,
                )
            ).scalar_one_or_none()
            return step_to_domain(orm) if orm else None
        finally:
            session.close()

    def list_for_application(self, application_id: int) -> List[StepLogEntry]:
        """Steps in creation order."""
        session = self._get_session()
        try:
            rows = session.execute(
                select(ApplicationStepORM)
                .where(ApplicationStepORM.application_id == application_id)
                .order_by(ApplicationStepORM.created_at.asc(), ApplicationStepORM.id.asc())
            ).scalars().all()
            return [step_to_domain(orm) for orm in rows]
        finally:
            session.close()


# ============================================
# Databases
# ============================================

class DatabaseConfigRepository(_Repository):

    def save(self, config: DatabaseConfigRecord) -> DatabaseConfigRecord:
        session = self._get_session()
        try:
            stmt = _insert(session, DatabaseORM).values(
                application_id=config.application_id,
                db_type=config.db_type,
                db_name=config.db_name,
                db_username=config.db_username,
                db_password=config.db_password,
                db_port=config.db_port,
                status=config.status,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["application_id", "db_name"],
                set_={
                    "db_type": config.db_type,
                    "db_username": config.db_username,
                    "db_password": config.db_password,
                    "db_port": config.db_port,
                    "status": config.status,
                    "updated_at": utcnow(),
                },
            )
            session.execute(stmt)
            session.commit()

            orm = session.execute(
                select(DatabaseORM).where(
                    DatabaseORM.application_id == config.application_id,
                    DatabaseORM.db_name == config.db_name,
                )
            ).scalar_one()
            logger.info(f"[db] saved database config {config.db_name} for application {config.application_id}")
            return database_to_domain(orm)
        except SQLAlchemyError as e:
            self._fail(session, "save database config", e)
        finally:
            session.close()

    def list_for_application(self, application_id: int) -> List[DatabaseConfigRecord]:
        session = self._get_session()
        try:
            rows = session.execute(
                select(DatabaseORM)
                .where(DatabaseORM.application_id == application_id)
                .order_by(DatabaseORM.created_at.desc(), DatabaseORM.id.desc())
            ).scalars().all()
            return [database_to_domain(orm) for orm in rows]
        finally:
            session.close()


# ============================================
# Suggestions
# ============================================

class SuggestionRepository(_Repository):

    def record(self, type_: str, value: str) -> None:
        if not value:
            return
        session = self._get_session()
        try:
            stmt = _insert(session, SuggestionORM).values(type=type_, value=value, usage_count=1)
            stmt = stmt.on_conflict_do_update(
                index_elements=["type", "value"],
                set_={
                    "usage_count": SuggestionORM.__table__.c.usage_count + 1,
                    "last_used": utcnow(),
                },
            )
            session.execute(stmt)
            session.commit()
        except SQLAlchemyError as e:
            self._fail(session, "record suggestion", e)
        finally:
            session.close()

    def list(self, type_: str, limit: int = 20) -> List[Suggestion]:
        session = self._get_session()
        try:
            rows = session.execute(
                select(SuggestionORM)
                .where(SuggestionORM.type == type_)
                .order_by(SuggestionORM.usage_count.desc(), SuggestionORM.last_used.desc())
                .limit(limit)
            ).scalars().all()
            return [suggestion_to_domain(orm) for orm in rows]
        finally:
            session.close()
