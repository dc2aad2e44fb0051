#provisioning_engine\container.py

"""Dependency injection container - wires repositories and the orchestrator together."""

from provisioning_engine.infrastructure.database.repository import (
    ApplicationRepository,
    DatabaseConfigRepository,
    StepLogRepository,
    SuggestionRepository,
)
from provisioning_engine.orchestrator.locks import ApplicationLocks
from provisioning_engine.orchestrator.session_registry import SessionRegistry
from provisioning_engine.orchestrator.step_orchestrator import StepOrchestrator
from provisioning_engine.config import settings


# ============================================
# REPOSITORIES
# ============================================

application_repository = ApplicationRepository()
step_log_repository = StepLogRepository()
database_repository = DatabaseConfigRepository()
suggestion_repository = SuggestionRepository()


# ============================================
# SERVICES
# ============================================

session_registry = SessionRegistry(ttl_seconds=settings.session_ttl_seconds)

orchestrator = StepOrchestrator(
    application_repo=application_repository,
    step_log_repo=step_log_repository,
    database_repo=database_repository,
    suggestion_repo=suggestion_repository,
    locks=ApplicationLocks(),
    registry=session_registry,
)
