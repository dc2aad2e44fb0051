# provisioning_engine/orchestrator/step_orchestrator.py
"""Step orchestrator - binds records, sessions, steps and the step log per request."""

import json
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from provisioning_engine.config import settings
from provisioning_engine.core.errors import (
    ApplicationNotFound,
    PreconditionFailed,
    ProvisioningValidationError,
    RemoteConnectionError,
)
from provisioning_engine.core.models import StepContext, StepKind, StepResult, StepStatus
from provisioning_engine.core.state_machine import StepRun, StepStateMachine
from provisioning_engine.domain.models import (
    ApplicationRecord,
    ApplicationStatus,
    DatabaseConfigRecord,
    SuggestionType,
)
from provisioning_engine.infrastructure.database.repository import (
    ApplicationRepository,
    DatabaseConfigRepository,
    StepLogRepository,
    SuggestionRepository,
)
from provisioning_engine.integrations.github import GitHubClient
from provisioning_engine.orchestrator.locks import ApplicationLocks
from provisioning_engine.orchestrator.session_registry import SessionRegistry
from provisioning_engine.remote.credentials import SSHCredentials
from provisioning_engine.remote.session import RemoteSession
from provisioning_engine.steps.base import ProvisioningStep, error_payload
from provisioning_engine.steps.registry import STEP_REGISTRY

logger = logging.getLogger(__name__)

NOT_FOUND_HINT = "Application not found. Please verify connection first."


def default_session_factory(credentials: SSHCredentials) -> RemoteSession:
    return RemoteSession(credentials, default_timeout=settings.default_command_timeout)


def default_github_factory(token: Optional[str]) -> GitHubClient:
    return GitHubClient(
        token,
        api_url=settings.github_api_url,
        raw_url=settings.github_raw_url,
        timeout=settings.github_timeout,
        raw_timeout=settings.github_raw_timeout,
    )


class StepOrchestrator:
    """
    Request-level control plane.

    Flow for one step request:
    1. Validate required fields (no remote call before this passes)
    2. Under the per-application lock:
       a. Resolve the application by (host, username, applicationName)
       b. Check the step's preconditions against the stored record
       c. Open a fresh SSH session (and GitHub client if needed)
       d. Execute the step, always closing the session
       e. Persist derived state and exactly one step log entry
    """

    def __init__(
        self,
        application_repo: ApplicationRepository,
        step_log_repo: StepLogRepository,
        database_repo: DatabaseConfigRepository,
        suggestion_repo: SuggestionRepository,
        *,
        session_factory: Callable[[SSHCredentials], Any] = default_session_factory,
        github_factory: Callable[[Optional[str]], Any] = default_github_factory,
        locks: Optional[ApplicationLocks] = None,
        registry: Optional[SessionRegistry] = None,
        steps: Optional[Mapping[StepKind, ProvisioningStep]] = None,
    ):
        self._applications = application_repo
        self._step_log = step_log_repo
        self._databases = database_repo
        self._suggestions = suggestion_repo
        self._session_factory = session_factory
        self._github_factory = github_factory
        self._locks = locks or ApplicationLocks()
        self._registry = registry or SessionRegistry(ttl_seconds=settings.session_ttl_seconds)
        self._steps = dict(steps or STEP_REGISTRY)

    # ============================================
    # CONNECTION VERIFY
    # ============================================

    def verify_connection(self, payload: Mapping[str, Any]) -> StepResult:
        """
        Check SSH (and GitHub, when a token is given) and create or merge the
        application record. The record is only written when SSH connects.
        """
        step = self._steps[StepKind.CONNECTION_VERIFY]
        inputs = step.validate(payload)
        target = (inputs["host"], inputs["username"], inputs["applicationName"])
        token = inputs.get("githubToken") or None

        credentials = SSHCredentials(
            host=target[0],
            username=target[1],
            private_key=inputs["privateKeyContent"],
            port=inputs["port"],
            passphrase=inputs.get("passphrase") or None,
            ready_timeout=settings.ssh_ready_timeout,
        )

        with self._locks.hold(target):
            existing = self._applications.get(*target)
            application = existing or ApplicationRecord(
                host=target[0], username=target[1], application_name=target[2], port=inputs["port"]
            )

            run = StepStateMachine.transition(StepRun(step.kind), StepStatus.RUNNING)
            remote = self._session_factory(credentials)
            github = self._github_factory(token) if token else None
            try:
                result = step.execute(StepContext(application, inputs, remote=remote, github=github))
            finally:
                remote.close()
            StepStateMachine.transition(run, StepStatus.SUCCESS if result.success else StepStatus.FAILED)

            connections = result.data.get("connections") or {}
            ssh_ok = bool((connections.get("ssh") or {}).get("connected"))
            github_ok = bool((connections.get("github") or {}).get("connected"))

            record = existing
            entry = None
            if ssh_ok:
                entry = self._registry.register(*target)
                record = self._applications.save(
                    ApplicationRecord(
                        host=target[0],
                        username=target[1],
                        application_name=target[2],
                        port=inputs["port"],
                        ssh_private_key=inputs["privateKeyContent"],
                        github_token=token if github_ok else None,
                        github_username=result.record_updates.get("github_username"),
                        session_id=entry.session_id,
                    )
                )
                entry.application_id = record.id
                self._remember(target)

            if record is not None:
                self._record_log(record, step, result, run)

        result.data = {
            "sessionId": entry.session_id if entry else None,
            "applicationId": record.id if record else None,
            **result.data,
        }
        return result

    def _remember(self, target) -> None:
        host, username, application_name = target
        self._suggestions.record(SuggestionType.HOST.value, host)
        self._suggestions.record(SuggestionType.USERNAME.value, username)
        self._suggestions.record(SuggestionType.APPLICATION_NAME.value, application_name)

    # ============================================
    # STEPS
    # ============================================

    def run_step(self, kind: StepKind, payload: Mapping[str, Any]) -> StepResult:
        """
        Run one step against a verified application.

        Raises ProvisioningError for validation, lookup and precondition
        failures; everything after that comes back as a StepResult.
        """
        step = self._steps[kind]
        inputs = step.validate(payload)
        target = (inputs["host"], inputs["username"], inputs["applicationName"])

        with self._locks.hold(target):
            application = self._applications.get(*target)
            if application is None:
                raise ApplicationNotFound(NOT_FOUND_HINT)

            try:
                step.check_preconditions(application, inputs)
            except PreconditionFailed as e:
                run = StepStateMachine.transition(StepRun(kind), StepStatus.FAILED)
                failed = StepResult.failed(e.message, error=e.to_dict(), status_code=e.status_code, log={"error": e.message})
                self._record_log(application, step, failed, run)
                raise

            run = StepStateMachine.transition(StepRun(kind), StepStatus.RUNNING)
            result = self._execute(step, application, inputs)
            StepStateMachine.transition(run, StepStatus.SUCCESS if result.success else StepStatus.FAILED)

            if result.success:
                application = self._apply(application, result)
            self._record_log(application, step, result, run)
            self._track_status(application, result.success)

        return result

    def _execute(self, step: ProvisioningStep, application: ApplicationRecord, inputs: Dict[str, Any]) -> StepResult:
        github = None
        if step.requires_github or step.uses_github:
            github = self._github_factory(application.github_token or None)

        remote = None
        if step.requires_ssh:
            remote = self._session_factory(self._credentials(application))
            try:
                remote.connect()
            except RemoteConnectionError as e:
                logger.error(f"[orchestrator] {step.kind.value}: SSH connect failed for {application.application_name}: {e.message}")
                remote.close()
                return StepResult.failed(
                    f"{step.title} failed: {e.message}",
                    error=error_payload(e),
                    status_code=e.status_code,
                    log={"error": e.message},
                )

        try:
            return step.execute(StepContext(application, inputs, remote=remote, github=github))
        finally:
            if remote is not None:
                remote.close()

    @staticmethod
    def _credentials(application: ApplicationRecord) -> SSHCredentials:
        return SSHCredentials(
            host=application.host,
            username=application.username,
            private_key=application.ssh_private_key,
            port=application.port or 22,
            ready_timeout=settings.ssh_ready_timeout,
        )

    def _apply(self, application: ApplicationRecord, result: StepResult) -> ApplicationRecord:
        updates = {k: v for k, v in result.record_updates.items() if v is not None}
        if updates:
            application = self._applications.update_fields(application.id, **updates)

        if result.database_config:
            self._databases.save(
                DatabaseConfigRecord(application_id=application.id, status="created", **result.database_config)
            )
        return application

    def _record_log(self, application: ApplicationRecord, step: ProvisioningStep, result: StepResult, run: StepRun) -> None:
        message = json.dumps(
            {"message": result.message, **result.log, "durationMs": run.duration_ms()},
            default=str,
        )
        status = StepStatus.SUCCESS if result.success else StepStatus.FAILED
        self._step_log.record(application.id, step.kind.value, status.value, message)

    def _track_status(self, application: ApplicationRecord, success: bool) -> None:
        if application.status == ApplicationStatus.COMPLETED.value:
            return
        status = ApplicationStatus.IN_PROGRESS if success else ApplicationStatus.FAILED
        if application.status != status.value:
            self._applications.update_status(application.id, status)

    # ============================================
    # READS
    # ============================================

    def _require(self, host: str, username: str, application_name: str) -> ApplicationRecord:
        application = self._applications.get(host, username, application_name)
        if application is None:
            raise ApplicationNotFound(NOT_FOUND_HINT)
        return application

    def list_steps(self, host: str, username: str, application_name: str) -> List[Dict[str, Any]]:
        application = self._require(host, username, application_name)
        return [entry.to_dict() for entry in self._step_log.list_for_application(application.id)]

    def list_applications(self, host: str, username: str) -> List[Dict[str, Any]]:
        return [record.to_summary() for record in self._applications.list_by_host_user(host, username)]

    def list_databases(self, host: str, username: str, application_name: str) -> List[Dict[str, Any]]:
        application = self._require(host, username, application_name)
        return [config.to_dict() for config in self._databases.list_for_application(application.id)]

    def update_status(self, host: str, username: str, application_name: str, status: str) -> Dict[str, Any]:
        try:
            new_status = ApplicationStatus(status)
        except ValueError:
            allowed = ", ".join(s.value for s in ApplicationStatus)
            raise ProvisioningValidationError(f"Invalid status: {status} (expected one of {allowed})")
        application = self._require(host, username, application_name)
        return self._applications.update_status(application.id, new_status).to_summary()

    def resolve_session(self, session_id: str) -> Dict[str, Any]:
        entry = self._registry.get(session_id)
        if entry is None:
            raise ApplicationNotFound("Session not found or expired. Please verify connection again.")
        application = self._require(*entry.target)
        return {
            "sessionId": entry.session_id,
            "application": application.to_summary(),
            "steps": [log.to_dict() for log in self._step_log.list_for_application(application.id)],
        }

    def suggestions(self, type_: str, limit: int = 20) -> List[Dict[str, Any]]:
        try:
            kind = SuggestionType(type_)
        except ValueError:
            allowed = ", ".join(s.value for s in SuggestionType)
            raise ProvisioningValidationError(f"Unknown suggestion type: {type_} (expected one of {allowed})")
        return [s.to_dict() for s in self._suggestions.list(kind.value, limit=limit)]
