# provisioning_engine/core/models.py
"""Step-level value types shared by steps, orchestrator and API."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional


class StepStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class StepKind(Enum):
    """Closed set of provisioning steps. Values are the persisted step names."""
    CONNECTION_VERIFY = "connection-verify"
    DEPLOY_KEY = "deploy-key-generation"
    DATABASE_CREATE = "database-create"
    FOLDER_SETUP = "folder-setup"
    ENV_SETUP = "env-setup"
    ENV_UPDATE = "env-update"
    SSH_KEY_SETUP = "ssh-key-setup"
    SERVER_STACK_SETUP = "server-stack-setup"
    HTTPS_NGINX_SETUP = "https-nginx-setup"
    NODE_NVM_SETUP = "node-nvm-setup"
    DEPLOY_WORKFLOW_UPDATE = "deploy-workflow-update"


@dataclass
class StepResult:
    """
    Outcome of one step execution.

    `data` goes back to the caller, `log` is what ends up in the step log,
    `record_updates` are application columns the orchestrator should persist.
    """
    success: bool
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    error: Any = None
    status_code: int = 200
    log: Dict[str, Any] = field(default_factory=dict)
    record_updates: Dict[str, Any] = field(default_factory=dict)
    database_config: Optional[Dict[str, Any]] = None

    @classmethod
    def ok(cls, message: str, data: Optional[Dict[str, Any]] = None, **kwargs) -> "StepResult":
        return cls(success=True, message=message, data=data or {}, **kwargs)

    @classmethod
    def failed(cls, message: str, error: Any = None, status_code: int = 500, **kwargs) -> "StepResult":
        return cls(
            success=False,
            message=message,
            error=error if error is not None else message,
            status_code=status_code,
            **kwargs,
        )

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": self.success, "message": self.message}
        if self.success:
            body["data"] = self.data
        else:
            body["error"] = self.error
            if self.data:
                body["data"] = self.data
        return body


@dataclass(frozen=True)
class StepContext:
    """
    Immutable input for one step run.

    Built once by the orchestrator from the stored application record and
    the request body; steps never reach into each other.
    """
    application: Any
    inputs: Mapping[str, Any]
    remote: Any = None
    github: Any = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        object.__setattr__(self, "inputs", MappingProxyType(dict(self.inputs)))

    def get(self, name: str, default: Any = None) -> Any:
        value = self.inputs.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            return default
        return value

    @property
    def host(self) -> str:
        return self.application.host

    @property
    def username(self) -> str:
        return self.application.username

    @property
    def application_name(self) -> str:
        return self.application.application_name
