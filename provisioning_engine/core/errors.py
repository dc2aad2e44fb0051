# provisioning_engine/core/errors.py

from typing import Any, Dict, List, Optional


# -----------------------------
# Base Errors
# -----------------------------

class ProvisioningError(Exception):
    """Base class for all provisioning engine errors."""

    status_code: int = 500

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": type(self).__name__, "message": self.message}
        if self.details:
            payload.update(self.details)
        return payload


# -----------------------------
# Request Errors
# -----------------------------

class ProvisioningValidationError(ProvisioningError):
    """Required field missing or value rejected by an allow-list."""

    status_code = 400


class MissingFieldsError(ProvisioningValidationError):

    def __init__(self, fields: List[str]):
        super().__init__(
            f"Missing required fields: {', '.join(fields)}",
            details={"fields": list(fields)},
        )
        self.fields = list(fields)


class ApplicationNotFound(ProvisioningError):
    """Referenced application (or session) does not exist."""

    status_code = 404


class PreconditionFailed(ProvisioningError):
    """Application exists but lacks something the step depends on."""

    status_code = 400


# -----------------------------
# Remote / External Errors
# -----------------------------

class RemoteConnectionError(ProvisioningError):
    """SSH authentication or network failure."""

    status_code = 500


class CommandTimeoutError(ProvisioningError):
    """A remote command did not finish within its window."""

    status_code = 500

    def __init__(self, label: str, timeout: float):
        super().__init__(
            f"Timeout ({timeout:g}s) running {label}",
            details={"label": label, "timeout": timeout},
        )
        self.label = label
        self.timeout = timeout


class RemoteCommandError(ProvisioningError):
    """A remote command exited non-zero where zero was required."""

    status_code = 500

    def __init__(self, label: str, exit_code: int, stderr: str = ""):
        message = f"{label} exited with {exit_code}"
        if stderr.strip():
            message = f"{message}: {stderr.strip()}"
        super().__init__(
            message,
            details={"label": label, "exitCode": exit_code, "stderr": stderr.strip()},
        )
        self.label = label
        self.exit_code = exit_code
        self.stderr = stderr


class ExternalAPIError(ProvisioningError):
    """A third-party API (GitHub) answered with a non-2xx status."""

    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        body: Any = None,
    ):
        details: Dict[str, Any] = {}
        if status is not None:
            details["status"] = status
        if body not in (None, ""):
            details["data"] = body
        super().__init__(message, details=details)
        self.status = status
        self.body = body
        if status == 401:
            self.status_code = 401


# -----------------------------
# Persistence Errors
# -----------------------------

class ProvisioningPersistenceError(ProvisioningError):
    pass
