# provisioning_engine/steps/base.py
"""Common step contract: validate inputs, check preconditions, perform, report."""

import logging
import traceback
from typing import Any, Dict, Mapping, Tuple

from provisioning_engine.config import settings
from provisioning_engine.core.errors import PreconditionFailed, ProvisioningError
from provisioning_engine.core.models import StepContext, StepKind, StepResult
from provisioning_engine.core.validation import require_fields

logger = logging.getLogger(__name__)

TARGET_FIELDS = ("host", "username", "applicationName")

SUDO_HINT = (
    "sudo -n not permitted. Configure NOPASSWD for this user "
    "(e.g. '<user> ALL=(ALL) NOPASSWD:ALL' in /etc/sudoers.d/<user>) and retry."
)


def require_sudo(remote) -> None:
    """Fail fast instead of hanging on a sudo password prompt."""
    if not remote.sudo_available(timeout=5):
        raise PreconditionFailed(SUDO_HINT)


def error_payload(error: Exception) -> Dict[str, Any]:
    if isinstance(error, ProvisioningError):
        payload = error.to_dict()
    else:
        payload = {"type": type(error).__name__, "message": str(error)}
    if settings.expose_error_details:
        payload["stack"] = "".join(traceback.format_exception(type(error), error, error.__traceback__))
    return payload


class ProvisioningStep:
    """
    Base class for every step kind.

    Subclasses declare what they need and implement `perform`. `execute`
    never raises: every failure comes back as a failed StepResult carrying
    the HTTP status it maps to.
    """

    kind: StepKind
    title: str = "Step"
    required_fields: Tuple[str, ...] = ()
    requires_ssh: bool = True
    requires_github: bool = False
    # GitHub client without requiring a stored token (anonymous when none)
    uses_github: bool = False

    # -------------------------
    # BEFORE ANY REMOTE CALL
    # -------------------------

    def validate(self, inputs: Mapping[str, Any]) -> Dict[str, Any]:
        """Check presence and allow-lists; returns normalized inputs."""
        require_fields(inputs, TARGET_FIELDS + self.required_fields)
        return self.normalize(dict(inputs))

    def normalize(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        return inputs

    def check_preconditions(self, application, inputs: Mapping[str, Any]) -> None:
        if self.requires_ssh and not application.has_ssh_key:
            raise PreconditionFailed("SSH key not found. Please verify connection first.")
        if self.requires_github and not application.has_github_token:
            raise PreconditionFailed("GitHub token missing. Please verify connection with a GitHub token first.")

    # -------------------------
    # EXECUTION
    # -------------------------

    def execute(self, ctx: StepContext) -> StepResult:
        logger.info(f"[{self.kind.value}] starting for {ctx.application_name} ({ctx.username}@{ctx.host})")
        try:
            result = self.perform(ctx)
        except ProvisioningError as e:
            logger.error(f"[{self.kind.value}] failed: {e.message}")
            return StepResult.failed(
                f"{self.title} failed: {e.message}",
                error=error_payload(e),
                status_code=e.status_code,
                log={"error": e.message},
            )
        except Exception as e:
            logger.exception(f"[{self.kind.value}] unexpected error")
            return StepResult.failed(
                f"{self.title} failed: {e}",
                error=error_payload(e),
                status_code=500,
                log={"error": str(e)},
            )

        outcome = "success" if result.success else "failed"
        logger.info(f"[{self.kind.value}] {outcome}: {result.message}")
        return result

    def perform(self, ctx: StepContext) -> StepResult:
        raise NotImplementedError
