# provisioning_engine/steps/connection_verify.py
"""Check that the server accepts the key and, when given, that the GitHub token is valid."""

from typing import Any, Dict

from provisioning_engine.core.errors import ExternalAPIError, RemoteConnectionError
from provisioning_engine.core.models import StepContext, StepKind, StepResult
from provisioning_engine.core.validation import validate_port
from provisioning_engine.steps.base import ProvisioningStep


class ConnectionVerifyStep(ProvisioningStep):
    """
    Pure read/check. The orchestrator hands over an unconnected session;
    the step connects it and reports what worked instead of raising.
    """

    kind = StepKind.CONNECTION_VERIFY
    title = "Connection verification"
    required_fields = ("privateKeyContent",)
    requires_ssh = False

    def normalize(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        inputs["port"] = validate_port(inputs.get("port") or 22)
        return inputs

    def check_preconditions(self, application, inputs) -> None:
        pass

    def perform(self, ctx: StepContext) -> StepResult:
        ssh: Dict[str, Any] = {
            "connected": False,
            "host": ctx.host,
            "username": ctx.username,
            "error": None,
        }
        try:
            ctx.remote.connect()
            ssh["connected"] = True
        except RemoteConnectionError as e:
            ssh["error"] = e.message

        github = None
        github_status = 200
        if ctx.github is not None:
            github = {"connected": False, "username": None, "error": None}
            try:
                user = ctx.github.get_user()
                github["connected"] = True
                github["username"] = user.get("login")
            except ExternalAPIError as e:
                github["error"] = e.message
                github_status = e.status_code

        connections = {"ssh": ssh, "github": github}
        log = {
            "ssh": {"connected": ssh["connected"], "error": ssh["error"]},
            "github": github,
        }

        if not ssh["connected"]:
            return StepResult.failed(
                "SSH connection failed",
                error=ssh["error"],
                status_code=500,
                data={"connections": connections},
                log=log,
            )

        if github is not None and not github["connected"]:
            return StepResult.failed(
                "GitHub connection failed",
                error=github["error"],
                status_code=github_status,
                data={"connections": connections},
                log=log,
            )

        updates = {"github_username": github["username"]} if github else {}
        return StepResult.ok(
            "Connection verification completed",
            {"connections": connections},
            log=log,
            record_updates=updates,
        )
