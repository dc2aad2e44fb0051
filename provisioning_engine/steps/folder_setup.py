# provisioning_engine/steps/folder_setup.py
"""Create the application directory and hand it to the SSH user."""

from typing import Any, Dict

from provisioning_engine.core.models import StepContext, StepKind, StepResult
from provisioning_engine.core.validation import validate_remote_path
from provisioning_engine.steps.base import ProvisioningStep, require_sudo


class FolderSetupStep(ProvisioningStep):
    kind = StepKind.FOLDER_SETUP
    title = "Folder setup"
    required_fields = ("pathname",)

    def normalize(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        inputs["pathname"] = validate_remote_path(inputs["pathname"])
        return inputs

    def perform(self, ctx: StepContext) -> StepResult:
        remote = ctx.remote
        path = ctx.get("pathname")
        owner = f"{ctx.username}:{ctx.username}"

        require_sudo(remote)
        remote.run(["sudo", "-n", "mkdir", "-p", path], label="mkdir", timeout=10)
        remote.run(["sudo", "-n", "chown", "-R", owner, path], label="chown", timeout=10)
        remote.run(["sudo", "-n", "chmod", "-R", "755", path], label="chmod", timeout=10)

        return StepResult.ok(
            f"Folder {path} is ready",
            {"pathname": path, "owner": owner},
            log={"pathname": path, "owner": owner},
            record_updates={"pathname": path},
        )
