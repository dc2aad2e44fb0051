# provisioning_engine/steps/env_setup.py
"""Seed <path>/shared/.env from the repository's env template."""

import logging
from typing import Any, Dict

from provisioning_engine.core.errors import PreconditionFailed
from provisioning_engine.core.models import StepContext, StepKind, StepResult
from provisioning_engine.core.validation import parse_repository, validate_remote_path
from provisioning_engine.integrations.github import ENV_EXAMPLE_BRANCHES, ENV_EXAMPLE_PATHS
from provisioning_engine.steps.base import ProvisioningStep, require_sudo

logger = logging.getLogger(__name__)


def shared_env_path(pathname: str) -> str:
    return f"{pathname}/shared/.env"


class EnvSetupStep(ProvisioningStep):
    kind = StepKind.ENV_SETUP
    title = "Environment setup"
    required_fields = ("pathname",)
    uses_github = True

    def normalize(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        inputs["pathname"] = validate_remote_path(inputs["pathname"])
        if inputs.get("selectedRepo"):
            owner, repo = parse_repository(inputs["selectedRepo"])
            inputs["selectedRepo"] = f"{owner}/{repo}"
        return inputs

    def check_preconditions(self, application, inputs) -> None:
        super().check_preconditions(application, inputs)
        if not (inputs.get("selectedRepo") or application.selected_repo):
            raise PreconditionFailed("No repository selected. Run the deploy key step or pass selectedRepo.")

    def perform(self, ctx: StepContext) -> StepResult:
        remote = ctx.remote
        path = ctx.get("pathname")
        repository = ctx.get("selectedRepo") or ctx.application.selected_repo
        owner, repo = parse_repository(repository)
        repository = f"{owner}/{repo}"

        found = ctx.github.fetch_env_example(owner, repo)
        if not found:
            raise PreconditionFailed(
                f".env.example not found in {repository} "
                f"(branches: {', '.join(ENV_EXAMPLE_BRANCHES)}; paths: {', '.join(ENV_EXAMPLE_PATHS)})"
            )
        branch, source_path, content = found

        require_sudo(remote)

        acl = f"u:{ctx.username}:rwx"
        for args, label in ((["-m", acl], "setfacl"), (["-d", "-m", acl], "setfacl default")):
            result = remote.run(["sudo", "-n", "setfacl", *args, path], label=label, timeout=10, allow_non_zero=True)
            if not result.ok:
                logger.warning(f"[env-setup] {label} failed (continuing): {result.stderr.strip()}")

        env_path = shared_env_path(path)
        remote.run(["mkdir", "-p", f"{path}/shared"], label="mkdir shared", timeout=10)
        remote.write_file(env_path, content, label="write .env", timeout=15)

        verification = remote.run(
            ["test", "-f", env_path],
            label="verify .env",
            timeout=10,
            allow_non_zero=True,
        )
        status = "exists" if verification.ok else "missing"

        return StepResult.ok(
            f".env written to {env_path}",
            {
                "filePath": env_path,
                "verification": status,
                "source": {"repository": repository, "branch": branch, "path": source_path},
            },
            log={"filePath": env_path, "repository": repository, "branch": branch, "source": source_path},
            record_updates={"pathname": path, "selected_repo": repository},
        )
