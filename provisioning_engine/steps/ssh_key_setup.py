# provisioning_engine/steps/ssh_key_setup.py
"""CI deploy access: a second key pair whose private half becomes a GitHub Actions secret."""

from typing import Any, Dict

from provisioning_engine.core.models import StepContext, StepKind, StepResult
from provisioning_engine.core.validation import application_slug, derive_secret_name, parse_repository
from provisioning_engine.remote.keys import (
    SSH_DIR,
    authorize_key,
    ensure_keypair,
    ensure_ssh_dir,
    read_public_key,
)
from provisioning_engine.steps.base import ProvisioningStep


class SSHKeySetupStep(ProvisioningStep):
    kind = StepKind.SSH_KEY_SETUP
    title = "CI SSH key setup"
    required_fields = ("selectedRepo",)
    requires_github = True

    def normalize(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        owner, repo = parse_repository(inputs["selectedRepo"])
        inputs["selectedRepo"] = f"{owner}/{repo}"
        return inputs

    def perform(self, ctx: StepContext) -> StepResult:
        remote = ctx.remote
        repository = ctx.get("selectedRepo")
        owner, repo = repository.split("/")

        slug = application_slug(ctx.application_name)
        key_name = f"github_actions_{slug}"
        secret_name = derive_secret_name(ctx.application_name)

        ensure_ssh_dir(remote)
        generated = ensure_keypair(remote, key_name, f"github-actions-{slug}")
        public_key = read_public_key(remote, key_name)
        private_key = remote.read_file(f"{SSH_DIR}/{key_name}", label=f"read {key_name}")
        appended = authorize_key(remote, public_key)

        ctx.github.put_actions_secret(owner, repo, secret_name, private_key)

        return StepResult.ok(
            f"CI key stored as secret {secret_name}",
            {
                "keyName": key_name,
                "secretName": secret_name,
                "publicKeyAdded": True,
                "publicKeyAppended": appended,
                "keyGenerated": generated,
                "repository": repository,
                "instructions": (
                    f"Add this secret to your GitHub Actions workflow: "
                    f"${{{{ secrets.{secret_name} }}}}"
                ),
            },
            log={
                "keyName": key_name,
                "secretName": secret_name,
                "repository": repository,
                "keyGenerated": generated,
                "publicKeyAppended": appended,
            },
            record_updates={"private_key_secret_name": secret_name, "selected_repo": repository},
        )
