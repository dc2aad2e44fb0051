# provisioning_engine/steps/deploy_key.py
"""Per-repository deploy key: generate on the server, register on GitHub, wire an ssh alias."""

import logging
from typing import Any, Dict, List

from provisioning_engine.core.errors import CommandTimeoutError
from provisioning_engine.core.models import StepContext, StepKind, StepResult
from provisioning_engine.core.validation import application_slug, parse_repository
from provisioning_engine.remote.keys import SSH_DIR, ensure_keypair, ensure_ssh_dir, read_public_key
from provisioning_engine.steps.base import ProvisioningStep

logger = logging.getLogger(__name__)

SSH_CONFIG = f"{SSH_DIR}/config"
BLOCK_HEADER = "# Deploy key for "


def render_host_block(repository: str, application: str, host_alias: str, identity_file: str) -> str:
    return (
        f"{BLOCK_HEADER}{repository} ({application})\n"
        f"Host {host_alias}\n"
        f"  HostName github.com\n"
        f"  User git\n"
        f"  IdentityFile {identity_file}\n"
        f"  IdentitiesOnly yes\n"
    )


def remove_host_block(config: str, host_alias: str) -> str:
    """Drop the `Host <alias>` block and the deploy-key comment right above it."""
    kept: List[str] = []
    skipping = False
    for line in config.splitlines():
        stripped = line.strip()
        keyword = stripped.split(None, 1)[0].lower() if stripped else ""

        if keyword in ("host", "match"):
            value = stripped.split(None, 1)[1].strip() if " " in stripped else ""
            skipping = keyword == "host" and value == host_alias
            if skipping:
                if kept and kept[-1].startswith(BLOCK_HEADER):
                    kept.pop()
                while kept and not kept[-1].strip():
                    kept.pop()
                continue
        elif skipping and stripped.startswith(BLOCK_HEADER):
            skipping = False

        if not skipping:
            kept.append(line)

    return "\n".join(kept) + "\n" if kept else ""


def upsert_host_block(config: str, repository: str, application: str, host_alias: str, identity_file: str) -> str:
    """Re-running converges on a single block per alias."""
    remaining = remove_host_block(config, host_alias).rstrip("\n")
    block = render_host_block(repository, application, host_alias, identity_file)
    return f"{remaining}\n\n{block}" if remaining else block


def authenticated(output: str) -> bool:
    return "successfully authenticated" in output or "Hi " in output


class DeployKeyStep(ProvisioningStep):
    kind = StepKind.DEPLOY_KEY
    title = "Deploy key setup"
    required_fields = ("selectedRepo",)
    requires_github = True

    def normalize(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        owner, repo = parse_repository(inputs["selectedRepo"])
        inputs["selectedRepo"] = f"{owner}/{repo}"
        return inputs

    def perform(self, ctx: StepContext) -> StepResult:
        remote, github = ctx.remote, ctx.github
        repository = ctx.get("selectedRepo")
        owner, repo = repository.split("/")

        slug = application_slug(ctx.application_name)
        key_name = f"{slug}_deploy_key"
        host_alias = f"github.com-{slug}"
        identity_file = f"~/{SSH_DIR}/{key_name}"

        ensure_ssh_dir(remote)
        generated = ensure_keypair(remote, key_name, f"deploy-key-{slug}")
        public_key = read_public_key(remote, key_name)

        title = f"{ctx.application_name} [{ctx.username}@{ctx.host}]"
        registered = github.add_deploy_key(owner, repo, title, public_key, read_only=False)

        remote.run(["touch", SSH_CONFIG], label="touch ssh config", timeout=10)
        current = remote.read_file(SSH_CONFIG, label="read ssh config")
        updated = upsert_host_block(current, repository, ctx.application_name, host_alias, identity_file)
        remote.write_file(SSH_CONFIG, updated, label="write ssh config", mode="600")

        tested, test_message = self._test_connection(remote, host_alias)

        message = "Deploy key configured" if tested else "Deploy key configured, but the SSH test did not authenticate"
        return StepResult.ok(
            message,
            {
                "deployKeyName": key_name,
                "deployKeyTitle": title,
                "deployKeyId": registered.get("id"),
                "keyGenerated": generated,
                "repository": repository,
                "hostAlias": host_alias,
                "connectionTested": tested,
                "testMessage": test_message,
            },
            log={
                "repository": repository,
                "hostAlias": host_alias,
                "keyGenerated": generated,
                "connectionTested": tested,
            },
            record_updates={"selected_repo": repository},
        )

    def _test_connection(self, remote, host_alias: str):
        try:
            result = remote.run(
                ["ssh", "-T", "-o", "StrictHostKeyChecking=no", "-o", "BatchMode=yes", f"git@{host_alias}"],
                label="test deploy key",
                timeout=20,
                allow_non_zero=True,
            )
        except CommandTimeoutError as e:
            logger.warning(f"[deploy-key] {e.message}")
            return False, e.message
        output = result.output
        return authenticated(output), output[:500]
