# provisioning_engine/steps/node_nvm.py
"""Node.js for the SSH user through nvm. No sudo needed."""

import re
import shlex
from typing import Any, Dict, Optional

from provisioning_engine.config import settings
from provisioning_engine.core.models import StepContext, StepKind, StepResult
from provisioning_engine.core.validation import validate_node_version
from provisioning_engine.steps.base import ProvisioningStep

NVM_SCRIPT = ".nvm/nvm.sh"
NVM_VERSION_RE = re.compile(r"^v\d+\.\d+\.\d+$")
LOAD_NVM = 'export NVM_DIR="$HOME/.nvm"; . "$NVM_DIR/nvm.sh"'


def in_nvm_shell(script: str):
    """nvm is a bash function; every call needs its own shell with nvm.sh sourced."""
    return ["bash", "-c", f"{LOAD_NVM} && {script}"]


def parse_versions(output: str) -> Dict[str, Optional[str]]:
    versions: Dict[str, Optional[str]] = {"nvm": None, "node": None, "npm": None}
    for line in output.splitlines():
        name, _, value = line.partition("=")
        if name in versions and value.strip():
            versions[name] = value.strip()
    return versions


class NodeNvmSetupStep(ProvisioningStep):
    kind = StepKind.NODE_NVM_SETUP
    title = "Node.js setup"

    def normalize(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        inputs["nodeVersion"] = validate_node_version(inputs.get("nodeVersion") or settings.default_node_version)
        return inputs

    def perform(self, ctx: StepContext) -> StepResult:
        remote = ctx.remote
        node_version = shlex.quote(ctx.get("nodeVersion"))

        installed_nvm = False
        if not remote.file_exists(NVM_SCRIPT):
            nvm_version = settings.nvm_version
            if not NVM_VERSION_RE.match(nvm_version):
                raise ValueError(f"Invalid nvm version setting: {nvm_version}")
            remote.run(
                f"curl -fsSL https://raw.githubusercontent.com/nvm-sh/nvm/{nvm_version}/install.sh -o /tmp/nvm-install.sh "
                "&& bash /tmp/nvm-install.sh; status=$?; rm -f /tmp/nvm-install.sh; exit $status",
                label="install nvm",
                timeout=120,
            )
            installed_nvm = True

        remote.run(
            in_nvm_shell(f"nvm install {node_version} && nvm alias default {node_version} && nvm use default"),
            label="nvm install",
            timeout=300,
        )

        probe = remote.run(
            in_nvm_shell('echo "nvm=$(nvm --version)"; echo "node=$(node -v)"; echo "npm=$(npm -v)"'),
            label="node versions",
            timeout=30,
        )
        versions = parse_versions(probe.stdout)

        return StepResult.ok(
            f"Node.js {versions['node'] or ctx.get('nodeVersion')} is the default for {ctx.username}",
            {"nodeVersion": ctx.get("nodeVersion"), "nvmInstalled": installed_nvm, "versions": versions},
            log={"nodeVersion": ctx.get("nodeVersion"), "nvmInstalled": installed_nvm, "versions": versions},
        )
