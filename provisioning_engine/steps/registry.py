# provisioning_engine/steps/registry.py
"""Closed set of step implementations, keyed by kind and by endpoint slug."""

from typing import Dict

from provisioning_engine.core.models import StepKind
from provisioning_engine.steps.base import ProvisioningStep
from provisioning_engine.steps.connection_verify import ConnectionVerifyStep
from provisioning_engine.steps.database_create import DatabaseCreateStep
from provisioning_engine.steps.deploy_key import DeployKeyStep
from provisioning_engine.steps.deploy_workflow import DeployWorkflowUpdateStep
from provisioning_engine.steps.env_setup import EnvSetupStep
from provisioning_engine.steps.env_update import EnvUpdateStep
from provisioning_engine.steps.folder_setup import FolderSetupStep
from provisioning_engine.steps.https_nginx import HttpsNginxSetupStep
from provisioning_engine.steps.node_nvm import NodeNvmSetupStep
from provisioning_engine.steps.server_stack import ServerStackSetupStep
from provisioning_engine.steps.ssh_key_setup import SSHKeySetupStep


STEP_REGISTRY: Dict[StepKind, ProvisioningStep] = {
    step.kind: step
    for step in (
        ConnectionVerifyStep(),
        DeployKeyStep(),
        DatabaseCreateStep(),
        FolderSetupStep(),
        EnvSetupStep(),
        EnvUpdateStep(),
        SSHKeySetupStep(),
        ServerStackSetupStep(),
        HttpsNginxSetupStep(),
        NodeNvmSetupStep(),
        DeployWorkflowUpdateStep(),
    )
}

# POST /step/<slug>
ROUTE_SLUGS: Dict[str, StepKind] = {
    "deploy-key": StepKind.DEPLOY_KEY,
    "database-create": StepKind.DATABASE_CREATE,
    "folder-setup": StepKind.FOLDER_SETUP,
    "env-setup": StepKind.ENV_SETUP,
    "env-update": StepKind.ENV_UPDATE,
    "ssh-key-setup": StepKind.SSH_KEY_SETUP,
    "server-stack-setup": StepKind.SERVER_STACK_SETUP,
    "https-nginx-setup": StepKind.HTTPS_NGINX_SETUP,
    "node-nvm-setup": StepKind.NODE_NVM_SETUP,
    "deploy-workflow-update": StepKind.DEPLOY_WORKFLOW_UPDATE,
}
