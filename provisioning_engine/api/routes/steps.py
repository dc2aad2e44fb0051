from typing import Type

from fastapi import APIRouter, Depends

from provisioning_engine.api.container import get_orchestrator
from provisioning_engine.api.routes.responses import step_response
from provisioning_engine.api.schemas import steps as schemas
from provisioning_engine.api.schemas.base import TargetRequest
from provisioning_engine.core.models import StepKind
from provisioning_engine.steps.registry import ROUTE_SLUGS

router = APIRouter(tags=["steps"])

REQUEST_SCHEMAS = {
    StepKind.DEPLOY_KEY: schemas.DeployKeyRequest,
    StepKind.DATABASE_CREATE: schemas.DatabaseCreateRequest,
    StepKind.FOLDER_SETUP: schemas.FolderSetupRequest,
    StepKind.ENV_SETUP: schemas.EnvSetupRequest,
    StepKind.ENV_UPDATE: schemas.EnvUpdateRequest,
    StepKind.SSH_KEY_SETUP: schemas.SSHKeySetupRequest,
    StepKind.SERVER_STACK_SETUP: schemas.ServerStackSetupRequest,
    StepKind.HTTPS_NGINX_SETUP: schemas.HttpsNginxSetupRequest,
    StepKind.NODE_NVM_SETUP: schemas.NodeNvmSetupRequest,
    StepKind.DEPLOY_WORKFLOW_UPDATE: schemas.DeployWorkflowUpdateRequest,
}


def _step_endpoint(kind: StepKind, schema: Type[TargetRequest]):
    def run(request: schema, orchestrator=Depends(get_orchestrator)):
        return step_response(orchestrator.run_step(kind, request.to_payload()))

    run.__name__ = f"run_{kind.name.lower()}"
    return run


for slug, kind in ROUTE_SLUGS.items():
    router.add_api_route(
        f"/step/{slug}",
        _step_endpoint(kind, REQUEST_SCHEMAS[kind]),
        methods=["POST"],
        summary=slug.replace("-", " ").capitalize(),
    )


@router.get("/steps/{host}/{username}/{application_name}")
def list_steps(
    host: str,
    username: str,
    application_name: str,
    orchestrator=Depends(get_orchestrator),
):
    return {"success": True, "data": {"steps": orchestrator.list_steps(host, username, application_name)}}
