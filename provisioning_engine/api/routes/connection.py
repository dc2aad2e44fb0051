from fastapi import APIRouter, Depends

from provisioning_engine.api.container import get_orchestrator
from provisioning_engine.api.routes.responses import step_response
from provisioning_engine.api.schemas.connection import ConnectionVerifyRequest

router = APIRouter(prefix="/connection", tags=["connection"])


@router.post("/verify")
def verify_connection(
    request: ConnectionVerifyRequest,
    orchestrator=Depends(get_orchestrator),
):
    return step_response(orchestrator.verify_connection(request.to_payload()))
