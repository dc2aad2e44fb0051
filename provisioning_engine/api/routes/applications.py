from fastapi import APIRouter, Depends, Query

from provisioning_engine.api.container import get_orchestrator
from provisioning_engine.api.schemas.applications import ApplicationStatusRequest

router = APIRouter(tags=["applications"])


@router.get("/applications/{host}/{username}")
def list_applications(host: str, username: str, orchestrator=Depends(get_orchestrator)):
    return {"success": True, "data": {"applications": orchestrator.list_applications(host, username)}}


@router.get("/databases/{host}/{username}/{application_name}")
def list_databases(
    host: str,
    username: str,
    application_name: str,
    orchestrator=Depends(get_orchestrator),
):
    return {"success": True, "data": {"databases": orchestrator.list_databases(host, username, application_name)}}


@router.post("/application/status")
def update_application_status(
    request: ApplicationStatusRequest,
    orchestrator=Depends(get_orchestrator),
):
    application = orchestrator.update_status(
        request.host, request.username, request.application_name, request.status
    )
    return {"success": True, "message": f"Status set to {request.status}", "data": {"application": application}}


@router.get("/suggestions/{suggestion_type}")
def list_suggestions(
    suggestion_type: str,
    limit: int = Query(default=20, ge=1, le=100),
    orchestrator=Depends(get_orchestrator),
):
    return {"success": True, "data": {"suggestions": orchestrator.suggestions(suggestion_type, limit=limit)}}


@router.get("/session/{session_id}")
def resolve_session(session_id: str, orchestrator=Depends(get_orchestrator)):
    return {"success": True, "data": orchestrator.resolve_session(session_id)}
