#provisioning_engine\api\main.py
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from provisioning_engine.api.routes.applications import router as applications_router
from provisioning_engine.api.routes.connection import router as connection_router
from provisioning_engine.api.routes.steps import router as steps_router
from provisioning_engine.core.errors import ProvisioningError
from provisioning_engine.infrastructure.database.database import init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("[api] database ready")
    yield


app = FastAPI(title="Provisioning Engine API", lifespan=lifespan)


@app.exception_handler(ProvisioningError)
def provisioning_error_handler(request: Request, exc: ProvisioningError):
    if exc.status_code >= 500:
        logger.error(f"[api] {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder({"success": False, "message": exc.message, "error": exc.to_dict()}),
    )


@app.exception_handler(RequestValidationError)
def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content=jsonable_encoder({
            "success": False,
            "message": "Invalid request body",
            "error": {"type": "ProvisioningValidationError", "errors": exc.errors()},
        }),
    )


@app.get("/health")
def health():
    return {"success": True, "status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


app.include_router(connection_router)
app.include_router(steps_router)
app.include_router(applications_router)
