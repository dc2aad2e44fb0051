from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder

from provisioning_engine.core.models import StepResult


def step_response(result: StepResult) -> JSONResponse:
    return JSONResponse(status_code=result.status_code, content=jsonable_encoder(result.to_response()))
