#provisioning_engine\api\container.py
from provisioning_engine.container import orchestrator
from provisioning_engine.orchestrator.step_orchestrator import StepOrchestrator


def get_orchestrator() -> StepOrchestrator:
    return orchestrator
