# provisioning_engine/steps/env_update.py
"""Point the shared .env at the provisioned database."""

from typing import Any, Dict

from provisioning_engine.core.models import StepContext, StepKind, StepResult
from provisioning_engine.core.validation import (
    normalize_db_type,
    validate_identifier,
    validate_port,
    validate_remote_path,
)
from provisioning_engine.steps.base import ProvisioningStep
from provisioning_engine.steps.env_file import format_value, patch_env
from provisioning_engine.steps.env_setup import shared_env_path

DB_CONNECTIONS = {"MySQL": "mysql", "PostgreSQL": "pgsql"}


def database_updates(db_type: str, port: int, name: str, username: str, password: str) -> Dict[str, str]:
    return {
        "DB_CONNECTION": DB_CONNECTIONS[db_type],
        "DB_HOST": "localhost",
        "DB_PORT": str(port),
        "DB_DATABASE": name,
        "DB_USERNAME": username,
        "DB_PASSWORD": password,
    }


class EnvUpdateStep(ProvisioningStep):
    kind = StepKind.ENV_UPDATE
    title = "Environment update"
    required_fields = ("pathname", "dbType", "dbPort", "dbName", "dbUsername")

    def normalize(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        inputs["pathname"] = validate_remote_path(inputs["pathname"])
        inputs["dbType"] = normalize_db_type(inputs["dbType"])
        inputs["dbPort"] = validate_port(inputs["dbPort"], "dbPort")
        inputs["dbName"] = validate_identifier(inputs["dbName"], "dbName")
        inputs["dbUsername"] = validate_identifier(inputs["dbUsername"], "dbUsername")
        inputs["dbPassword"] = str(inputs.get("dbPassword") or "")
        format_value(inputs["dbPassword"])
        return inputs

    def perform(self, ctx: StepContext) -> StepResult:
        remote = ctx.remote
        env_path = shared_env_path(ctx.get("pathname"))
        updates = database_updates(
            ctx.get("dbType"),
            ctx.get("dbPort"),
            ctx.get("dbName"),
            ctx.get("dbUsername"),
            ctx.get("dbPassword", ""),
        )

        current = remote.read_file(env_path, label="read .env")
        remote.write_file(env_path, patch_env(current, updates), label="write .env", timeout=15)

        verification = remote.run(
            ["grep", "-E", "^DB_(CONNECTION|HOST|PORT|DATABASE|USERNAME)=", env_path],
            label="verify .env",
            timeout=10,
            allow_non_zero=True,
        ).stdout.strip()

        visible = {k: v for k, v in updates.items() if k != "DB_PASSWORD"}
        return StepResult.ok(
            f"Database settings written to {env_path}",
            {"filePath": env_path, "updates": visible, "verification": verification},
            log={"filePath": env_path, **visible},
        )
