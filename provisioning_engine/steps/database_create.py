# provisioning_engine/steps/database_create.py
"""Create a database and a user that owns it. SQL travels over stdin."""

from typing import Any, Dict

from provisioning_engine.core.errors import ProvisioningValidationError
from provisioning_engine.core.models import StepContext, StepKind, StepResult
from provisioning_engine.core.validation import (
    normalize_db_type,
    sql_string,
    validate_identifier,
    validate_port,
)
from provisioning_engine.steps.base import ProvisioningStep, require_sudo

DEFAULT_PORTS = {"MySQL": 3306, "PostgreSQL": 5432}

PG_BODY_TAG = "$provision$"

MYSQL_CLIENT = ["sudo", "-n", "mysql", "--batch"]
PSQL_CLIENT = ["sudo", "-n", "-u", "postgres", "psql", "-v", "ON_ERROR_STOP=1", "-d", "postgres", "-q"]


def mysql_script(db_name: str, db_user: str, db_password: str) -> str:
    user = f"{sql_string(db_user)}@'localhost'"
    password = sql_string(db_password, backslash_escapes=True)
    return (
        f"CREATE DATABASE IF NOT EXISTS `{db_name}` CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci;\n"
        f"CREATE USER IF NOT EXISTS {user} IDENTIFIED BY {password};\n"
        f"ALTER USER {user} IDENTIFIED BY {password};\n"
        f"GRANT ALL PRIVILEGES ON `{db_name}`.* TO {user};\n"
        "FLUSH PRIVILEGES;\n"
    )


def postgres_script(db_name: str, db_user: str, db_password: str) -> str:
    if PG_BODY_TAG in db_password:
        raise ProvisioningValidationError("dbPassword contains a reserved sequence")
    password = sql_string(db_password)
    return (
        f"DO {PG_BODY_TAG}\n"
        "BEGIN\n"
        f"  IF NOT EXISTS (SELECT FROM pg_roles WHERE rolname = {sql_string(db_user)}) THEN\n"
        f"    CREATE ROLE \"{db_user}\" LOGIN PASSWORD {password};\n"
        "  ELSE\n"
        f"    ALTER ROLE \"{db_user}\" WITH LOGIN PASSWORD {password};\n"
        "  END IF;\n"
        "END\n"
        f"{PG_BODY_TAG};\n"
        f"SELECT 'CREATE DATABASE \"{db_name}\" OWNER \"{db_user}\"' "
        f"WHERE NOT EXISTS (SELECT FROM pg_database WHERE datname = {sql_string(db_name)})\\gexec\n"
        f"GRANT ALL PRIVILEGES ON DATABASE \"{db_name}\" TO \"{db_user}\";\n"
    )


class DatabaseCreateStep(ProvisioningStep):
    kind = StepKind.DATABASE_CREATE
    title = "Database creation"
    required_fields = ("dbType", "dbName", "dbUsername", "dbPassword")

    def normalize(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        inputs["dbType"] = normalize_db_type(inputs["dbType"])
        inputs["dbName"] = validate_identifier(inputs["dbName"], "dbName")
        inputs["dbUsername"] = validate_identifier(inputs["dbUsername"], "dbUsername")
        port = inputs.get("dbPort")
        inputs["dbPort"] = validate_port(port, "dbPort") if port else DEFAULT_PORTS[inputs["dbType"]]
        inputs["dbPassword"] = str(inputs["dbPassword"])
        if "\n" in inputs["dbPassword"] or "\x00" in inputs["dbPassword"]:
            raise ProvisioningValidationError("dbPassword must be a single line")
        if inputs["dbType"] == "PostgreSQL" and PG_BODY_TAG in inputs["dbPassword"]:
            raise ProvisioningValidationError("dbPassword contains a reserved sequence")
        return inputs

    def perform(self, ctx: StepContext) -> StepResult:
        db_type = ctx.get("dbType")
        db_name = ctx.get("dbName")
        db_user = ctx.get("dbUsername")
        db_password = ctx.get("dbPassword")
        db_port = ctx.get("dbPort")

        require_sudo(ctx.remote)

        if db_type == "MySQL":
            ctx.remote.run(
                MYSQL_CLIENT,
                label="mysql create database",
                timeout=30,
                stdin=mysql_script(db_name, db_user, db_password),
            )
        else:
            ctx.remote.run(
                PSQL_CLIENT,
                label="psql create database",
                timeout=30,
                stdin=postgres_script(db_name, db_user, db_password),
            )

        return StepResult.ok(
            f"{db_type} database '{db_name}' is ready",
            {"dbType": db_type, "dbName": db_name, "dbUsername": db_user, "dbPort": db_port},
            log={"dbType": db_type, "dbName": db_name, "dbUsername": db_user, "dbPort": db_port},
            database_config={
                "db_type": db_type,
                "db_name": db_name,
                "db_username": db_user,
                "db_password": db_password,
                "db_port": db_port,
            },
        )
