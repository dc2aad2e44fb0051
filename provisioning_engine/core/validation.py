#provisioning_engine\core\validation.py
"""
Request validation and allow-list checks.

Every value that ends up inside a remote command, a file path or an SQL
statement passes through one of these helpers first.
"""

import re
from typing import Any, Iterable, Mapping, Tuple

from provisioning_engine.core.errors import MissingFieldsError, ProvisioningValidationError


IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")
REMOTE_PATH_RE = re.compile(r"^/[A-Za-z0-9._/@+-]*$")
DOMAIN_RE = re.compile(
    r"^(?=.{1,253}$)(?:[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?\.)+[A-Za-z]{2,63}$"
)
EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,63}$")
PHP_VERSION_RE = re.compile(r"^\d+\.\d+$")
NODE_VERSION_RE = re.compile(r"^(?:node|lts/\*|lts/[a-z]+|v?\d+(?:\.\d+){0,2})$")
BRANCH_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._/-]{0,199}$")
REPO_PART_RE = re.compile(r"^[A-Za-z0-9_.-]+$")
REPO_URL_RE = re.compile(r"^https?://github\.com/([^/]+)/([^/#?]+)(?:[/#?].*)?$")

DB_TYPE_ALIASES = {
    "mysql": "MySQL",
    "mariadb": "MySQL",
    "postgresql": "PostgreSQL",
    "postgres": "PostgreSQL",
    "pgsql": "PostgreSQL",
}


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def require_fields(payload: Mapping[str, Any], fields: Iterable[str]) -> None:
    """Raise MissingFieldsError listing every absent or empty field."""
    missing = [name for name in fields if _is_blank(payload.get(name))]
    if missing:
        raise MissingFieldsError(missing)


# -------------------------
# Allow-lists
# -------------------------

def validate_identifier(value: str, field_name: str) -> str:
    if not IDENTIFIER_RE.match(value or ""):
        raise ProvisioningValidationError(
            f"{field_name} must start with a letter or underscore and contain only letters, digits and underscores"
        )
    return value


def validate_remote_path(value: str, field_name: str = "pathname") -> str:
    path = (value or "").strip()
    if len(path) > 1:
        path = path.rstrip("/")
    if not REMOTE_PATH_RE.match(path):
        raise ProvisioningValidationError(
            f"{field_name} must be an absolute path made of letters, digits and ._/@+-"
        )
    segments = [segment for segment in path.split("/") if segment]
    if not segments:
        raise ProvisioningValidationError(f"{field_name} must not be the filesystem root")
    if any(segment in (".", "..") for segment in segments) or "//" in path:
        raise ProvisioningValidationError(f"{field_name} must be a normalized path")
    return path


def validate_domain(value: str) -> str:
    domain = (value or "").strip().lower()
    if not DOMAIN_RE.match(domain):
        raise ProvisioningValidationError(f"Invalid domain: {value}")
    return domain


def validate_email(value: str) -> str:
    email = (value or "").strip()
    if not EMAIL_RE.match(email):
        raise ProvisioningValidationError(f"Invalid email address: {value}")
    return email


def validate_php_version(value: str) -> str:
    version = str(value).strip()
    if not PHP_VERSION_RE.match(version):
        raise ProvisioningValidationError(f"Invalid PHP version: {value} (expected e.g. 8.3)")
    return version


def validate_node_version(value: str) -> str:
    version = str(value).strip()
    if not NODE_VERSION_RE.match(version):
        raise ProvisioningValidationError(f"Invalid Node.js version: {value}")
    return version


def validate_branch(value: str, field_name: str = "baseBranch") -> str:
    branch = (value or "").strip()
    if not BRANCH_RE.match(branch) or ".." in branch or branch.endswith((".lock", "/")):
        raise ProvisioningValidationError(f"Invalid branch name for {field_name}: {value}")
    return branch


def validate_port(value: Any, field_name: str = "port") -> int:
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ProvisioningValidationError(f"{field_name} must be an integer")
    if not 0 < port < 65536:
        raise ProvisioningValidationError(f"{field_name} must be between 1 and 65535")
    return port


def normalize_db_type(value: str) -> str:
    db_type = DB_TYPE_ALIASES.get((value or "").strip().lower())
    if not db_type:
        raise ProvisioningValidationError(f"Unsupported dbType: {value} (use MySQL or PostgreSQL)")
    return db_type


# -------------------------
# Derived names
# -------------------------

def parse_repository(repo: str) -> Tuple[str, str]:
    """Accept `owner/repo` or a github.com URL and return (owner, repo)."""
    value = (repo or "").strip()
    if value.count("/") == 1 and not value.startswith("http"):
        owner, name = value.split("/")
    else:
        match = REPO_URL_RE.match(value)
        if not match:
            raise ProvisioningValidationError(
                "Invalid repository format. Use owner/repo or GitHub URL."
            )
        owner, name = match.group(1), match.group(2)
    if name.endswith(".git"):
        name = name[:-4]
    if not (REPO_PART_RE.match(owner) and REPO_PART_RE.match(name)):
        raise ProvisioningValidationError(
            "Invalid repository format. Use owner/repo or GitHub URL."
        )
    return owner, name


def derive_secret_name(application_name: str) -> str:
    """PRIVATE_KEY_<NAME>, non-alphanumerics replaced by '_' and uppercased."""
    return "PRIVATE_KEY_" + re.sub(r"[^A-Za-z0-9]", "_", application_name).upper()


def application_slug(application_name: str) -> str:
    """Filesystem- and ssh-config-safe form of an application name."""
    slug = re.sub(r"[^A-Za-z0-9._-]", "_", application_name.strip())
    return slug.lstrip(".-") or "app"


# -------------------------
# SQL literals (fed to psql/mysql over stdin)
# -------------------------

def sql_string(value: str, *, backslash_escapes: bool = False) -> str:
    if "\x00" in value:
        raise ProvisioningValidationError("Value must not contain NUL bytes")
    escaped = value.replace("\\", "\\\\") if backslash_escapes else value
    return "'" + escaped.replace("'", "''") + "'"
