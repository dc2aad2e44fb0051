#provisioning_engine\domain\models.py
"""Domain models for provisioning targets and their step history."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


# ============================================
# ENUMS
# ============================================

class ApplicationStatus(Enum):
    """Application lifecycle status."""
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"


class SuggestionType(Enum):
    HOST = "host"
    USERNAME = "username"
    APPLICATION_NAME = "applicationName"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# ============================================
# APPLICATION
# ============================================

@dataclass
class ApplicationRecord:
    """
    One provisioning target, identified by (host, username, application_name).

    Credentials are stored verbatim and never rendered by `to_summary`.
    """
    host: str
    username: str
    application_name: str
    id: Optional[int] = None
    port: int = 22

    ssh_private_key: Optional[str] = field(default=None, repr=False)
    github_token: Optional[str] = field(default=None, repr=False)
    github_username: Optional[str] = None

    # Derived state written by steps
    selected_repo: Optional[str] = None
    domain: Optional[str] = None
    pathname: Optional[str] = None
    private_key_secret_name: Optional[str] = None
    php_version: Optional[str] = None
    db_type: Optional[str] = None
    session_id: Optional[str] = None

    status: str = ApplicationStatus.PENDING.value
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def has_ssh_key(self) -> bool:
        return bool(self.ssh_private_key and self.ssh_private_key.strip())

    @property
    def has_github_token(self) -> bool:
        return bool(self.github_token and self.github_token.strip())

    def to_summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "host": self.host,
            "username": self.username,
            "applicationName": self.application_name,
            "port": self.port,
            "githubUsername": self.github_username,
            "selectedRepo": self.selected_repo,
            "domain": self.domain,
            "pathname": self.pathname,
            "privateKeySecretName": self.private_key_secret_name,
            "phpVersion": self.php_version,
            "dbType": self.db_type,
            "status": self.status,
            "createdAt": _iso(self.created_at),
            "completedAt": _iso(self.completed_at),
        }


# ============================================
# STEP LOG
# ============================================

@dataclass
class StepLogEntry:
    """Latest outcome of one step for one application."""
    application_id: int
    step: str
    status: str
    message: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "step": self.step,
            "status": self.status,
            "message": self.message,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


# ============================================
# DATABASE CONFIG
# ============================================

@dataclass
class DatabaseConfigRecord:
    application_id: int
    db_type: str
    db_name: str
    db_username: str
    db_password: Optional[str] = field(default=None, repr=False)
    db_port: Optional[int] = None
    status: str = "created"
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "dbType": self.db_type,
            "dbName": self.db_name,
            "dbUsername": self.db_username,
            "dbPort": self.db_port,
            "status": self.status,
            "createdAt": _iso(self.created_at),
        }


# ============================================
# SUGGESTIONS
# ============================================

@dataclass
class Suggestion:
    """Previously used form value, ranked by usage."""
    type: str
    value: str
    usage_count: int = 1
    last_used: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "value": self.value,
            "usageCount": self.usage_count,
            "lastUsed": _iso(self.last_used),
        }
