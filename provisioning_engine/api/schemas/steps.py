from typing import Optional, Union

from provisioning_engine.api.schemas.base import TargetRequest


class DeployKeyRequest(TargetRequest):
    selected_repo: Optional[str] = None


class DatabaseCreateRequest(TargetRequest):
    db_type: Optional[str] = None
    db_name: Optional[str] = None
    db_username: Optional[str] = None
    db_password: Optional[str] = None
    db_port: Optional[Union[int, str]] = None


class FolderSetupRequest(TargetRequest):
    pathname: Optional[str] = None


class EnvSetupRequest(TargetRequest):
    pathname: Optional[str] = None
    selected_repo: Optional[str] = None


class EnvUpdateRequest(TargetRequest):
    pathname: Optional[str] = None
    db_type: Optional[str] = None
    db_port: Optional[Union[int, str]] = None
    db_name: Optional[str] = None
    db_username: Optional[str] = None
    db_password: Optional[str] = None


class SSHKeySetupRequest(TargetRequest):
    selected_repo: Optional[str] = None


class ServerStackSetupRequest(TargetRequest):
    php_version: Optional[str] = None
    database: Optional[str] = None


class HttpsNginxSetupRequest(TargetRequest):
    domain: Optional[str] = None
    email: Optional[str] = None
    pathname: Optional[str] = None


class NodeNvmSetupRequest(TargetRequest):
    node_version: Optional[str] = None


class DeployWorkflowUpdateRequest(TargetRequest):
    selected_repo: Optional[str] = None
    base_branch: Optional[str] = None
    ssh_path: Optional[str] = None
