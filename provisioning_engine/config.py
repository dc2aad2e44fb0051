#provisioning_engine\config.py

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class ProvisioningSettings(BaseSettings):
    """Runtime knobs for SSH, GitHub and the API process."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PROVISIONING_",
        case_sensitive=False,
        extra="ignore"
    )

    # SSH
    ssh_ready_timeout: float = 30.0
    default_command_timeout: float = 15.0

    # GitHub
    github_api_url: str = "https://api.github.com"
    github_raw_url: str = "https://raw.githubusercontent.com"
    github_timeout: float = 15.0
    github_raw_timeout: float = 12.0

    # Deploy workflow: branch to cut a missing base branch from (unset = fail)
    fallback_base_branch: Optional[str] = None

    # Session registry
    session_ttl_seconds: int = 3600

    # Step defaults
    nvm_version: str = "v0.40.1"
    default_node_version: str = "lts/*"
    default_php_version: str = "8.3"

    # API process
    api_host: str = "0.0.0.0"
    api_port: int = 3001
    log_level: str = "INFO"
    expose_error_details: bool = False


settings = ProvisioningSettings()
