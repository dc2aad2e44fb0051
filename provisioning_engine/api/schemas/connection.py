from typing import Optional, Union

from provisioning_engine.api.schemas.base import TargetRequest


class ConnectionVerifyRequest(TargetRequest):
    port: Optional[Union[int, str]] = None
    private_key_content: Optional[str] = None
    passphrase: Optional[str] = None
    github_token: Optional[str] = None
