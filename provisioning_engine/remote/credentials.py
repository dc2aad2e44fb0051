"""SSH credential payload."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class SSHCredentials:
    """Connection tuple for one remote target. Key material is kept verbatim."""

    host: str
    username: str
    private_key: str = field(repr=False)
    port: int = 22
    passphrase: Optional[str] = field(default=None, repr=False)
    ready_timeout: float = 30.0

    @property
    def target(self) -> str:
        return f"{self.username}@{self.host}:{self.port}"
