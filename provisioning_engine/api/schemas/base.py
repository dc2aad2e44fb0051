from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts camelCase (wire) or snake_case keys; unknown keys are kept."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class TargetRequest(CamelModel):
    """
    Fields are optional at the schema level so that a missing value is
    reported together with every other missing field, not one at a time.
    """
    host: Optional[str] = None
    username: Optional[str] = None
    application_name: Optional[str] = None
