from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApplicationStatusRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    host: str = Field(min_length=1)
    username: str = Field(min_length=1)
    application_name: str = Field(min_length=1)
    status: str
