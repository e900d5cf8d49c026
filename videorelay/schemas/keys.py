from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class KeysSave(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    access_key: str = Field(..., min_length=1, max_length=512)
    secret_key: str = Field(..., min_length=1, max_length=512)


class PlatformRead(BaseModel):
    id: str
    name: str
    type: str
    username: str = ""
    picture: str | None = None


class PlatformList(BaseModel):
    platforms: list[PlatformRead]
    message: str | None = None
