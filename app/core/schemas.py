from typing import Generic, TypeVar
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

T = TypeVar("T")

class ApiModel(BaseModel):
    # wire format is camelCase; python side stays snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

class PageMeta(ApiModel):
    page: int
    limit: int
    total: int

class PageOut(ApiModel, Generic[T]):
    meta: PageMeta
    data: list[T]
