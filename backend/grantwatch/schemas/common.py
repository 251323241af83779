"""Shared schema configuration and pagination envelope."""

import math

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

# Wire format is camelCase; Python attributes stay snake_case.
WIRE_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)
ORM_WIRE_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class Pagination(BaseModel):
    model_config = WIRE_CONFIG

    page: int
    limit: int
    total: int
    total_pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit) if limit else 0)
