"""Base schema classes.

API JSON uses PascalCase keys; Python code stays snake_case. Request bodies
accept either spelling.
"""
from typing import Generic, List, TypeVar
from pydantic import BaseModel, ConfigDict, computed_field
from pydantic.alias_generators import to_pascal

T = TypeVar("T")


class PascalModel(BaseModel):
    """Base for request and response schemas"""
    model_config = ConfigDict(
        alias_generator=to_pascal,
        populate_by_name=True,
        from_attributes=True,
    )


class MessageResponse(PascalModel):
    message: str


class PagedResult(PascalModel, Generic[T]):
    items: List[T]
    page_number: int
    page_size: int
    total_count: int

    @computed_field(alias="TotalPages")
    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return (self.total_count + self.page_size - 1) // self.page_size
