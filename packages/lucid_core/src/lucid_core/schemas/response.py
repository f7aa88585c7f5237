"""
Core Pydantic schemas shared across modules.
"""

from math import ceil
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, computed_field

T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    """
    One page of a paginated result.

    Example:
        >>> page = Page[int](items=[1, 2], total=5, per_page=2, current_page=1)
        >>> page.last_page
        3
        >>> page.has_more
        True
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    items: list[T] = Field(..., description="Items of the current page")
    total: int = Field(..., description="Total number of items across all pages")
    per_page: int = Field(..., description="Maximum items per page")
    current_page: int = Field(default=1, description="1-indexed page number")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def last_page(self) -> int:
        return max(1, ceil(self.total / self.per_page)) if self.per_page else 1

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_more(self) -> bool:
        return self.current_page < self.last_page
