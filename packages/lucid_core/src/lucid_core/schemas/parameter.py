from typing import Annotated, Any, Mapping, Protocol, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from lucid_core.config import lucid_settings


class SupportsQueryParams(Protocol):
    """Anything exposing query-string parameters, e.g. a Starlette ``Request``."""

    @property
    def query_params(self) -> Mapping[str, Any]: ...


class PaginationParams(BaseModel):
    """
    Page-based pagination input.

    Examples
    --------
    Offset calculation::

        >>> PaginationParams(page=3, per_page=10).get_offset()
        20

    Values outside the configured bounds are clamped::

        >>> PaginationParams(page=0, per_page=0).model_dump()
        {'page': 1, 'per_page': 1}
    """

    model_config = ConfigDict(
        populate_by_name=True,
        # Unknown query-string parameters are not our business.
        extra="ignore",
    )

    page: Annotated[int, Field(default=1, description="1-indexed page number")]

    per_page: Annotated[
        int,
        Field(
            default_factory=lambda: lucid_settings.DEFAULT_PER_PAGE,
            description="Items per page",
        ),
    ]

    @model_validator(mode="after")
    def _validate_bounds(self) -> Self:
        """
        Clamps values to system limits.

        >>> PaginationParams(per_page=9999).per_page  # if max is 500
        500
        """
        self.per_page = max(1, min(self.per_page, lucid_settings.MAX_PER_PAGE))
        self.page = max(1, self.page)
        return self

    def get_offset(self) -> int:
        """
        Number of rows to skip for the current page.

        >>> PaginationParams(page=2, per_page=20).get_offset()
        20
        """
        return (self.page - 1) * self.per_page

    @classmethod
    def from_request(
        cls,
        request: SupportsQueryParams | None,
        per_page: int | None = None,
    ) -> "PaginationParams":
        """
        Build params from the ``page`` query-string parameter of a request.

        A missing request, a missing parameter or a non-numeric value all
        resolve to the first page.
        """
        page = 1
        if request is not None:
            raw = request.query_params.get("page")
            try:
                page = int(raw) if raw is not None else 1
            except (TypeError, ValueError):
                page = 1

        data: dict[str, int] = {"page": page}
        if per_page is not None:
            data["per_page"] = per_page
        return cls.model_validate(data)
