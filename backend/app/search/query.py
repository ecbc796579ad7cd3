"""Search query model and request-level validation.

:class:`SearchQuery` is immutable once built. Use :func:`build_search_query`
to turn raw request data into a query; pydantic validation failures are
re-raised as :class:`SearchValidationError` so the HTTP layer can map them
to a 400 response with the offending field.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from app.constants import ItemStatus, SortDirection, SortField
from app.search.errors import SearchValidationError

MIN_QUERY_LENGTH = 2
MAX_QUERY_LENGTH = 500
MAX_LIMIT = 100

SEARCH_ERROR_MESSAGES: dict[str, str] = {
    "QUERY_TOO_SHORT": f"Search query must be at least {MIN_QUERY_LENGTH} characters long",
    "QUERY_TOO_LONG": f"Search query is too long (maximum {MAX_QUERY_LENGTH} characters)",
    "INVALID_LIMIT": f"Search limit must be between 1 and {MAX_LIMIT}",
    "INVALID_OFFSET": "Search offset must be a non-negative number",
    "INVALID_FILTERS": "One or more search filters are invalid",
    "INVALID_SORT": "Invalid sort field or direction specified",
}


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class ValueRange(_Frozen):
    min: float | None = Field(default=None, ge=0)
    max: float | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_order(self) -> ValueRange:
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("Minimum value cannot be greater than maximum value")
        return self


class QuantityRange(_Frozen):
    min: int | None = Field(default=None, ge=0)
    max: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_order(self) -> QuantityRange:
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("Minimum quantity cannot be greater than maximum quantity")
        return self


class DateRange(_Frozen):
    start: datetime | None = None
    end: datetime | None = None

    @model_validator(mode="after")
    def _check_order(self) -> DateRange:
        if self.start is not None and self.end is not None and self.start > self.end:
            raise ValueError("Start date cannot be later than end date")
        return self


class SearchFilters(_Frozen):
    """Extra predicates applied identically under every strategy."""

    value_range: ValueRange | None = None
    quantity_range: QuantityRange | None = None
    statuses: tuple[ItemStatus, ...] | None = Field(default=None, max_length=5)
    date_range: DateRange | None = None
    location_ids: tuple[int, ...] | None = Field(default=None, max_length=10)
    tag_names: tuple[str, ...] | None = Field(default=None, max_length=20)

    @field_validator("tag_names")
    @classmethod
    def _clean_tags(cls, value: tuple[str, ...] | None) -> tuple[str, ...] | None:
        if value is None:
            return None
        cleaned = tuple(t.strip() for t in value if t and t.strip())
        return cleaned or None

    @property
    def is_empty(self) -> bool:
        return not any(
            (
                self.value_range,
                self.quantity_range,
                self.statuses,
                self.date_range,
                self.location_ids,
                self.tag_names,
            )
        )


class SearchQuery(_Frozen):
    """Per-request search parameters."""

    text: str
    filters: SearchFilters | None = None
    sort: SortField = SortField.RELEVANCE
    sort_dir: SortDirection = SortDirection.DESC
    limit: int = Field(default=20, ge=1, le=MAX_LIMIT)
    offset: int = Field(default=0, ge=0)
    fuzzy: bool = False
    fuzzy_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    include_location: bool = True
    include_tags: bool = False

    @field_validator("text")
    @classmethod
    def _check_text(cls, value: str) -> str:
        stripped = value.strip()
        if len(stripped) < MIN_QUERY_LENGTH:
            raise ValueError(SEARCH_ERROR_MESSAGES["QUERY_TOO_SHORT"])
        if len(stripped) > MAX_QUERY_LENGTH:
            raise ValueError(SEARCH_ERROR_MESSAGES["QUERY_TOO_LONG"])
        return stripped

    @property
    def terms(self) -> list[str]:
        """Whitespace-separated terms, used for highlighting and stats."""
        return [t for t in self.text.split() if t]


def build_search_query(data: dict[str, Any]) -> SearchQuery:
    """Validate raw request data into a :class:`SearchQuery`.

    Raises:
        SearchValidationError: With the first failing field name.
    """
    try:
        return SearchQuery.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        message = str(first.get("msg", "Invalid search parameters"))
        # pydantic prefixes custom ValueError messages
        message = message.removeprefix("Value error, ")
        raise SearchValidationError(message, field=field) from None


_SQL_SIGNIFICANT_RE = re.compile(r"[;'\"\\]")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")
_WHITESPACE_RE = re.compile(r"\s+")


def sanitize_search_text(text: str) -> str:
    """Strip SQL-significant and control characters and collapse whitespace.

    Values are always sent as bound parameters; this only keeps
    ``websearch_to_tsquery`` input predictable.
    """
    cleaned = _SQL_SIGNIFICANT_RE.sub(" ", text.strip())
    cleaned = _CONTROL_CHARS_RE.sub(" ", cleaned)
    return _WHITESPACE_RE.sub(" ", cleaned).strip()
