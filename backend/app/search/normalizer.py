# @TEST tests/test_normalizer.py

"""Convert strategy rows into the uniform search result shape.

Whatever strategy produced the rows, callers see the same item fields,
a relevance score clamped to [0, 1], and page metadata.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field

from app.constants import SearchMethod
from app.search.query import SearchQuery


def _to_float(value: Any) -> float | None:
    if value is None:
        return None
    return float(value)


def clamp_score(value: Any) -> float:
    """Coerce a database score (float, Decimal, None) into [0, 1]."""
    score = _to_float(value)
    if score is None or score != score:  # NaN
        return 0.0
    return min(max(score, 0.0), 1.0)


class ItemLocation(BaseModel):
    id: int
    name: str
    path: str | None = None


class ItemTagInfo(BaseModel):
    id: int
    name: str
    color: str | None = None


class SearchResultItem(BaseModel):
    """A single matching item."""

    id: int
    name: str
    description: str | None = None
    quantity: int
    unit: str | None = None
    status: str
    current_value: float | None = None
    purchase_date: date | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    location: ItemLocation | None = None
    tags: list[ItemTagInfo] | None = None
    relevance_score: float = Field(ge=0.0, le=1.0)


class SearchStats(BaseModel):
    """How the returned page matched the query text."""

    exact_matches: int = 0
    partial_matches: int = 0
    location_matches: int = 0


class SearchResult(BaseModel):
    """Uniform page returned by every search, regardless of strategy."""

    items: list[SearchResultItem]
    total_count: int
    response_time: float
    search_method: SearchMethod
    has_more: bool
    search_stats: SearchStats | None = None


def normalize_row(
    row: Any,
    include_location: bool = True,
    tags: list[ItemTagInfo] | None = None,
) -> SearchResultItem:
    """Build a :class:`SearchResultItem` from one strategy result row."""
    location = None
    if include_location and row.location_id is not None and row.location_name is not None:
        location = ItemLocation(id=row.location_id, name=row.location_name, path=row.location_path)

    return SearchResultItem(
        id=row.id,
        name=row.name,
        description=row.description,
        quantity=row.quantity if row.quantity is not None else 0,
        unit=row.unit,
        status=row.status,
        current_value=_to_float(row.current_value),
        purchase_date=row.purchase_date,
        created_at=row.created_at,
        updated_at=row.updated_at,
        location=location,
        tags=tags,
        relevance_score=clamp_score(row.score),
    )


def compute_search_stats(items: list[SearchResultItem], text: str) -> SearchStats:
    """Count exact name, partial name/description, and location matches on the page."""
    needle = text.strip().lower()
    stats = SearchStats()
    if not needle:
        return stats

    for item in items:
        name = item.name.lower()
        if name == needle:
            stats.exact_matches += 1
        elif needle in name or (item.description and needle in item.description.lower()):
            stats.partial_matches += 1
        if item.location is not None:
            haystack = f"{item.location.name} {item.location.path or ''}".lower()
            if needle in haystack:
                stats.location_matches += 1
    return stats


def build_search_result(
    rows: list[Any],
    total: int,
    query: SearchQuery,
    method: SearchMethod,
    response_time_ms: float,
    tags_by_item: dict[int, list[ItemTagInfo]] | None = None,
) -> SearchResult:
    """Assemble the final page; ``has_more`` is derived from offset, page size and total."""
    items = [
        normalize_row(
            row,
            include_location=query.include_location,
            tags=(tags_by_item or {}).get(row.id, []) if query.include_tags else None,
        )
        for row in rows
    ]
    return SearchResult(
        items=items,
        total_count=total,
        response_time=round(response_time_ms, 2),
        search_method=method,
        has_more=query.offset + len(items) < total,
        search_stats=compute_search_stats(items, query.text),
    )
