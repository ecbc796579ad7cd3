# @TEST tests/test_suggestions.py

"""Autocomplete suggestions over item names, locations and tags.

The requested limit is shared out between the sources (items 40%,
locations 30%, tags 20%). Each source gets a fixed base score so items
rank above locations and locations above tags, and the score decreases
with position within a source.
"""

from __future__ import annotations

import logging
import math

from pydantic import BaseModel
from sqlalchemy import func, literal, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.constants import SuggestionType
from app.models import Item, Location, Tag
from app.search.errors import SearchValidationError
from app.search.strategies import escape_like

logger = logging.getLogger(__name__)

MIN_SUGGESTION_TEXT = 1
MAX_SUGGESTION_TEXT = 100
MAX_SUGGESTIONS = 10

# Percent of the requested limit fetched from each source
_SOURCE_SHARE = {
    SuggestionType.ITEM: 40,
    SuggestionType.LOCATION: 30,
    SuggestionType.TAG: 20,
}
_BASE_SCORE = {
    SuggestionType.ITEM: 1.0,
    SuggestionType.LOCATION: 0.8,
    SuggestionType.TAG: 0.6,
}
_SCORE_STEP = 0.05


class SearchSuggestion(BaseModel):
    text: str
    type: SuggestionType
    count: int = 0
    score: float


def _source_limit(limit: int, source: SuggestionType) -> int:
    return max(1, math.ceil(limit * _SOURCE_SHARE[source] / 100))


def _score(source: SuggestionType, position: int) -> float:
    return round(max(_BASE_SCORE[source] - position * _SCORE_STEP, 0.0), 3)


async def generate_suggestions(
    session: AsyncSession,
    household_id: int,
    text: str,
    limit: int = 5,
    types: list[SuggestionType] | tuple[SuggestionType, ...] | None = None,
) -> list[SearchSuggestion]:
    """Return up to *limit* suggestions matching *text* within one household.

    Raises:
        SearchValidationError: If *text* or *limit* is out of range.
    """
    text = (text or "").strip()
    if not MIN_SUGGESTION_TEXT <= len(text) <= MAX_SUGGESTION_TEXT:
        raise SearchValidationError(
            f"Suggestion text must be between {MIN_SUGGESTION_TEXT} and {MAX_SUGGESTION_TEXT} characters",
            field="q",
        )
    if not 1 <= limit <= MAX_SUGGESTIONS:
        raise SearchValidationError(f"Suggestion limit must be between 1 and {MAX_SUGGESTIONS}", field="limit")

    wanted = set(types) if types else set(SuggestionType)
    pattern = literal(f"%{escape_like(text)}%")
    suggestions: list[SearchSuggestion] = []

    if SuggestionType.ITEM in wanted:
        stmt = (
            select(Item.name, func.count().label("count"))
            .where(Item.household_id == household_id, Item.name.ilike(pattern, escape="\\"))
            .group_by(Item.name)
            .order_by(func.count().desc(), Item.name)
            .limit(_source_limit(limit, SuggestionType.ITEM))
        )
        rows = (await session.execute(stmt)).fetchall()
        suggestions.extend(
            SearchSuggestion(text=row.name, type=SuggestionType.ITEM, count=row.count, score=_score(SuggestionType.ITEM, i))
            for i, row in enumerate(rows)
        )

    if SuggestionType.LOCATION in wanted:
        stmt = (
            select(Location.name, Location.path, Location.item_count)
            .where(
                Location.household_id == household_id,
                or_(Location.name.ilike(pattern, escape="\\"), Location.path.ilike(pattern, escape="\\")),
            )
            .order_by(Location.item_count.desc(), Location.name)
            .limit(_source_limit(limit, SuggestionType.LOCATION))
        )
        rows = (await session.execute(stmt)).fetchall()
        suggestions.extend(
            SearchSuggestion(
                text=row.path or row.name,
                type=SuggestionType.LOCATION,
                count=row.item_count or 0,
                score=_score(SuggestionType.LOCATION, i),
            )
            for i, row in enumerate(rows)
        )

    if SuggestionType.TAG in wanted:
        stmt = (
            select(Tag.name, Tag.usage_count)
            .where(Tag.household_id == household_id, Tag.name.ilike(pattern, escape="\\"))
            .order_by(Tag.usage_count.desc(), Tag.name)
            .limit(_source_limit(limit, SuggestionType.TAG))
        )
        rows = (await session.execute(stmt)).fetchall()
        suggestions.extend(
            SearchSuggestion(
                text=row.name,
                type=SuggestionType.TAG,
                count=row.usage_count or 0,
                score=_score(SuggestionType.TAG, i),
            )
            for i, row in enumerate(rows)
        )

    seen: set[tuple[str, str]] = set()
    unique: list[SearchSuggestion] = []
    for suggestion in sorted(suggestions, key=lambda s: s.score, reverse=True):
        key = (suggestion.type.value, suggestion.text.lower())
        if key not in seen:
            seen.add(key)
            unique.append(suggestion)

    logger.debug("Suggestions for household %s: %d (text length %d)", household_id, len(unique), len(text))
    return unique[:limit]
