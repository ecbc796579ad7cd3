# @TEST tests/test_strategies.py

"""Search strategies: full-text, trigram similarity, and ILIKE fallback.

Every strategy builds the same statement shape:

    SELECT <item columns>, <location columns>, <score>, COUNT(*) OVER () AS total_count
    FROM items LEFT JOIN locations ON ... AND locations.household_id = :hid
    WHERE items.household_id = :hid AND <match> AND <filters>
    ORDER BY <sort>, score DESC, items.updated_at DESC, items.id DESC
    LIMIT :limit OFFSET :offset

Only ``<match>`` and ``<score>`` differ per strategy. Filters and the
household predicate are shared, so weaker strategies never drop a filter.

Strategies report through :class:`StrategyOutcome` instead of raising:
``ok`` carries rows, ``unavailable`` means the strategy cannot run here,
``error`` means it tried and failed (exception or timeout). Only loss of
database connectivity escapes as :class:`StoreConnectivityError`.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from sqlalchemy import and_, case, exists, func, literal, literal_column, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from app.constants import SearchMethod, SortDirection, SortField
from app.models import Item, ItemTag, Location, Tag
from app.search.capabilities import SearchCapability
from app.search.errors import StoreConnectivityError, StrategyUnavailableError, is_connectivity_error
from app.search.params import get_search_params
from app.search.query import SearchFilters, SearchQuery, sanitize_search_text

logger = logging.getLogger(__name__)

_TEXT_CONFIG_RE = re.compile(r"^[a-z_]+$")


def text_search_config(name: str):
    """Render a text search configuration name as a SQL literal.

    Raises:
        ValueError: If *name* is not a plain lowercase identifier.
    """
    config = str(name)
    if not _TEXT_CONFIG_RE.match(config):
        raise ValueError(f"invalid text search configuration {config!r}")
    return literal_column(f"'{config}'")


def escape_like(value: str) -> str:
    """Escape LIKE/ILIKE wildcards so user text matches literally (escape char ``\\``)."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class OutcomeStatus(StrEnum):
    OK = "ok"
    UNAVAILABLE = "unavailable"
    ERROR = "error"


@dataclass
class StrategyOutcome:
    """Tagged result of one strategy attempt."""

    method: SearchMethod
    status: OutcomeStatus
    rows: list[Any] = field(default_factory=list)
    total: int = 0
    reason: str | None = None
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.OK


@dataclass
class RawPage:
    rows: list[Any]
    total: int


def build_filter_predicates(household_id: int, filters: SearchFilters | None) -> list[ColumnElement]:
    """Translate :class:`SearchFilters` into WHERE predicates on ``items``."""
    if filters is None:
        return []

    predicates: list[ColumnElement] = []
    if filters.value_range is not None:
        if filters.value_range.min is not None:
            predicates.append(Item.current_value >= filters.value_range.min)
        if filters.value_range.max is not None:
            predicates.append(Item.current_value <= filters.value_range.max)
    if filters.quantity_range is not None:
        if filters.quantity_range.min is not None:
            predicates.append(Item.quantity >= filters.quantity_range.min)
        if filters.quantity_range.max is not None:
            predicates.append(Item.quantity <= filters.quantity_range.max)
    if filters.statuses:
        predicates.append(Item.status.in_([s.value for s in filters.statuses]))
    if filters.date_range is not None:
        if filters.date_range.start is not None:
            predicates.append(Item.created_at >= filters.date_range.start)
        if filters.date_range.end is not None:
            predicates.append(Item.created_at <= filters.date_range.end)
    if filters.location_ids:
        predicates.append(Item.location_id.in_(list(filters.location_ids)))
    if filters.tag_names:
        predicates.append(
            exists(
                select(ItemTag.item_id)
                .join(Tag, Tag.id == ItemTag.tag_id)
                .where(
                    ItemTag.item_id == Item.id,
                    Tag.household_id == household_id,
                    func.lower(Tag.name).in_([t.lower() for t in filters.tag_names]),
                )
            )
        )
    return predicates


_SORT_COLUMNS = {
    SortField.NAME: Item.name,
    SortField.VALUE: Item.current_value,
    SortField.DATE: Item.created_at,
    SortField.QUANTITY: Item.quantity,
}


def build_ordering(query: SearchQuery, score: ColumnElement) -> list[ColumnElement]:
    """ORDER BY clauses; always ends with a stable tie-break for deterministic paging."""
    ordering: list[ColumnElement] = []
    column = _SORT_COLUMNS.get(query.sort)
    if column is None:
        ordering.append(score.asc() if query.sort_dir == SortDirection.ASC else score.desc())
    else:
        primary = column.asc() if query.sort_dir == SortDirection.ASC else column.desc()
        ordering.extend([primary.nulls_last(), score.desc()])
    ordering.extend([Item.updated_at.desc(), Item.id.desc()])
    return ordering


class SearchStrategy:
    """Base class: shared statement assembly, pagination, and outcome wrapping.

    Subclasses define :attr:`method`, :meth:`is_available`, :meth:`_match`
    and :meth:`_score`.

    Args:
        session: An async SQLAlchemy session for database queries.
        params: Search parameters (defaults to :func:`get_search_params`).
        use_unaccent: Wrap compared text in ``unaccent()`` where supported.
    """

    method: SearchMethod

    def __init__(
        self,
        session: AsyncSession,
        params: dict[str, Any] | None = None,
        use_unaccent: bool = False,
    ) -> None:
        self._session = session
        self._params = params if params is not None else get_search_params()
        self._use_unaccent = use_unaccent

    def is_available(self, capability: SearchCapability) -> bool:
        raise NotImplementedError

    def _match(self, query: SearchQuery) -> ColumnElement:
        raise NotImplementedError

    def _score(self, query: SearchQuery) -> ColumnElement:
        raise NotImplementedError

    async def _on_empty(self, household_id: int) -> None:
        """Hook called when the strategy matched nothing at all."""

    def _fold(self, expr):
        return func.unaccent(expr) if self._use_unaccent else expr

    def build_statement(self, household_id: int, query: SearchQuery):
        score = self._score(query).label("score")
        predicates = self._predicates(household_id, query)
        return (
            select(
                Item.id,
                Item.name,
                Item.description,
                Item.quantity,
                Item.unit,
                Item.status,
                Item.current_value,
                Item.purchase_date,
                Item.created_at,
                Item.updated_at,
                Item.location_id,
                Location.name.label("location_name"),
                Location.path.label("location_path"),
                score,
                func.count().over().label("total_count"),
            )
            .select_from(Item)
            .outerjoin(
                Location,
                and_(Location.id == Item.location_id, Location.household_id == household_id),
            )
            .where(*predicates)
            .order_by(*build_ordering(query, score))
            .limit(query.limit)
            .offset(query.offset)
        )

    def _predicates(self, household_id: int, query: SearchQuery) -> list[ColumnElement]:
        return [
            Item.household_id == household_id,
            self._match(query),
            *build_filter_predicates(household_id, query.filters),
        ]

    async def fetch(self, household_id: int, query: SearchQuery) -> RawPage:
        """Execute the strategy; may raise."""
        result = await self._session.execute(self.build_statement(household_id, query))
        rows = result.fetchall()

        if rows:
            return RawPage(rows=list(rows), total=int(rows[0].total_count))

        if query.offset > 0:
            # Page past the end: COUNT(*) OVER () has no row to ride on
            count_stmt = select(func.count()).select_from(Item).where(*self._predicates(household_id, query))
            total = (await self._session.execute(count_stmt)).scalar() or 0
            return RawPage(rows=[], total=int(total))

        await self._on_empty(household_id)
        return RawPage(rows=[], total=0)

    async def run(self, household_id: int, query: SearchQuery, timeout: float | None = None) -> StrategyOutcome:
        """Execute inside a SAVEPOINT with a timeout and return a tagged outcome."""
        if timeout is None:
            timeout = float(self._params["strategy_timeout_seconds"])

        start = time.perf_counter()

        def _elapsed() -> float:
            return round((time.perf_counter() - start) * 1000, 2)

        try:
            async with self._session.begin_nested():
                page = await asyncio.wait_for(self.fetch(household_id, query), timeout=timeout)
        except StrategyUnavailableError as exc:
            return StrategyOutcome(self.method, OutcomeStatus.UNAVAILABLE, reason=exc.message, elapsed_ms=_elapsed())
        except TimeoutError:
            return StrategyOutcome(
                self.method, OutcomeStatus.ERROR, reason=f"timed out after {timeout}s", elapsed_ms=_elapsed()
            )
        except Exception as exc:
            if is_connectivity_error(exc):
                raise StoreConnectivityError("Database unreachable") from exc
            return StrategyOutcome(
                self.method, OutcomeStatus.ERROR, reason=exc.__class__.__name__, elapsed_ms=_elapsed()
            )

        return StrategyOutcome(self.method, OutcomeStatus.OK, rows=page.rows, total=page.total, elapsed_ms=_elapsed())


class FullTextStrategy(SearchStrategy):
    """PostgreSQL tsvector search ranked with ``ts_rank_cd``.

    Normalization flag 32 maps the rank into ``rank / (rank + 1)``, so scores
    land in [0, 1). When nothing matches, the household's populated
    search vectors are counted; zero means the index was never built for this
    data and the strategy reports itself unavailable instead of returning an
    empty page.
    """

    method = SearchMethod.FULL_TEXT

    def is_available(self, capability: SearchCapability) -> bool:
        return capability.full_text_available

    def _config(self):
        try:
            return text_search_config(self._params["fts_config"])
        except ValueError as exc:
            raise StrategyUnavailableError(str(exc)) from None

    def _tsquery(self, query: SearchQuery):
        return func.websearch_to_tsquery(self._config(), sanitize_search_text(query.text))

    def _match(self, query: SearchQuery) -> ColumnElement:
        return Item.search_vector.op("@@")(self._tsquery(query))

    def _score(self, query: SearchQuery) -> ColumnElement:
        return func.ts_rank_cd(Item.search_vector, self._tsquery(query), int(self._params["fts_rank_normalization"]))

    async def _on_empty(self, household_id: int) -> None:
        stmt = select(func.count()).select_from(Item).where(
            Item.household_id == household_id,
            Item.search_vector.isnot(None),
        )
        populated = (await self._session.execute(stmt)).scalar() or 0
        if populated == 0:
            raise StrategyUnavailableError("search vectors not populated for household")


class TrigramStrategy(SearchStrategy):
    """pg_trgm similarity over item name and description.

    The threshold defaults to ``trigram_threshold`` (0.3); a query with
    ``fuzzy_threshold`` set overrides it.
    """

    method = SearchMethod.TRIGRAM

    def is_available(self, capability: SearchCapability) -> bool:
        return capability.trigram_available

    def _threshold(self, query: SearchQuery) -> float:
        if query.fuzzy_threshold is not None:
            return query.fuzzy_threshold
        return float(self._params["trigram_threshold"])

    def _similarities(self, query: SearchQuery) -> tuple[ColumnElement, ColumnElement]:
        needle = self._fold(literal(query.text))
        name_sim = func.similarity(self._fold(Item.name), needle)
        desc_sim = func.similarity(self._fold(func.coalesce(Item.description, "")), needle)
        return name_sim, desc_sim

    def _match(self, query: SearchQuery) -> ColumnElement:
        threshold = self._threshold(query)
        name_sim, desc_sim = self._similarities(query)
        return or_(name_sim >= threshold, desc_sim >= threshold)

    def _score(self, query: SearchQuery) -> ColumnElement:
        name_sim, desc_sim = self._similarities(query)
        return func.greatest(
            name_sim * float(self._params["trigram_name_weight"]),
            desc_sim * float(self._params["trigram_description_weight"]),
        )


class IlikeStrategy(SearchStrategy):
    """Case-insensitive substring matching. Always available.

    Scores are fixed: exact name match, name prefix, and any other partial match.
    """

    method = SearchMethod.ILIKE

    def is_available(self, capability: SearchCapability) -> bool:
        return True

    def _pattern(self, query: SearchQuery, prefix_only: bool = False):
        escaped = escape_like(query.text)
        return self._fold(literal(f"{escaped}%" if prefix_only else f"%{escaped}%"))

    def _match(self, query: SearchQuery) -> ColumnElement:
        pattern = self._pattern(query)
        return or_(
            self._fold(Item.name).ilike(pattern, escape="\\"),
            self._fold(func.coalesce(Item.description, "")).ilike(pattern, escape="\\"),
        )

    def _score(self, query: SearchQuery) -> ColumnElement:
        return case(
            (
                func.lower(self._fold(Item.name)) == func.lower(self._fold(literal(query.text))),
                literal(float(self._params["ilike_exact_score"])),
            ),
            (
                self._fold(Item.name).ilike(self._pattern(query, prefix_only=True), escape="\\"),
                literal(float(self._params["ilike_prefix_score"])),
            ),
            else_=literal(float(self._params["ilike_partial_score"])),
        )


DEFAULT_STRATEGY_ORDER: tuple[type[SearchStrategy], ...] = (FullTextStrategy, TrigramStrategy, IlikeStrategy)
