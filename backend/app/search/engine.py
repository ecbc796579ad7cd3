# @TEST tests/test_search_engine.py

"""Search resolution: pick the best available strategy and cascade on failure.

Preference order is full-text, then trigram, then ILIKE. A strategy is
skipped when the cached capability says it cannot run, and abandoned when
it reports ``unavailable`` or ``error``. A strategy that runs and finds
nothing is a success. Only lost connectivity, or failure of the ILIKE
fallback itself, reaches the caller.

The capability struct is memoized on the :class:`SearchService` instance.
It is database-wide and tenant-agnostic, and is the only state shared
between requests.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import asdict
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings
from app.models import Item, ItemTag, Tag
from app.search.capabilities import CapabilityProber, SearchCapability, SearchConfiguration
from app.search.errors import SearchError, StoreConnectivityError, is_connectivity_error
from app.search.normalizer import ItemTagInfo, SearchResult, build_search_result
from app.search.params import get_search_params
from app.search.query import SearchQuery
from app.search.strategies import DEFAULT_STRATEGY_ORDER, OutcomeStatus, SearchStrategy
from app.services.household_context import HouseholdContext, resolve_household_context

logger = logging.getLogger(__name__)


class SearchService:
    """Capability-aware item search for one process.

    Sessions are passed per call; the instance itself only holds settings
    and the memoized capability struct.

    Args:
        settings: Optional settings override (useful for testing).
        prober_class: Capability prober implementation.
        strategy_classes: Strategies in preference order.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        prober_class: type[CapabilityProber] = CapabilityProber,
        strategy_classes: Sequence[type[SearchStrategy]] = DEFAULT_STRATEGY_ORDER,
    ) -> None:
        self._params = get_search_params(settings)
        self._prober_class = prober_class
        self._strategy_classes = tuple(strategy_classes)
        self._capability: SearchCapability | None = None

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    async def get_capability(self, session: AsyncSession) -> SearchCapability:
        """Return the memoized capability struct, probing on first use."""
        if self._capability is None:
            self._capability = await self._prober_class(session).probe()
        return self._capability

    def invalidate_capabilities(self) -> None:
        """Forget the memoized capability so the next search re-probes."""
        self._capability = None

    async def get_search_capabilities(self, session: AsyncSession, household_id: int) -> dict[str, Any]:
        """Capability, derived configuration, and search vector statistics.

        Capabilities are database-wide; the statistics only count rows of
        *household_id*.
        """
        capability = await self.get_capability(session)
        stmt = select(func.count().label("total"), func.count(Item.search_vector).label("populated")).where(
            Item.household_id == household_id
        )
        counts = (await session.execute(stmt)).one()
        return {
            "capabilities": capability.as_dict(),
            "configuration": asdict(SearchConfiguration.from_capability(capability)),
            "statistics": {
                "household_id": household_id,
                "items_total": int(counts.total or 0),
                "items_with_search_vector": int(counts.populated or 0),
            },
        }

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search_items(self, session: AsyncSession, user_id: int | None, query: SearchQuery) -> SearchResult:
        """Resolve the caller's household, then search inside it.

        Raises:
            AuthenticationRequiredError: No caller identity.
            AccessDeniedError: No active household membership.
            StoreConnectivityError: Database unreachable.
            SearchError: Every strategy, including the fallback, failed.
        """
        context = await resolve_household_context(session, user_id)
        return await self.search(session, context, query)

    async def search(self, session: AsyncSession, context: HouseholdContext, query: SearchQuery) -> SearchResult:
        """Run the strategy cascade for an already resolved household."""
        household_id = context.household_id
        try:
            capability = await self.get_capability(session)
        except StoreConnectivityError:
            logger.exception("Search aborted: database unreachable during capability probe")
            raise

        use_unaccent = capability.unaccent_available
        timeout = float(self._params["strategy_timeout_seconds"])

        for strategy_class in self._strategy_classes:
            strategy = strategy_class(session, params=self._params, use_unaccent=use_unaccent)
            if not strategy.is_available(capability):
                logger.debug("Skipping %s: not available", strategy.method)
                continue

            try:
                outcome = await strategy.run(household_id, query, timeout=timeout)
            except StoreConnectivityError:
                logger.exception("Search aborted: database unreachable during %s", strategy.method)
                raise

            if outcome.status == OutcomeStatus.OK:
                tags_by_item = {}
                if query.include_tags and outcome.rows:
                    tags_by_item = await self._load_tags(session, household_id, [row.id for row in outcome.rows])
                result = build_search_result(
                    outcome.rows,
                    outcome.total,
                    query,
                    method=outcome.method,
                    response_time_ms=outcome.elapsed_ms,
                    tags_by_item=tags_by_item,
                )
                logger.info(
                    "Search household=%s user=%s query_len=%d limit=%d offset=%d method=%s results=%d total=%d time=%.1fms",
                    household_id,
                    context.user_id,
                    len(query.text),
                    query.limit,
                    query.offset,
                    result.search_method,
                    len(result.items),
                    result.total_count,
                    result.response_time,
                )
                return result

            logger.warning(
                "Search strategy %s %s (%s), cascading",
                outcome.method,
                outcome.status,
                outcome.reason,
            )

        logger.error("All search strategies failed for household %s", household_id)
        raise SearchError("Search is temporarily unavailable", code="SEARCH_UNAVAILABLE")

    async def _load_tags(
        self,
        session: AsyncSession,
        household_id: int,
        item_ids: list[int],
    ) -> dict[int, list[ItemTagInfo]]:
        stmt = (
            select(ItemTag.item_id, Tag.id, Tag.name, Tag.color)
            .join(Tag, Tag.id == ItemTag.tag_id)
            .where(ItemTag.item_id.in_(item_ids), Tag.household_id == household_id)
            .order_by(Tag.name)
        )
        try:
            rows = (await session.execute(stmt)).fetchall()
        except Exception as exc:
            if is_connectivity_error(exc):
                raise StoreConnectivityError("Database unreachable") from exc
            raise

        tags: dict[int, list[ItemTagInfo]] = {}
        for row in rows:
            tags.setdefault(row.item_id, []).append(ItemTagInfo(id=row.id, name=row.name, color=row.color))
        return tags
