# @TEST tests/test_indexer.py

"""Maintenance of the ``items.search_vector`` full-text column.

The vector combines the item name (weight A) and description (weight B)
under the configured text search configuration. Refreshes are always
scoped to one household; a batch refresh may be narrowed to specific
items or to rows whose vector is still missing.

Full-text search only runs for a household once its vectors are populated,
so a fresh deployment needs one :meth:`SearchIndexer.refresh_household`
per household (exposed as ``POST /api/admin/search/reindex``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import func, literal_column, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Item
from app.search.errors import StoreConnectivityError, is_connectivity_error
from app.search.params import get_search_params
from app.search.strategies import text_search_config

logger = logging.getLogger(__name__)


@dataclass
class IndexResult:
    """Outcome of one refresh.

    Attributes:
        household_id: Household whose rows were refreshed.
        updated: Number of item rows whose vector was rewritten.
        item_ids: The requested item ids, or empty for a whole-household refresh.
    """

    household_id: int
    updated: int = 0
    item_ids: list[int] = field(default_factory=list)


class SearchIndexer:
    """Rebuild ``search_vector`` for items of one household.

    Args:
        session: An async SQLAlchemy session for database operations.
        params: Search parameters (defaults to :func:`get_search_params`).
    """

    def __init__(self, session: AsyncSession, params: dict[str, Any] | None = None) -> None:
        self._session = session
        self._params = params if params is not None else get_search_params()

    def vector_expression(self):
        """``setweight(to_tsvector(name), 'A') || setweight(to_tsvector(description), 'B')``."""
        config = text_search_config(self._params["fts_config"])
        return func.setweight(
            func.to_tsvector(config, func.coalesce(Item.name, "")), literal_column("'A'")
        ).op("||")(
            func.setweight(func.to_tsvector(config, func.coalesce(Item.description, "")), literal_column("'B'"))
        )

    async def refresh_household(self, household_id: int, only_missing: bool = False) -> IndexResult:
        """Rewrite the vector of every item in *household_id*.

        Args:
            household_id: Household to refresh.
            only_missing: Only touch rows whose vector is NULL.
        """
        conditions = [Item.household_id == household_id]
        if only_missing:
            conditions.append(Item.search_vector.is_(None))
        updated = await self._execute(conditions)
        logger.info("Refreshed search vectors for household %d: %d items", household_id, updated)
        return IndexResult(household_id=household_id, updated=updated)

    async def refresh_items(self, household_id: int, item_ids: list[int]) -> IndexResult:
        """Rewrite the vectors of *item_ids*; ids outside *household_id* are ignored."""
        ids = sorted(set(item_ids))
        if not ids:
            return IndexResult(household_id=household_id)
        updated = await self._execute([Item.household_id == household_id, Item.id.in_(ids)])
        logger.info("Refreshed search vectors for household %d: %d of %d items", household_id, updated, len(ids))
        return IndexResult(household_id=household_id, updated=updated, item_ids=ids)

    async def _execute(self, conditions: list) -> int:
        stmt = (
            update(Item)
            .where(*conditions)
            .values(search_vector=self.vector_expression())
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self._session.execute(stmt)
        except Exception as exc:
            if is_connectivity_error(exc):
                raise StoreConnectivityError("Database unreachable during search index refresh") from exc
            raise
        return int(result.rowcount or 0)
