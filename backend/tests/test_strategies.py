"""Tests for the individual search strategies.

Verifies statement construction (household predicate, filters, ordering,
scoring), outcome tagging, and the unpopulated-index check, without a
real PostgreSQL database.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError, ProgrammingError

from app.constants import SearchMethod
from app.search.capabilities import SearchCapability
from app.search.errors import StoreConnectivityError
from app.search.params import DEFAULT_SEARCH_PARAMS
from app.search.query import build_search_query
from app.search.strategies import (
    FullTextStrategy,
    IlikeStrategy,
    OutcomeStatus,
    TrigramStrategy,
    escape_like,
)
from tests.conftest import make_mock_session

HOUSEHOLD_ID = 7

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_mock_row(item_id: int, name: str, score: float, total_count: int = 1):
    """Build a mock SQLAlchemy row result with named attributes."""
    row = MagicMock()
    row.id = item_id
    row.name = name
    row.description = None
    row.quantity = 1
    row.unit = "piece"
    row.status = "AVAILABLE"
    row.current_value = Decimal("19.99")
    row.purchase_date = None
    row.created_at = None
    row.updated_at = None
    row.location_id = None
    row.location_name = None
    row.location_path = None
    row.score = score
    row.total_count = total_count
    return row


def _compile(stmt) -> tuple[str, dict]:
    compiled = stmt.compile(dialect=postgresql.dialect())
    return str(compiled), compiled.params


def _params(**overrides):
    return {**DEFAULT_SEARCH_PARAMS, **overrides}


def _query(**data):
    return build_search_query({"text": "drill", **data})


# ---------------------------------------------------------------------------
# 1. Availability
# ---------------------------------------------------------------------------


class TestAvailability:
    """Each strategy consults the capability struct; ILIKE always runs."""

    def test_full_text_requires_capability(self):
        strategy = FullTextStrategy(make_mock_session(), params=_params())
        assert strategy.is_available(SearchCapability(full_text_available=True)) is True
        assert strategy.is_available(SearchCapability()) is False

    def test_trigram_requires_capability(self):
        strategy = TrigramStrategy(make_mock_session(), params=_params())
        assert strategy.is_available(SearchCapability(trigram_available=True)) is True
        assert strategy.is_available(SearchCapability(full_text_available=True)) is False

    def test_ilike_always_available(self):
        assert IlikeStrategy(make_mock_session(), params=_params()).is_available(SearchCapability()) is True


# ---------------------------------------------------------------------------
# 2. Statement construction
# ---------------------------------------------------------------------------


class TestStatementConstruction:
    """Shared statement shape: household predicate, filters, ordering, paging."""

    @pytest.mark.parametrize("strategy_class", [FullTextStrategy, TrigramStrategy, IlikeStrategy])
    def test_household_predicate_on_every_strategy(self, strategy_class):
        strategy = strategy_class(make_mock_session(), params=_params())
        sql, params = _compile(strategy.build_statement(HOUSEHOLD_ID, _query()))
        assert "items.household_id = " in sql
        assert "locations.household_id = " in sql
        assert HOUSEHOLD_ID in params.values()

    @pytest.mark.parametrize("strategy_class", [FullTextStrategy, TrigramStrategy, IlikeStrategy])
    def test_filters_applied_on_every_strategy(self, strategy_class):
        query = _query(
            filters={
                "statuses": ["AVAILABLE"],
                "value_range": {"min": 10, "max": 200},
                "location_ids": [3, 4],
                "tag_names": ["Garage"],
            }
        )
        strategy = strategy_class(make_mock_session(), params=_params())
        sql, params = _compile(strategy.build_statement(HOUSEHOLD_ID, query))
        assert "items.status IN" in sql
        assert "items.current_value >=" in sql
        assert "items.current_value <=" in sql
        assert "items.location_id IN" in sql
        assert "EXISTS" in sql
        assert "tags.household_id" in sql
        assert "garage" in [v for v in params.values() if isinstance(v, str)] or any(
            v == ["garage"] for v in params.values()
        )

    def test_total_count_window_and_pagination(self):
        strategy = IlikeStrategy(make_mock_session(), params=_params())
        sql, params = _compile(strategy.build_statement(HOUSEHOLD_ID, _query(limit=5, offset=10)))
        assert "count(*) OVER ()" in sql
        assert "LIMIT" in sql
        assert "OFFSET" in sql
        assert 5 in params.values()
        assert 10 in params.values()

    def test_relevance_ordering_has_stable_tiebreak(self):
        strategy = FullTextStrategy(make_mock_session(), params=_params())
        sql, _ = _compile(strategy.build_statement(HOUSEHOLD_ID, _query()))
        order_by = sql[sql.index("ORDER BY") :]
        assert order_by.index("score DESC") < order_by.index("items.updated_at DESC")
        assert order_by.index("items.updated_at DESC") < order_by.index("items.id DESC")

    def test_explicit_sort_field(self):
        strategy = IlikeStrategy(make_mock_session(), params=_params())
        sql, _ = _compile(strategy.build_statement(HOUSEHOLD_ID, _query(sort="name", sort_dir="asc")))
        order_by = sql[sql.index("ORDER BY") :]
        assert order_by.startswith("ORDER BY items.name ASC NULLS LAST")
        assert "items.id DESC" in order_by


class TestFullTextStatement:
    """tsvector match and normalized ts_rank_cd score."""

    def test_uses_websearch_tsquery_and_rank_cd(self):
        strategy = FullTextStrategy(make_mock_session(), params=_params())
        sql, params = _compile(strategy.build_statement(HOUSEHOLD_ID, _query()))
        assert "websearch_to_tsquery('english'" in sql
        assert "ts_rank_cd(items.search_vector" in sql
        assert "items.search_vector @@" in sql
        assert 32 in params.values()

    def test_text_is_sanitized_before_tsquery(self):
        strategy = FullTextStrategy(make_mock_session(), params=_params())
        _, params = _compile(strategy.build_statement(HOUSEHOLD_ID, build_search_query({"text": "drill'; --"})))
        assert "drill --" in params.values()


class TestTrigramStatement:
    """Similarity over name and description with a threshold."""

    def test_similarity_and_default_threshold(self):
        strategy = TrigramStrategy(make_mock_session(), params=_params())
        sql, params = _compile(strategy.build_statement(HOUSEHOLD_ID, _query()))
        assert "similarity(items.name" in sql
        assert "greatest(" in sql
        assert 0.3 in params.values()

    def test_fuzzy_threshold_overrides_default(self):
        strategy = TrigramStrategy(make_mock_session(), params=_params())
        _, params = _compile(strategy.build_statement(HOUSEHOLD_ID, _query(fuzzy=True, fuzzy_threshold=0.15)))
        assert 0.15 in params.values()
        assert 0.3 not in params.values()

    def test_unaccent_wrapping(self):
        strategy = TrigramStrategy(make_mock_session(), params=_params(), use_unaccent=True)
        sql, _ = _compile(strategy.build_statement(HOUSEHOLD_ID, _query()))
        assert "unaccent(items.name)" in sql


class TestIlikeStatement:
    """Substring match with fixed exact/prefix/partial scores."""

    def test_ilike_with_escaped_pattern(self):
        strategy = IlikeStrategy(make_mock_session(), params=_params())
        sql, params = _compile(strategy.build_statement(HOUSEHOLD_ID, build_search_query({"text": "50%_off"})))
        assert "ILIKE" in sql
        assert "CASE" in sql
        assert "%50\\%\\_off%" in params.values()

    def test_fixed_scores_bound(self):
        strategy = IlikeStrategy(make_mock_session(), params=_params())
        _, params = _compile(strategy.build_statement(HOUSEHOLD_ID, _query()))
        values = list(params.values())
        assert 1.0 in values
        assert 0.5 in values

    def test_escape_like(self):
        assert escape_like("a%b_c\\d") == "a\\%b\\_c\\\\d"


# ---------------------------------------------------------------------------
# 3. Outcomes
# ---------------------------------------------------------------------------


class TestRunOutcomes:
    """run() tags results instead of raising."""

    @pytest.mark.asyncio
    async def test_ok_with_rows(self):
        rows = [_make_mock_row(1, "Cordless drill", 0.6, total_count=3)]
        session = make_mock_session(rows)
        outcome = await FullTextStrategy(session, params=_params()).run(HOUSEHOLD_ID, _query())
        assert outcome.status == OutcomeStatus.OK
        assert outcome.method == SearchMethod.FULL_TEXT
        assert outcome.rows == rows
        assert outcome.total == 3
        assert outcome.elapsed_ms >= 0
        session.begin_nested.assert_called_once()

    @pytest.mark.asyncio
    async def test_zero_rows_with_populated_index_is_success(self):
        session = make_mock_session(rows=[], scalar=12)
        outcome = await FullTextStrategy(session, params=_params()).run(HOUSEHOLD_ID, _query())
        assert outcome.status == OutcomeStatus.OK
        assert outcome.rows == []
        assert outcome.total == 0

        count_sql, count_params = _compile(session.execute.call_args_list[1].args[0])
        assert "items.search_vector IS NOT NULL" in count_sql
        assert HOUSEHOLD_ID in count_params.values()

    @pytest.mark.asyncio
    async def test_zero_rows_with_unpopulated_index_is_unavailable(self):
        session = make_mock_session(rows=[], scalar=0)
        outcome = await FullTextStrategy(session, params=_params()).run(HOUSEHOLD_ID, _query())
        assert outcome.status == OutcomeStatus.UNAVAILABLE
        assert "not populated" in outcome.reason

    @pytest.mark.asyncio
    async def test_trigram_zero_rows_is_success_without_index_check(self):
        session = make_mock_session(rows=[], scalar=0)
        outcome = await TrigramStrategy(session, params=_params()).run(HOUSEHOLD_ID, _query())
        assert outcome.status == OutcomeStatus.OK
        assert session.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_page_past_end_counts_total(self):
        session = make_mock_session(rows=[], scalar=4)
        outcome = await IlikeStrategy(session, params=_params()).run(HOUSEHOLD_ID, _query(offset=40))
        assert outcome.status == OutcomeStatus.OK
        assert outcome.total == 4

    @pytest.mark.asyncio
    async def test_statement_error_is_error_outcome(self):
        session = make_mock_session()
        session.execute = AsyncMock(
            side_effect=ProgrammingError("SELECT", {}, Exception("function similarity(text, text) does not exist"))
        )
        outcome = await TrigramStrategy(session, params=_params()).run(HOUSEHOLD_ID, _query())
        assert outcome.status == OutcomeStatus.ERROR
        assert outcome.reason == "ProgrammingError"

    @pytest.mark.asyncio
    async def test_timeout_is_error_outcome(self):
        session = make_mock_session()

        async def _slow(*args, **kwargs):
            await asyncio.sleep(1)

        session.execute = AsyncMock(side_effect=_slow)
        outcome = await FullTextStrategy(session, params=_params()).run(HOUSEHOLD_ID, _query(), timeout=0.01)
        assert outcome.status == OutcomeStatus.ERROR
        assert "timed out" in outcome.reason

    @pytest.mark.asyncio
    async def test_connectivity_loss_raises(self):
        session = make_mock_session()
        session.execute = AsyncMock(
            side_effect=OperationalError("SELECT", {}, ConnectionResetError("reset"), connection_invalidated=True)
        )
        with pytest.raises(StoreConnectivityError):
            await IlikeStrategy(session, params=_params()).run(HOUSEHOLD_ID, _query())

    @pytest.mark.asyncio
    async def test_invalid_text_config_is_unavailable(self):
        session = make_mock_session()
        outcome = await FullTextStrategy(session, params=_params(fts_config="english'); --")).run(
            HOUSEHOLD_ID, _query()
        )
        assert outcome.status == OutcomeStatus.UNAVAILABLE
        session.execute.assert_not_awaited()
