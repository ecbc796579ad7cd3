# @TEST tests/test_api_search.py

"""Search API endpoints.

Provides:
- ``GET /search`` -- Basic item search (query string parameters).
- ``POST /search`` -- Advanced item search (JSON body with filters, sort, fuzzy).
- ``GET /search/suggestions`` -- Autocomplete over items, locations and tags.
- ``POST /search/highlight`` -- Highlight search terms in a batch of text fields.

Both item searches are rate limited per user (``SEARCH_RATE_LIMIT``, 429 when
exceeded). All endpoints require JWT Bearer authentication and an active household
membership. Error bodies never carry raw database or exception text.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.constants import SuggestionType
from app.database import get_db
from app.search.engine import SearchService
from app.search.errors import SearchError, SearchValidationError, StoreConnectivityError
from app.search.highlighting import (
    HighlightOptions,
    HighlightResult,
    SearchHighlight,
    create_search_highlight,
    highlight_search_terms,
)
from app.search.normalizer import SearchResult
from app.search.query import SearchQuery, build_search_query
from app.search.suggestions import SearchSuggestion, generate_suggestions
from app.services.auth_service import get_current_user
from app.services.household_context import (
    AccessDeniedError,
    AuthenticationRequiredError,
    HouseholdContext,
    resolve_household_context,
)
from app.services.rate_limit import SearchRateLimiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/search", tags=["search"])

_UNAVAILABLE_MESSAGE = "Search is temporarily unavailable. Please try again later."
_FAILED_MESSAGE = "Search failed. Please try again later."


# ---------------------------------------------------------------------------
# Request / response schemas
# ---------------------------------------------------------------------------


class SearchResponse(SearchResult):
    """Search result page plus the normalized query text."""

    query: str


class SuggestionResponse(BaseModel):
    suggestions: list[SearchSuggestion]
    query: str


class HighlightCard(BaseModel):
    name: str
    description: str | None = None
    location_path: str | None = None


class HighlightRequestOptions(BaseModel):
    """Options a caller may set; size and timing limits always come from settings."""

    highlight_class: str | None = None
    case_sensitive: bool = False
    whole_words_only: bool = False

    def resolve(self) -> HighlightOptions:
        return HighlightOptions.from_settings(**self.model_dump(exclude_none=True))


class HighlightRequest(BaseModel):
    terms: list[str] = Field(default_factory=list, max_length=20)
    fields: dict[str, str] = Field(default_factory=dict, max_length=50)
    card: HighlightCard | None = None
    options: HighlightRequestOptions | None = None
    snippet_length: int = Field(default=150, ge=10, le=1000)


class HighlightResponse(BaseModel):
    fields: dict[str, HighlightResult]
    card: SearchHighlight | None = None
    security_validated: bool


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_search_service(request: Request) -> SearchService:
    """Return the process-wide :class:`SearchService` held on ``app.state``."""
    service = getattr(request.app.state, "search_service", None)
    if service is None:
        service = SearchService()
        request.app.state.search_service = service
    return service


async def get_household_context(
    current_user: dict = Depends(get_current_user),  # noqa: B008
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> HouseholdContext:
    """Resolve the caller's active household or fail with 401/403."""
    try:
        return await resolve_household_context(
            db,
            current_user.get("user_id"),
            current_user.get("household_id"),
        )
    except AuthenticationRequiredError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None
    except AccessDeniedError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Household access denied or revoked",
        ) from None


def get_search_rate_limiter(request: Request) -> SearchRateLimiter:
    """Return the process-wide search limiter held on ``app.state``."""
    limiter = getattr(request.app.state, "search_rate_limiter", None)
    if limiter is None:
        limiter = SearchRateLimiter(get_settings().SEARCH_RATE_LIMIT)
        request.app.state.search_rate_limiter = limiter
    return limiter


async def enforce_search_rate_limit(
    current_user: dict = Depends(get_current_user),  # noqa: B008
    limiter: SearchRateLimiter = Depends(get_search_rate_limiter),  # noqa: B008
) -> None:
    """Reject the request with 429 once the caller has used up the search rate."""
    key = f"user:{current_user.get('user_id')}"
    if limiter.hit(key):
        return
    logger.warning("Search rate limit %s exceeded for %s", limiter.rate, key)
    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail={"error": "RATE_LIMIT_EXCEEDED", "message": "Too many search requests. Please try again later."},
        headers={"Retry-After": str(limiter.retry_after(key))},
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _validation_http_error(exc: SearchValidationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"error": "VALIDATION_ERROR", "message": exc.message, "field": exc.field},
    )


def _parse_query(data: dict[str, Any]) -> SearchQuery:
    try:
        return build_search_query(data)
    except SearchValidationError as exc:
        raise _validation_http_error(exc) from None


async def _run_search(
    service: SearchService,
    db: AsyncSession,
    context: HouseholdContext,
    query: SearchQuery,
) -> SearchResponse:
    try:
        result = await service.search(db, context, query)
    except StoreConnectivityError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "SEARCH_UNAVAILABLE", "message": _UNAVAILABLE_MESSAGE},
        ) from None
    except SearchError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": exc.code, "message": _FAILED_MESSAGE},
        ) from None
    except Exception:
        logger.exception("Unexpected search failure for household %s", context.household_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "SEARCH_ERROR", "message": _FAILED_MESSAGE},
        ) from None

    return SearchResponse(**result.model_dump(), query=query.text)


def _range(low: Any, high: Any) -> dict[str, Any] | None:
    if low is None and high is None:
        return None
    return {"min": low, "max": high}


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("", response_model=SearchResponse, dependencies=[Depends(enforce_search_rate_limit)])
async def search(
    q: str = Query(..., description="Search text (2-500 characters)"),  # noqa: B008
    limit: int = Query(20, description="Maximum number of results (1-100)"),  # noqa: B008
    offset: int = Query(0, description="Number of results to skip"),  # noqa: B008
    sort: str = Query("relevance", description="relevance, name, value, date or quantity"),  # noqa: B008
    sort_dir: str = Query("desc", description="asc or desc"),  # noqa: B008
    status_filter: list[str] | None = Query(None, alias="status"),  # noqa: B008
    location_id: list[int] | None = Query(None),  # noqa: B008
    tag: list[str] | None = Query(None),  # noqa: B008
    min_value: float | None = Query(None),  # noqa: B008
    max_value: float | None = Query(None),  # noqa: B008
    date_from: str | None = Query(None, description="ISO 8601 date or datetime"),  # noqa: B008
    date_to: str | None = Query(None, description="ISO 8601 date or datetime"),  # noqa: B008
    fuzzy: bool = Query(False),  # noqa: B008
    include_tags: bool = Query(False),  # noqa: B008
    context: HouseholdContext = Depends(get_household_context),  # noqa: B008
    service: SearchService = Depends(get_search_service),  # noqa: B008
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> SearchResponse:
    """Basic item search within the caller's household."""
    filters: dict[str, Any] = {}
    if status_filter:
        filters["statuses"] = status_filter
    if location_id:
        filters["location_ids"] = location_id
    if tag:
        filters["tag_names"] = tag
    value_range = _range(min_value, max_value)
    if value_range:
        filters["value_range"] = value_range
    if date_from or date_to:
        filters["date_range"] = {"start": date_from, "end": date_to}

    query = _parse_query(
        {
            "text": q,
            "limit": limit,
            "offset": offset,
            "sort": sort,
            "sort_dir": sort_dir,
            "filters": filters or None,
            "fuzzy": fuzzy,
            "include_tags": include_tags,
        }
    )
    return await _run_search(service, db, context, query)


@router.post("", response_model=SearchResponse, dependencies=[Depends(enforce_search_rate_limit)])
async def advanced_search(
    body: dict[str, Any] = Body(...),  # noqa: B008
    context: HouseholdContext = Depends(get_household_context),  # noqa: B008
    service: SearchService = Depends(get_search_service),  # noqa: B008
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> SearchResponse:
    """Advanced item search: the body is a full search query object.

    Example body::

        {"text": "drill", "filters": {"statuses": ["AVAILABLE"],
         "value_range": {"min": 10}}, "sort": "value", "sort_dir": "asc",
         "fuzzy": true, "fuzzy_threshold": 0.2}
    """
    query = _parse_query(body)
    return await _run_search(service, db, context, query)


@router.get("/suggestions", response_model=SuggestionResponse)
async def suggestions(
    q: str = Query(..., description="Prefix or fragment (1-100 characters)"),  # noqa: B008
    limit: int = Query(5, description="Maximum number of suggestions (1-10)"),  # noqa: B008
    types: str | None = Query(None, description="Comma-separated: item,location,tag"),  # noqa: B008
    context: HouseholdContext = Depends(get_household_context),  # noqa: B008
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> SuggestionResponse:
    """Autocomplete suggestions for the search box."""
    wanted: list[SuggestionType] | None = None
    if types:
        try:
            wanted = [SuggestionType(t.strip()) for t in types.split(",") if t.strip()]
        except ValueError:
            raise _validation_http_error(
                SearchValidationError("Suggestion types must be item, location or tag", field="types")
            ) from None

    try:
        items = await generate_suggestions(db, context.household_id, q, limit=limit, types=wanted)
    except SearchValidationError as exc:
        raise _validation_http_error(exc) from None

    return SuggestionResponse(suggestions=items, query=q.strip())


@router.post("/highlight", response_model=HighlightResponse)
async def highlight(
    request: HighlightRequest,
    context: HouseholdContext = Depends(get_household_context),  # noqa: B008
) -> HighlightResponse:
    """Highlight search terms in caller-supplied text fields.

    Never fails on suspicious input; rejected fields come back unmodified
    with ``security_validated`` false.
    """
    options = (request.options or HighlightRequestOptions()).resolve()

    fields = {name: highlight_search_terms(value, request.terms, options) for name, value in request.fields.items()}
    card = None
    if request.card is not None:
        card = create_search_highlight(
            request.card.name,
            request.card.description,
            request.card.location_path,
            request.terms,
            options,
            snippet_length=request.snippet_length,
        )

    validated = all(r.security_validated for r in fields.values())
    if card is not None:
        validated = validated and card.security_validated
    if not validated:
        logger.warning("Highlight request from household %s failed validation", context.household_id)

    return HighlightResponse(fields=fields, card=card, security_validated=validated)
