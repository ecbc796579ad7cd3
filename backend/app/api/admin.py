# @TEST tests/test_admin.py

"""Operator-only search maintenance endpoints.

- ``GET /admin/search/capabilities`` -- Capability struct, derived strategy
  configuration, the caller's household search vector statistics and
  configuration warnings.
- ``POST /admin/search/extensions`` -- Install/verify PostgreSQL search
  extensions, then drop the cached capability so searches re-probe.
- ``POST /admin/search/reindex`` -- Rebuild ``search_vector`` for the
  caller's household.

Extensions and capabilities are database-wide, so a household owner/admin
role is not enough: the caller's email must also be listed in
``Settings.ADMIN_EMAILS``.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.search import get_household_context, get_search_service
from app.config import get_settings
from app.constants import SEARCH_EXTENSIONS
from app.database import get_db
from app.search.capabilities import install_extensions, validate_database_configuration
from app.search.engine import SearchService
from app.search.errors import StoreConnectivityError
from app.search.indexer import SearchIndexer
from app.services.auth_service import get_current_user
from app.services.household_context import HouseholdContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/search", tags=["admin"])


def is_operator(email: str | None) -> bool:
    """Return True if *email* is listed in ``ADMIN_EMAILS`` (case-insensitive)."""
    if not email:
        return False
    allowed = {e.strip().lower() for e in get_settings().ADMIN_EMAILS if e.strip()}
    return email.strip().lower() in allowed


async def require_admin(
    current_user: dict = Depends(get_current_user),  # noqa: B008
    context: HouseholdContext = Depends(get_household_context),  # noqa: B008
) -> HouseholdContext:
    """Dependency that requires an operator email and owner/admin role in the active household."""
    if not context.is_admin or not is_operator(current_user.get("email")):
        logger.warning("Search admin access denied for user %s", context.user_id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return context


class ExtensionInstallRequest(BaseModel):
    extensions: list[str] = Field(default_factory=lambda: list(SEARCH_EXTENSIONS))


class ReindexRequest(BaseModel):
    item_ids: list[int] | None = Field(default=None, max_length=1000)
    only_missing: bool = False


def _unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"error": "SEARCH_UNAVAILABLE", "message": "Database is unavailable"},
    )


@router.get("/capabilities")
async def get_capabilities(
    admin: HouseholdContext = Depends(require_admin),  # noqa: B008
    service: SearchService = Depends(get_search_service),  # noqa: B008
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> dict:
    """Report what the database supports and which strategies will run."""
    try:
        report = await service.get_search_capabilities(db, admin.household_id)
    except StoreConnectivityError:
        raise _unavailable() from None
    report["validation"] = await validate_database_configuration(db)
    return report


@router.post("/extensions")
async def install_search_extensions(
    request: ExtensionInstallRequest | None = None,
    admin: HouseholdContext = Depends(require_admin),  # noqa: B008
    service: SearchService = Depends(get_search_service),  # noqa: B008
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> dict:
    """Install missing search extensions (allow-listed names only)."""
    names = (request or ExtensionInstallRequest()).extensions
    unknown = [n for n in names if n not in SEARCH_EXTENSIONS]
    if unknown:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "VALIDATION_ERROR",
                "message": f"Unsupported extensions; allowed: {', '.join(SEARCH_EXTENSIONS)}",
                "field": "extensions",
            },
        )

    logger.info("User %s installing search extensions %s", admin.user_id, names)
    try:
        capability = await install_extensions(db, names)
    except StoreConnectivityError:
        raise _unavailable() from None

    service.invalidate_capabilities()
    return {"capabilities": capability.as_dict(), "requested": names}


@router.post("/reindex")
async def reindex_search_vectors(
    request: ReindexRequest | None = None,
    admin: HouseholdContext = Depends(require_admin),  # noqa: B008
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> dict:
    """Rebuild full-text vectors for the caller's household (optionally a subset of items)."""
    request = request or ReindexRequest()
    indexer = SearchIndexer(db)
    try:
        if request.item_ids is not None:
            result = await indexer.refresh_items(admin.household_id, request.item_ids)
        else:
            result = await indexer.refresh_household(admin.household_id, only_missing=request.only_missing)
    except StoreConnectivityError:
        raise _unavailable() from None

    return {"household_id": result.household_id, "updated": result.updated}
