# @TEST tests/test_capabilities.py

"""Runtime detection of PostgreSQL search features.

The prober answers four questions against the live database:

- can ``to_tsvector`` / ``websearch_to_tsquery`` run (full-text search)?
- is the ``pg_trgm`` extension installed (trigram similarity)?
- is ``unaccent`` installed?
- is ``uuid-ossp`` installed?

Each check runs independently; a failing check is recorded as ``False``
and never aborts the others. Probing is read-only. Installing extensions
is a separate, explicitly invoked admin operation (:func:`install_extensions`).
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.constants import EXT_PG_TRGM, EXT_UNACCENT, EXT_UUID_OSSP, SEARCH_EXTENSIONS
from app.search.errors import StoreConnectivityError, is_connectivity_error

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchCapability:
    """Database-wide search feature availability. Tenant-agnostic."""

    full_text_available: bool = False
    trigram_available: bool = False
    unaccent_available: bool = False
    uuid_gen_available: bool = False

    @property
    def any_ranked_strategy(self) -> bool:
        return self.full_text_available or self.trigram_available

    def as_dict(self) -> dict[str, bool]:
        return asdict(self)


@dataclass(frozen=True)
class SearchConfiguration:
    """Strategy switches derived from a :class:`SearchCapability`."""

    use_full_text_search: bool
    use_trigram_search: bool
    use_unaccent: bool
    fallback_to_ilike: bool

    @classmethod
    def from_capability(cls, capability: SearchCapability) -> SearchConfiguration:
        return cls(
            use_full_text_search=capability.full_text_available,
            use_trigram_search=capability.trigram_available,
            use_unaccent=capability.unaccent_available,
            fallback_to_ilike=not capability.any_ranked_strategy,
        )


_INSTALLED_EXTENSION_SQL = text("SELECT 1 FROM pg_extension WHERE extname = :name")
_FULL_TEXT_SQL = text("SELECT to_tsvector('simple', 'probe') @@ websearch_to_tsquery('simple', 'probe')")


class CapabilityProber:
    """Issue lightweight introspection queries and build a :class:`SearchCapability`.

    Args:
        session: An async SQLAlchemy session for database queries.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def probe(self) -> SearchCapability:
        """Run every sub-check and return the combined capability struct."""
        capability = SearchCapability(
            full_text_available=await self._check("full_text", _FULL_TEXT_SQL),
            trigram_available=await self._extension_installed(EXT_PG_TRGM),
            unaccent_available=await self._extension_installed(EXT_UNACCENT),
            uuid_gen_available=await self._extension_installed(EXT_UUID_OSSP),
        )
        logger.info("Search capability probe: %s", capability.as_dict())
        return capability

    async def _extension_installed(self, name: str) -> bool:
        return await self._check(name, _INSTALLED_EXTENSION_SQL, {"name": name})

    async def _check(self, label: str, statement, params: dict | None = None) -> bool:
        """Execute one probe statement; any recoverable failure counts as unavailable.

        Each check runs inside a SAVEPOINT so that a failed statement does not
        poison the surrounding transaction for the remaining checks.
        """
        try:
            async with self._session.begin_nested():
                result = await self._session.execute(statement, params or {})
                value = result.scalar()
        except SQLAlchemyError as exc:
            if is_connectivity_error(exc):
                raise StoreConnectivityError("Database unreachable during capability probe") from exc
            logger.warning("Capability check %s failed: %s", label, exc.__class__.__name__)
            return False
        except OSError as exc:
            raise StoreConnectivityError("Database unreachable during capability probe") from exc
        return bool(value)


async def install_extensions(
    session: AsyncSession,
    extensions: tuple[str, ...] | list[str] = SEARCH_EXTENSIONS,
) -> SearchCapability:
    """Attempt ``CREATE EXTENSION IF NOT EXISTS`` for each extension, then re-probe.

    Per-extension failures (insufficient privilege, extension not shipped)
    are logged and skipped.
    """
    for name in extensions:
        if name not in SEARCH_EXTENSIONS:
            logger.warning("Refusing to install unknown extension %r", name)
            continue
        try:
            async with session.begin_nested():
                # Identifier comes from the fixed allow-list above
                await session.execute(text(f'CREATE EXTENSION IF NOT EXISTS "{name}"'))
            logger.info("Installed/verified extension %s", name)
        except SQLAlchemyError as exc:
            if is_connectivity_error(exc):
                raise StoreConnectivityError("Database unreachable during extension install") from exc
            logger.warning("Could not install extension %s: %s", name, exc.__class__.__name__)

    return await CapabilityProber(session).probe()


async def validate_database_configuration(session: AsyncSession) -> dict:
    """Report warnings and recommendations for the current search setup.

    Returns:
        Dict with ``valid`` (bool), ``warnings`` and ``recommendations`` (lists of str).
    """
    warnings: list[str] = []
    recommendations: list[str] = []

    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Database connectivity test failed")
        return {
            "valid": False,
            "warnings": ["Database connectivity test failed"],
            "recommendations": ["Check database connection and permissions"],
        }

    capability = await CapabilityProber(session).probe()

    if not capability.uuid_gen_available:
        warnings.append("uuid-ossp extension not available - UUID generation may be slower")
        recommendations.append("Install uuid-ossp extension for optimal UUID performance")
    if not capability.full_text_available:
        warnings.append("Full-text search not available - using trigram or ILIKE search")
        recommendations.append("Verify the text search configuration is installed")
    if not capability.trigram_available:
        warnings.append("pg_trgm extension not available - fuzzy matching disabled")
        recommendations.append("Install pg_trgm extension for typo-tolerant search")
    if not capability.unaccent_available:
        warnings.append("unaccent extension not available - accent-sensitive search only")
        recommendations.append("Install unaccent extension for better international text search")

    return {"valid": True, "warnings": warnings, "recommendations": recommendations}
