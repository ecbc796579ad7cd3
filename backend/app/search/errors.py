"""Exception types raised by the search package.

Only ``SearchValidationError`` and ``StoreConnectivityError`` ever reach
callers of :class:`app.search.engine.SearchService`. ``StrategyUnavailableError``
is raised inside strategy implementations and consumed by the cascade.
"""

from __future__ import annotations

from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError


class SearchError(Exception):
    """Base class for search failures."""

    code: str = "SEARCH_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class SearchValidationError(SearchError):
    """Malformed search input (query length, enum value, pagination bounds)."""

    code = "SEARCH_VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class StrategyUnavailableError(SearchError):
    """A strategy cannot run in the current environment (missing function, empty index)."""

    code = "STRATEGY_UNAVAILABLE"


class StoreConnectivityError(SearchError):
    """The database cannot be reached. Fatal for the current request."""

    code = "SEARCH_UNAVAILABLE"


_CONNECTIVITY_ERRORS: tuple[type[BaseException], ...] = (
    DisconnectionError,
    InterfaceError,
    ConnectionError,
    OSError,
)


def is_connectivity_error(exc: BaseException) -> bool:
    """Return True if *exc* means the store itself is unreachable.

    ``OperationalError`` is only treated as connectivity loss when the
    driver flags the connection as invalidated; statement-level operational
    failures (missing function, bad tsquery) are recoverable.
    """
    if isinstance(exc, StoreConnectivityError):
        return True
    # TimeoutError subclasses OSError; a slow statement is a strategy failure
    if isinstance(exc, TimeoutError):
        return False
    if isinstance(exc, OperationalError):
        return bool(exc.connection_invalidated)
    if isinstance(exc, _CONNECTIVITY_ERRORS):
        return True
    return isinstance(getattr(exc, "orig", None), _CONNECTIVITY_ERRORS)
