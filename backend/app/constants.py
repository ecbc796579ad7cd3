from enum import StrEnum


class MemberRole(StrEnum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"


class ItemStatus(StrEnum):
    AVAILABLE = "AVAILABLE"
    BORROWED = "BORROWED"
    MAINTENANCE = "MAINTENANCE"
    LOST = "LOST"
    SOLD = "SOLD"


class SearchMethod(StrEnum):
    FULL_TEXT = "full_text_search"
    TRIGRAM = "trigram_search"
    ILIKE = "ilike_fallback"


class SortField(StrEnum):
    RELEVANCE = "relevance"
    NAME = "name"
    VALUE = "value"
    DATE = "date"
    QUANTITY = "quantity"


class SortDirection(StrEnum):
    ASC = "asc"
    DESC = "desc"


class SuggestionType(StrEnum):
    ITEM = "item"
    LOCATION = "location"
    TAG = "tag"


# Extension names as they appear in pg_extension / pg_available_extensions
EXT_PG_TRGM = "pg_trgm"
EXT_UNACCENT = "unaccent"
EXT_UUID_OSSP = "uuid-ossp"
SEARCH_EXTENSIONS: tuple[str, ...] = (EXT_PG_TRGM, EXT_UNACCENT, EXT_UUID_OSSP)
