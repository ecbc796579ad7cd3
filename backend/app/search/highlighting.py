# @TEST tests/test_highlighting.py

"""Injection-safe highlighting of search terms and snippet extraction.

Two independent layers protect the markup:

1. Input validation rejects oversized text, oversized terms, and terms that
   look like injection payloads. A rejected call returns the original text
   with ``security_validated=False``.
2. The marked-up output goes through a BeautifulSoup sanitizer that keeps
   only the highlight element and its ``class`` attribute.

Nothing here raises to the caller; every failure is reported through
``security_validated``. Everything is synchronous and bounded by the input
size limits.
"""

from __future__ import annotations

import html
import logging
import re
import time

from bs4 import BeautifulSoup, Comment
from pydantic import BaseModel, Field

from app.config import Settings, get_settings

logger = logging.getLogger(__name__)

HIGHLIGHT_TAG = "mark"
DEFAULT_HIGHLIGHT_CLASS = "search-highlight"
DEFAULT_SNIPPET_LENGTH = 150
ELLIPSIS = "..."

_MALICIOUS_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"<\s*script", re.IGNORECASE),
    re.compile(r"javascript\s*:", re.IGNORECASE),
    re.compile(r"vbscript\s*:", re.IGNORECASE),
    re.compile(r"data\s*:", re.IGNORECASE),
    re.compile(r"\bon\w+\s*=", re.IGNORECASE),
    re.compile(r"&#x", re.IGNORECASE),
    re.compile(r"&#\d"),
)

_CLASS_NAME_RE = re.compile(r"[^a-zA-Z0-9_-]")

# Removed together with their content; every other foreign tag is unwrapped
_DROP_WITH_CONTENT = frozenset({"script", "style", "iframe", "object", "embed", "template", "noscript", "svg", "math"})


class HighlightOptions(BaseModel):
    highlight_class: str = DEFAULT_HIGHLIGHT_CLASS
    case_sensitive: bool = False
    whole_words_only: bool = False
    max_text_length: int = Field(default=10_000, ge=1, le=100_000)
    max_term_length: int = Field(default=100, ge=1, le=1_000)
    slow_threshold_ms: float = 50.0

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **overrides) -> HighlightOptions:
        if settings is None:
            settings = get_settings()
        values = {
            "highlight_class": settings.HIGHLIGHT_CLASS,
            "max_text_length": settings.HIGHLIGHT_MAX_TEXT_LENGTH,
            "max_term_length": settings.HIGHLIGHT_MAX_TERM_LENGTH,
            "slow_threshold_ms": settings.HIGHLIGHT_SLOW_THRESHOLD_MS,
        }
        values.update(overrides)
        return cls(**values)


class HighlightResult(BaseModel):
    highlighted_text: str
    has_matches: bool
    security_validated: bool
    processing_time: float


class SnippetResult(BaseModel):
    snippet: str
    was_truncated: bool
    start_position: int


class SearchHighlight(BaseModel):
    """Highlighted fields for one result card."""

    name_match: HighlightResult
    description_snippet: HighlightResult | None = None
    location_match: HighlightResult | None = None
    security_validated: bool


def sanitize_class_name(value: str | None) -> str:
    """Keep only ``[a-zA-Z0-9_-]``; an empty result falls back to the default class."""
    cleaned = _CLASS_NAME_RE.sub("", value or "")
    return cleaned or DEFAULT_HIGHLIGHT_CLASS


def is_malicious_term(term: str) -> bool:
    return any(pattern.search(term) for pattern in _MALICIOUS_PATTERNS)


def validate_highlight_input(text: str, terms: list[str], options: HighlightOptions) -> bool:
    """Return False (and log) when the text or any term must not be processed."""
    if len(text) > options.max_text_length:
        logger.warning("Highlight rejected: text length %d exceeds %d", len(text), options.max_text_length)
        return False
    for term in terms:
        if not isinstance(term, str):
            logger.warning("Highlight rejected: non-string term")
            return False
        if len(term) > options.max_term_length:
            logger.warning("Highlight rejected: term length %d exceeds %d", len(term), options.max_term_length)
            return False
        if is_malicious_term(term):
            logger.warning("Highlight rejected: suspicious term pattern (length %d)", len(term))
            return False
    return True


def sanitize_highlight_markup(markup: str, allowed_class: str = DEFAULT_HIGHLIGHT_CLASS) -> str:
    """Strip every element except ``<mark class="...">``.

    Foreign elements are unwrapped (their text kept) or, for script-like
    elements, dropped entirely. Comments are removed. Attributes other than
    ``class`` are removed from ``mark`` and the class value is re-sanitized.
    """
    soup = BeautifulSoup(f"<div>{markup}</div>", "lxml")
    container = soup.find("div")
    if container is None:
        return ""

    for comment in container.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()

    for tag in container.find_all(True):
        if tag.decomposed:
            continue
        if tag.name == HIGHLIGHT_TAG:
            classes = tag.get("class") or []
            if isinstance(classes, str):
                classes = classes.split()
            safe = [c for c in (_CLASS_NAME_RE.sub("", c) for c in classes) if c]
            tag.attrs = {"class": safe or [allowed_class]}
        elif tag.name in _DROP_WITH_CONTENT:
            tag.decompose()
        else:
            tag.unwrap()

    return container.decode_contents()


def _compile_terms(terms: list[str], options: HighlightOptions) -> re.Pattern[str] | None:
    unique: list[str] = []
    seen: set[str] = set()
    for term in terms:
        cleaned = term.strip()
        key = cleaned if options.case_sensitive else cleaned.lower()
        if cleaned and key not in seen:
            seen.add(key)
            unique.append(cleaned)
    if not unique:
        return None

    # Longest first so overlapping terms prefer the longer match
    unique.sort(key=len, reverse=True)
    alternation = "|".join(re.escape(t) for t in unique)
    if options.whole_words_only:
        # Word boundaries that also hold for terms ending in punctuation (C++)
        alternation = rf"(?<!\w)(?:{alternation})(?!\w)"
    flags = 0 if options.case_sensitive else re.IGNORECASE
    return re.compile(alternation, flags)


def _mark_up(text: str, pattern: re.Pattern[str], css_class: str) -> tuple[str, bool]:
    parts: list[str] = []
    last = 0
    matched = False
    for match in pattern.finditer(text):
        if match.start() == match.end():
            continue
        matched = True
        parts.append(html.escape(text[last : match.start()], quote=False))
        parts.append(f'<{HIGHLIGHT_TAG} class="{css_class}">{html.escape(match.group(0), quote=False)}</{HIGHLIGHT_TAG}>')
        last = match.end()
    parts.append(html.escape(text[last:], quote=False))
    return "".join(parts), matched


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)


def highlight_search_terms(
    text: str,
    terms: list[str],
    options: HighlightOptions | None = None,
) -> HighlightResult:
    """Wrap every occurrence of *terms* in *text* with ``<mark class="...">``.

    Returns the original text untouched when there is nothing to do, and the
    original text with ``security_validated=False`` when validation or
    processing fails.
    """
    start = time.perf_counter()
    if options is None:
        options = HighlightOptions()

    if not text or not terms:
        return HighlightResult(
            highlighted_text=text or "",
            has_matches=False,
            security_validated=True,
            processing_time=_elapsed_ms(start),
        )

    try:
        if not validate_highlight_input(text, terms, options):
            return HighlightResult(
                highlighted_text=text,
                has_matches=False,
                security_validated=False,
                processing_time=_elapsed_ms(start),
            )

        pattern = _compile_terms(terms, options)
        if pattern is None:
            return HighlightResult(
                highlighted_text=text,
                has_matches=False,
                security_validated=True,
                processing_time=_elapsed_ms(start),
            )

        css_class = sanitize_class_name(options.highlight_class)
        markup, matched = _mark_up(text, pattern, css_class)
        highlighted = sanitize_highlight_markup(markup, css_class)
    except Exception:
        logger.exception("Highlight processing failed")
        return HighlightResult(
            highlighted_text=text,
            has_matches=False,
            security_validated=False,
            processing_time=_elapsed_ms(start),
        )

    elapsed = _elapsed_ms(start)
    if elapsed > options.slow_threshold_ms:
        logger.warning("Slow highlight: %.1fms for %d chars, %d terms", elapsed, len(text), len(terms))

    return HighlightResult(
        highlighted_text=highlighted,
        has_matches=matched,
        security_validated=True,
        processing_time=elapsed,
    )


def extract_snippet(
    text: str,
    terms: list[str],
    max_length: int = DEFAULT_SNIPPET_LENGTH,
) -> SnippetResult:
    """Cut a window of *max_length* characters around the earliest term match.

    Falls back to the start of the text when no term occurs. An ellipsis is
    added on each side where the window stops short of the text boundary.
    """
    if not text:
        return SnippetResult(snippet="", was_truncated=False, start_position=0)
    if max_length <= 0:
        return SnippetResult(snippet="", was_truncated=True, start_position=0)
    if len(text) <= max_length:
        return SnippetResult(snippet=text, was_truncated=False, start_position=0)

    first_index = -1
    first_length = 0
    for term in terms or []:
        needle = term.strip() if isinstance(term, str) else ""
        if not needle:
            continue
        # Match on the original text so positions stay valid when lowercasing changes length
        match = re.search(re.escape(needle), text, re.IGNORECASE)
        if match is not None and (first_index == -1 or match.start() < first_index):
            first_index = match.start()
            first_length = len(match.group(0))

    if first_index == -1:
        start = 0
    else:
        context_before = max(0, (max_length - first_length) // 2)
        start = max(0, first_index - context_before)
    end = min(len(text), start + max_length)
    start = max(0, end - max_length)

    snippet = text[start:end]
    if start > 0:
        snippet = ELLIPSIS + snippet
    if end < len(text):
        snippet = snippet + ELLIPSIS

    return SnippetResult(snippet=snippet, was_truncated=True, start_position=start)


def create_search_highlight(
    name: str,
    description: str | None,
    location_path: str | None,
    terms: list[str],
    options: HighlightOptions | None = None,
    snippet_length: int = DEFAULT_SNIPPET_LENGTH,
) -> SearchHighlight:
    """Highlight a result card: name, snippeted description, and location path."""
    name_match = highlight_search_terms(name, terms, options)

    description_snippet = None
    if description:
        snippet = extract_snippet(description, terms, snippet_length)
        description_snippet = highlight_search_terms(snippet.snippet, terms, options)

    location_match = None
    if location_path:
        location_match = highlight_search_terms(location_path, terms, options)

    validated = name_match.security_validated
    for part in (description_snippet, location_match):
        if part is not None:
            validated = validated and part.security_validated

    return SearchHighlight(
        name_match=name_match,
        description_snippet=description_snippet,
        location_match=location_match,
        security_validated=validated,
    )
