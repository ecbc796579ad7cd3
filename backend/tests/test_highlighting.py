"""Tests for injection-safe highlighting and snippet extraction."""

from __future__ import annotations

import logging
from unittest.mock import patch

import pytest

from app.search.highlighting import (
    ELLIPSIS,
    HighlightOptions,
    create_search_highlight,
    extract_snippet,
    highlight_search_terms,
    sanitize_class_name,
    sanitize_highlight_markup,
)

XSS_PAYLOADS = [
    "<script>alert(1)</script>",
    "<SCRIPT SRC=//evil.example/x.js>",
    "javascript:alert(1)",
    "JaVaScRiPt:alert(document.cookie)",
    "vbscript:msgbox(1)",
    "data:text/html;base64,PHNjcmlwdD4=",
    '" onmouseover="alert(1)',
    "<img src=x onerror=alert(1)>",
    "&#x3C;script&#x3E;",
    "&#60;script&#62;",
]

# ---------------------------------------------------------------------------
# 1. Basic highlighting
# ---------------------------------------------------------------------------


class TestHighlightBasics:
    """Matches are wrapped in <mark class="...">."""

    def test_single_term(self):
        result = highlight_search_terms("Cordless drill", ["drill"])
        assert result.highlighted_text == 'Cordless <mark class="search-highlight">drill</mark>'
        assert result.has_matches is True
        assert result.security_validated is True
        assert result.processing_time >= 0

    def test_case_insensitive_by_default(self):
        result = highlight_search_terms("DRILL bits", ["drill"])
        assert result.highlighted_text == '<mark class="search-highlight">DRILL</mark> bits'

    def test_case_sensitive_option(self):
        result = highlight_search_terms("DRILL bits", ["drill"], HighlightOptions(case_sensitive=True))
        assert result.has_matches is False
        assert result.highlighted_text == "DRILL bits"

    def test_whole_words_only(self):
        options = HighlightOptions(whole_words_only=True)
        result = highlight_search_terms("drill drilling", ["drill"], options)
        assert result.highlighted_text == '<mark class="search-highlight">drill</mark> drilling'

    def test_whole_words_only_with_punctuated_terms(self):
        options = HighlightOptions(whole_words_only=True)
        result = highlight_search_terms("C++ guide and C# notes", ["C++", "C#"], options)
        assert result.highlighted_text == (
            '<mark class="search-highlight">C++</mark> guide and <mark class="search-highlight">C#</mark> notes'
        )

    def test_whole_words_only_rejects_embedded_punctuated_term(self):
        options = HighlightOptions(whole_words_only=True)
        result = highlight_search_terms("xC++ and C++y", ["C++"], options)
        assert result.has_matches is False

    def test_multiple_terms_prefer_longest(self):
        result = highlight_search_terms("socket wrench set", ["socket", "socket wrench"])
        assert result.highlighted_text == '<mark class="search-highlight">socket wrench</mark> set'

    def test_regex_metacharacters_are_literal(self):
        result = highlight_search_terms("Size (M) or M+", ["(M)", "M+"])
        assert result.highlighted_text == (
            'Size <mark class="search-highlight">(M)</mark> or <mark class="search-highlight">M+</mark>'
        )

    def test_custom_class(self):
        result = highlight_search_terms("drill", ["drill"], HighlightOptions(highlight_class="hit"))
        assert result.highlighted_text == '<mark class="hit">drill</mark>'

    def test_no_match_has_matches_false(self):
        result = highlight_search_terms("hammer", ["drill"])
        assert result.has_matches is False
        assert result.security_validated is True
        assert result.highlighted_text == "hammer"


# ---------------------------------------------------------------------------
# 2. No-op inputs
# ---------------------------------------------------------------------------


class TestHighlightNoOp:
    """Empty inputs return the text unchanged."""

    def test_empty_terms_returns_text_unchanged(self):
        text = "Tom & Jerry <b>mug</b>"
        result = highlight_search_terms(text, [])
        assert result.highlighted_text == text
        assert result.has_matches is False
        assert result.security_validated is True

    def test_blank_terms_returns_text_unchanged(self):
        result = highlight_search_terms("drill", ["  ", ""])
        assert result.highlighted_text == "drill"
        assert result.has_matches is False

    def test_empty_text(self):
        result = highlight_search_terms("", ["drill"])
        assert result.highlighted_text == ""
        assert result.has_matches is False


# ---------------------------------------------------------------------------
# 3. Security
# ---------------------------------------------------------------------------


class TestHighlightSecurity:
    """Validation rejects payloads; the sanitizer strips anything else."""

    @pytest.mark.parametrize("payload", XSS_PAYLOADS)
    def test_injection_terms_rejected(self, payload):
        result = highlight_search_terms("Hello world", [payload])
        assert result.security_validated is False
        assert result.has_matches is False
        assert result.highlighted_text == "Hello world"
        assert "<script" not in result.highlighted_text.lower()

    def test_malicious_scenario_returns_input_unmodified(self):
        result = highlight_search_terms("Hello world", ["<script>alert(1)</script>"])
        assert result.security_validated is False
        assert result.highlighted_text == "Hello world"

    def test_rejection_logs_length_not_content(self, caplog):
        with caplog.at_level(logging.WARNING, logger="app.search.highlighting"):
            highlight_search_terms("Hello world", ["javascript:alert(1)"])
        assert "javascript" not in caplog.text
        assert "length 19" in caplog.text

    def test_oversized_text_rejected(self):
        text = "a" * 10_001
        result = highlight_search_terms(text, ["a"])
        assert result.security_validated is False
        assert result.highlighted_text == text

    def test_oversized_term_rejected(self):
        result = highlight_search_terms("drill", ["d" * 101])
        assert result.security_validated is False

    def test_markup_in_text_is_escaped(self):
        result = highlight_search_terms("<b onclick=x>drill</b>", ["drill"])
        assert result.security_validated is True
        assert "<b" not in result.highlighted_text
        assert "&lt;b onclick=x&gt;" in result.highlighted_text
        assert '<mark class="search-highlight">drill</mark>' in result.highlighted_text

    def test_class_name_injection_neutralized(self):
        options = HighlightOptions(highlight_class='x" onmouseover="alert(1)')
        result = highlight_search_terms("drill", ["drill"], options)
        assert result.highlighted_text == '<mark class="xonmouseoveralert1">drill</mark>'
        assert "onmouseover=" not in result.highlighted_text

    def test_processing_failure_returns_original(self):
        with patch("app.search.highlighting.sanitize_highlight_markup", side_effect=RuntimeError("boom")):
            result = highlight_search_terms("drill", ["drill"])
        assert result.security_validated is False
        assert result.highlighted_text == "drill"

    def test_slow_highlight_logged(self, caplog):
        options = HighlightOptions(slow_threshold_ms=0.0)
        with caplog.at_level(logging.WARNING, logger="app.search.highlighting"):
            result = highlight_search_terms("drill", ["drill"], options)
        assert result.security_validated is True
        assert "Slow highlight" in caplog.text


class TestSanitizer:
    """The markup sanitizer keeps only <mark class>."""

    def test_strips_script_with_content(self):
        assert sanitize_highlight_markup("a<script>alert(1)</script>b") == "ab"

    def test_unwraps_foreign_tags(self):
        assert sanitize_highlight_markup("<b>bold</b> <i>it</i>") == "bold it"

    def test_removes_mark_attributes_except_class(self):
        out = sanitize_highlight_markup('<mark class="hit" onclick="x()" style="color:red">x</mark>')
        assert out == '<mark class="hit">x</mark>'

    def test_removes_comments(self):
        assert sanitize_highlight_markup("a<!-- secret -->b") == "ab"

    def test_strips_event_handler_on_img(self):
        out = sanitize_highlight_markup('<img src=x onerror="alert(1)">text')
        assert out == "text"


class TestClassName:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("search-highlight", "search-highlight"),
            ("hit_1", "hit_1"),
            ('a"b<c>', "abc"),
            ("", "search-highlight"),
            ("!!!", "search-highlight"),
            (None, "search-highlight"),
        ],
    )
    def test_sanitize_class_name(self, raw, expected):
        assert sanitize_class_name(raw) == expected


# ---------------------------------------------------------------------------
# 4. Snippets
# ---------------------------------------------------------------------------


class TestExtractSnippet:
    """Window of max_length around the first match."""

    def test_short_text_returned_whole(self):
        result = extract_snippet("Cordless drill", ["drill"], max_length=150)
        assert result.snippet == "Cordless drill"
        assert result.was_truncated is False
        assert result.start_position == 0

    def test_long_text_window_contains_term(self):
        text = "x" * 300 + " drill " + "y" * 300
        result = extract_snippet(text, ["DRILL"], max_length=50)
        assert "drill" in result.snippet
        assert result.was_truncated is True
        assert result.snippet.startswith(ELLIPSIS)
        assert result.snippet.endswith(ELLIPSIS)
        assert len(result.snippet) <= 50 + 2 * len(ELLIPSIS)

    def test_window_follows_original_positions_when_lowercase_expands(self):
        # "İ".lower() is two code points, so offsets into a lowercased copy drift
        text = "İ" * 200 + " drill " + "x" * 300
        result = extract_snippet(text, ["drill"], max_length=60)
        assert "drill" in result.snippet
        assert result.start_position == text.index("drill") - (60 - len("drill")) // 2

    def test_match_is_case_insensitive_on_original_text(self):
        text = "x" * 300 + " Straße DRILL " + "y" * 300
        result = extract_snippet(text, ["drill"], max_length=40)
        assert "DRILL" in result.snippet

    def test_earliest_term_wins(self):
        text = "a" * 200 + "hammer" + "b" * 200 + "drill" + "c" * 200
        result = extract_snippet(text, ["drill", "hammer"], max_length=40)
        assert "hammer" in result.snippet
        assert "drill" not in result.snippet

    def test_no_match_falls_back_to_start(self):
        text = "abcdefghij" * 30
        result = extract_snippet(text, ["zzz"], max_length=20)
        assert result.start_position == 0
        assert result.snippet == text[:20] + ELLIPSIS

    def test_match_near_end_fills_window(self):
        text = "a" * 300 + "drill"
        result = extract_snippet(text, ["drill"], max_length=30)
        assert result.snippet.endswith("drill")
        assert result.snippet == ELLIPSIS + text[-30:]

    def test_empty_text(self):
        result = extract_snippet("", ["drill"])
        assert result.snippet == ""
        assert result.was_truncated is False

    @pytest.mark.parametrize("max_length", [10, 25, 77, 150])
    def test_length_bound(self, max_length):
        text = "lorem ipsum " * 100 + "target" + " dolor sit" * 100
        result = extract_snippet(text, ["target"], max_length=max_length)
        assert len(result.snippet) <= max_length + 2 * len(ELLIPSIS)


# ---------------------------------------------------------------------------
# 5. Result card composition
# ---------------------------------------------------------------------------


class TestCreateSearchHighlight:
    """Per-field highlighting; validation flag is the AND of all parts."""

    def test_all_fields(self):
        card = create_search_highlight(
            "Cordless drill",
            "A compact drill for home use",
            "House / Garage / Shelf",
            ["drill", "garage"],
        )
        assert card.name_match.has_matches is True
        assert card.description_snippet is not None
        assert card.description_snippet.has_matches is True
        assert card.location_match.has_matches is True
        assert card.security_validated is True

    def test_optional_fields_absent(self):
        card = create_search_highlight("Cordless drill", None, None, ["drill"])
        assert card.description_snippet is None
        assert card.location_match is None
        assert card.security_validated is True

    def test_description_is_snippeted(self):
        description = "filler " * 100 + "drill" + " filler" * 100
        card = create_search_highlight("Tool", description, None, ["drill"], snippet_length=40)
        assert card.description_snippet.highlighted_text.startswith(ELLIPSIS)
        assert '<mark class="search-highlight">drill</mark>' in card.description_snippet.highlighted_text

    def test_one_failure_invalidates_card(self):
        options = HighlightOptions(max_text_length=20)
        card = create_search_highlight("Drill", None, "House / Garage / Shelf / Box 12", ["drill"], options)
        assert card.name_match.security_validated is True
        assert card.location_match.security_validated is False
        assert card.security_validated is False
