"""
Tests for the text heuristics behind section extraction.
"""

import pytest

from docindex_mcp.models.sections import SectionType
from docindex_mcp.processing.heuristics import (
    categorize,
    classify_section,
    detect_language,
    is_important,
    normalize_language,
    strip_noise,
)


class TestLanguage:
    @pytest.mark.parametrize(
        ("code", "expected"),
        [
            ("npm install react", "bash"),
            ("$ pip install requests", "bash"),
            ("const x = require('y')", "javascript"),
            ("items.map((item) => item.id)", "javascript"),
            ("const count: number = 1", "typescript"),
            ("interface User { name: string }", "typescript"),
            ("def main():\n    print('hi')", "python"),
            ("curl -X GET https://api.example.com/users", "bash"),
            ("<div>hello</div>", "html"),
            ('{"name": "example", "version": 1}', "json"),
            ("hello world", "text"),
            ("", "text"),
        ],
    )
    def test_detect_language(self, code, expected):
        assert detect_language(code) == expected

    @pytest.mark.parametrize(
        ("tag", "expected"),
        [
            ("sh", "bash"),
            ("language-js", "javascript"),
            ("TSX", "typescript"),
            ("python {linenos=true}", "python"),
            ("rust", "rust"),
            ("", None),
            (None, None),
        ],
    )
    def test_normalize_language(self, tag, expected):
        assert normalize_language(tag) == expected


class TestCategorize:
    @pytest.mark.parametrize(
        ("heading", "parent", "expected"),
        [
            ("Installation", None, "Installation"),
            ("Quick Start", None, "Installation"),
            ("API Reference", None, "API Reference"),
            ("Options", None, "Configuration"),
            ("Usage", None, "Guide"),
            ("Overview", None, "Documentation"),
            ("Environment", "Configuration", "Configuration"),
            ("Install with Docker", "Configuration", "Installation"),
        ],
    )
    def test_categorize(self, heading, parent, expected):
        assert categorize(heading, parent) == expected

    def test_keywords_match_at_word_start(self):
        # "rapid" contains "api" but not at a word boundary
        assert categorize("Rapid prototyping") == "Documentation"


class TestImportance:
    def test_long_body_is_important(self):
        assert is_important("Background", "x" * 400)

    def test_keyword_heading_needs_some_body(self):
        assert is_important("Deploying to production", "Push the image and restart.")
        assert not is_important("Deploying", "Push it.")

    def test_keyword_in_body(self):
        body = "This page explains how authentication tokens are rotated nightly."
        assert is_important("Tokens", body)
        assert not is_important("Tokens", "These are rotated nightly by the scheduler job.")

    def test_classify_section(self):
        assert classify_section("Some text", []) == SectionType.SECTION
        assert classify_section("", ["npm i"]) == SectionType.CODE
        assert classify_section("Run:", ["npm i"]) == SectionType.MIXED


class TestStripNoise:
    def test_removes_chrome_lines(self):
        text = "Skip to content\nReal text\n⌘K\nOn this page\n---\nMore text\nEdit this page"
        assert strip_noise(text) == "Real text\nMore text"

    def test_collapses_blank_runs(self):
        assert strip_noise("a\n\n\n\n\nb") == "a\n\nb"
