"""
Text heuristics for section extraction.

Language detection, category labelling, importance scoring, section typing and
chrome-noise stripping. Each heuristic is a pure function over text.
"""

from __future__ import annotations

import json
import re

from ..constants import (
    IMPORTANT_KEYWORDS,
    IMPORTANT_SECTION_MIN_CHARS,
    MIN_SECTION_CHARS,
)
from ..models.sections import SectionCategory, SectionType

_LANGUAGE_ALIASES = {
    "sh": "bash",
    "shell": "bash",
    "zsh": "bash",
    "console": "bash",
    "shellsession": "bash",
    "terminal": "bash",
    "js": "javascript",
    "jsx": "javascript",
    "mjs": "javascript",
    "node": "javascript",
    "ts": "typescript",
    "tsx": "typescript",
    "py": "python",
    "python3": "python",
    "py3": "python",
    "yml": "yaml",
    "htm": "html",
    "xhtml": "html",
    "jsonc": "json",
    "plaintext": "text",
    "txt": "text",
    "none": "text",
}

_INSTALL_RE = re.compile(
    r"^\s*(?:\$\s*)?(?:sudo\s+)?"
    r"(?:npm|npx|yarn|pnpm|bun|pip3?|pipx|poetry|uv|conda|brew|apt(?:-get)?|"
    r"cargo|gem|composer|go)\s+(?:install|add|i|get|-m\s+pip\s+install)\b",
    re.MULTILINE,
)
_JS_RE = re.compile(
    r"\b(?:const|let|var)\s+\w+\s*=|\brequire\(|=>|console\.log\(|"
    r"^\s*import\s+.+\s+from\s+['\"]|^\s*export\s+(?:default|const|function|class)\b",
    re.MULTILINE,
)
_TS_RE = re.compile(
    r"^\s*(?:export\s+)?(?:interface|type)\s+\w+|:\s*(?:string|number|boolean|void|any)\b"
    r"|\w+<\w+>\(|\bas\s+const\b|^\s*enum\s+\w+",
    re.MULTILINE,
)
_PY_RE = re.compile(
    r"^\s*(?:def\s+\w+\s*\(|class\s+\w+.*:\s*$|import\s+\w+|from\s+[\w.]+\s+import\s+)"
    r"|\bprint\(|^\s*@\w+|\bself\.",
    re.MULTILINE,
)
_SHELL_RE = re.compile(
    r"^\s*(?:\$\s+|curl\s|wget\s|sudo\s|export\s+\w+=|cd\s|mkdir\s|chmod\s|docker\s)",
    re.MULTILINE,
)
_HTML_RE = re.compile(r"<(?:!DOCTYPE|html|head|body|div|span|script|p|a|ul|li)\b", re.I)

_CATEGORY_RULES: tuple[tuple[SectionCategory, tuple[str, ...]], ...] = (
    (
        SectionCategory.INSTALLATION,
        (
            "install",
            "setup",
            "set up",
            "getting started",
            "get started",
            "quickstart",
            "quick start",
            "requirements",
            "prerequisites",
        ),
    ),
    (
        SectionCategory.API_REFERENCE,
        ("api", "reference", "endpoint", "methods", "parameters", "return value"),
    ),
    (
        SectionCategory.CONFIGURATION,
        ("config", "configuration", "settings", "options", "environment variable"),
    ),
    (
        SectionCategory.GUIDE,
        ("guide", "tutorial", "how to", "how-to", "walkthrough", "usage", "example"),
    ),
)

_NOISE_LINE_RE = re.compile(
    r"^\s*(?:"
    r"\[?skip to (?:main )?content\]?(?:\([^)]*\))?"
    r"|on this page"
    r"|table of contents"
    r"|search(?:\s*(?:docs|documentation)?)?\.{0,3}"
    r"|(?:⌘|ctrl\s*\+?)\s*k"
    r"|copy(?: page| code| to clipboard)?"
    r"|edit (?:this page|on github)"
    r"|was this page helpful\??"
    r"|(?:previous|next)(?:\s*page)?"
    r"|[-*_=•·|\s]{3,}"
    r"|!\[[^\]]*\]\([^)]*\)"
    r")\s*$",
    re.IGNORECASE,
)
_ZERO_WIDTH_RE = re.compile("[\u200b\u200c\u200d\ufeff]")


def normalize_language(tag: str | None) -> str | None:
    """Canonical lowercase language name for a declared fence/class tag."""
    if not tag:
        return None
    cleaned = tag.strip().lower()
    cleaned = cleaned.removeprefix("language-").removeprefix("lang-")
    cleaned = re.split(r"[\s{:,]", cleaned, maxsplit=1)[0]
    if not cleaned:
        return None
    return _LANGUAGE_ALIASES.get(cleaned, cleaned)


def detect_language(code: str) -> str:
    """
    Guess a code block's language when no tag was declared.

    Checks run in a fixed order: install commands, JavaScript (promoted to
    TypeScript when type annotations are present), TypeScript, Python,
    other shell commands, HTML, JSON. Anything else is ``"text"``.
    """
    if not code or not code.strip():
        return "text"
    if _INSTALL_RE.search(code):
        return "bash"
    if _JS_RE.search(code):
        return "typescript" if _TS_RE.search(code) else "javascript"
    if _TS_RE.search(code):
        return "typescript"
    if _PY_RE.search(code):
        return "python"
    if _SHELL_RE.search(code):
        return "bash"
    if _HTML_RE.search(code):
        return "html"
    if _looks_like_json(code):
        return "json"
    return "text"


def _looks_like_json(code: str) -> bool:
    stripped = code.strip()
    if not stripped or stripped[0] not in "{[":
        return False
    try:
        json.loads(stripped)
    except ValueError:
        return False
    return True


def categorize(heading: str, parent_heading: str | None = None) -> str:
    """Map heading keywords to a category label; the heading wins over its parent."""
    for text in (heading, parent_heading):
        if not text:
            continue
        lowered = text.lower()
        for category, keywords in _CATEGORY_RULES:
            if any(_contains_word(lowered, keyword) for keyword in keywords):
                return category.value
    return SectionCategory.DOCUMENTATION.value


def _contains_word(text: str, keyword: str) -> bool:
    # Prefix match at a word start, so "install" also hits "installing"
    return re.search(rf"(?<![a-z0-9]){re.escape(keyword)}", text) is not None


def is_important(
    heading: str,
    content: str,
    min_chars: int = IMPORTANT_SECTION_MIN_CHARS,
) -> bool:
    """
    Decide whether a prose-only section is worth keeping.

    Important when the heading names a high-value topic, when the body
    mentions one and has some substance, or when the body alone is long
    enough to stand on its own.
    """
    body = content.strip()
    if len(body) >= min_chars:
        return True
    lowered_heading = heading.lower()
    if any(_contains_word(lowered_heading, kw) for kw in IMPORTANT_KEYWORDS):
        return len(body) >= MIN_SECTION_CHARS // 2
    if len(body) < MIN_SECTION_CHARS:
        return False
    lowered_body = body.lower()
    return any(_contains_word(lowered_body, kw) for kw in IMPORTANT_KEYWORDS)


def classify_section(prose: str, code_blocks: list[str]) -> SectionType:
    """``code`` when there is no prose, ``mixed`` when both, ``section`` otherwise."""
    has_prose = bool(prose.strip())
    if not code_blocks:
        return SectionType.SECTION
    return SectionType.MIXED if has_prose else SectionType.CODE


def strip_noise(text: str) -> str:
    """Remove skip-links, search-box remnants and decorative nav lines."""
    kept = []
    for line in _ZERO_WIDTH_RE.sub("", text).splitlines():
        if _NOISE_LINE_RE.match(line):
            continue
        kept.append(line.rstrip())
    cleaned = "\n".join(kept)
    return re.sub(r"\n{3,}", "\n\n", cleaned).strip()
