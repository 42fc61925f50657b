"""
Section extraction from Markdown and HTML documentation pages.

A page is cut into heading-delimited spans. Markdown spans become one section
each; HTML spans become one section per code block (with surrounding prose as
context) or one prose section when the span has no code. Prose-only sections
are kept only when they look important.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from urllib.parse import urldefrag, urlparse

from bs4 import BeautifulSoup, Comment, Doctype, NavigableString, Tag

from ..constants import (
    CODE_CONTEXT_AFTER_CHARS,
    CODE_CONTEXT_BEFORE_CHARS,
    MAX_HEADING_CHARS,
)
from ..core.exceptions import handle_exceptions
from ..core.logging import get_class_logger
from ..core.utils import derive_doc_name, slugify
from ..models.crawl import ContentType
from ..models.sections import Section, SectionType
from ..settings import DocIndexSettings, get_settings
from .heuristics import (
    categorize,
    classify_section,
    detect_language,
    is_important,
    normalize_language,
    strip_noise,
)

_MD_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
_MD_FENCE_OPEN_RE = re.compile(r"^\s{0,3}(`{3,}|~{3,})\s*([^\s`]*)")
_MD_LINK_RE = re.compile(r"!?\[([^\]]*)\]\([^)]*\)")
_HEADING_JUNK_RE = re.compile(r"(?:¶|#|​|Link to this heading|Permalink)+\s*$")
_LANG_CLASS_RE = re.compile(r"(?:language|lang|highlight(?:-source)?|brush:?)-?([\w+#-]+)")

_HEADING_TAGS = {"h1", "h2", "h3", "h4", "h5", "h6"}
_DROP_TAGS = ["script", "style", "noscript", "template", "svg", "iframe", "form"]
_CHROME_TAGS = ["nav", "footer", "aside"]
_BLOCK_TAGS = {
    "p", "div", "section", "article", "main", "li", "ul", "ol", "table", "tr",
    "td", "th", "blockquote", "dl", "dt", "dd", "br", "hr", "figure", "details",
    "summary", "header",
}


@dataclass
class _CodeBlock:
    code: str
    language: str


@dataclass
class _Span:
    """Content between one heading and the next, in document order."""

    heading: str
    level: int
    parent: str | None
    anchor: str
    items: list[str | _CodeBlock] = field(default_factory=list)

    def add_text(self, text: str) -> None:
        if self.items and isinstance(self.items[-1], str):
            self.items[-1] += text
        else:
            self.items.append(text)


class SectionExtractor:
    """Turns one page's raw content into an ordered list of sections."""

    def __init__(self, settings: DocIndexSettings | None = None) -> None:
        self.settings = settings or get_settings()
        self.logger = get_class_logger(self)

    @handle_exceptions(
        default_return=[],
        log_level=logging.WARNING,
        message_template="Extraction failed in {function_name}: {error}",
    )
    def extract(
        self,
        content: str,
        content_type: ContentType | str,
        page_url: str,
        base_url: str,
    ) -> list[Section]:
        """
        Extract sections from a page; errors yield an empty list.

        Args:
            content: Raw Markdown or HTML
            content_type: Which parser to use
            page_url: URL of the page (anchors are appended to it)
            base_url: Root URL of the documentation being indexed

        Returns:
            Sections with strictly increasing positions
        """
        if not content or not content.strip():
            return []
        if ContentType(content_type) == ContentType.MARKDOWN:
            sections = self.extract_markdown(content, page_url, base_url)
        else:
            sections = self.extract_html(content, page_url, base_url)
            if not sections and not _looks_like_html(content):
                # Plain-text or Markdown served with an HTML content type
                sections = self.extract_markdown(content, page_url, base_url)

        self.logger.debug(f"Extracted {len(sections)} sections from {page_url}")
        return sections

    # ------------------------------------------------------------------
    # Markdown
    # ------------------------------------------------------------------

    def extract_markdown(self, markdown: str, page_url: str, base_url: str) -> list[Section]:
        sections: list[Section] = []
        doc_name = derive_doc_name(base_url)
        for span in self._split_markdown(markdown, page_url):
            prose_parts: list[str] = []
            codes: list[_CodeBlock] = []
            for item in span.items:
                if isinstance(item, _CodeBlock):
                    if self._code_in_bounds(item.code):
                        codes.append(item)
                else:
                    prose_parts.append(item)
            prose = strip_noise("\n".join(prose_parts))

            section = self._build_section(
                span=span,
                prose=prose,
                codes=codes,
                page_url=page_url,
                base_url=base_url,
                doc_name=doc_name,
                position=len(sections),
            )
            if section is not None:
                sections.append(section)
        return sections

    def _split_markdown(self, markdown: str, page_url: str) -> list[_Span]:
        """Cut Markdown on ATX headings, never inside fenced code."""
        spans: list[_Span] = []
        current = _Span(
            heading=_title_from_url(page_url), level=1, parent=None, anchor=""
        )
        last_h2: str | None = None
        prose_lines: list[str] = []
        fence: str | None = None
        fence_lang: str | None = None
        code_lines: list[str] = []

        def flush_prose() -> None:
            if prose_lines:
                current.items.append("\n".join(prose_lines))
                prose_lines.clear()

        for line in markdown.splitlines():
            if fence is not None:
                if line.strip().startswith(fence) and not line.strip().strip(fence[0]):
                    code = "\n".join(code_lines).strip("\n")
                    language = normalize_language(fence_lang) or detect_language(code)
                    current.items.append(_CodeBlock(code=code.strip(), language=language))
                    fence, fence_lang, code_lines = None, None, []
                else:
                    code_lines.append(line)
                continue

            fence_match = _MD_FENCE_OPEN_RE.match(line)
            if fence_match:
                flush_prose()
                fence = fence_match.group(1)
                fence_lang = fence_match.group(2) or None
                continue

            heading_match = _MD_HEADING_RE.match(line)
            if heading_match:
                flush_prose()
                spans.append(current)
                level = len(heading_match.group(1))
                heading = clean_heading(heading_match.group(2))
                parent = last_h2 if level > 2 else None
                if level == 2:
                    last_h2 = heading
                elif level == 1:
                    last_h2 = None
                current = _Span(
                    heading=heading, level=level, parent=parent, anchor=slugify(heading)
                )
                continue

            prose_lines.append(line)

        if fence is not None and code_lines:
            # Unterminated fence runs to the end of the page
            code = "\n".join(code_lines).strip()
            language = normalize_language(fence_lang) or detect_language(code)
            current.items.append(_CodeBlock(code=code, language=language))
        flush_prose()
        spans.append(current)
        return spans

    # ------------------------------------------------------------------
    # HTML
    # ------------------------------------------------------------------

    def extract_html(self, html: str, page_url: str, base_url: str) -> list[Section]:
        soup = BeautifulSoup(html, "html.parser")
        for tag in soup.find_all(_DROP_TAGS):
            tag.decompose()

        title_tag = soup.find("title")
        title = clean_heading(title_tag.get_text(" ", strip=True)) if title_tag else ""

        container = (
            soup.find("main")
            or soup.find("article")
            or soup.find(attrs={"role": "main"})
            or soup.body
            or soup
        )
        for tag in container.find_all(_CHROME_TAGS):
            tag.decompose()

        spans: list[_Span] = [
            _Span(
                heading=title or _title_from_url(page_url), level=1, parent=None, anchor=""
            )
        ]
        self._walk_html(container, spans, last_h2=[None])

        sections: list[Section] = []
        doc_name = derive_doc_name(base_url)
        for span in spans:
            for prose, codes in self._html_span_units(span):
                section = self._build_section(
                    span=span,
                    prose=prose,
                    codes=codes,
                    page_url=page_url,
                    base_url=base_url,
                    doc_name=doc_name,
                    position=len(sections),
                )
                if section is not None:
                    sections.append(section)
        return sections

    def _walk_html(self, node: Tag, spans: list[_Span], last_h2: list[str | None]) -> None:
        for child in node.children:
            if isinstance(child, (Comment, Doctype)):
                continue
            if isinstance(child, NavigableString):
                spans[-1].add_text(str(child))
                continue
            if not isinstance(child, Tag):
                continue

            name = child.name.lower() if child.name else ""
            if name in _HEADING_TAGS:
                heading = clean_heading(child.get_text(" ", strip=True))
                if not heading:
                    continue
                level = int(name[1])
                parent = last_h2[0] if level > 2 else None
                if level == 2:
                    last_h2[0] = heading
                elif level == 1:
                    last_h2[0] = None
                spans.append(
                    _Span(
                        heading=heading,
                        level=level,
                        parent=parent,
                        anchor=_heading_anchor(child) or slugify(heading),
                    )
                )
                continue

            code = self._code_from_tag(child)
            if code is not None:
                spans[-1].items.append(code)
                continue

            if name in _BLOCK_TAGS:
                spans[-1].add_text("\n")
                self._walk_html(child, spans, last_h2)
                spans[-1].add_text("\n")
            else:
                self._walk_html(child, spans, last_h2)

    def _code_from_tag(self, tag: Tag) -> _CodeBlock | None:
        """Recognize <pre>, highlighted blocks and language-tagged <code>."""
        name = tag.name.lower()
        classes = " ".join(tag.get("class") or [])
        is_code = (
            name == "pre"
            or (name == "code" and "language-" in classes)
            or (
                name == "div"
                and re.search(r"\b(highlight|code-block|codehilite)\b", classes)
                and tag.find("pre") is None
            )
        )
        if not is_code:
            return None

        code = tag.get_text().strip("\n")
        declared = _declared_language(tag)
        return _CodeBlock(code=code.strip(), language=declared or detect_language(code))

    def _html_span_units(self, span: _Span) -> list[tuple[str, list[_CodeBlock]]]:
        """
        Split a span into section units.

        One unit per in-bounds code block, with up to N characters of prose on
        either side as context; a single prose unit when the span has no code.
        """
        units: list[tuple[str, list[_CodeBlock]]] = []
        texts = [_clean_html_text(i) if isinstance(i, str) else i for i in span.items]
        code_blocks: list[tuple[int, _CodeBlock]] = [
            (i, item)
            for i, item in enumerate(texts)
            if isinstance(item, _CodeBlock) and self._code_in_bounds(item.code)
        ]

        if not code_blocks:
            prose = strip_noise("\n".join(t for t in texts if isinstance(t, str)))
            return [(prose, [])]

        for index, block in code_blocks:
            before = "\n".join(t for t in texts[:index] if isinstance(t, str)).strip()
            after = "\n".join(t for t in texts[index + 1 :] if isinstance(t, str)).strip()
            before = strip_noise(before)[-CODE_CONTEXT_BEFORE_CHARS:].lstrip()
            after = strip_noise(after)[:CODE_CONTEXT_AFTER_CHARS].rstrip()
            prose = "\n\n".join(part for part in (before, after) if part)
            units.append((prose, [block]))
        return units

    # ------------------------------------------------------------------
    # Shared
    # ------------------------------------------------------------------

    def _code_in_bounds(self, code: str) -> bool:
        return self.settings.min_code_length < len(code) < self.settings.max_code_length

    def _build_section(
        self,
        *,
        span: _Span,
        prose: str,
        codes: list[_CodeBlock],
        page_url: str,
        base_url: str,
        doc_name: str,
        position: int,
    ) -> Section | None:
        code_texts = [c.code for c in codes]
        section_type = classify_section(prose, code_texts)
        if section_type == SectionType.SECTION:
            if not prose or not is_important(
                span.heading, prose, self.settings.important_section_min_chars
            ):
                return None

        heading = span.heading[:MAX_HEADING_CHARS]
        parts = [f"{'#' * span.level} {heading}"]
        if prose:
            parts.append(prose)
        for block in codes:
            parts.append(f"```{block.language}\n{block.code}\n```")

        page = urldefrag(page_url)[0]
        return Section(
            content="\n\n".join(parts),
            type=section_type,
            heading=heading,
            parent_heading=span.parent,
            level=span.level,
            code_snippet="\n\n".join(code_texts) if code_texts else None,
            language=codes[0].language if codes else "text",
            source_url=f"{page}#{span.anchor}" if span.anchor else page,
            base_url=base_url,
            position=position,
            category=categorize(heading, span.parent),
            doc_name=doc_name,
        )


def clean_heading(text: str) -> str:
    """Heading text without Markdown links, emphasis, permalink glyphs or extra spaces."""
    text = _MD_LINK_RE.sub(r"\1", text)
    text = text.replace("`", "").replace("**", "").replace("__", "")
    text = _HEADING_JUNK_RE.sub("", text)
    return re.sub(r"\s+", " ", text).strip()


def _heading_anchor(tag: Tag) -> str | None:
    if tag.get("id"):
        return str(tag["id"])
    inner = tag.find(attrs={"id": True})
    if inner is not None:
        return str(inner["id"])
    parent = tag.parent
    if isinstance(parent, Tag) and parent.name == "section" and parent.get("id"):
        return str(parent["id"])
    return None


def _declared_language(tag: Tag) -> str | None:
    """Language named by classes or data attributes on the tag, its code child or ancestors."""
    candidates: list[Tag] = [tag]
    inner = tag.find("code")
    if isinstance(inner, Tag):
        candidates.append(inner)
    ancestor = tag.parent
    for _ in range(3):
        if not isinstance(ancestor, Tag):
            break
        candidates.append(ancestor)
        ancestor = ancestor.parent

    for candidate in candidates:
        for attr in ("data-language", "data-lang"):
            value = candidate.get(attr)
            if value:
                return normalize_language(str(value))
        for cls in candidate.get("class") or []:
            match = _LANG_CLASS_RE.fullmatch(cls)
            if match:
                language = normalize_language(match.group(1))
                if language and language not in ("source", "default"):
                    return language
    return None


def _clean_html_text(text: str) -> str:
    lines = [re.sub(r"[ \t\r\f\v]+", " ", line).strip() for line in text.split("\n")]
    joined = "\n".join(lines)
    return re.sub(r"\n{3,}", "\n\n", joined).strip()


def _title_from_url(page_url: str) -> str:
    segments = [s for s in urlparse(page_url).path.split("/") if s]
    if not segments:
        return "Overview"
    name = re.sub(r"\.(html?|md|mdx)$", "", segments[-1])
    return re.sub(r"[-_]+", " ", name).strip().capitalize() or "Overview"


def _looks_like_html(content: str) -> bool:
    return bool(re.search(r"<(html|body|div|p|h[1-6]|pre|article|main)\b", content, re.I))
