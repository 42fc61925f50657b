"""
Cross-page deduplication of extracted sections under a global cap.
"""

from __future__ import annotations

from ..constants import PRIORITY_CATEGORIES
from ..core.logging import get_class_logger
from ..core.utils import normalize_whitespace
from ..models.sections import Section
from ..settings import DocIndexSettings, get_settings


def dedup_key(content: str, key_length: int) -> str:
    """Whitespace-collapsed, lowercased prefix of the content."""
    return normalize_whitespace(content).lower()[:key_length]


class SectionDeduplicator:
    """
    Collapses near-duplicate sections across all pages of one crawl.

    Below the cap the input is returned unchanged. Above it, sections are
    ranked (longer content first, priority categories breaking ties), the
    first occurrence of each content-prefix key is kept, and selection stops
    at the cap. Kept sections come back in their original order so per-page
    positions stay monotonic.
    """

    def __init__(
        self,
        settings: DocIndexSettings | None = None,
        *,
        max_sections: int | None = None,
        key_length: int | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.logger = get_class_logger(self)
        self.max_sections = max_sections or self.settings.max_sections
        self.key_length = key_length or self.settings.dedup_key_length

    def deduplicate(self, sections: list[Section]) -> list[Section]:
        if len(sections) <= self.max_sections:
            return sections

        ranked = sorted(range(len(sections)), key=lambda i: self._priority(sections[i]))
        seen: set[str] = set()
        kept: list[int] = []
        duplicates = 0
        for index in ranked:
            key = dedup_key(sections[index].content, self.key_length)
            if key in seen:
                duplicates += 1
                continue
            seen.add(key)
            kept.append(index)
            if len(kept) >= self.max_sections:
                break

        self.logger.info(
            f"Deduplicated {len(sections)} sections to {len(kept)} "
            f"({duplicates} duplicates dropped, cap {self.max_sections})"
        )
        return [sections[i] for i in sorted(kept)]

    @staticmethod
    def _priority(section: Section) -> tuple[int, int]:
        return (-len(section.content), 0 if section.category in PRIORITY_CATEGORIES else 1)
