"""
Tests for cross-page section deduplication under the global cap.
"""

from docindex_mcp.models.sections import Section
from docindex_mcp.processing.deduplication import SectionDeduplicator, dedup_key


def make_sections() -> list[Section]:
    """550 distinct sections followed by copies of the first 50."""
    distinct = [
        Section(content=f"Section {i} " + "word " * i, heading=f"H{i}", position=i)
        for i in range(550)
    ]
    copies = [s.model_copy(update={"position": 550 + i}) for i, s in enumerate(distinct[:50])]
    return distinct + copies


class TestDedupKey:
    def test_whitespace_and_case_insensitive(self):
        assert dedup_key("Hello   World\n\nagain", 200) == dedup_key("hello world again", 200)

    def test_prefix_length(self):
        assert dedup_key("a" * 500, 200) == "a" * 200


class TestSectionDeduplicator:
    """Cap and uniqueness guarantees."""

    def test_below_cap_is_unchanged(self, settings):
        sections = make_sections()
        dedup = SectionDeduplicator(settings, max_sections=600)
        assert dedup.deduplicate(sections) is sections

    def test_duplicates_removed_when_over_cap(self, settings):
        sections = make_sections()
        result = SectionDeduplicator(settings, max_sections=580).deduplicate(sections)

        assert len(result) == 550
        keys = [dedup_key(s.content, settings.dedup_key_length) for s in result]
        assert len(set(keys)) == len(keys)

    def test_cap_prefers_longer_sections(self, settings):
        sections = make_sections()
        result = SectionDeduplicator(settings, max_sections=500).deduplicate(sections)

        assert len(result) == 500
        headings = {s.heading for s in result}
        # the 50 shortest distinct sections (and their copies) lose out
        assert "H0" not in headings
        assert "H49" not in headings
        assert "H50" in headings
        assert "H549" in headings

    def test_original_order_preserved(self, settings):
        sections = make_sections()
        result = SectionDeduplicator(settings, max_sections=500).deduplicate(sections)
        positions = [s.position for s in result]
        assert positions == sorted(positions)

    def test_priority_category_breaks_ties(self, settings):
        sections = [
            Section(content="same length A", category="Documentation", position=0),
            Section(content="same length B", category="Installation", position=1),
            Section(content="short", position=2),
        ]
        result = SectionDeduplicator(settings, max_sections=1).deduplicate(sections)
        assert [s.position for s in result] == [1]
