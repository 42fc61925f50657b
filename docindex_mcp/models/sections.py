"""
Data models for extracted documentation sections and search results.

Sections serialize to the camelCase payload layout stored with every vector
point, so points written by other producers of the same collection remain
readable.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class SectionType(str, Enum):
    """What a section's body is made of."""

    SECTION = "section"  # prose only
    CODE = "code"  # code only
    MIXED = "mixed"  # prose plus code


class SectionCategory(str, Enum):
    """Category label derived from heading keywords."""

    INSTALLATION = "Installation"
    API_REFERENCE = "API Reference"
    GUIDE = "Guide"
    CONFIGURATION = "Configuration"
    DOCUMENTATION = "Documentation"


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        extra="ignore",
    )


class Section(_CamelModel):
    """One semantically coherent chunk of a documentation page."""

    content: str
    type: SectionType = SectionType.SECTION
    heading: str = ""
    parent_heading: str | None = None
    level: int = Field(default=1, ge=1, le=6)
    code_snippet: str | None = None
    language: str = "text"
    source_url: str = ""
    base_url: str = ""
    position: int = Field(default=0, ge=0)
    category: str = SectionCategory.DOCUMENTATION.value
    doc_name: str = ""

    @property
    def has_code(self) -> bool:
        return bool(self.code_snippet)

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the camelCase vector payload layout."""
        return self.model_dump(by_alias=True, mode="json")


class EmbeddedPoint(_CamelModel):
    """A section plus its vector and retrieval metadata, ready for upsert."""

    id: str
    vector: list[float] = Field(repr=False)
    section: Section
    tokens: int = 0
    indexed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    indexed_by: str | None = None

    def to_point(self) -> dict[str, Any]:
        """Build the Qdrant point body: section fields flattened into the payload."""
        payload = self.section.to_payload()
        payload["tokens"] = self.tokens
        payload["indexedAt"] = self.indexed_at.isoformat()
        payload["indexedBy"] = self.indexed_by
        return {"id": self.id, "vector": self.vector, "payload": payload}


class SearchHit(BaseModel):
    """A stored section scored against one query vector. Never persisted."""

    id: str
    score: float
    section: Section
    tokens: int = 0
    indexed_at: str | None = None
    indexed_by: str | None = None

    @classmethod
    def from_point(cls, point: dict[str, Any]) -> SearchHit:
        """Build a hit from a Qdrant search/scroll result item."""
        payload = dict(point.get("payload") or {})
        payload.setdefault("content", "")
        return cls(
            id=str(point.get("id", "")),
            score=float(point.get("score", 0.0) or 0.0),
            section=Section.model_validate(payload),
            tokens=int(payload.get("tokens") or 0),
            indexed_at=payload.get("indexedAt"),
            indexed_by=payload.get("indexedBy"),
        )

    @property
    def base_url(self) -> str:
        return self.section.base_url

    @property
    def source_url(self) -> str:
        return self.section.source_url

    def to_dict(self, include_content: bool = True) -> dict[str, Any]:
        data = self.section.to_payload()
        if not include_content:
            data.pop("content", None)
        data["id"] = self.id
        data["score"] = round(self.score, 4)
        return data


class QueryTargets(BaseModel):
    """Which attached documents a query appears to be about."""

    target_docs: list[str]
    confidence: float = Field(ge=0.0, le=1.0)
    matched: bool = False


class RankedResults(BaseModel):
    """Result of a session (multi-document) search."""

    hits: list[SearchHit] = Field(default_factory=list)
    targets: QueryTargets | None = None
    unmatched_hits: int = 0

    @property
    def confidence(self) -> float:
        return self.targets.confidence if self.targets else 0.0
