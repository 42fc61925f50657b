"""
Query-target disambiguation for sessions with several attached documents.
"""

from __future__ import annotations

import re
from urllib.parse import urlparse

from ..constants import GENERIC_DOC_IDENTIFIERS
from ..models.sections import QueryTargets
from ..settings import DocIndexSettings, get_settings


def doc_identifiers(doc_url: str) -> list[str]:
    """
    Words a user would type to mean this document.

    The hostname's first label (``www.`` and ``.github.io`` removed) plus the
    first two path segments, minus generic words such as ``docs`` or ``api``.

    Examples:
        >>> doc_identifiers("https://www.prisma.io/docs/orm")
        ["prisma", "orm"]
    """
    parsed = urlparse(doc_url)
    host = (parsed.hostname or "").lower()
    host = host.removeprefix("www.").removesuffix(".github.io")

    identifiers: list[str] = []
    label = host.split(".")[0] if host else ""
    if label and label not in GENERIC_DOC_IDENTIFIERS:
        identifiers.append(label)

    segments = [s.lower() for s in parsed.path.split("/") if s][:2]
    for segment in segments:
        if segment not in GENERIC_DOC_IDENTIFIERS and segment not in identifiers:
            identifiers.append(segment)
    return identifiers


def _mentions(query: str, identifier: str) -> bool:
    variants = {identifier, identifier.replace("-", " "), identifier.replace("-", "")}
    return any(
        re.search(rf"(?<![a-z0-9]){re.escape(v)}(?![a-z0-9])", query) for v in variants if v
    )


def identify_target_docs(
    query: str,
    doc_urls: list[str],
    settings: DocIndexSettings | None = None,
) -> QueryTargets:
    """
    Narrow a multi-document query to the documents it names.

    Returns the named subset with high confidence when the query mentions any
    document identifier on a word boundary; otherwise every document with low
    confidence. Confidence is advisory for the caller.
    """
    settings = settings or get_settings()
    lowered = query.lower()
    targets = [
        url for url in doc_urls if any(_mentions(lowered, ident) for ident in doc_identifiers(url))
    ]
    if targets:
        return QueryTargets(
            target_docs=targets, confidence=settings.high_target_confidence, matched=True
        )
    return QueryTargets(
        target_docs=list(doc_urls), confidence=settings.low_target_confidence, matched=False
    )
