"""
Grouping of highlights into articles

Turns the flat list of highlights returned by Raindrop.io into one bundle
per source document, each holding its highlights in reading order.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence
from urllib.parse import urlsplit

from beartype import beartype as typecheck

from .raindrop_manager import HighlightRecord


@dataclass
class ArticleBundle:
    """All new highlights sharing one source URL."""

    source_url: str
    title: str
    domain: str
    highlights: List[HighlightRecord] = field(default_factory=list)
    last_update: str = ""
    raindrop_refs: List[int] = field(default_factory=list)

    @property
    def highlight_ids(self) -> List[str]:
        return [h.id for h in self.highlights]


@typecheck
def parse_timestamp(value: str) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp as returned by Raindrop.io.

    Naive values are taken as UTC. Returns None if the value can't be parsed.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@typecheck
def extract_domain(link: str) -> str:
    """Host part of ``link``, or ``link`` itself when it isn't a URL."""
    try:
        host = urlsplit(link).hostname
    except ValueError:
        host = None
    return host or link


def _creation_key(highlight: HighlightRecord):
    # unparsable timestamps go last, sorted() keeps their relative order
    parsed = parse_timestamp(highlight.created_at)
    if parsed is None:
        return (1, 0.0)
    return (0, parsed.timestamp())


@typecheck
def group_by_article(highlights: Sequence[HighlightRecord]) -> List[ArticleBundle]:
    """
    Group highlights by their ``link``.

    Bundles come out in the order their link was first seen. Inside a
    bundle, highlights are sorted oldest first so they follow the order in
    which they appear in the source text.

    Parameters
    ----------
    highlights : Sequence[HighlightRecord]
        Highlights to group

    Returns
    -------
    List[ArticleBundle]
        One bundle per distinct link
    """
    bundles: Dict[str, ArticleBundle] = {}

    for h in highlights:
        bundle = bundles.get(h.link)
        if bundle is None:
            bundle = ArticleBundle(
                source_url=h.link,
                title=h.title or h.link,
                domain=extract_domain(h.link),
                last_update=h.updated_at or h.created_at,
            )
            bundles[h.link] = bundle

        bundle.highlights.append(h)
        if h.raindrop_ref not in bundle.raindrop_refs:
            bundle.raindrop_refs.append(h.raindrop_ref)

    for bundle in bundles.values():
        bundle.highlights = sorted(bundle.highlights, key=_creation_key)

    return list(bundles.values())
