"""
Detection of removed Raindrop content

Works out which previously imported notes must be archived because their
source disappeared from Raindrop.io, and keeps the identity maps in step
with what was archived.

Two strategies exist:

- ``membership``: compares the highlight ids still present remotely with
  the ids already imported. An article is archived only once every one of
  its highlights is gone.
- ``trash``: asks Raindrop.io which bookmarks sit in the trash and archives
  the notes of the tracked ones. This is the default.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple, Type

from loguru import logger
from beartype import beartype as typecheck

from .exceptions import ConfigError
from .state_manager import (
    HIGHLIGHT_TO_URL,
    IMPORTED_IDS,
    REF_TO_NOTE,
    URL_TO_NOTE,
)


@dataclass
class ArchiveCandidate:
    """A note that should move to the archive."""

    key: str  # bookmark reference or article URL
    note_id: str
    highlight_ids: List[str] = field(default_factory=list)


@typecheck
def find_deleted_highlight_ids(
    current_remote_ids: Iterable[str], imported_ids: Iterable[str]
) -> Set[str]:
    """Ids that were imported but are no longer returned by Raindrop.io."""
    return set(imported_ids) - set(current_remote_ids)


@typecheck
def find_archivable_articles(
    deleted_ids: Set[str],
    highlight_to_article: Dict[str, str],
    article_to_note: Dict[str, str],
) -> List[ArchiveCandidate]:
    """
    Articles whose tracked highlights are all deleted.

    Parameters
    ----------
    deleted_ids : Set[str]
        Highlight ids missing from the remote side
    highlight_to_article : Dict[str, str]
        Highlight id -> article URL, for every imported highlight
    article_to_note : Dict[str, str]
        Article URL -> note id

    Returns
    -------
    List[ArchiveCandidate]
        Candidates in the insertion order of ``article_to_note``
    """
    if not deleted_ids:
        return []

    highlights_by_article: Dict[str, List[str]] = {}
    for highlight_id, article in highlight_to_article.items():
        highlights_by_article.setdefault(article, []).append(highlight_id)

    candidates = []
    for article, note_id in article_to_note.items():
        article_highlights = highlights_by_article.get(article, [])
        if not article_highlights:
            continue
        if all(h in deleted_ids for h in article_highlights):
            candidates.append(
                ArchiveCandidate(
                    key=article, note_id=note_id, highlight_ids=article_highlights
                )
            )
        else:
            still_there = sum(1 for h in article_highlights if h not in deleted_ids)
            logger.debug(
                f"Article {article} keeps {still_there}/{len(article_highlights)} "
                f"highlights, not archiving"
            )

    return candidates


@typecheck
def find_trashed_bookmarks(
    tracked_refs: Dict[str, str], trashed_refs: Set[int]
) -> List[ArchiveCandidate]:
    """Tracked bookmark references that are currently in the trash."""
    trashed = {str(ref) for ref in trashed_refs}
    return [
        ArchiveCandidate(key=ref, note_id=note_id)
        for ref, note_id in tracked_refs.items()
        if ref in trashed
    ]


@typecheck
def archive_candidates(
    candidates: List[ArchiveCandidate], archive_note: Callable
) -> Tuple[List[ArchiveCandidate], List[ArchiveCandidate]]:
    """
    Archive each candidate independently.

    A failure on one note is logged and skipped, the remaining candidates
    are still attempted.

    Returns
    -------
    Tuple[List[ArchiveCandidate], List[ArchiveCandidate]]
        The archived candidates and the ones that failed
    """
    archived = []
    failed = []

    for candidate in candidates:
        try:
            ok = archive_note(candidate.note_id)
        except Exception as e:
            logger.error(
                f"Failed to archive note {candidate.note_id} ({candidate.key}): {e}"
            )
            failed.append(candidate)
            continue

        if not ok:
            logger.warning(
                f"Could not archive note {candidate.note_id} ({candidate.key}), "
                f"will retry on next sync"
            )
            failed.append(candidate)
            continue

        logger.info(f"Archived note {candidate.note_id} ({candidate.key})")
        archived.append(candidate)

    return archived, failed


class DeletionStrategy:
    """Base class for the deletion detection variants."""

    name = ""

    def detect(self, store, snapshot) -> List[ArchiveCandidate]:
        raise NotImplementedError

    def record_import(self, store, bundle, note_id: str) -> None:
        raise NotImplementedError

    def forget(self, store, archived: List[ArchiveCandidate]) -> None:
        raise NotImplementedError

    def excluded_refs(self, snapshot) -> Set[int]:
        """Bookmark references whose new highlights must not be imported."""
        return set()

    def tracked_note(self, store, bundle) -> Optional[str]:
        """Note already holding this article, if any."""
        return None

    def migrate_legacy_state(self, store, highlights) -> int:
        return 0


class MembershipDiffStrategy(DeletionStrategy):
    """Archive an article once all of its imported highlights are gone."""

    name = "membership"

    @typecheck
    def detect(self, store, snapshot) -> List[ArchiveCandidate]:
        imported = store.get(IMPORTED_IDS)
        if not imported:
            return []

        current = [h.id for h in snapshot.highlights()]
        deleted = find_deleted_highlight_ids(current, imported.keys())
        logger.info(f"{len(deleted)} imported highlights no longer exist remotely")

        return find_archivable_articles(
            deleted, store.get(HIGHLIGHT_TO_URL), store.get(URL_TO_NOTE)
        )

    def tracked_note(self, store, bundle) -> Optional[str]:
        return store.get(URL_TO_NOTE).get(bundle.source_url)

    @typecheck
    def record_import(self, store, bundle, note_id: str) -> None:
        store.merge(HIGHLIGHT_TO_URL, {h.id: bundle.source_url for h in bundle.highlights})
        store.merge(URL_TO_NOTE, {bundle.source_url: note_id})

    @typecheck
    def forget(self, store, archived: List[ArchiveCandidate]) -> None:
        highlight_ids = [h for c in archived for h in c.highlight_ids]
        store.remove_keys(IMPORTED_IDS, highlight_ids)
        store.remove_keys(HIGHLIGHT_TO_URL, highlight_ids)
        store.remove_keys(URL_TO_NOTE, [c.key for c in archived])


class TrashDiffStrategy(DeletionStrategy):
    """
    Archive the notes of tracked bookmarks that are in the Raindrop trash.

    With ``forget_highlights`` the imported highlight ids of an archived
    bookmark are dropped too, so its highlights are imported again if the
    bookmark is restored. Otherwise they stay imported for good. New
    highlights of a bookmark in the trash are never imported.
    """

    name = "trash"

    @typecheck
    def __init__(self, forget_highlights: bool = False):
        self.forget_highlights = forget_highlights

    @typecheck
    def detect(self, store, snapshot) -> List[ArchiveCandidate]:
        tracked = store.get(REF_TO_NOTE)
        if not tracked:
            return []

        candidates = find_trashed_bookmarks(tracked, snapshot.trashed_refs())
        if candidates:
            imported = store.get(IMPORTED_IDS)
            for candidate in candidates:
                candidate.highlight_ids = [
                    highlight_id
                    for highlight_id, ref in imported.items()
                    if str(ref) == candidate.key
                ]

        logger.info(f"{len(candidates)}/{len(tracked)} tracked bookmarks are in the trash")
        return candidates

    @typecheck
    def record_import(self, store, bundle, note_id: str) -> None:
        store.merge(REF_TO_NOTE, {str(ref): note_id for ref in bundle.raindrop_refs})

    @typecheck
    def forget(self, store, archived: List[ArchiveCandidate]) -> None:
        store.remove_keys(REF_TO_NOTE, [c.key for c in archived])
        if self.forget_highlights:
            store.remove_keys(
                IMPORTED_IDS, [h for c in archived for h in c.highlight_ids]
            )

    def excluded_refs(self, snapshot) -> Set[int]:
        # archived in this pass or never tracked, either way not imported
        return snapshot.trashed_refs()

    def tracked_note(self, store, bundle) -> Optional[str]:
        tracked = store.get(REF_TO_NOTE)
        for ref in bundle.raindrop_refs:
            note_id = tracked.get(str(ref))
            if note_id:
                return note_id
        return None

    @typecheck
    def migrate_legacy_state(self, store, highlights) -> int:
        """
        Convert URL-keyed tracking into bookmark-reference tracking.

        Each legacy article URL is resolved through the highlights fetched in
        this pass. URLs that can't be resolved stay in the legacy maps and
        are tried again on the next pass.

        Returns
        -------
        int
            Number of articles migrated
        """
        url_to_note = store.get(URL_TO_NOTE)
        imported = store.get(IMPORTED_IDS)

        # ids imported by older versions were stored as plain flags
        refs_by_id = {
            h.id: str(h.raindrop_ref)
            for h in highlights
            if imported.get(h.id) is True and h.raindrop_ref
        }
        if refs_by_id:
            store.merge(IMPORTED_IDS, refs_by_id)

        if not url_to_note:
            return 0

        refs_by_url: Dict[str, List[str]] = {}
        for h in highlights:
            if h.link in url_to_note and h.raindrop_ref:
                refs = refs_by_url.setdefault(h.link, [])
                if str(h.raindrop_ref) not in refs:
                    refs.append(str(h.raindrop_ref))

        new_refs = {}
        for url, refs in refs_by_url.items():
            for ref in refs:
                new_refs[ref] = url_to_note[url]
        if not new_refs:
            logger.debug(f"{len(url_to_note)} legacy articles could not be resolved yet")
            return 0

        store.merge(REF_TO_NOTE, new_refs)
        migrated = list(refs_by_url)
        store.remove_keys(URL_TO_NOTE, migrated)
        store.remove_keys(
            HIGHLIGHT_TO_URL,
            [
                highlight_id
                for highlight_id, url in store.get(HIGHLIGHT_TO_URL).items()
                if url in refs_by_url
            ],
        )

        logger.info(f"Migrated {len(migrated)} legacy article mappings to bookmark references")
        return len(migrated)


DELETION_STRATEGIES: Dict[str, Type[DeletionStrategy]] = {
    MembershipDiffStrategy.name: MembershipDiffStrategy,
    TrashDiffStrategy.name: TrashDiffStrategy,
}


@typecheck
def get_deletion_strategy(
    name: str, forget_archived_highlights: bool = False
) -> DeletionStrategy:
    """Instantiate the strategy registered under ``name``."""
    if name not in DELETION_STRATEGIES:
        raise ConfigError(
            f"Unknown deletion strategy '{name}'. "
            f"Must be one of: {sorted(DELETION_STRATEGIES)}"
        )
    if name == TrashDiffStrategy.name:
        return TrashDiffStrategy(forget_highlights=forget_archived_highlights)
    return DELETION_STRATEGIES[name]()
