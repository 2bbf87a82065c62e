"""Tests for deletion detection and archival bookkeeping."""

import pytest

from raindrop_sync.utils.deletion_detector import (
    ArchiveCandidate,
    MembershipDiffStrategy,
    TrashDiffStrategy,
    archive_candidates,
    find_archivable_articles,
    find_deleted_highlight_ids,
    find_trashed_bookmarks,
    get_deletion_strategy,
)
from raindrop_sync.utils.exceptions import ConfigError, VaultError
from raindrop_sync.utils.grouper import group_by_article
from raindrop_sync.utils.raindrop_manager import RemoteSnapshot
from raindrop_sync.utils.state_manager import (
    HIGHLIGHT_TO_URL,
    IMPORTED_IDS,
    REF_TO_NOTE,
    URL_TO_NOTE,
)
from tests.fixtures import FakeRaindrop, make_highlight

ARTICLE = "https://example.com/a"


def test_find_deleted_highlight_ids():
    assert find_deleted_highlight_ids({"h1", "h3"}, {"h1", "h2", "h3"}) == {"h2"}
    assert find_deleted_highlight_ids([], []) == set()


def test_partially_deleted_article_is_not_archivable():
    highlight_to_article = {"h1": ARTICLE, "h2": ARTICLE, "h3": ARTICLE}

    candidates = find_archivable_articles(
        {"h1", "h2"}, highlight_to_article, {ARTICLE: "note-1"}
    )

    assert candidates == []


def test_fully_deleted_article_is_archivable():
    highlight_to_article = {"h1": ARTICLE, "h2": ARTICLE, "h3": ARTICLE, "h4": "other"}

    candidates = find_archivable_articles(
        {"h1", "h2", "h3"}, highlight_to_article, {ARTICLE: "note-1", "other": "note-2"}
    )

    assert candidates == [
        ArchiveCandidate(key=ARTICLE, note_id="note-1", highlight_ids=["h1", "h2", "h3"])
    ]


def test_trashed_bookmarks_intersect_tracked_refs():
    tracked = {"10": "note-a", "20": "note-b", "30": "note-c"}

    candidates = find_trashed_bookmarks(tracked, {30, 10, 99})

    assert [(c.key, c.note_id) for c in candidates] == [("10", "note-a"), ("30", "note-c")]


def test_archive_failures_are_isolated():
    calls = []

    def archive_note(note_id):
        calls.append(note_id)
        if note_id == "boom":
            raise VaultError("locked")
        return note_id != "missing"

    candidates = [
        ArchiveCandidate(key="1", note_id="boom"),
        ArchiveCandidate(key="2", note_id="missing"),
        ArchiveCandidate(key="3", note_id="ok"),
    ]

    archived, failed = archive_candidates(candidates, archive_note)

    assert calls == ["boom", "missing", "ok"]
    assert [c.key for c in archived] == ["3"]
    assert [c.key for c in failed] == ["1", "2"]


def test_membership_strategy_archives_once_all_highlights_are_gone(store):
    strategy = MembershipDiffStrategy()
    store.merge(IMPORTED_IDS, {"h1": "1", "h2": "1", "h3": "1"})
    store.merge(HIGHLIGHT_TO_URL, {"h1": ARTICLE, "h2": ARTICLE, "h3": ARTICLE})
    store.merge(URL_TO_NOTE, {ARTICLE: "note-1"})

    partial = RemoteSnapshot(FakeRaindrop([make_highlight("h3")]), "token")
    assert strategy.detect(store, partial) == []

    gone = RemoteSnapshot(FakeRaindrop([]), "token")
    candidates = strategy.detect(store, gone)
    assert [c.note_id for c in candidates] == ["note-1"]

    strategy.forget(store, candidates)
    assert store.get(IMPORTED_IDS) == {}
    assert store.get(HIGHLIGHT_TO_URL) == {}
    assert store.get(URL_TO_NOTE) == {}


def test_trash_strategy_skips_the_trash_query_when_nothing_is_tracked(store):
    raindrop = FakeRaindrop(trashed={1})

    assert TrashDiffStrategy().detect(store, RemoteSnapshot(raindrop, "token")) == []
    assert raindrop.calls == []


def test_trash_strategy_keeps_imported_ids_by_default(store):
    strategy = TrashDiffStrategy()
    store.merge(IMPORTED_IDS, {"h1": "10", "h2": "20"})
    store.merge(REF_TO_NOTE, {"10": "note-a", "20": "note-b"})

    candidates = strategy.detect(store, RemoteSnapshot(FakeRaindrop(trashed={10}), "token"))
    strategy.forget(store, candidates)

    assert candidates[0].highlight_ids == ["h1"]
    assert store.get(REF_TO_NOTE) == {"20": "note-b"}
    assert store.get(IMPORTED_IDS) == {"h1": "10", "h2": "20"}
    assert strategy.excluded_refs(RemoteSnapshot(FakeRaindrop(trashed={10}), "token")) == {10}


def test_trash_strategy_can_forget_imported_ids(store):
    strategy = TrashDiffStrategy(forget_highlights=True)
    store.merge(IMPORTED_IDS, {"h1": "10", "h2": "20"})
    store.merge(REF_TO_NOTE, {"10": "note-a", "20": "note-b"})
    snapshot = RemoteSnapshot(FakeRaindrop(trashed={10}), "token")

    strategy.forget(store, strategy.detect(store, snapshot))

    assert store.get(IMPORTED_IDS) == {"h2": "20"}
    assert strategy.excluded_refs(snapshot) == {10}


def test_trash_strategy_migrates_url_keyed_state(store):
    strategy = TrashDiffStrategy()
    store.merge(IMPORTED_IDS, {"h1": True, "h2": True, "h9": True})
    store.merge(HIGHLIGHT_TO_URL, {"h1": ARTICLE, "h2": ARTICLE, "h9": "https://gone.example"})
    store.merge(URL_TO_NOTE, {ARTICLE: "note-1", "https://gone.example": "note-9"})
    highlights = [
        make_highlight("h1", raindrop_ref=5, link=ARTICLE),
        make_highlight("h2", raindrop_ref=5, link=ARTICLE),
    ]

    migrated = strategy.migrate_legacy_state(store, highlights)

    assert migrated == 1
    assert store.get(REF_TO_NOTE) == {"5": "note-1"}
    assert store.get(URL_TO_NOTE) == {"https://gone.example": "note-9"}
    assert store.get(HIGHLIGHT_TO_URL) == {"h9": "https://gone.example"}
    assert store.get(IMPORTED_IDS) == {"h1": "5", "h2": "5", "h9": True}


def test_get_deletion_strategy():
    assert isinstance(get_deletion_strategy("membership"), MembershipDiffStrategy)
    strategy = get_deletion_strategy("trash", forget_archived_highlights=True)
    assert isinstance(strategy, TrashDiffStrategy)
    assert strategy.forget_highlights

    with pytest.raises(ConfigError):
        get_deletion_strategy("webhooks")


def test_tracked_note_lookup(store):
    [bundle] = group_by_article(
        [
            make_highlight("h1", raindrop_ref=10, link=ARTICLE),
            make_highlight("h2", raindrop_ref=11, link=ARTICLE),
        ]
    )
    store.merge(REF_TO_NOTE, {"11": "note-b"})
    store.merge(URL_TO_NOTE, {ARTICLE: "note-a"})

    assert TrashDiffStrategy().tracked_note(store, bundle) == "note-b"
    assert MembershipDiffStrategy().tracked_note(store, bundle) == "note-a"

    store.remove_keys(REF_TO_NOTE, ["11"])
    assert TrashDiffStrategy().tracked_note(store, bundle) is None
