"""Fake collaborators and builders shared by the test suite."""

from raindrop_sync.utils.exceptions import VaultError
from raindrop_sync.utils.raindrop_manager import HighlightRecord


def make_highlight(
    highlight_id,
    raindrop_ref=1,
    link="https://example.com/article-a",
    created="2024-01-01T10:00:00Z",
    title="Article A",
    text="Some highlighted text",
    color="yellow",
    note="",
    tags=None,
):
    return HighlightRecord(
        id=highlight_id,
        raindrop_ref=raindrop_ref,
        text=text,
        title=title,
        color=color,
        note=note,
        created_at=created,
        updated_at=created,
        tags=list(tags or []),
        link=link,
    )


class FakeRaindrop:
    """In-memory stand-in for RaindropManager."""

    def __init__(self, highlights=None, trashed=None):
        self.highlights = list(highlights or [])
        self.trashed = set(trashed or [])
        self.calls = []
        self.error = None

    def fetch_all_highlights(self, token):
        self.calls.append(("highlights", token))
        if self.error is not None:
            raise self.error
        return list(self.highlights)

    def fetch_trashed_bookmark_refs(self, token):
        self.calls.append(("trash", token))
        if self.error is not None:
            raise self.error
        return set(self.trashed)

    def validate_token(self, token):
        self.calls.append(("validate", token))
        return True


class FakeVault:
    """Records created and archived notes instead of touching the disk."""

    def __init__(self):
        self.created = []
        self.appended = []
        self.archived = []
        self.fail_titles = set()
        self.fail_archive = set()

    def create_article_note(self, bundle):
        if bundle.title in self.fail_titles:
            raise VaultError("disk full")
        note_id = f"note-{len(self.created) + 1}"
        self.created.append((note_id, bundle))
        return note_id

    def append_to_note(self, note_id, bundle):
        live = {n for n, _ in self.created} - set(self.archived)
        if note_id not in live:
            return False
        self.appended.append((note_id, bundle))
        return True

    def archive_note(self, note_id):
        if note_id in self.fail_archive:
            raise VaultError(f"note {note_id} is locked")
        self.archived.append(note_id)
        return True

    @property
    def created_titles(self):
        return [bundle.title for _, bundle in self.created]
