"""
Vault integration manager

Handles all writes to the local Markdown vault: creating one note per
article with its highlights, filing it under the dedicated folder or the
day's daily note, and moving notes to the archive.
"""

import re
import shutil
import uuid
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml
from loguru import logger
from beartype import beartype as typecheck

from .exceptions import VaultError

DEDICATED = "dedicated"
DAILY = "daily"
IMPORT_LOCATIONS = (DEDICATED, DAILY)

ARTICLES_FOLDER = "Raindrop Articles"
ARCHIVE_FOLDER = "Archived Articles"
DAILY_FOLDER = "Daily Notes"
DAILY_SECTION_HEADING = f"## {ARTICLES_FOLDER}"

# Raindrop highlight colors folded onto the palette the vault theme styles
COLOR_MAP = {
    "red": "red",
    "orange": "orange",
    "yellow": "yellow",
    "green": "green",
    "blue": "blue",
    "indigo": "blue",
    "purple": "purple",
    "pink": "red",
    "teal": "green",
    "cyan": "blue",
    "brown": "orange",
}


@typecheck
def map_highlight_color(color: Optional[str]) -> Optional[str]:
    """Palette color for a Raindrop highlight color, None if unknown."""
    if not color:
        return None
    return COLOR_MAP.get(color.lower())


@typecheck
def slugify(text: str) -> str:
    """Convert text to a filesystem-safe slug for filenames."""
    if not text:
        return "untitled"
    text = text.lower().strip()
    text = re.sub(r"[^\w\s-]", "", text)
    text = re.sub(r"[\s_-]+", "-", text)
    text = text.strip("-")
    return text[:50] if text else "untitled"


def _merge_unique(existing: List, values: Iterable) -> List:
    merged = list(existing)
    for value in values:
        if value not in merged:
            merged.append(value)
    return merged


def _dump_front_matter(metadata: Dict[str, Any]) -> str:
    dumped = yaml.dump(
        metadata, allow_unicode=True, default_flow_style=False, sort_keys=False
    )
    return f"---\n{dumped.rstrip()}\n---"


def _split_front_matter(text: str) -> Tuple[Optional[Dict[str, Any]], str]:
    """Front matter mapping and the rest of a note, (None, text) if absent."""
    if not text.startswith("---\n"):
        return None, text
    header, sep, body = text[4:].partition("\n---\n")
    if not sep:
        return None, text
    metadata = yaml.safe_load(header)
    if not isinstance(metadata, dict):
        return None, text
    return metadata, body


class VaultManager:
    """
    Manager class for all vault-related operations.

    Notes are Markdown files with YAML front matter. A note id is a short
    random hex string that is also the suffix of the file name, so a note
    can be found again after it was moved.
    """

    @typecheck
    def __init__(self, config):
        """
        Initialize the vault manager.

        Parameters
        ----------
        config : SyncConfig
            Configuration object containing sync settings
        """
        self.config = config

        logger.debug(f"VaultManager initialized for vault: {self.vault_path}")

    @property
    def vault_path(self) -> Path:
        return Path(self.config.vault_path).expanduser()

    @property
    def archive_path(self) -> Path:
        return self.vault_path / ARCHIVE_FOLDER

    @typecheck
    def daily_note_path(self, day: date) -> Path:
        return self.vault_path / DAILY_FOLDER / f"{day.isoformat()}.md"

    @typecheck
    def get_import_parent(self, day: Optional[date] = None) -> Path:
        """Folder new article notes are written to."""
        if self.config.import_location == DAILY:
            day = day or date.today()
            return self.vault_path / DAILY_FOLDER / day.isoformat() / ARTICLES_FOLDER
        return self.vault_path / ARTICLES_FOLDER

    @typecheck
    def create_article_note(self, bundle, day: Optional[date] = None) -> str:
        """
        Create the note for an article and its highlights.

        Parameters
        ----------
        bundle : ArticleBundle
            The article to materialize
        day : Optional[date]
            Day used for the daily location, defaults to today

        Returns
        -------
        str
            The id of the created note

        Raises
        ------
        VaultError
            If the note cannot be written
        """
        day = day or date.today()
        note_id = uuid.uuid4().hex[:12]
        parent = self.get_import_parent(day)
        note_path = parent / f"{slugify(bundle.title)}-{note_id}.md"

        try:
            parent.mkdir(parents=True, exist_ok=True)
            note_path.write_text(self.render_article(bundle, note_id), encoding="utf-8")

            if self.config.import_location == DAILY:
                self._add_to_daily_section(day, note_path.stem, bundle.title)
        except OSError as e:
            error_msg = f"Could not write note for '{bundle.title}': {e}"
            logger.error(error_msg)
            raise VaultError(error_msg) from e

        logger.info(
            f"Created note {note_id} for '{bundle.title}' "
            f"({len(bundle.highlights)} highlights) at {note_path}"
        )
        return note_id

    @typecheck
    def append_to_note(self, note_id: str, bundle) -> bool:
        """
        Add the highlights of ``bundle`` to an existing live note.

        The front matter is updated with the new highlight ids, bookmark
        references and tags.

        Returns
        -------
        bool
            False if the note is missing, archived or has no readable front
            matter, in which case nothing is written

        Raises
        ------
        VaultError
            If the note cannot be read or rewritten
        """
        note_path = self.find_note(note_id)
        if note_path is None or self.archive_path in note_path.parents:
            logger.debug(f"No live note {note_id} to append to")
            return False

        try:
            text = note_path.read_text(encoding="utf-8")
            try:
                metadata, body = _split_front_matter(text)
            except yaml.YAMLError as e:
                logger.warning(f"Unreadable front matter in {note_path}: {e}")
                return False
            if metadata is None:
                return False

            metadata["highlight_ids"] = _merge_unique(
                metadata.get("highlight_ids") or [], bundle.highlight_ids
            )
            metadata["raindrop_refs"] = _merge_unique(
                metadata.get("raindrop_refs") or [], bundle.raindrop_refs
            )
            metadata["tags"] = _merge_unique(
                metadata.get("tags") or [], (t for h in bundle.highlights for t in h.tags)
            )
            metadata["last_update"] = bundle.last_update

            lines = [_dump_front_matter(metadata) + "\n" + body.rstrip("\n")]
            lines.extend(self._render_highlights(bundle.highlights))
            note_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        except OSError as e:
            raise VaultError(f"Could not append to note {note_id}: {e}") from e

        logger.info(
            f"Appended {len(bundle.highlights)} highlights to note {note_id} ({bundle.title})"
        )
        return True

    @typecheck
    def render_article(self, bundle, note_id: str) -> str:
        """Render an article bundle as Markdown with YAML front matter."""
        metadata = {
            "note_id": note_id,
            "title": bundle.title,
            "source": bundle.source_url,
            "domain": bundle.domain,
            "raindrop_refs": list(bundle.raindrop_refs),
            "highlight_ids": [h.id for h in bundle.highlights],
            "tags": _merge_unique([], (t for h in bundle.highlights for t in h.tags)),
            "last_update": bundle.last_update,
            "imported_at": datetime.now().isoformat(timespec="seconds"),
        }
        lines = [
            _dump_front_matter(metadata),
            "",
            f"# **{bundle.title}** ({bundle.domain})",
            "",
            f"Source: [{bundle.domain}]({bundle.source_url})",
            "",
        ]

        lines.extend(self._render_highlights(bundle.highlights))
        return "\n".join(lines) + "\n"

    def _render_highlights(self, highlights) -> List[str]:
        lines = []
        for h in highlights:
            if h.text.strip():
                lines.extend(self._render_highlight(h))
        return lines

    def _render_highlight(self, highlight) -> List[str]:
        color = map_highlight_color(highlight.color) if self.config.include_colors else None

        quoted = []
        for line in highlight.text.strip().splitlines():
            if color and line.strip():
                line = f'<mark class="hl-{color}">{line}</mark>'
            quoted.append(line)

        lines = [f"- > {quoted[0]}"]
        lines.extend(f"  > {line}" for line in quoted[1:])

        if highlight.note and highlight.note.strip():
            note_lines = highlight.note.strip().splitlines()
            lines.append(f"  - **Note:** {note_lines[0]}")
            lines.extend(f"    {line}" for line in note_lines[1:])

        return lines

    def _add_to_daily_section(self, day: date, note_name: str, title: str) -> None:
        """Link a note from the Raindrop section of the day's daily note."""
        daily_note = self.daily_note_path(day)
        label = title.replace("|", "-").replace("]]", "]")
        link = f"- [[{note_name}|{label}]]"

        if not daily_note.exists():
            daily_note.parent.mkdir(parents=True, exist_ok=True)
            daily_note.write_text(
                f"# {day.isoformat()}\n\n{DAILY_SECTION_HEADING}\n\n{link}\n",
                encoding="utf-8",
            )
            return

        lines = daily_note.read_text(encoding="utf-8").splitlines()
        try:
            start = next(
                i for i, line in enumerate(lines) if line.strip() == DAILY_SECTION_HEADING
            )
        except StopIteration:
            if lines and lines[-1].strip():
                lines.append("")
            lines.extend([DAILY_SECTION_HEADING, "", link])
        else:
            end = len(lines)
            for i in range(start + 1, len(lines)):
                if lines[i].startswith("#"):
                    end = i
                    break
            # insert after the last non-blank line of the section
            insert_at = end
            while insert_at > start + 1 and not lines[insert_at - 1].strip():
                insert_at -= 1
            if insert_at == start + 1:
                lines[insert_at:insert_at] = ["", link]
            else:
                lines.insert(insert_at, link)

        daily_note.write_text("\n".join(lines) + "\n", encoding="utf-8")

    @typecheck
    def find_note(self, note_id: str) -> Optional[Path]:
        """Locate the file of a note anywhere in the vault."""
        if not note_id or not self.vault_path.exists():
            return None
        matches = sorted(self.vault_path.rglob(f"*-{note_id}.md"))
        if not matches:
            return None
        # prefer a live copy over an archived one
        matches.sort(key=lambda p: self.archive_path in p.parents)
        return matches[0]

    @typecheck
    def archive_note(self, note_id: str) -> bool:
        """
        Move a note to the archive folder.

        Returns
        -------
        bool
            True if the note is now archived, False if it can't be found
        """
        note_path = self.find_note(note_id)
        if note_path is None:
            logger.warning(f"Note {note_id} not found in vault {self.vault_path}")
            return False

        if note_path.parent == self.archive_path:
            logger.debug(f"Note {note_id} is already archived")
            return True

        target = self.archive_path / note_path.name
        try:
            self.archive_path.mkdir(parents=True, exist_ok=True)
            shutil.move(str(note_path), str(target))
        except OSError as e:
            raise VaultError(f"Could not archive note {note_id}: {e}") from e

        logger.debug(f"Moved {note_path} to {target}")
        return True

