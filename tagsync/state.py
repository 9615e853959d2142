"""
Persistent tag index (``tags.json``).

The index is a JSON object mapping document identifier -> ordered tag list,
written with sorted keys and 2-space indentation. Every write replaces the
file atomically; writes are serialized through a single lock so concurrent
document completions never interleave on the file.
"""

import json
import logging
import os
import stat
import tempfile
import threading
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .types import TagIndex

logger = logging.getLogger(__name__)

# Number of changed entries shown in a dry-run diff sample
DIFF_SAMPLE_SIZE = 10


@dataclass
class IndexDiff:
    """Entries that differ between two indexes."""
    updated_paths: list[str] = field(default_factory=list)
    removed_paths: list[str] = field(default_factory=list)

    @property
    def changed_paths(self) -> list[str]:
        return [*self.updated_paths, *self.removed_paths]


@dataclass
class FinalizeReport:
    """Outcome of the authoritative end-of-run write.

    ``created`` is True when no index file existed as the store was opened.
    """
    diff: IndexDiff
    written: bool
    created: bool = False

    @property
    def changed(self) -> int:
        return len(self.diff.changed_paths)


def sort_index(index: Mapping[str, Sequence[str]]) -> TagIndex:
    """Copy of the index ordered by identifier."""
    return {key: list(index[key]) for key in sorted(index, key=lambda k: (k.casefold(), k))}


def serialize_index(index: Mapping[str, Sequence[str]]) -> str:
    """Stable pretty-printed JSON text for the index."""
    return json.dumps(sort_index(index), indent=2, ensure_ascii=False) + "\n"


def diff_index(previous: Mapping[str, Sequence[str]], next: Mapping[str, Sequence[str]]) -> IndexDiff:
    """
    Compare two indexes entry by entry.

    Tag lists are compared as sequences, so reordering counts as a change.
    """
    updated = [
        key for key, tags in next.items()
        if key not in previous or list(previous[key]) != list(tags)
    ]
    removed = [key for key in previous if key not in next]
    return IndexDiff(updated_paths=updated, removed_paths=removed)


def prune_index(
    index: TagIndex,
    present_ids: Iterable[str],
    *,
    filter_applied: bool,
) -> list[str]:
    """
    Remove entries for documents that no longer exist.

    A filtered pass did not look at the whole corpus, so nothing is removed.

    Returns:
        Identifiers removed from ``index`` (in place)
    """
    if filter_applied:
        return []
    present = set(present_ids)
    removed = [key for key in index if key not in present]
    for key in removed:
        del index[key]
    return removed


def atomic_write_text(path: Path, text: str) -> None:
    """
    Replace ``path`` atomically: write a sibling temp file, then rename over it.

    An existing file keeps its permission bits. Line endings in ``text``
    are written as given.
    """
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(text)
        if path.exists():
            os.chmod(tmp_name, stat.S_IMODE(path.stat().st_mode))
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


class TagIndexStore:
    """Owns the tag index file for the duration of a run."""

    def __init__(self, path: Path, *, display_name: Optional[str] = None):
        """
        Args:
            path: Location of the JSON index file
            display_name: Shorter name for log messages
        """
        self.path = Path(path)
        self.display_name = display_name or str(self.path)
        self._lock = threading.Lock()
        self._existed = self.path.exists()

    def read(self) -> TagIndex:
        """
        Load the index.

        A missing file gives an empty index; unreadable or malformed content
        gives an empty index and a warning. Never raises.
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("Existing tag index not found at %s.", self.display_name)
            return {}
        except OSError as e:
            logger.warning("Failed to read tag index %s: %s", self.display_name, e)
            return {}

        try:
            data = json.loads(raw)
        except ValueError as e:
            logger.warning("Failed to parse tag index %s: %s", self.display_name, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Tag index %s is not a JSON object; ignoring it.", self.display_name)
            return {}

        index: TagIndex = {}
        for key, tags in data.items():
            if isinstance(tags, list):
                index[str(key)] = [str(tag) for tag in tags if tag is not None]
            else:
                logger.warning("Ignoring malformed entry %r in %s", key, self.display_name)
        return index

    def commit(self, index: Mapping[str, Sequence[str]], reason: str = "") -> None:
        """Write a snapshot of the in-memory index immediately."""
        with self._lock:
            self._commit_locked(index, reason)

    def record(
        self,
        index: TagIndex,
        document_id: str,
        tags: Sequence[str],
        *,
        persist: bool = True,
    ) -> None:
        """Set one document's slot and, if ``persist``, commit a snapshot.

        Both happen under the writer lock, so the snapshot never observes a
        half-applied update from another worker.
        """
        with self._lock:
            index[document_id] = list(tags)
            if persist:
                self._commit_locked(index, document_id)

    def finalize(
        self,
        index: Mapping[str, Sequence[str]],
        *,
        dry_run: bool = False,
        previous: Optional[Mapping[str, Sequence[str]]] = None,
    ) -> FinalizeReport:
        """
        Write the authoritative index after a full pass.

        Args:
            index: Final index
            dry_run: Report the diff without writing
            previous: Baseline for the diff (default: current file content)

        Returns:
            FinalizeReport with the diff against the baseline
        """
        existing = self.read() if previous is None else previous
        diff = diff_index(existing, index)
        created = not self._existed

        if dry_run:
            logger.info("Dry run enabled. %d entries would change.", len(diff.changed_paths))
            if diff.changed_paths:
                sample = [
                    {"path": key, "before": existing.get(key), "after": index.get(key)}
                    for key in diff.changed_paths[:DIFF_SAMPLE_SIZE]
                ]
                logger.info("Sample diff: %s", json.dumps(sample, ensure_ascii=False))
            return FinalizeReport(diff=diff, written=False, created=False)

        with self._lock:
            self._write(serialize_index(index))
        logger.info(
            "Tags written to %s. Updated %d entries.", self.display_name, len(diff.changed_paths),
        )
        return FinalizeReport(diff=diff, written=True, created=created)

    def _commit_locked(self, index: Mapping[str, Sequence[str]], reason: str) -> None:
        self._write(serialize_index(index))
        if reason:
            logger.debug("Incremental tag index update after %s", reason)
        else:
            logger.debug("Incremental tag index update")

    def _write(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        atomic_write_text(self.path, text)
