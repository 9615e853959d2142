"""
Markdown document discovery and parsing.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .errors import DocumentLoadError
from .frontmatter import parse_front_matter
from .types import Document, ensure_array, to_posix

logger = logging.getLogger(__name__)

MARKDOWN_SUFFIX = ".md"


@dataclass
class LoadResult:
    """Documents for one pass plus what was left out and why."""
    documents: list[Document] = field(default_factory=list)
    drafts: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def present_ids(self) -> set[str]:
        """Every identifier known to exist on disk, loaded or not."""
        return {doc.id for doc in self.documents} | set(self.drafts) | set(self.failed)


def collect_markdown_files(root: Path) -> list[Path]:
    """Markdown files under ``root``, recursively, skipping hidden names."""
    files = [
        path for path in root.rglob("*")
        if path.is_file()
        and not path.name.startswith(".")
        and path.suffix.lower() == MARKDOWN_SUFFIX
    ]
    return sorted(files)


def _is_draft(data: dict) -> bool:
    draft = data.get("draft")
    if isinstance(draft, str):
        return draft.strip().lower() == "true"
    return draft is True


def load_document(path: Path, workspace_root: Path) -> Document:
    """
    Read and parse one markdown document.

    Raises:
        DocumentLoadError: If the file cannot be read or its header parsed
    """
    document_id = to_posix(os.path.relpath(path, workspace_root))
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise DocumentLoadError(document_id, f"read failed: {e}") from e
    try:
        data, header = parse_front_matter(text)
    except (yaml.YAMLError, ValueError) as e:
        raise DocumentLoadError(document_id, f"invalid front matter: {e}") from e

    title = data.get("title")
    if not isinstance(title, str) or not title:
        title = path.stem

    return Document(
        id=document_id,
        title=title,
        own_tags=tuple(ensure_array(data.get("tags"))),
        content=header.body,
        metadata_raw=header.block or "",
        header_open=header.opening,
        header_close=header.closing,
        metadata=data,
        path=path,
    )


def load_documents(
    post_root: Path,
    *,
    workspace_root: Path,
    filter: str = "",
    include_drafts: bool = False,
) -> LoadResult:
    """
    Load every markdown document under ``post_root``.

    Args:
        post_root: Directory to scan
        workspace_root: Root that identifiers are relative to
        filter: Keep only files whose path relative to ``post_root`` contains this
        include_drafts: Keep documents marked ``draft: true``

    Returns:
        LoadResult; unreadable documents are logged and listed in ``failed``
    """
    result = LoadResult()
    needle = filter.strip()
    for path in collect_markdown_files(post_root):
        if needle and needle not in to_posix(os.path.relpath(path, post_root)):
            continue
        try:
            document = load_document(path, workspace_root)
        except DocumentLoadError as e:
            logger.error("Failed to load %s", e)
            result.failed.append(e.path)
            continue

        if not include_drafts and _is_draft(document.metadata):
            logger.debug("Skipping draft document: %s", document.id)
            result.drafts.append(document.id)
            continue
        result.documents.append(document)
    return result
