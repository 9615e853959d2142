"""
Data types for tag synchronization.
"""

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Optional


# Category assigned to tags no taxonomy rule claims
UNCATEGORIZED = "uncategorized"

# Tag index: document identifier -> ordered tag list
TagIndex = dict[str, list[str]]


def to_posix(path: str) -> str:
    """Convert a host path to a forward-slash identifier."""
    return path.replace(os.sep, "/")


def ensure_array(value: Any) -> list[str]:
    """Coerce a front-matter value into a list of trimmed, non-empty strings.

    Lists are stringified item by item; a plain string is split on commas.
    """
    if value is None or value == "" or value is False:
        return []
    if isinstance(value, (list, tuple)):
        items = [str(item).strip() for item in value if item is not None]
        return [item for item in items if item]
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    text = str(value).strip()
    return [text] if text else []


@dataclass(frozen=True)
class Document:
    """
    A parsed markdown document.

    Attributes:
        id: Stable forward-slash path relative to the workspace root
        title: Title from front matter, or the file stem
        own_tags: Tags declared in the document's own front matter
        content: Body text after the front-matter block
        metadata_raw: Verbatim text of the front-matter block
        header_open: Opening delimiter line as written, empty without a header
        header_close: Closing delimiter line as written, empty without a header
        metadata: Parsed front-matter mapping
        path: Absolute path on disk
    """
    id: str
    title: str
    own_tags: tuple[str, ...] = ()
    content: str = ""
    metadata_raw: str = ""
    header_open: str = ""
    header_close: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    path: Optional[Path] = None


@dataclass
class GenerationResult:
    """Outcome of generating tags for one document (last attempt only)."""
    document_id: str
    tags: list[str] = field(default_factory=list)
    raw: Optional[str] = None
    error: Optional[Exception] = None
    model: Optional[str] = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class MergeResult:
    """Merged tag set for one document."""
    tags: list[str]
    added: list[str]
    classification: dict[str, str]


@dataclass(frozen=True)
class TaxonomyRule:
    """A category's explicit allow-list and/or matching pattern."""
    includes: tuple[str, ...] = ()
    pattern: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "TaxonomyRule":
        includes = data.get("includes") or []
        if isinstance(includes, str):
            includes = [includes]
        pattern = data.get("pattern")
        return cls(
            includes=tuple(str(item) for item in includes),
            pattern=str(pattern) if pattern else None,
        )


# Ordered mapping category -> rule (declaration order is evaluation order)
TaxonomyRules = dict[str, TaxonomyRule]


@dataclass
class SyncStatistics:
    """Aggregate counters for one generate run."""
    total_documents: int = 0
    processed_documents: int = 0
    skipped_documents: int = 0
    llm_calls: int = 0
    llm_failures: int = 0
    total_tags: int = 0
    total_new_tags: int = 0
    load_failures: int = 0

    @property
    def failed(self) -> bool:
        return self.llm_failures > 0 or self.load_failures > 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)
