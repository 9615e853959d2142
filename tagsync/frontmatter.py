"""
Front-matter parsing and tag write-back.

Markdown documents carry a YAML header between ``---`` lines. Rewriting a
document's tags goes through a generic YAML dump of the whole header, then
every field other than ``tags`` is put back in its original source
spelling, so dates, quoting and comments are left exactly as authored.
"""

import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, NamedTuple, Optional

import yaml

from .state import atomic_write_text
from .taxonomy import dedupe_tags
from .types import Document, to_posix

logger = logging.getLogger(__name__)

TAGS_KEY = "tags"

# Hexo-style timestamp; the only shape whose quotes are stripped after dumping
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# Wide enough that PyYAML never folds long scalars
_DUMP_WIDTH = 1 << 16

_FRONT_MATTER_RE = re.compile(
    r"\A(?P<opening>\ufeff?---[ \t]*\r?\n)(?P<block>.*?)"
    r"^(?P<closing>(?:---|\.\.\.)[ \t]*(?:\r?\n|\Z))",
    re.DOTALL | re.MULTILINE,
)

# A top-level mapping key at column 0: plain, single- or double-quoted
_KEY_LINE_RE = re.compile(
    r"""^(?P<key>"(?:[^"\\]|\\.)*"|'(?:[^']|'')*'|[^\s#'"\-?:|>!&*@`%{}\[\],][^:]*?)[ \t]*:(?:[ \t]+|$)"""
)

# Literal or folded block scalar, optionally after a tag or anchor
_BLOCK_SCALAR_RE = re.compile(r"^(?:[!&]\S*[ \t]+)*[|>]")

_QUOTED_TIMESTAMP_RE = re.compile(
    r"^([A-Za-z0-9_-]+): '(\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2})'(\r?)$",
    re.MULTILINE,
)


# -----------------------------------------------------------------------------
# Parsing
# -----------------------------------------------------------------------------

class HeaderSplit(NamedTuple):
    """
    A document cut at its header.

    Attributes:
        block: Verbatim text between the delimiter lines, None without a header
        body: Everything after the closing delimiter
        opening: Opening delimiter line as written, byte order mark included
        closing: Closing delimiter line as written (``---`` or ``...``)
    """
    block: Optional[str]
    body: str
    opening: str = ""
    closing: str = ""


def split_front_matter(text: str) -> HeaderSplit:
    """Split a document into its header block, body and delimiter lines."""
    match = _FRONT_MATTER_RE.match(text)
    if not match:
        return HeaderSplit(None, text)
    return HeaderSplit(
        block=match.group("block"),
        body=text[match.end():],
        opening=match.group("opening"),
        closing=match.group("closing"),
    )


def parse_front_matter(text: str) -> tuple[dict[str, Any], HeaderSplit]:
    """
    Parse a document's front matter.

    Returns:
        (data, header). Documents without a header give an empty mapping
        and a split whose ``block`` is None.

    Raises:
        yaml.YAMLError: If the header is not valid YAML
        ValueError: If the header is not a mapping
    """
    header = split_front_matter(text)
    if header.block is None:
        return {}, header
    data = yaml.safe_load(header.block)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("front matter is not a mapping")
    return data, header


@dataclass(frozen=True)
class FieldLiteral:
    """
    Verbatim source text of one top-level field.

    Attributes:
        key: Field name (quotes removed)
        value: Text after ``key:``, continuation lines included
        lines: The field's own source lines
        leading: Blank and comment lines directly above the field
    """
    key: str
    value: str
    lines: str
    leading: str = ""

    @property
    def text(self) -> str:
        return self.leading + self.lines


def _unquote_key(token: str) -> str:
    token = token.strip()
    if len(token) >= 2 and token[0] == token[-1] == '"':
        return token[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    if len(token) >= 2 and token[0] == token[-1] == "'":
        return token[1:-1].replace("''", "'")
    return token


class _ValueState:
    """
    Open quote and flow-bracket state of one field's value, fed line by line.

    A field can only end where no quoted scalar or flow collection is
    open. Block scalars (``|``, ``>``) are never tracked: their content is
    indented, so the next column-0 key always ends them.
    """

    def __init__(self, value: str):
        self.quote: Optional[str] = None
        self.depth = 0
        self.token_start = True
        self.block_scalar = bool(_BLOCK_SCALAR_RE.match(value.lstrip()))
        self.feed(value)

    @property
    def open(self) -> bool:
        return not self.block_scalar and (self.quote is not None or self.depth > 0)

    def feed(self, line: str) -> None:
        if self.block_scalar:
            return
        if self.quote is None and self.depth == 0:
            self.token_start = True
        i = 0
        n = len(line)
        while i < n:
            ch = line[i]
            after = line[i + 1] if i + 1 < n else " "
            if self.quote == '"':
                if ch == "\\":
                    i += 1
                elif ch == '"':
                    self.quote = None
            elif self.quote == "'":
                if ch == "'" and after == "'":
                    i += 1
                elif ch == "'":
                    self.quote = None
            elif ch in " \t\r\n":
                pass
            elif ch == "#" and (i == 0 or line[i - 1] in " \t"):
                break
            elif self.token_start and ch in "\"'":
                self.quote = ch
                self.token_start = False
            elif self.token_start and ch in "[{":
                self.depth += 1
            elif self.token_start and ch in "-?:" and after in " \t\r\n":
                pass
            elif self.depth and ch in "]}":
                self.depth -= 1
                self.token_start = False
            elif self.depth and ch == ",":
                self.token_start = True
            elif ch == ":" and (after in " \t\r\n" or (self.depth and after in ",]}")):
                self.token_start = True
            else:
                self.token_start = False
            i += 1


def scan_fields(block: str) -> tuple[list[FieldLiteral], str]:
    """
    Split a header block into top-level fields without interpreting values.

    A field starts at a column-0 ``key:`` line and runs until the next one
    that is not inside an open quoted scalar or flow collection. Indented
    lines, sequence items and anything else that is not a new key belong to
    the current field, so block scalars, multi-line flow values and quoted
    scalars stay whole. Blank and comment lines between fields attach to the
    following field as its ``leading`` text.

    Returns:
        (fields, trailer): fields in source order, plus blank/comment lines
        after the last field
    """
    fields: list[FieldLiteral] = []
    gap: list[str] = []
    key: Optional[str] = None
    key_prefix = 0
    lines: list[str] = []
    leading = ""
    state: Optional[_ValueState] = None

    def flush() -> None:
        if key is None:
            return
        text = "".join(lines)
        fields.append(FieldLiteral(
            key=key,
            value=text[key_prefix:].rstrip("\r\n"),
            lines=text,
            leading=leading,
        ))

    for line in block.splitlines(keepends=True):
        content = line.rstrip("\r\n")
        if state is not None and state.open:
            lines.extend(gap)
            gap = []
            lines.append(line)
            state.feed(content)
            continue
        if not content.strip() or content.startswith("#"):
            gap.append(line)
            continue
        match = _KEY_LINE_RE.match(content)
        if match:
            flush()
            key = _unquote_key(match.group("key"))
            key_prefix = match.end()
            lines = [line]
            leading = "".join(gap)
            gap = []
            state = _ValueState(content[key_prefix:])
        elif key is None:
            gap.append(line)
        else:
            lines.extend(gap)
            gap = []
            lines.append(line)
            state.feed(content)
    flush()
    return fields, "".join(gap)


def capture_field_literals(block: str) -> dict[str, str]:
    """Map each top-level key to its verbatim value text."""
    fields, _ = scan_fields(block)
    return {f.key: f.value for f in fields}


# -----------------------------------------------------------------------------
# Serialization
# -----------------------------------------------------------------------------

def normalize_value(value: Any) -> Any:
    """Render temporal values as plain strings, recursively."""
    if isinstance(value, datetime):
        return value.strftime(TIMESTAMP_FORMAT)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, list):
        return [normalize_value(item) for item in value]
    if isinstance(value, dict):
        return {k: normalize_value(v) for k, v in value.items()}
    return value


def strip_timestamp_quotes(serialized: str) -> str:
    """Unquote top-level ``key: 'YYYY-MM-DD HH:MM:SS'`` lines left by the dumper."""
    return _QUOTED_TIMESTAMP_RE.sub(r"\1: \2\3", serialized)


def _with_newline(text: str, newline: str) -> str:
    return text if text.endswith(("\n", "\r")) else text + newline


def render_front_matter(
    metadata: Mapping[str, Any],
    raw_block: str,
    tags: Sequence[str],
) -> str:
    """
    Produce a new header block with ``tags`` replaced.

    Args:
        metadata: Parsed front matter
        raw_block: Verbatim original header block
        tags: Tags to write

    Returns:
        The new block text (without delimiter lines)
    """
    newline = "\r\n" if "\r\n" in raw_block else "\n"
    data = dict(metadata)
    data[TAGS_KEY] = list(tags)
    expected = normalize_value(data)
    dumped = yaml.safe_dump(
        expected,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
        width=_DUMP_WIDTH,
        line_break=newline,
    )
    dumped = strip_timestamp_quotes(dumped)

    original_fields, trailer = scan_fields(raw_block)
    originals = {f.key: f for f in original_fields}
    dumped_fields, _ = scan_fields(dumped)

    # The scanner must see every dumped key, or restoring could drop lines
    if {f.key for f in dumped_fields} != {str(k) for k in data}:
        logger.debug("Could not map every front-matter field; using generic serialization")
        return dumped

    parts = []
    for dumped_field in dumped_fields:
        original = originals.get(dumped_field.key)
        if dumped_field.key == TAGS_KEY:
            leading = original.leading if original else ""
            parts.append(leading + _with_newline(dumped_field.lines, newline))
        elif original is not None:
            parts.append(_with_newline(original.text, newline))
        else:
            parts.append(_with_newline(dumped_field.lines, newline))
    block = "".join(parts) + trailer

    if not _same_data(block, expected):
        logger.debug("Restored front matter does not re-parse to the same data; using generic serialization")
        return dumped
    return block


def _same_data(block: str, expected: Any) -> bool:
    try:
        reparsed = yaml.safe_load(block)
    except yaml.YAMLError:
        return False
    return normalize_value(reparsed if reparsed is not None else {}) == expected


def render_document(document: Document, tags: Sequence[str]) -> str:
    """Full document text with its tags field rewritten; delimiter lines are kept as written."""
    newline = "\r\n" if "\r\n" in document.metadata_raw else "\n"
    block = render_front_matter(document.metadata, document.metadata_raw, tags)
    opening = document.header_open or f"---{newline}"
    closing = document.header_close or f"---{newline}"
    return f"{opening}{block}{closing}{document.content}"


# -----------------------------------------------------------------------------
# Synchronization
# -----------------------------------------------------------------------------

@dataclass
class FrontMatterSyncResult:
    """Per-identifier outcome of applying the tag index to documents."""
    updated: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    filtered_out: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    total_entries: int = 0


def sync_front_matter(
    tag_index: Mapping[str, Sequence[str]],
    documents: Sequence[Document],
    *,
    workspace_root: Path,
    dry_run: bool = False,
    sort: bool = True,
) -> FrontMatterSyncResult:
    """
    Write each indexed document's tags into its front matter.

    Tags are compared after the same normalization and ordering the merger
    uses; identical lists are left untouched. Identifiers not in
    ``documents`` are ``missing`` when absent from disk, ``filtered_out``
    when the file exists but was excluded from this pass.

    Args:
        tag_index: Identifier -> tags
        documents: Documents loaded for this pass
        workspace_root: Root the identifiers are relative to
        dry_run: Compare and report only
        sort: Sort tags alphabetically before comparing and writing
    """
    result = FrontMatterSyncResult(total_entries=len(tag_index))
    by_id = {to_posix(doc.id): doc for doc in documents}

    for raw_id, tags in tag_index.items():
        document_id = to_posix(raw_id)
        document = by_id.get(document_id)
        if document is None:
            if (workspace_root / document_id).exists():
                result.filtered_out.append(document_id)
            else:
                result.missing.append(document_id)
            continue

        expected = dedupe_tags(tags, sort=sort)
        current = dedupe_tags(document.own_tags, sort=sort)
        if expected == current:
            result.unchanged.append(document_id)
            continue

        text = render_document(document, expected)
        if dry_run:
            logger.info("Dry run: would update tags in %s", document_id)
        else:
            path = document.path or workspace_root / document_id
            try:
                atomic_write_text(path, text)
            except OSError as e:
                logger.error("Failed to write %s: %s", document_id, e)
                result.failed.append(document_id)
                continue
            logger.info("Updated tags in %s", document_id)
        result.updated.append(document_id)

    if not dry_run and not result.updated and not result.failed:
        logger.info("All matching documents already up to date.")
    return result
