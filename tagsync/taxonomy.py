"""
Tag normalization, merging and classification.

Pure functions, no I/O. Tags are compared case-insensitively on their
normalized form; the first spelling seen wins.
"""

import logging
import re
import unicodedata
from collections.abc import Iterable
from typing import Optional

from .types import UNCATEGORIZED, MergeResult, TaxonomyRules

logger = logging.getLogger(__name__)

# Runs of whitespace, underscores and slashes collapse to one space
_SEPARATOR_RUN = re.compile(r"[\s_/]+")


def normalize_tag(tag: Optional[str]) -> str:
    """Collapse separator runs to single spaces and trim."""
    if not tag:
        return ""
    return _SEPARATOR_RUN.sub(" ", str(tag)).strip()


def tag_key(tag: Optional[str]) -> str:
    """Case-insensitive identity of a tag."""
    return normalize_tag(tag).casefold()


def collation_key(tag: str) -> tuple[str, str, str]:
    """Sort key ordering tags alphabetically regardless of case and accents.

    Ties fall back to case-folded then exact text, so the order is total and
    does not depend on the host locale.
    """
    decomposed = unicodedata.normalize("NFKD", tag)
    base = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return (base.casefold(), tag.casefold(), tag)


def dedupe_tags(tags: Iterable[str], sort: bool = False) -> list[str]:
    """Normalize, drop empties and case-insensitive duplicates (first wins)."""
    seen: dict[str, str] = {}
    for tag in tags:
        normalized = normalize_tag(tag)
        if not normalized:
            continue
        key = normalized.casefold()
        if key not in seen:
            seen[key] = normalized
    values = list(seen.values())
    if sort:
        values.sort(key=collation_key)
    return values


def _compile_rules(rules: TaxonomyRules) -> list[tuple[str, set[str], Optional[re.Pattern]]]:
    compiled = []
    for category, rule in rules.items():
        includes = {tag_key(candidate) for candidate in rule.includes if tag_key(candidate)}
        pattern = None
        if rule.pattern:
            try:
                pattern = re.compile(rule.pattern, re.IGNORECASE)
            except re.error as e:
                logger.warning("Ignoring invalid pattern for category %r: %s", category, e)
        compiled.append((category, includes, pattern))
    return compiled


def classify_tags(tags: Iterable[str], rules: Optional[TaxonomyRules]) -> dict[str, str]:
    """
    Assign each tag the first matching category.

    Categories are tried in declared order; within a category the explicit
    ``includes`` list is checked before the pattern.

    Args:
        tags: Tags to classify
        rules: Ordered category -> rule mapping, or None

    Returns:
        Dict mapping each tag to its category (``uncategorized`` when none match)
    """
    tags = list(tags)
    if not rules:
        return {tag: UNCATEGORIZED for tag in tags}

    compiled = _compile_rules(rules)
    classification: dict[str, str] = {}
    for tag in tags:
        key = tag_key(tag)
        category_for_tag = UNCATEGORIZED
        for category, includes, pattern in compiled:
            if key in includes:
                category_for_tag = category
                break
            if pattern is not None and pattern.search(tag):
                category_for_tag = category
                break
        classification[tag] = category_for_tag
    return classification


def merge_tags(
    own_tags: Iterable[str],
    proposed_tags: Iterable[str],
    historical_tags: Optional[Iterable[str]] = None,
    *,
    sort: bool = False,
    taxonomy: Optional[TaxonomyRules] = None,
) -> MergeResult:
    """
    Merge historical, own and proposed tags into one normalized set.

    Order of precedence is historical, then own, then proposed; the first
    case-insensitive occurrence decides spelling and position. ``added``
    holds the tags only the proposals contributed.
    """
    history_part = dedupe_tags(historical_tags or [])
    own_part = dedupe_tags(own_tags)
    proposed = list(proposed_tags)

    merged = dedupe_tags([*history_part, *own_part, *proposed], sort=sort)
    known = {tag.casefold() for tag in [*history_part, *own_part]}
    added = [tag for tag in merged if tag.casefold() not in known]

    return MergeResult(
        tags=merged,
        added=added,
        classification=classify_tags(merged, taxonomy),
    )
