"""
Concurrent tag generation with retry.

Every document is scheduled up front on a bounded thread pool; at most
``max_concurrency`` provider calls are in flight. Failed attempts are
retried with linear backoff: min(2s * attempt, 5s). A document whose
attempts are all exhausted falls back to its historical and own tags;
it never cancels sibling work.
"""

import logging
import time
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Optional, TypeVar

from .errors import RetriesExhausted
from .providers.base import TaggingProvider
from .taxonomy import merge_tags
from .types import Document, GenerationResult, MergeResult, SyncStatistics, TaxonomyRules

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 3
MAX_RETRIES = 2

# Retry backoff: min(STEP * attempt, MAX) seconds
RETRY_BACKOFF_STEP = 2.0
RETRY_BACKOFF_MAX = 5.0

T = TypeVar("T")
R = TypeVar("R")

DocumentCallback = Callable[[Document, MergeResult], None]


def backoff_delay(attempt: int) -> float:
    """Delay in seconds before retry number ``attempt`` (1-based)."""
    return min(RETRY_BACKOFF_STEP * attempt, RETRY_BACKOFF_MAX)


class BoundedScheduler:
    """Runs one call per item with at most ``max_concurrency`` in flight.

    Results are yielded in completion order. An exception raised by ``fn``
    surfaces when its result is reached; calls already running finish, and
    items not yet started are cancelled.
    """

    def __init__(self, max_concurrency: int = DEFAULT_MAX_CONCURRENCY):
        self.max_concurrency = max(1, int(max_concurrency))

    def run(self, items: Iterable[T], fn: Callable[[T], R]) -> Iterator[tuple[T, R]]:
        items = list(items)
        if not items:
            return
        with ThreadPoolExecutor(
            max_workers=min(self.max_concurrency, len(items)),
            thread_name_prefix="tagsync",
        ) as pool:
            futures = {pool.submit(fn, item): item for item in items}
            try:
                for future in as_completed(futures):
                    yield futures[future], future.result()
            except BaseException:
                pool.shutdown(wait=False, cancel_futures=True)
                raise


def generate_with_retry(
    provider: TaggingProvider,
    document: Document,
    *,
    language: str,
    historical_tags: Sequence[str] = (),
    max_retries: int = MAX_RETRIES,
) -> GenerationResult:
    """
    Call the provider, retrying failed attempts sequentially.

    Makes up to ``1 + max_retries`` attempts. Only the last attempt's
    result is kept; after exhaustion its error is wrapped in
    ``RetriesExhausted`` and the proposed tag list is empty.
    """
    max_retries = max(0, max_retries)
    result: Optional[GenerationResult] = None
    for attempt in range(max_retries + 1):
        if attempt > 0:
            delay = backoff_delay(attempt)
            logger.info(
                "Retrying %s in %.1fs (attempt %d of %d)",
                document.id, delay, attempt + 1, max_retries + 1,
            )
            time.sleep(delay)

        result = provider.tag(document, language=language, historical_tags=historical_tags)
        result.attempts = attempt + 1
        if result.error is None:
            return result
        logger.warning(
            "Attempt %d for %s failed: %s", attempt + 1, document.id, result.error,
        )

    exhausted = RetriesExhausted(document.id, max_retries + 1, result.error)
    logger.error("Tag generation failed for %s: %s", document.id, result.error)
    return GenerationResult(
        document_id=document.id,
        tags=[],
        raw=result.raw,
        error=exhausted,
        model=result.model,
        attempts=max_retries + 1,
    )


@dataclass
class GenerationRun:
    """Per-document generation results and merges for one pass."""
    results: dict[str, GenerationResult] = field(default_factory=dict)
    merges: dict[str, MergeResult] = field(default_factory=dict)

    def statistics(self, total_documents: int, load_failures: int = 0) -> SyncStatistics:
        stats = SyncStatistics(total_documents=total_documents, load_failures=load_failures)
        for document_id, merge in self.merges.items():
            stats.processed_documents += 1
            stats.total_tags += len(merge.tags)
            stats.total_new_tags += len(merge.added)
            result = self.results.get(document_id)
            if result is not None:
                stats.llm_calls += 1
                if result.error is not None:
                    stats.llm_failures += 1
        stats.skipped_documents = total_documents - stats.processed_documents
        return stats


def generate_tags(
    documents: Sequence[Document],
    provider: TaggingProvider,
    *,
    historical: Optional[Mapping[str, Sequence[str]]] = None,
    language: str = "zh",
    sort: bool = False,
    taxonomy: Optional[TaxonomyRules] = None,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    max_retries: int = MAX_RETRIES,
    on_document: Optional[DocumentCallback] = None,
) -> GenerationRun:
    """
    Generate and merge tags for every document.

    Args:
        documents: Documents to process
        provider: Tagging provider (one call per attempt)
        historical: Tag index as read before the pass
        language: Preferred tag language
        sort: Sort merged tags alphabetically
        taxonomy: Classification rules
        max_concurrency: Ceiling on in-flight provider calls
        max_retries: Further attempts after a failed first one
        on_document: Called from the worker as soon as a document's merge is
            final; its slot is written exactly once

    Returns:
        GenerationRun with the last result and the merge for each document
    """
    historical = historical or {}
    run = GenerationRun()

    def process(document: Document) -> tuple[GenerationResult, MergeResult]:
        logger.info("Processing %s", document.id)
        history = list(historical.get(document.id, []))
        result = generate_with_retry(
            provider,
            document,
            language=language,
            historical_tags=history,
            max_retries=max_retries,
        )
        merge = merge_tags(
            document.own_tags, result.tags, history, sort=sort, taxonomy=taxonomy,
        )
        if on_document is not None:
            on_document(document, merge)
        return result, merge

    scheduler = BoundedScheduler(max_concurrency)
    for document, (result, merge) in scheduler.run(documents, process):
        run.results[document.id] = result
        run.merges[document.id] = merge
    return run
