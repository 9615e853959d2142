"""
Run orchestration: generate the tag index, apply it to front matter.
"""

import json
import logging
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import Optional

import httpx

from .config import TagSyncConfig
from .engine import GenerationRun, generate_tags
from .frontmatter import FrontMatterSyncResult, sync_front_matter
from .loader import load_documents
from .providers.base import TaggingProvider
from .providers.llm import ChatCompletionTagging, create_http_client
from .state import FinalizeReport, TagIndexStore, prune_index
from .types import Document, MergeResult, SyncStatistics

logger = logging.getLogger(__name__)

# Number of identifiers shown in missing / filtered-out samples
SAMPLE_SIZE = 10


@dataclass
class GenerateSummary:
    """Everything a generate run produced."""
    statistics: SyncStatistics
    report: Optional[FinalizeReport] = None
    pruned: list[str] = field(default_factory=list)
    run: GenerationRun = field(default_factory=GenerationRun)

    @property
    def failed(self) -> bool:
        return self.statistics.failed


def create_tagging_provider(config: TagSyncConfig, client: httpx.Client) -> ChatCompletionTagging:
    """
    Build the chat-completion provider for a run.

    Raises:
        ConfigurationError: If no API key is configured
    """
    return ChatCompletionTagging(
        client,
        api_key=config.api_key,
        model=config.model,
        base_url=config.base_url,
        timeout=config.timeout_seconds,
        extra_headers=config.extra_headers,
    )


def run_generate(
    config: TagSyncConfig,
    *,
    full: bool = False,
    provider: Optional[TaggingProvider] = None,
    client: Optional[httpx.Client] = None,
) -> GenerateSummary:
    """
    Generate tags for the corpus and persist the tag index.

    By default only documents without an index entry are sent for
    generation; ``full`` regenerates every document. Each finished document
    is committed to the index file right away (unless dry run), then the
    final index is written once the pass is complete.

    Args:
        config: Resolved configuration
        full: Regenerate documents that already have index entries
        provider: Tagging provider (default: chat completion from config)
        client: HTTP client for the default provider (default: one per run)

    Raises:
        ConfigurationError: If generation is needed and no API key is set
    """
    logger.info("Scanning documents from %s", config.display_path(config.post_root))
    loaded = load_documents(
        config.post_root,
        workspace_root=config.workspace_root,
        filter=config.filter,
        include_drafts=config.include_drafts,
    )
    documents = loaded.documents
    if not documents:
        logger.warning("No documents found matching current filters.")
        return GenerateSummary(statistics=SyncStatistics(load_failures=len(loaded.failed)))

    store = TagIndexStore(
        config.tags_json_path, display_name=config.display_path(config.tags_json_path),
    )
    historical = store.read()
    index = dict(historical)

    if full:
        pending = list(documents)
    else:
        pending = [doc for doc in documents if doc.id not in historical]
        skipped = len(documents) - len(pending)
        if skipped:
            logger.info(
                "Skipping %d existing document%s present in %s (use --full to regenerate).",
                skipped, "" if skipped == 1 else "s", store.display_name,
            )

    def on_document(document: Document, merge: MergeResult) -> None:
        store.record(index, document.id, merge.tags, persist=not config.dry_run)

    run = GenerationRun()
    if pending:
        with ExitStack() as stack:
            if provider is None:
                if client is None:
                    client = stack.enter_context(
                        create_http_client(config.proxy_url, config.timeout_seconds)
                    )
                provider = create_tagging_provider(config, client)
            logger.info(
                "Loaded %d documents; generating tags for %d via %s...",
                len(documents), len(pending), config.model,
            )
            run = generate_tags(
                pending,
                provider,
                historical=historical,
                language=config.language,
                sort=config.sort_tags,
                taxonomy=config.taxonomy_rules,
                max_concurrency=config.max_concurrency,
                max_retries=config.max_retries,
                on_document=on_document,
            )
    else:
        logger.info("No new documents require tag generation.")

    pruned = prune_index(index, loaded.present_ids, filter_applied=config.filter_applied)
    if pruned:
        logger.info("Removing %d entries for documents no longer present.", len(pruned))

    report = store.finalize(index, dry_run=config.dry_run, previous=historical)

    stats = run.statistics(len(documents), load_failures=len(loaded.failed))
    logger.info("Sync summary: %s", json.dumps(stats.to_dict()))
    return GenerateSummary(statistics=stats, report=report, pruned=pruned, run=run)


def run_apply(config: TagSyncConfig) -> FrontMatterSyncResult:
    """Write tags from the tag index into document front matter."""
    store = TagIndexStore(
        config.tags_json_path, display_name=config.display_path(config.tags_json_path),
    )
    logger.info(
        "Applying tags from %s to front-matter under %s%s.",
        store.display_name,
        config.display_path(config.post_root),
        " (dry run)" if config.dry_run else "",
    )
    index = store.read()
    if not index:
        logger.warning("No entries found in %s. Nothing to apply.", store.display_name)
        return FrontMatterSyncResult()

    loaded = load_documents(
        config.post_root,
        workspace_root=config.workspace_root,
        filter=config.filter,
        include_drafts=config.include_drafts,
    )
    result = sync_front_matter(
        index,
        loaded.documents,
        workspace_root=config.workspace_root,
        dry_run=config.dry_run,
        sort=config.sort_tags,
    )

    unreadable = set(loaded.failed)
    if unreadable:
        result.filtered_out = [doc_id for doc_id in result.filtered_out if doc_id not in unreadable]
        result.failed.extend(sorted(unreadable - set(result.failed)))

    logger.info(
        "Front-matter sync complete. Updated %d, unchanged %d, missing %d.",
        len(result.updated), len(result.unchanged), len(result.missing),
    )
    if result.missing:
        logger.warning(
            "Missing %d documents referenced in %s: %s",
            len(result.missing), store.display_name, result.missing[:SAMPLE_SIZE],
        )
    if result.filtered_out:
        count = len(result.filtered_out)
        logger.debug(
            "Filtered out %d entr%s due to active filters or drafts: %s",
            count, "y" if count == 1 else "ies", result.filtered_out[:SAMPLE_SIZE],
        )
    return result
