"""
Tag Sync

Generates tags for markdown blog posts with an OpenAI-compatible chat-completion
endpoint, merges them with each post's own tags and the tags already recorded
in the tag index, and writes the result back into post front matter.

Quick Start:
    from tagsync import load_config, run_generate, run_apply

    config = load_config()
    run_generate(config)  # update tags.json
    run_apply(config)     # write tags.json into front matter

CLI Usage:
    tagsync generate --dry-run
    tagsync generate --full
    tagsync apply

Environment Variables:
    TAG_SYNC_API_KEY     - API key for the chat-completion endpoint
    TAG_SYNC_BASE_URL    - Endpoint base URL (default: OpenAI)
    TAG_SYNC_MODEL       - Model name
    TAG_SYNC_POST_ROOT   - Directory of markdown posts
    TAG_SYNC_TAGS_JSON   - Tag index file

Variables may also be set in a .env file at the workspace root.
"""

from .config import TagSyncConfig, load_config
from .engine import generate_tags
from .errors import ConfigurationError, TagSyncError
from .frontmatter import sync_front_matter
from .state import TagIndexStore
from .sync import run_apply, run_generate
from .taxonomy import merge_tags
from .types import Document, GenerationResult, MergeResult, SyncStatistics

__version__ = "0.1.0"
__all__ = [
    "TagSyncConfig",
    "load_config",
    "run_generate",
    "run_apply",
    "generate_tags",
    "merge_tags",
    "sync_front_matter",
    "TagIndexStore",
    "Document",
    "GenerationResult",
    "MergeResult",
    "SyncStatistics",
    "TagSyncError",
    "ConfigurationError",
]
