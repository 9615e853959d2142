"""
Tagging providers.

A provider proposes tags for one document per call; see ``TaggingProvider``.
"""

from .base import (
    TaggingProvider,
    build_tagging_prompt,
    extract_json_array,
    parse_tags_from_content,
)
from .llm import ChatCompletionTagging, create_http_client

__all__ = [
    "TaggingProvider",
    "ChatCompletionTagging",
    "create_http_client",
    "build_tagging_prompt",
    "extract_json_array",
    "parse_tags_from_content",
]
