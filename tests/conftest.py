"""
Shared pytest fixtures for tagsync tests.

Provides a stub tagging provider and a throwaway blog workspace so no test
talks to a real endpoint.
"""

import logging
import os
import threading
from pathlib import Path
from typing import Optional

import pytest

from tagsync.config import TagSyncConfig
from tagsync.errors import TransportFailure
from tagsync.types import Document, GenerationResult


class StubTaggingProvider:
    """
    Deterministic tagging provider for testing.

    ``responses`` maps document id -> tags, or -> a list of outcomes consumed
    one per call (a list of tags, or an Exception to report as a failure).
    Documents with no entry get ``default``.
    """

    def __init__(self, responses: Optional[dict] = None, default: Optional[list[str]] = None):
        self.responses = dict(responses or {})
        self.default = default or []
        self.calls: list[tuple[str, str, list[str]]] = []
        self._lock = threading.Lock()

    def _next(self, document_id: str):
        outcome = self.responses.get(document_id, self.default)
        if isinstance(outcome, list) and outcome and not isinstance(outcome[0], str):
            return outcome.pop(0) if len(outcome) > 1 else outcome[0]
        return outcome

    def tag(self, document, *, language, historical_tags=()):
        with self._lock:
            self.calls.append((document.id, language, list(historical_tags)))
            outcome = self._next(document.id)
        if isinstance(outcome, Exception):
            return GenerationResult(document_id=document.id, error=outcome, model="stub")
        return GenerationResult(
            document_id=document.id, tags=list(outcome), raw=str(outcome), model="stub",
        )

    def called_ids(self) -> list[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def stub_provider():
    """Factory for StubTaggingProvider."""
    return StubTaggingProvider


@pytest.fixture
def transport_error():
    return TransportFailure("HTTP 503: unavailable", status_code=503)


@pytest.fixture
def make_document():
    """Build an in-memory Document."""
    def _make(
        id: str = "source/_posts/a.md",
        title: str = "A post",
        own_tags=(),
        content: str = "Body text.\n",
        metadata_raw: str = "",
        metadata: Optional[dict] = None,
        path: Optional[Path] = None,
    ) -> Document:
        return Document(
            id=id,
            title=title,
            own_tags=tuple(own_tags),
            content=content,
            metadata_raw=metadata_raw,
            metadata=metadata or {},
            path=path,
        )
    return _make


def write_post(root: Path, relpath: str, header: Optional[str], body: str = "Body text.\n") -> Path:
    """Write a markdown file; ``header`` is the YAML between the --- lines."""
    path = root / relpath
    path.parent.mkdir(parents=True, exist_ok=True)
    if header is None:
        text = body
    else:
        text = f"---\n{header}---\n{body}"
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def workspace(tmp_path):
    """
    A blog workspace with three posts under source/_posts.

    - hello.md: tags [Python]
    - notes/rust.md: tags as a comma string, dated
    - draft.md: draft: true
    """
    posts = tmp_path / "source" / "_posts"
    write_post(posts, "hello.md", "title: Hello\ndate: 2024-01-02 10:00:00\ntags:\n  - Python\n")
    write_post(posts, "notes/rust.md", "title: Rust notes\ndate: 2023-05-06\ntags: Rust, systems\n")
    write_post(posts, "draft.md", "title: Draft\ndraft: true\ntags: []\n")
    return tmp_path


@pytest.fixture
def make_config(workspace):
    """Build a TagSyncConfig rooted at the workspace fixture."""
    def _make(**overrides) -> TagSyncConfig:
        values = dict(
            workspace_root=workspace,
            post_root=workspace / "source" / "_posts",
            tags_json_path=workspace / "tags.json",
            api_key="test-key",
            max_concurrency=2,
        )
        values.update(overrides)
        return TagSyncConfig(**values)
    return _make


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch, tmp_path):
    """Keep the host's TAG_SYNC_* settings and proxies out of tests."""
    for name in list(os.environ):
        if name.startswith("TAG_SYNC_") or name in ("HTTPS_PROXY", "HTTP_PROXY"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("TAG_SYNC_ERROR_LOG", str(tmp_path / "errors.log"))
    # The CLI detaches the tagsync logger from the root; caplog listens on the root
    monkeypatch.setattr(logging.getLogger("tagsync"), "propagate", True)


@pytest.fixture
def no_sleep(monkeypatch):
    """Record backoff delays instead of sleeping."""
    delays: list[float] = []
    monkeypatch.setattr("tagsync.engine.time.sleep", delays.append)
    return delays


@pytest.fixture
def post_writer():
    """The write_post helper, for tests that build their own tree."""
    return write_post
