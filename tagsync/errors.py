"""
Error types and error logging for tagsync.

Logs full stack traces for debugging while showing clean messages to users.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class TagSyncError(Exception):
    """Base class for tagsync errors."""


class ConfigurationError(TagSyncError):
    """Fatal configuration problem, raised before any document is processed."""


class TransportFailure(TagSyncError):
    """A single generation attempt failed at the HTTP level (retryable)."""

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ParseFailure(TagSyncError):
    """A response carried no parsable JSON array."""


class RetriesExhausted(TagSyncError):
    """Every attempt for a document failed; the document falls back to known tags."""

    def __init__(self, document_id: str, attempts: int, last_error: Exception):
        super().__init__(
            f"Generation for {document_id} failed after {attempts} attempt"
            f"{'' if attempts == 1 else 's'}: {last_error}"
        )
        self.document_id = document_id
        self.attempts = attempts
        self.last_error = last_error


class DocumentLoadError(TagSyncError):
    """A document could not be read or its front matter could not be parsed."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


def _error_log_path() -> Path:
    """Resolve error log path, respecting TAG_SYNC_ERROR_LOG."""
    override = os.environ.get("TAG_SYNC_ERROR_LOG")
    if override:
        return Path(override)
    return Path.home() / ".tagsync" / "tagsync-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # Can't write error log; don't crash over it
    return log_path
