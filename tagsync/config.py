"""
Configuration management for tag synchronization.

Values come from (highest precedence first) explicit overrides, environment
variables (``TAG_SYNC_*``, optionally seeded from a ``.env`` file), the
``[tagsync]`` table of ``tagsync.toml`` at the workspace root, and defaults.
"""

import json
import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError
from .types import TaxonomyRule, TaxonomyRules


CONFIG_FILENAME = "tagsync.toml"
CONFIG_SECTION = "tagsync"

DEFAULT_POST_ROOT = "source/_posts"
DEFAULT_TAGS_JSON = "tags.json"
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_LANGUAGE = "zh"
DEFAULT_TIMEOUT_SECONDS = 30
DEFAULT_MAX_CONCURRENCY = 3
DEFAULT_MAX_RETRIES = 2

# Markers that identify a workspace root when walking up from the cwd
_ROOT_MARKERS = (Path("source") / "_posts", Path(CONFIG_FILENAME), Path("pnpm-workspace.yaml"))
_MAX_ROOT_DEPTH = 10

_TRUE_VALUES = {"1", "true", "yes", "y", "on"}
_FALSE_VALUES = {"0", "false", "no", "n", "off"}


@dataclass
class TagSyncConfig:
    """Resolved configuration for one run."""
    workspace_root: Path
    post_root: Path
    tags_json_path: Path
    api_key: str = ""
    model: str = DEFAULT_MODEL
    base_url: str = DEFAULT_BASE_URL
    proxy_url: Optional[str] = None
    language: str = DEFAULT_LANGUAGE
    dry_run: bool = False
    include_drafts: bool = False
    filter: str = ""
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    max_retries: int = DEFAULT_MAX_RETRIES
    sort_tags: bool = True
    debug: bool = False
    taxonomy_rules: Optional[TaxonomyRules] = None
    extra_headers: dict[str, str] = field(default_factory=dict)

    @property
    def filter_applied(self) -> bool:
        """True when an identifier filter narrows the corpus."""
        return bool(self.filter and self.filter.strip())

    def display_path(self, path: Path) -> str:
        """Path relative to the workspace root for log messages."""
        try:
            return path.relative_to(self.workspace_root).as_posix() or str(path)
        except ValueError:
            return str(path)


def parse_boolean(value: Any, default: bool = False) -> bool:
    """Parse a boolean-ish value, falling back to ``default`` when unrecognized."""
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    return default


def parse_integer(value: Any, default: int) -> int:
    """Parse an integer, falling back to ``default`` on failure."""
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def parse_headers(raw: Any) -> dict[str, str]:
    """Parse extra headers from a JSON object string (or mapping); {} on error."""
    if not raw:
        return {}
    if isinstance(raw, Mapping):
        parsed = raw
    else:
        try:
            parsed = json.loads(raw)
        except (TypeError, ValueError):
            return {}
    if not isinstance(parsed, Mapping):
        return {}
    return {str(k): str(v) for k, v in parsed.items() if v is not None}


def find_workspace_root(start: Path) -> Path:
    """Walk up from ``start`` looking for a workspace marker."""
    current = start
    for _ in range(_MAX_ROOT_DEPTH):
        if any((current / marker).exists() for marker in _ROOT_MARKERS):
            return current
        if current.parent == current:
            break
        current = current.parent
    return start


def resolve_path(base: Path, target: Any) -> Path:
    """Resolve ``target`` against ``base`` unless it is already absolute."""
    if not target:
        return base
    path = Path(str(target)).expanduser()
    if path.is_absolute():
        return path
    return (base / path).resolve()


def load_environment(workspace_root: Path, cwd: Path) -> None:
    """Load the first ``.env`` found at the workspace root or cwd.

    Variables already present in the environment are left untouched.
    """
    for candidate in dict.fromkeys((workspace_root / ".env", cwd / ".env")):
        if candidate.is_file():
            load_dotenv(dotenv_path=candidate, override=False)
            return


def read_config_file(workspace_root: Path) -> dict[str, Any]:
    """
    Read the ``[tagsync]`` table from ``tagsync.toml``.

    Returns an empty dict when the file does not exist.

    Raises:
        ConfigurationError: If the file is not valid TOML
    """
    config_path = workspace_root / CONFIG_FILENAME
    if not config_path.exists():
        return {}
    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid {CONFIG_FILENAME} at {config_path}: {e}") from e
    section = data.get(CONFIG_SECTION, {})
    return section if isinstance(section, dict) else {}


def load_taxonomy_rules(path: Any, workspace_root: Path) -> Optional[TaxonomyRules]:
    """
    Load taxonomy rules from a JSON file.

    The file maps category name -> ``{"includes": [...], "pattern": "..."}``;
    key order is kept as evaluation order.

    Raises:
        ConfigurationError: If the path is missing or the content is malformed
    """
    if not path:
        return None
    resolved = resolve_path(workspace_root, path)
    if not resolved.exists():
        raise ConfigurationError(f"Taxonomy config path not found: {resolved}")
    try:
        data = json.loads(resolved.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Failed to parse taxonomy rules from {resolved}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Taxonomy rules in {resolved} must be a JSON object")

    rules: TaxonomyRules = {}
    for category, rule in data.items():
        if not isinstance(rule, dict):
            raise ConfigurationError(
                f"Taxonomy rule for {category!r} in {resolved} must be an object"
            )
        rules[str(category)] = TaxonomyRule.from_dict(rule)
    return rules


def load_config(
    overrides: Optional[Mapping[str, Any]] = None,
    *,
    cwd: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> TagSyncConfig:
    """
    Resolve configuration for a run.

    Args:
        overrides: Already-parsed values (e.g. from CLI flags); None entries are ignored
        cwd: Directory to start workspace discovery from (default: current directory)
        environ: Environment mapping (default: ``os.environ`` after loading ``.env``)

    Raises:
        ConfigurationError: If the post root is missing or taxonomy rules are invalid
    """
    runtime_cwd = (cwd or Path.cwd()).resolve()
    workspace_root = find_workspace_root(runtime_cwd)

    if environ is None:
        load_environment(workspace_root, runtime_cwd)
        environ = os.environ

    file_values = read_config_file(workspace_root)
    explicit = {k: v for k, v in (overrides or {}).items() if v is not None}

    def pick(name: str, *env_names: str, default: Any = None) -> Any:
        if name in explicit:
            return explicit[name]
        for env_name in env_names:
            value = environ.get(env_name)
            if value is not None and value != "":
                return value
        if name in file_values:
            return file_values[name]
        return default

    post_root = resolve_path(workspace_root, pick("post_root", "TAG_SYNC_POST_ROOT", default=DEFAULT_POST_ROOT))
    tags_json_path = resolve_path(workspace_root, pick("tags_json", "TAG_SYNC_TAGS_JSON", default=DEFAULT_TAGS_JSON))

    proxy = pick("proxy_url", "TAG_SYNC_PROXY", "HTTPS_PROXY", "HTTP_PROXY", default="")
    proxy_url = str(proxy).strip() or None

    timeout_seconds = parse_integer(pick("timeout_seconds", "TAG_SYNC_TIMEOUT"), DEFAULT_TIMEOUT_SECONDS)
    max_concurrency = max(1, parse_integer(
        pick("max_concurrency", "TAG_SYNC_MAX_CONCURRENCY"), DEFAULT_MAX_CONCURRENCY))
    max_retries = max(0, parse_integer(pick("max_retries", "TAG_SYNC_MAX_RETRIES"), DEFAULT_MAX_RETRIES))

    taxonomy_rules = load_taxonomy_rules(pick("taxonomy_path", "TAG_SYNC_TAXONOMY_JSON"), workspace_root)

    if not post_root.is_dir():
        raise ConfigurationError(f"Post root directory not found: {post_root}")

    return TagSyncConfig(
        workspace_root=workspace_root,
        post_root=post_root,
        tags_json_path=tags_json_path,
        api_key=str(pick("api_key", "TAG_SYNC_API_KEY", default="")),
        model=str(pick("model", "TAG_SYNC_MODEL", default=DEFAULT_MODEL)),
        base_url=str(pick("base_url", "TAG_SYNC_BASE_URL", default=DEFAULT_BASE_URL)).rstrip("/"),
        proxy_url=proxy_url,
        language=str(pick("language", "TAG_SYNC_LANGUAGE", default=DEFAULT_LANGUAGE)),
        dry_run=parse_boolean(pick("dry_run", "TAG_SYNC_DRY_RUN"), False),
        include_drafts=parse_boolean(pick("include_drafts", "TAG_SYNC_INCLUDE_DRAFTS"), False),
        filter=str(pick("filter", "TAG_SYNC_FILTER", default="")),
        timeout_seconds=timeout_seconds,
        max_concurrency=max_concurrency,
        max_retries=max_retries,
        sort_tags=parse_boolean(pick("sort_tags", "TAG_SYNC_SORT_TAGS"), True),
        debug=parse_boolean(pick("debug", "TAG_SYNC_DEBUG"), False),
        taxonomy_rules=taxonomy_rules,
        extra_headers=parse_headers(pick("extra_headers", "TAG_SYNC_EXTRA_HEADERS")),
    )
