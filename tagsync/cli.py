"""
CLI interface for tag synchronization.

Usage:
    tagsync generate --dry-run
    tagsync generate --full --filter 2024/
    tagsync apply
"""

import json
import os
from typing import Any, Optional

import typer
from typing_extensions import Annotated

from .config import TagSyncConfig, load_config
from .errors import ConfigurationError
from .logging_config import configure_quiet_mode, enable_debug_mode
from .sync import run_apply, run_generate

# Set TAG_SYNC_VERBOSE=1 to enable debug mode via environment
if os.environ.get("TAG_SYNC_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from . import __version__
        print(f"tagsync {__version__}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


app = typer.Typer(
    name="tagsync",
    help="Generate tags for markdown posts with an LLM and sync them into front matter.",
    no_args_is_help=False,
    invoke_without_command=True,
    rich_markup_mode=None,
)


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
):
    """Generate tags for markdown posts with an LLM and sync them into front matter."""
    # No subcommand: run an incremental generate pass
    if ctx.invoked_subcommand is None:
        generate()


# -----------------------------------------------------------------------------
# Common Options
# -----------------------------------------------------------------------------

DryRunOption = Annotated[
    bool,
    typer.Option("--dry-run", help="Report changes without writing any file"),
]

IncludeDraftsOption = Annotated[
    bool,
    typer.Option("--include-drafts", help="Also process documents marked draft: true"),
]

FilterOption = Annotated[
    Optional[str],
    typer.Option("--filter", help="Only documents whose path contains this text"),
]

DebugOption = Annotated[
    bool,
    typer.Option("--debug", help="Enable debug-level logging"),
]


def _load_config(
    *,
    dry_run: bool,
    include_drafts: bool,
    filter: Optional[str],
    debug: bool,
) -> TagSyncConfig:
    """Resolve configuration; unset flags fall through to env and config file."""
    if debug:
        enable_debug_mode()
    overrides: dict[str, Any] = {
        "dry_run": True if dry_run else None,
        "include_drafts": True if include_drafts else None,
        "filter": filter,
        "debug": True if debug else None,
    }
    config = load_config(overrides)
    if config.debug and not debug:
        enable_debug_mode()
    return config


def _fail(e: Exception):
    typer.echo(f"Error: {e}", err=True)
    raise typer.Exit(1)


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def generate(
    dry_run: DryRunOption = False,
    include_drafts: IncludeDraftsOption = False,
    filter: FilterOption = None,
    full: Annotated[bool, typer.Option(
        "--full", "--force-full",
        help="Regenerate tags for documents already in the tag index",
    )] = False,
    debug: DebugOption = False,
):
    """
    Generate tags with the LLM and update the tag index.

    Only documents missing from the tag index are sent unless --full is given.

    \b
    Examples:
        tagsync generate                   # New documents only
        tagsync generate --full --dry-run  # Preview a full regeneration
        tagsync generate --filter 2024/    # Only paths containing "2024/"
    """
    try:
        config = _load_config(
            dry_run=dry_run, include_drafts=include_drafts, filter=filter, debug=debug,
        )
        summary = run_generate(config, full=full)
    except ConfigurationError as e:
        _fail(e)

    stats = summary.statistics
    typer.echo(json.dumps(stats.to_dict(), indent=2))
    if summary.failed:
        typer.echo(
            f"{stats.llm_failures} generation failure(s), "
            f"{stats.load_failures} unreadable document(s).",
            err=True,
        )
        raise typer.Exit(1)


@app.command("sync", hidden=True)
def sync(
    dry_run: DryRunOption = False,
    include_drafts: IncludeDraftsOption = False,
    filter: FilterOption = None,
    full: Annotated[bool, typer.Option("--full", "--force-full")] = False,
    debug: DebugOption = False,
):
    """Generate tags (alias for 'generate')."""
    generate(dry_run=dry_run, include_drafts=include_drafts, filter=filter, full=full, debug=debug)


@app.command()
def apply(
    dry_run: DryRunOption = False,
    include_drafts: IncludeDraftsOption = False,
    filter: FilterOption = None,
    debug: DebugOption = False,
):
    """
    Write tags from the tag index into each document's front matter.

    Documents whose tags already match are left untouched.
    """
    try:
        config = _load_config(
            dry_run=dry_run, include_drafts=include_drafts, filter=filter, debug=debug,
        )
        result = run_apply(config)
    except ConfigurationError as e:
        _fail(e)

    verb = "Would update" if config.dry_run else "Updated"
    typer.echo(
        f"{verb} {len(result.updated)}, unchanged {len(result.unchanged)}, "
        f"missing {len(result.missing)}, filtered out {len(result.filtered_out)}."
    )
    if result.failed:
        typer.echo(f"Failed: {', '.join(result.failed)}", err=True)
        raise typer.Exit(1)


@app.command("frontmatter", hidden=True)
def frontmatter(
    dry_run: DryRunOption = False,
    include_drafts: IncludeDraftsOption = False,
    filter: FilterOption = None,
    debug: DebugOption = False,
):
    """Apply tags to front matter (alias for 'apply')."""
    apply(dry_run=dry_run, include_drafts=include_drafts, filter=filter, debug=debug)


@app.command("apply-frontmatter", hidden=True)
def apply_frontmatter(
    dry_run: DryRunOption = False,
    include_drafts: IncludeDraftsOption = False,
    filter: FilterOption = None,
    debug: DebugOption = False,
):
    """Apply tags to front matter (alias for 'apply')."""
    apply(dry_run=dry_run, include_drafts=include_drafts, filter=filter, debug=debug)


@app.command("tags-to-frontmatter", hidden=True)
def tags_to_frontmatter(
    dry_run: DryRunOption = False,
    include_drafts: IncludeDraftsOption = False,
    filter: FilterOption = None,
    debug: DebugOption = False,
):
    """Apply tags to front matter (alias for 'apply')."""
    apply(dry_run=dry_run, include_drafts=include_drafts, filter=filter, debug=debug)


def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="tagsync CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
