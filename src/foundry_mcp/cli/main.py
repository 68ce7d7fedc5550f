"""Main Click CLI entry point for the foundry command.

Entry point registered in pyproject.toml::

    [project.scripts]
    foundry = "foundry_mcp.cli.main:cli"

Usage examples::

    foundry --version
    foundry status --json-output
    foundry plan spec.md --existing children.json
    foundry plan spec.md --parent ENG-42
    foundry sync spec.md --parent ENG-42 --dry-run
    foundry sync spec.md --parent ENG-42 --strict
    foundry serve

``sync`` exits with the report's code: 0 when every operation succeeded,
2 when any failed, 3 when interrupted with Ctrl-C.  Configuration and
listing errors exit with 1.
"""

from __future__ import annotations

import json
import signal
import sys
from datetime import datetime, timezone
from typing import IO, NoReturn, Optional

import click
from pydantic import ValidationError

from foundry_mcp import __version__
from foundry_mcp.config import (
    ConfigurationError,
    FoundryConfig,
    LinearConfig,
    linear_credentials_present,
)
from foundry_mcp.mcp.markdown import MarkdownRenderer
from foundry_mcp.models.tasks import ExistingSubIssue
from foundry_mcp.reconcile.applier import CancellationToken, PlanApplier
from foundry_mcp.reconcile.planner import plan_from_markdown
from foundry_mcp.reconcile.sync import synchronize
from foundry_mcp.tracker.base import Tracker, TrackerError
from foundry_mcp.tracker.linear import LinearTracker

# Exit code for configuration, input and listing errors.
EXIT_ERROR = 1


@click.group()
@click.version_option(version=__version__, prog_name="foundry-mcp")
@click.option(
    "--project-root",
    type=click.Path(exists=False, file_okay=False),
    default=None,
    envvar="FOUNDRY_PROJECT_ROOT",
    help="Project root holding .foundry/config.json. Auto-detected if not set.",
)
@click.pass_context
def cli(ctx: click.Context, project_root: Optional[str]) -> None:
    """Foundry -- keep tracker sub-issues in step with a Markdown checklist."""
    ctx.ensure_object(dict)
    ctx.obj["project_root"] = project_root


@cli.command()
@click.option(
    "--json-output",
    "output_json",
    is_flag=True,
    default=False,
    help="Output status as JSON instead of human-readable text.",
)
@click.pass_context
def status(ctx: click.Context, output_json: bool) -> None:
    """Show configuration, retry policy and tracker credentials.

    Makes no network calls.
    """
    status_data = _collect_status(ctx.obj.get("project_root"))

    if output_json:
        click.echo(json.dumps(status_data, indent=2, default=str))
    else:
        _render_status_text(status_data)


@cli.command("plan")
@click.argument("markdown_file", type=click.File("r", encoding="utf-8"))
@click.option(
    "--existing",
    "existing_file",
    type=click.File("r", encoding="utf-8"),
    default=None,
    help="JSON array of existing sub-issues to plan against.",
)
@click.option(
    "--parent",
    "parent_id",
    default=None,
    help="Parent issue id; its sub-issues are listed from the tracker.",
)
@click.option(
    "--json-output",
    "output_json",
    is_flag=True,
    default=False,
    help="Output the plan as JSON instead of Markdown.",
)
@click.pass_context
def plan_checklist(
    ctx: click.Context,
    markdown_file: IO[str],
    existing_file: Optional[IO[str]],
    parent_id: Optional[str],
    output_json: bool,
) -> None:
    """Compute the plan for MARKDOWN_FILE without changing anything.

    Existing sub-issues come from --existing (a JSON file) or --parent (read
    from the tracker).  With neither, the parent is assumed to be empty.
    """
    if existing_file is not None and parent_id:
        raise click.UsageError("Use either --existing or --parent, not both.")

    markdown = markdown_file.read()
    config = _load_config(ctx)

    if existing_file is not None:
        existing = _read_existing(existing_file)
    elif parent_id:
        applier = PlanApplier(_get_tracker(ctx), retry_policy=config.retry_policy())
        try:
            existing = applier.fetch_children(parent_id)
        except TrackerError as exc:
            _fail(f"Could not list sub-issues of {parent_id}: {exc}")
    else:
        existing = []

    plan = plan_from_markdown(markdown, existing)

    if output_json:
        click.echo(json.dumps(plan.to_json_dict(), indent=2))
    else:
        click.echo(MarkdownRenderer().render_plan(plan, parent_id=parent_id))


@cli.command("sync")
@click.argument("markdown_file", type=click.File("r", encoding="utf-8"))
@click.option("--parent", "parent_id", required=True, help="Parent issue id.")
@click.option(
    "--strict/--best-effort",
    default=None,
    help="Stop after the first permanent failure. Defaults to the config value.",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Compute and show the plan without applying it.",
)
@click.option(
    "--json-output",
    "output_json",
    is_flag=True,
    default=False,
    help="Output the result as JSON instead of Markdown.",
)
@click.pass_context
def sync_checklist(
    ctx: click.Context,
    markdown_file: IO[str],
    parent_id: str,
    strict: Optional[bool],
    dry_run: bool,
    output_json: bool,
) -> None:
    """Synchronise the sub-issues of --parent with MARKDOWN_FILE.

    Ctrl-C stops after the operation in flight; the partial report is
    printed and the command exits with code 3.
    """
    markdown = markdown_file.read()
    config = _load_config(ctx)
    applier = PlanApplier(
        _get_tracker(ctx),
        retry_policy=config.retry_policy(),
        strict=config.strict,
    )

    cancel_token = CancellationToken()
    previous_handler = _install_sigint_handler(cancel_token)
    try:
        result = synchronize(
            applier,
            parent_id,
            markdown,
            dry_run=dry_run,
            strict=strict,
            cancel_token=cancel_token,
        )
    except TrackerError as exc:
        _fail(f"Could not list sub-issues of {parent_id}: {exc}")
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    if output_json:
        click.echo(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        click.echo(MarkdownRenderer().render_sync(result))

    exit_code = result.exit_code()
    if exit_code:
        sys.exit(exit_code)


@cli.command()
@click.pass_context
def serve(ctx: click.Context) -> None:
    """Run the Foundry MCP server on stdio."""
    from foundry_mcp.mcp.server import create_server

    server = create_server(
        project_root=ctx.obj.get("project_root"),
        tracker=ctx.obj.get("tracker"),
    )
    server.run(transport="stdio")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_config(ctx: click.Context) -> FoundryConfig:
    try:
        config = FoundryConfig.load(project_root=ctx.obj.get("project_root"))
    except (ValueError, OSError) as exc:
        _fail(f"Failed to load configuration: {exc}")
    config.configure_logging()
    return config


def _get_tracker(ctx: click.Context) -> Tracker:
    """Return the tracker from the context object, or build a LinearTracker."""
    tracker = ctx.obj.get("tracker")
    if tracker is not None:
        return tracker
    try:
        tracker = LinearTracker(LinearConfig.from_env())
    except ConfigurationError as exc:
        _fail(str(exc))
    ctx.obj["tracker"] = tracker
    return tracker


def _read_existing(stream: IO[str]) -> list[ExistingSubIssue]:
    try:
        raw = json.load(stream)
    except json.JSONDecodeError as exc:
        _fail(f"--existing is not valid JSON: {exc}")
    if not isinstance(raw, list):
        _fail("--existing must hold a JSON array of sub-issues.")
    try:
        return [ExistingSubIssue.model_validate(item) for item in raw]
    except ValidationError as exc:
        _fail(f"Invalid existing sub-issue: {exc}")


def _install_sigint_handler(cancel_token: CancellationToken):
    """Make the first Ctrl-C cancel gracefully; a second one interrupts."""

    def _handler(signum, frame):
        if cancel_token.cancelled:
            raise KeyboardInterrupt
        click.secho(
            "Interrupted: finishing the current operation, skipping the rest.",
            fg="yellow",
            err=True,
        )
        cancel_token.cancel()

    return signal.signal(signal.SIGINT, _handler)


def _fail(message: str) -> NoReturn:
    click.secho("ERROR: " + message, fg="red", err=True)
    sys.exit(EXIT_ERROR)


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------


def _collect_status(project_root: Optional[str]) -> dict:
    """Collect configuration and credential status into a dictionary."""
    try:
        config = FoundryConfig.load(project_root=project_root)
    except (ValueError, OSError) as exc:
        return {
            "status": "error",
            "error": f"Failed to load configuration: {exc}",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    linear: dict = {"configured": linear_credentials_present()}
    if linear["configured"]:
        try:
            linear_config = LinearConfig.from_env()
        except ConfigurationError as exc:
            linear["error"] = str(exc)
        else:
            linear["endpoint"] = linear_config.endpoint
            linear["timeout_secs"] = linear_config.timeout_secs
            linear["user_agent"] = linear_config.user_agent

    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
        "config": {
            "project_root": config.project_root,
            "config_dir": config.config_dir,
            "log_level": config.log_level,
            "strict": config.strict,
        },
        "retry": {
            "max_attempts": config.retry_max_attempts,
            "base_delay_ms": config.retry_base_delay_ms,
            "multiplier": config.retry_multiplier,
            "jitter": config.retry_jitter,
        },
        "linear": linear,
    }


def _render_status_text(data: dict) -> None:
    if data.get("status") == "error":
        click.secho("ERROR: " + data.get("error", "Unknown error"), fg="red", err=True)
        sys.exit(EXIT_ERROR)

    click.secho("Foundry -- Status", fg="cyan", bold=True)
    click.secho("=" * 42, fg="cyan")
    click.echo(f"Version: {data.get('version', 'unknown')}")
    click.echo()

    cfg = data.get("config", {})
    click.secho("Configuration", fg="blue", bold=True)
    click.secho("-" * 20, fg="blue")
    click.echo(f"  Project root: {cfg.get('project_root') or '(not detected)'}")
    click.echo(f"  Config dir:   {cfg.get('config_dir') or '(none)'}")
    click.echo(f"  Log level:    {cfg.get('log_level', '?')}")
    click.echo(f"  Strict:       {'Yes' if cfg.get('strict') else 'No'}")
    click.echo()

    retry = data.get("retry", {})
    click.secho("Retry Policy", fg="magenta", bold=True)
    click.secho("-" * 20, fg="magenta")
    click.echo(f"  Max attempts: {retry.get('max_attempts', '?')}")
    click.echo(f"  Base delay:   {retry.get('base_delay_ms', '?')} ms")
    click.echo(f"  Multiplier:   {retry.get('multiplier', '?')}")
    click.echo(f"  Jitter:       {retry.get('jitter', '?')}")
    click.echo()

    linear = data.get("linear", {})
    click.secho("Linear", fg="green", bold=True)
    click.secho("-" * 20, fg="green")
    if linear.get("configured"):
        click.echo(f"  Endpoint:     {linear.get('endpoint', '?')}")
        click.echo(f"  Timeout:      {linear.get('timeout_secs', '?')}s")
        click.echo(f"  User agent:   {linear.get('user_agent', '?')}")
    else:
        click.secho("  No credential (set LINEAR_API_TOKEN or LINEAR_API_KEY)", fg="yellow")


if __name__ == "__main__":
    cli()
