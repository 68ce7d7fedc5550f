"""FastMCP server bootstrap for Foundry.

Sets up the FastMCP server instance with stdio transport, wires the tracker
and the plan applier, and registers the tools:

- ``health_check`` -- server status and configuration summary
- ``parse_tasks`` -- parse a Markdown checklist into keyed tasks
- ``plan_tasks`` -- compute a plan against caller-supplied sub-issues (pure)
- ``sync_tasks`` -- plan and (unless dry run) apply against the tracker

Typical usage as an MCP server entry point::

    # Via the registered entry point (pyproject.toml):
    # [project.entry-points."mcp.servers"]
    # foundry = "foundry_mcp.mcp:create_server"

    # Or programmatically:
    from foundry_mcp.mcp.server import create_server
    server = create_server()
    server.run(transport="stdio")

The tracker is either injected into :func:`create_server` or built lazily
from ``LINEAR_*`` environment variables on the first ``sync_tasks`` call.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from fastmcp import FastMCP
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
from foundry_mcp.reconcile.applier import PlanApplier
from foundry_mcp.reconcile.identity import assign_task_keys
from foundry_mcp.reconcile.parser import parse_task_list
from foundry_mcp.reconcile.planner import plan_from_markdown
from foundry_mcp.reconcile.sync import synchronize
from foundry_mcp.tracker.base import Tracker, TrackerError
from foundry_mcp.tracker.linear import LinearTracker

logger = logging.getLogger(__name__)

# Module-level singletons.  Created on first call to create_server() or
# get_server() so that every tool shares the same tracker and applier.
_server_instance: Optional[FastMCP] = None
_config: Optional[FoundryConfig] = None
_tracker: Optional[Tracker] = None
_tracker_injected: bool = False


def create_server(
    project_root: Optional[str] = None,
    config_path: Optional[str] = None,
    tracker: Optional[Tracker] = None,
) -> FastMCP:
    """Create and configure the FastMCP server instance.

    This is the factory function registered in pyproject.toml as the
    ``mcp.servers`` entry point.

    Parameters
    ----------
    project_root:
        Explicit project root path.  When None, FoundryConfig auto-detects
        the project root by walking up from the current directory.
    config_path:
        Explicit config file path.  When None, looks for
        ``<project_root>/.foundry/config.json``.
    tracker:
        Tracker to use for ``sync_tasks``.  When None, a LinearTracker is
        built from the environment on first use.

    Returns
    -------
    FastMCP
        The configured server instance.
    """
    global _server_instance, _config, _tracker, _tracker_injected

    _config = FoundryConfig.load(project_root=project_root, config_path=config_path)
    _config.configure_logging()
    _tracker = tracker
    _tracker_injected = tracker is not None

    logger.info("Initializing Foundry MCP server v%s", __version__)
    logger.info("Project root: %s", _config.project_root)
    logger.info(
        "Tracker: %s",
        type(tracker).__name__ if tracker is not None else "Linear (lazy)",
    )

    _server_instance = FastMCP(
        name="foundry",
        instructions=(
            "Foundry keeps a parent issue's sub-issues in step with a "
            "Markdown checklist. Use parse_tasks to inspect a checklist, "
            "plan_tasks to preview changes, and sync_tasks to apply them. "
            "sync_tasks defaults to a dry run."
        ),
        version=__version__,
    )

    _register_tools(_server_instance)

    logger.info("FastMCP server created successfully. Tools registered.")

    return _server_instance


def get_server() -> FastMCP:
    """Return the existing server instance, creating it if necessary."""
    if _server_instance is None:
        return create_server()
    return _server_instance


def get_config() -> FoundryConfig:
    """Return the FoundryConfig instance used by the server.

    Raises
    ------
    RuntimeError
        If the server has not been created yet.
    """
    if _config is None:
        raise RuntimeError(
            "Server has not been initialized. Call create_server() first."
        )
    return _config


def get_tracker() -> Tracker:
    """Return the tracker, building a LinearTracker on first use.

    Raises
    ------
    ConfigurationError
        If no tracker was injected and no Linear credential is set.
    """
    global _tracker
    if _tracker is None:
        _tracker = LinearTracker(LinearConfig.from_env())
        logger.info("LinearTracker created from environment.")
    return _tracker


def reset_server() -> None:
    """Reset the server singleton (primarily for testing)."""
    global _server_instance, _config, _tracker, _tracker_injected
    _server_instance = None
    _config = None
    _tracker = None
    _tracker_injected = False
    logger.debug("Server singleton reset.")


# ---------------------------------------------------------------------------
# Tool registration
# ---------------------------------------------------------------------------


def _register_tools(server: FastMCP) -> None:
    """Register all MCP tools on the server instance."""
    renderer = MarkdownRenderer()

    @server.tool()
    def health_check() -> dict:
        """Check the health and status of the Foundry MCP server.

        Returns:
            A dictionary with:
            - server_version: The server version string
            - status: "healthy", or "degraded" when no tracker is usable
            - tracker: Name of the tracker implementation, or null
            - tracker_injected: Whether the tracker was supplied in code
            - linear_configured: Whether a Linear credential is present
            - strict: Default apply mode
            - retry: The retry policy in effect
            - project_root: The detected project root path
            - timestamp: ISO 8601 timestamp of this health check
        """
        cfg = get_config()
        linear_configured = linear_credentials_present()
        usable = _tracker is not None or linear_configured

        return {
            "server_version": __version__,
            "status": "healthy" if usable else "degraded",
            "tracker": type(_tracker).__name__ if _tracker is not None else None,
            "tracker_injected": _tracker_injected,
            "linear_configured": linear_configured,
            "strict": cfg.strict,
            "retry": {
                "max_attempts": cfg.retry_max_attempts,
                "base_delay_ms": cfg.retry_base_delay_ms,
                "multiplier": cfg.retry_multiplier,
                "jitter": cfg.retry_jitter,
            },
            "project_root": cfg.project_root,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @server.tool()
    def parse_tasks(markdown: str) -> dict:
        """Parse the checklist items out of a Markdown document.

        Args:
            markdown: Markdown text.  Lines such as "- [ ] Task" and
                "- [x] Done" are tasks; anything else is ignored.

        Returns:
            A dictionary with the tasks in document order, each with its
            text, completed flag, order and the task_key it would sync as.
        """
        tasks = parse_task_list(markdown)
        keys = assign_task_keys(task.text for task in tasks)

        logger.info("parse_tasks found %d task(s).", len(tasks))

        return {
            "error": False,
            "count": len(tasks),
            "tasks": [
                {
                    "text": task.text,
                    "completed": task.completed,
                    "order": task.order,
                    "task_key": key or None,
                }
                for task, key in zip(tasks, keys)
            ],
        }

    @server.tool()
    def plan_tasks(markdown: str, existing: Optional[list[dict]] = None) -> dict:
        """Compute the plan that would converge existing sub-issues to a checklist.

        No tracker is contacted: the existing sub-issues are passed in.

        Args:
            markdown: The Markdown checklist (the desired state).
            existing: Current sub-issues, each an object with id, title,
                open, task_key, has_foundry_label and optionally
                terminal_state ("completed" or "canceled").

        Returns:
            A dictionary with the plan, per-operation counts and a
            Markdown rendering, or an error if an existing entry is invalid.
        """
        try:
            snapshot = [ExistingSubIssue.model_validate(item) for item in existing or []]
        except ValidationError as exc:
            logger.warning("plan_tasks called with invalid existing issues: %s", exc)
            return {
                "error": True,
                "message": f"Invalid existing sub-issue: {exc}",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }

        plan = plan_from_markdown(markdown, snapshot)

        logger.info("plan_tasks computed %d operation(s).", plan.operation_count())

        return {
            "error": False,
            "plan": plan.to_json_dict(),
            "counts": plan.counts(),
            "is_empty": plan.is_empty(),
            "markdown": renderer.render_plan(plan),
        }

    @server.tool()
    def sync_tasks(
        parent_issue_id: str,
        markdown: str,
        dry_run: bool = True,
        strict: Optional[bool] = None,
    ) -> dict:
        """Synchronise a parent issue's sub-issues with a Markdown checklist.

        Args:
            parent_issue_id: Identifier of the parent issue (e.g. "ENG-42").
            markdown: The Markdown checklist (the desired state).
            dry_run: When true (the default), only compute and return the
                plan; nothing is changed.
            strict: Stop after the first permanent failure.  Defaults to the
                configured value.

        Returns:
            A dictionary with the plan, the apply report (unless dry run),
            the exit code and a Markdown rendering, or an error if the
            tracker is not configured or the sub-issues cannot be listed.
        """
        if not parent_issue_id.strip():
            return {
                "error": True,
                "message": "parent_issue_id must not be empty.",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }

        cfg = get_config()
        try:
            tracker = get_tracker()
        except ConfigurationError as exc:
            logger.warning("sync_tasks called without a configured tracker: %s", exc)
            return {
                "error": True,
                "message": str(exc),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }

        applier = PlanApplier(
            tracker,
            retry_policy=cfg.retry_policy(),
            strict=cfg.strict,
        )

        try:
            result = synchronize(
                applier,
                parent_issue_id.strip(),
                markdown,
                dry_run=dry_run,
                strict=strict,
            )
        except TrackerError as exc:
            logger.warning(
                "sync_tasks could not list sub-issues of %s: %s",
                parent_issue_id,
                exc,
            )
            return {
                "error": True,
                "transient": exc.transient,
                "message": f"Could not list sub-issues: {exc}",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }

        response = result.to_dict()
        response["error"] = False
        response["markdown"] = renderer.render_sync(result)
        return response
