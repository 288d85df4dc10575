from __future__ import annotations

import logging
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.session import ServerSession
from mcp.types import CallToolResult, TextContent

from .comments import classify
from .config import Settings, load_config_file, load_settings
from .env_utils import env_str
from .errors import (
    GitLabAuthError,
    GitLabConnectionError,
    GitLabError,
    GitLabNotFoundError,
    InvalidArgumentError,
    MalformedInputError,
    MCPClientError,
    MCPError,
    format_error_message,
)
from .gitlab_client import GitLabClient, build_http_client
from .observability import InMemoryMetrics
from .views import project_record, project_records, view_for


CONFIG = load_config_file()
server_cfg = CONFIG.get("server", {}) or {}

NO_DIFF_MESSAGE = "No diff data available for this merge request."
WRITE_TOOLS = (
    "add_merge_request_comment",
    "add_merge_request_diff_comment",
    "add_issue_comment",
)

# Shared across sessions: the streamable-http transport enters the lifespan once per session.
METRICS = InMemoryMetrics()


def setup_logger(settings: Settings) -> logging.Logger:
    logger = logging.getLogger("gitlab_review_mcp")
    if logger.handlers:
        return logger
    level = getattr(logging, settings.log_level, logging.INFO)
    logger.setLevel(level)
    # stderr only: stdout carries the protocol when running over stdio.
    handler = logging.StreamHandler()

    class StructuredFormatter(logging.Formatter):
        """Custom formatter that handles missing structured fields gracefully."""

        def format(self, record: logging.LogRecord) -> str:
            for name in ("tool", "project", "correlation_id", "duration_ms"):
                if not hasattr(record, name):
                    setattr(record, name, "")
            return super().format(record)

    handler.setFormatter(StructuredFormatter(
        '{"ts":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s","tool":"%(tool)s",'
        '"project":"%(project)s","correlation_id":"%(correlation_id)s","duration_ms":"%(duration_ms)s",'
        '"msg":"%(message)s"}'
    ))
    logger.addHandler(handler)
    logger.propagate = False
    return logger


@dataclass
class AppContext:
    settings: Settings
    gitlab: GitLabClient
    logger: logging.Logger
    metrics: InMemoryMetrics


TypedContext = Context[ServerSession, AppContext]


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    settings = load_settings(CONFIG)
    logger = setup_logger(settings)
    http_client = build_http_client(settings)
    app_ctx = AppContext(
        settings=settings,
        gitlab=GitLabClient(http_client, settings),
        logger=logger,
        metrics=METRICS,
    )
    logger.info(
        f"Connected to GitLab at {settings.gitlab_url}",
        extra={"project": settings.default_project_id or ""},
    )
    try:
        yield app_ctx
    finally:
        await http_client.aclose()


mcp = FastMCP(
    server_cfg.get("name", "gitlab-review-mcp"),
    lifespan=lifespan,
)


def _generate_correlation_id() -> str:
    return str(uuid.uuid4())


def _require_context(ctx: TypedContext | None) -> TypedContext:
    """Ensure context is provided, raise if None."""
    if ctx is None:
        raise RuntimeError("Context is required")
    return ctx


def _resolve_project(settings: Settings, project_id: Optional[str]) -> str:
    project = (project_id or "").strip() or settings.default_project_id
    if not project:
        raise InvalidArgumentError(
            "project_id is required: no default project configured (PR_MCP_GITLAB_PROJECT_ID)"
        )
    return project


def _error_code(exc: Exception) -> str:
    if isinstance(exc, MCPClientError):
        return "INVALID_ARGUMENT"
    if isinstance(exc, MalformedInputError):
        return "MALFORMED_INPUT"
    if isinstance(exc, GitLabAuthError):
        return "GITLAB_AUTH"
    if isinstance(exc, GitLabNotFoundError):
        return "GITLAB_NOT_FOUND"
    if isinstance(exc, GitLabConnectionError):
        return "GITLAB_UNREACHABLE"
    if isinstance(exc, GitLabError):
        return "GITLAB_ERROR"
    return "INTERNAL_ERROR"


Operation = Callable[[AppContext, Optional[str]], Awaitable[Dict[str, Any]]]
ToolResult = Union[Dict[str, Any], CallToolResult]


def _error_result(exc: Exception) -> CallToolResult:
    return CallToolResult(
        content=[TextContent(type="text", text=format_error_message(exc))],
        isError=True,
    )


async def _call_gitlab_tool(
    ctx: TypedContext | None,
    tool_name: str,
    operation: Operation,
    project_id: Optional[str] = None,
    needs_project: bool = True,
) -> ToolResult:
    """
    Run one tool call against GitLab with standardized logging, metrics and errors.

    Failures are logged and counted, then returned (not raised) as an isError
    result whose text is exactly "Error: <message> - <details>".
    """
    ctx = _require_context(ctx)
    app = ctx.request_context.lifespan_context
    correlation_id = _generate_correlation_id()
    extra: Dict[str, Any] = {
        "tool": tool_name,
        "project": project_id or "",
        "correlation_id": correlation_id,
    }
    start = time.perf_counter()

    try:
        project = _resolve_project(app.settings, project_id) if needs_project else None
        extra["project"] = project or ""
        result = await operation(app, project)
    except MCPError as exc:
        duration_ms = (time.perf_counter() - start) * 1000.0
        error_code = _error_code(exc)
        app.metrics.record(tool_name, duration_ms, error_code=error_code)
        level = logging.WARNING if isinstance(exc, MCPClientError) else logging.ERROR
        app.logger.log(
            level,
            f"Tool call failed ({error_code}): {exc}",
            extra={**extra, "duration_ms": round(duration_ms, 3)},
        )
        return _error_result(exc)
    except Exception as exc:
        duration_ms = (time.perf_counter() - start) * 1000.0
        app.metrics.record(tool_name, duration_ms, error_code="INTERNAL_ERROR")
        app.logger.error(
            f"Unexpected error: {exc}",
            extra={**extra, "duration_ms": round(duration_ms, 3)},
            exc_info=True,
        )
        return _error_result(exc)

    duration_ms = (time.perf_counter() - start) * 1000.0
    app.metrics.record(tool_name, duration_ms)
    result["_meta"] = {
        "tool": tool_name,
        "duration_ms": duration_ms,
        "correlation_id": correlation_id,
    }
    app.logger.info("Tool call succeeded", extra={**extra, "duration_ms": round(duration_ms, 3)})
    return result


# --- Project tools ---


@mcp.tool(
    name="list_projects",
    description="List GitLab projects the configured token is a member of.",
    structured_output=False,
)
async def list_projects(
    search: Optional[str] = None,
    verbose: bool = False,
    ctx: TypedContext | None = None,
) -> ToolResult:
    async def operation(app: AppContext, project: Optional[str]) -> Dict[str, Any]:
        projects = await app.gitlab.list_projects(search=search)
        return {
            "count": len(projects),
            "projects": project_records(projects, "project", view_for(verbose)),
        }

    return await _call_gitlab_tool(ctx, "list_projects", operation, needs_project=False)


@mcp.tool(
    name="get_project_details",
    description="Get a single GitLab project by numeric id or 'group/project' path.",
    structured_output=False,
)
async def get_project_details(
    project_id: Optional[str] = None,
    verbose: bool = False,
    ctx: TypedContext | None = None,
) -> ToolResult:
    async def operation(app: AppContext, project: Optional[str]) -> Dict[str, Any]:
        data = await app.gitlab.get_project(project)
        return {"project": project_record(data, "project", view_for(verbose))}

    return await _call_gitlab_tool(ctx, "get_project_details", operation, project_id=project_id)


# --- Merge request tools ---


@mcp.tool(
    name="list_open_merge_requests",
    description="List open merge requests of a project.",
    structured_output=False,
)
async def list_open_merge_requests(
    project_id: Optional[str] = None,
    verbose: bool = False,
    ctx: TypedContext | None = None,
) -> ToolResult:
    async def operation(app: AppContext, project: Optional[str]) -> Dict[str, Any]:
        merge_requests = await app.gitlab.list_merge_requests(project, state="opened")
        return {
            "project_id": project,
            "count": len(merge_requests),
            "merge_requests": project_records(merge_requests, "merge_request", view_for(verbose)),
        }

    return await _call_gitlab_tool(ctx, "list_open_merge_requests", operation, project_id=project_id)


@mcp.tool(
    name="get_merge_request_details",
    description="Get details of a merge request by its internal ID (iid) within the project.",
    structured_output=False,
)
async def get_merge_request_details(
    merge_request_iid: str,
    project_id: Optional[str] = None,
    verbose: bool = False,
    ctx: TypedContext | None = None,
) -> ToolResult:
    async def operation(app: AppContext, project: Optional[str]) -> Dict[str, Any]:
        data = await app.gitlab.get_merge_request(project, merge_request_iid)
        return {"merge_request": project_record(data, "merge_request", view_for(verbose))}

    return await _call_gitlab_tool(ctx, "get_merge_request_details", operation, project_id=project_id)


@mcp.tool(
    name="get_merge_request_comments",
    description=(
        "Get unresolved review comments of a merge request, grouped into general "
        "discussion notes and line-anchored diff notes. Set verbose=true for the raw discussions."
    ),
    structured_output=False,
)
async def get_merge_request_comments(
    merge_request_iid: str,
    project_id: Optional[str] = None,
    verbose: bool = False,
    strict_positions: bool = False,
    ctx: TypedContext | None = None,
) -> ToolResult:
    """
    Parameters:
    - verbose: return every discussion unfiltered instead of the grouped summary
    - strict_positions: fail if diff notes grouped under one noteable_id point
      at different positions instead of keeping the first one
    """
    async def operation(app: AppContext, project: Optional[str]) -> Dict[str, Any]:
        discussions = await app.gitlab.list_merge_request_discussions(project, merge_request_iid)
        classified = classify(discussions, verbose=verbose, strict=strict_positions)
        if verbose:
            return {"discussions": classified}
        return dict(classified)

    return await _call_gitlab_tool(ctx, "get_merge_request_comments", operation, project_id=project_id)


@mcp.tool(
    name="add_merge_request_comment",
    description="Add a general comment (new discussion thread) to a merge request.",
    structured_output=False,
)
async def add_merge_request_comment(
    merge_request_iid: str,
    comment: str,
    project_id: Optional[str] = None,
    ctx: TypedContext | None = None,
) -> ToolResult:
    async def operation(app: AppContext, project: Optional[str]) -> Dict[str, Any]:
        if not comment.strip():
            raise InvalidArgumentError("comment must not be empty")
        discussion = await app.gitlab.create_merge_request_discussion(project, merge_request_iid, comment)
        return {"discussion": discussion}

    return await _call_gitlab_tool(ctx, "add_merge_request_comment", operation, project_id=project_id)


@mcp.tool(
    name="add_merge_request_diff_comment",
    description=(
        "Add a comment anchored to a line of the merge request diff. "
        "base_sha, start_sha and head_sha come from the merge request's diff_refs."
    ),
    structured_output=False,
)
async def add_merge_request_diff_comment(
    merge_request_iid: str,
    comment: str,
    base_sha: str,
    start_sha: str,
    head_sha: str,
    file_path: str,
    line_number: int,
    old_path: Optional[str] = None,
    project_id: Optional[str] = None,
    ctx: TypedContext | None = None,
) -> ToolResult:
    async def operation(app: AppContext, project: Optional[str]) -> Dict[str, Any]:
        if not comment.strip():
            raise InvalidArgumentError("comment must not be empty")
        if line_number < 1:
            raise InvalidArgumentError(f"line_number must be >= 1, got {line_number}")
        position = {
            "position_type": "text",
            "base_sha": base_sha,
            "start_sha": start_sha,
            "head_sha": head_sha,
            "old_path": old_path or file_path,
            "new_path": file_path,
            "new_line": line_number,
        }
        discussion = await app.gitlab.create_merge_request_discussion(
            project, merge_request_iid, comment, position=position
        )
        return {"discussion": discussion}

    return await _call_gitlab_tool(ctx, "add_merge_request_diff_comment", operation, project_id=project_id)


@mcp.tool(
    name="get_merge_request_diff",
    description="Get the file diffs of a merge request.",
    structured_output=False,
)
async def get_merge_request_diff(
    merge_request_iid: str,
    project_id: Optional[str] = None,
    ctx: TypedContext | None = None,
) -> ToolResult:
    async def operation(app: AppContext, project: Optional[str]) -> Dict[str, Any]:
        diffs = await app.gitlab.get_merge_request_diffs(project, merge_request_iid)
        if not isinstance(diffs, list) or not diffs:
            return {"diffs": [], "message": NO_DIFF_MESSAGE}
        return {"count": len(diffs), "diffs": diffs}

    return await _call_gitlab_tool(ctx, "get_merge_request_diff", operation, project_id=project_id)


# --- Issue tools ---


@mcp.tool(
    name="list_open_issues",
    description="List open issues of a project.",
    structured_output=False,
)
async def list_open_issues(
    project_id: Optional[str] = None,
    verbose: bool = False,
    ctx: TypedContext | None = None,
) -> ToolResult:
    async def operation(app: AppContext, project: Optional[str]) -> Dict[str, Any]:
        issues = await app.gitlab.list_issues(project, state="opened")
        return {
            "project_id": project,
            "count": len(issues),
            "issues": project_records(issues, "issue", view_for(verbose)),
        }

    return await _call_gitlab_tool(ctx, "list_open_issues", operation, project_id=project_id)


@mcp.tool(
    name="get_issue_details",
    description="Get details of an issue by its internal ID (iid) within the project.",
    structured_output=False,
)
async def get_issue_details(
    issue_iid: str,
    project_id: Optional[str] = None,
    verbose: bool = False,
    ctx: TypedContext | None = None,
) -> ToolResult:
    async def operation(app: AppContext, project: Optional[str]) -> Dict[str, Any]:
        data = await app.gitlab.get_issue(project, issue_iid)
        return {"issue": project_record(data, "issue", view_for(verbose))}

    return await _call_gitlab_tool(ctx, "get_issue_details", operation, project_id=project_id)


@mcp.tool(
    name="add_issue_comment",
    description="Add a comment to an issue.",
    structured_output=False,
)
async def add_issue_comment(
    issue_iid: str,
    comment: str,
    project_id: Optional[str] = None,
    ctx: TypedContext | None = None,
) -> ToolResult:
    async def operation(app: AppContext, project: Optional[str]) -> Dict[str, Any]:
        if not comment.strip():
            raise InvalidArgumentError("comment must not be empty")
        note = await app.gitlab.create_issue_note(project, issue_iid, comment)
        return {"note": note}

    return await _call_gitlab_tool(ctx, "add_issue_comment", operation, project_id=project_id)


# --- Observability tools ---


@mcp.tool(
    name="observability_metrics",
    description="Return in-memory call counters and average latency per tool.",
    structured_output=False,
)
async def observability_metrics(
    ctx: TypedContext | None = None,
) -> Dict[str, Any]:
    ctx = _require_context(ctx)
    app = ctx.request_context.lifespan_context
    return {"metrics": app.metrics.snapshot()}


@mcp.tool(
    name="observability_health",
    description="Return configuration and status information about this server.",
    structured_output=False,
)
async def observability_health(
    ctx: TypedContext | None = None,
) -> Dict[str, Any]:
    ctx = _require_context(ctx)
    app = ctx.request_context.lifespan_context
    settings = app.settings
    return {
        "time": datetime.now(timezone.utc).isoformat(),
        "server": {
            "name": settings.server_name,
            "transport": settings.transport,
            "tool_profile": settings.tool_profile,
            "log_level": settings.log_level,
        },
        "gitlab": {
            "url": settings.gitlab_url,
            "default_project_id": settings.default_project_id,
        },
        "tools": registered_tool_names(mcp),
    }


def registered_tool_names(server: FastMCP) -> List[str]:
    tool_manager = getattr(server, "_tool_manager", None)
    tools = getattr(tool_manager, "_tools", None) if tool_manager is not None else None
    if not isinstance(tools, dict):
        return []
    return sorted(tools.keys())


def apply_tool_profile(server: FastMCP, profile: str) -> List[str]:
    """Drop tools the profile does not allow; returns the removed names."""
    if profile != "readonly":
        return []
    tool_manager = getattr(server, "_tool_manager", None)
    tools = getattr(tool_manager, "_tools", None) if tool_manager is not None else None
    if not isinstance(tools, dict):
        return []
    removed = []
    for name in WRITE_TOOLS:
        if tools.pop(name, None) is not None:
            removed.append(name)
    return removed


apply_tool_profile(mcp, (env_str("MCP_TOOL_PROFILE") or "full").lower())
