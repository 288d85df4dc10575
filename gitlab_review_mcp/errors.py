from __future__ import annotations

from typing import Any, Optional


class MCPError(Exception):
    """Base exception for all MCP server errors."""

    details: Optional[str] = None


class MCPClientError(MCPError):
    """Client-side errors - tool argument issues."""
    pass


class MCPServerError(MCPError):
    """Server-side errors - configuration, upstream or data issues."""
    pass


class InvalidArgumentError(MCPClientError):
    """A tool argument is missing or cannot be used."""
    pass


class ConfigurationError(MCPServerError):
    """Startup configuration is missing or invalid."""

    def __init__(self, problems: list[str]) -> None:
        self.problems = list(problems)
        super().__init__("Invalid configuration: " + "; ".join(self.problems))


class MalformedInputError(MCPServerError):
    """A discussion or note lacks a field the comment classifier needs."""

    def __init__(self, record: str, field: str, reason: str = "missing required field") -> None:
        self.record = record
        self.field = field
        super().__init__(f"Malformed {record}: {reason} '{field}'")


class PositionConflictError(MalformedInputError):
    """Diff notes grouped under one noteable_id carry different positions."""

    def __init__(self, record: str, noteable_id: Any) -> None:
        self.noteable_id = noteable_id
        super().__init__(
            record,
            "position",
            reason=f"position differs from the first note of noteable_id={noteable_id!r} in",
        )


class GitLabError(MCPServerError):
    """GitLab API call failed."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[str] = None,
    ) -> None:
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class GitLabApiError(GitLabError):
    pass


class GitLabAuthError(GitLabError):
    """Token rejected or lacking scope (401/403)."""
    pass


class GitLabNotFoundError(GitLabError):
    pass


class GitLabConnectionError(GitLabError):
    """Network failure or timeout before GitLab answered."""
    pass


def format_error_message(exc: BaseException) -> str:
    """
    Render the uniform error text returned to MCP callers.

    Format: ``Error: <message> - <details>``; details fall back to
    "No additional details" when the error carries none.
    """
    details = getattr(exc, "details", None) or "No additional details"
    return f"Error: {exc} - {details}"
