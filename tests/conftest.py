from __future__ import annotations

import json
import logging
from types import SimpleNamespace
from typing import Any, Callable, Dict, List

import httpx
import pytest

from gitlab_review_mcp.config import Settings
from gitlab_review_mcp.gitlab_client import GitLabClient, build_http_client
from gitlab_review_mcp.observability import InMemoryMetrics
from gitlab_review_mcp.server import AppContext

ENV_VARS = (
    "PR_MCP_GITLAB_TOKEN",
    "PR_MCP_GITLAB_URL",
    "PR_MCP_GITLAB_PROJECT_ID",
    "MCP_SERVER_CONFIG",
    "MCP_SERVER_HOST",
    "MCP_SERVER_PORT",
    "MCP_SERVER_TOKEN",
    "MCP_TRANSPORT",
    "MCP_TOOL_PROFILE",
    "ENVIRONMENT",
    "APP_ENV",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def settings() -> Settings:
    return Settings(
        gitlab_token="glpat-test-token",
        gitlab_url="https://gitlab.example.com",
        default_project_id="group/project",
    )


class FakeGitLab:
    """Routes requests to canned responses and remembers what was sent."""

    def __init__(self) -> None:
        self.routes: Dict[tuple, Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, path: str, status: int = 200, body: Any = None) -> None:
        def responder(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, json=body)

        self.routes[(method.upper(), path)] = responder

    def add_handler(self, method: str, path: str, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.routes[(method.upper(), path)] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.raw_path.decode("ascii").split("?")[0])
        responder = self.routes.get(key)
        if responder is None:
            return httpx.Response(404, json={"message": "404 Not Found"})
        return responder(request)

    def last_json(self) -> Any:
        return json.loads(self.requests[-1].content)


@pytest.fixture
def fake_gitlab() -> FakeGitLab:
    return FakeGitLab()


@pytest.fixture
def gitlab_client(settings: Settings, fake_gitlab: FakeGitLab) -> GitLabClient:
    http_client = build_http_client(settings, transport=httpx.MockTransport(fake_gitlab))
    return GitLabClient(http_client, settings)


@pytest.fixture
def app_context(settings: Settings, gitlab_client: GitLabClient) -> AppContext:
    return AppContext(
        settings=settings,
        gitlab=gitlab_client,
        logger=logging.getLogger("gitlab_review_mcp.tests"),
        metrics=InMemoryMetrics(),
    )


@pytest.fixture
def ctx(app_context: AppContext) -> SimpleNamespace:
    """Stand-in for the FastMCP Context handed to tools."""
    return SimpleNamespace(request_context=SimpleNamespace(lifespan_context=app_context))


def make_note(
    note_id: int,
    noteable_id: Any = "N1",
    note_type: str = "DiscussionNote",
    resolved: Any = False,
    body: str | None = None,
    author: str = "Alice",
    position: Dict[str, Any] | None = None,
) -> Dict[str, Any]:
    note: Dict[str, Any] = {
        "id": note_id,
        "noteable_id": noteable_id,
        "body": body if body is not None else f"note {note_id}",
        "author": {"id": 7, "name": author, "username": author.lower()},
        "type": note_type,
        "system": False,
        "created_at": "2024-05-01T10:00:00Z",
    }
    if resolved is not ...:
        note["resolved"] = resolved
    if position is not None:
        note["position"] = position
    return note


def make_position(new_line: int, path: str = "app/models.py") -> Dict[str, Any]:
    return {
        "base_sha": "a" * 40,
        "start_sha": "b" * 40,
        "head_sha": "c" * 40,
        "old_path": path,
        "new_path": path,
        "position_type": "text",
        "new_line": new_line,
    }
