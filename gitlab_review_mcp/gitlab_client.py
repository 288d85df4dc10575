from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from .config import Settings
from .errors import (
    GitLabApiError,
    GitLabAuthError,
    GitLabConnectionError,
    GitLabNotFoundError,
)

logger = logging.getLogger("gitlab_review_mcp.gitlab_client")


def build_http_client(settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """
    Shared AsyncClient for all GitLab calls of one server lifespan.

    The token is passed through as a bearer token; redirects are not followed
    so a misconfigured URL fails loudly instead of leaking the header.
    """
    return httpx.AsyncClient(
        base_url=settings.api_url,
        headers={
            "Authorization": f"Bearer {settings.gitlab_token}",
            "Accept": "application/json",
        },
        limits=httpx.Limits(max_connections=20, max_keepalive_connections=5),
        timeout=httpx.Timeout(settings.timeout_seconds, connect=5.0),
        follow_redirects=False,
        transport=transport,
    )


def _encode_project(project_id: str | int) -> str:
    # "group/sub/project" paths must be sent as a single encoded segment.
    return quote(str(project_id), safe="")


def _error_details(response: httpx.Response) -> Optional[str]:
    try:
        data = response.json()
    except ValueError:
        text = response.text.strip()
        return text[:500] or None
    if isinstance(data, dict):
        detail = data.get("message") or data.get("error_description") or data.get("error")
        if detail is not None:
            return detail if isinstance(detail, str) else str(detail)
    return None


class GitLabClient:
    def __init__(self, http_client: httpx.AsyncClient, settings: Settings) -> None:
        self.http_client = http_client
        self.settings = settings

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Any:
        clean_params = {k: v for k, v in (params or {}).items() if v is not None}
        try:
            response = await self.http_client.request(
                method=method.upper(),
                url=path,
                params=clean_params or None,
                json=payload,
            )
        except httpx.TimeoutException as exc:
            raise GitLabConnectionError(
                f"GitLab request timed out: {method.upper()} {path}", details=str(exc) or None
            ) from exc
        except httpx.HTTPError as exc:
            raise GitLabConnectionError(
                f"GitLab request failed: {method.upper()} {path}", details=str(exc) or None
            ) from exc

        status = response.status_code
        if status >= 400:
            details = _error_details(response)
            logger.debug("GitLab %s %s returned %s: %s", method.upper(), path, status, details)
            if status in (401, 403):
                raise GitLabAuthError(f"GitLab rejected the token ({status})", status_code=status, details=details)
            if status == 404:
                raise GitLabNotFoundError(f"GitLab resource not found: {path}", status_code=status, details=details)
            raise GitLabApiError(f"GitLab API error {status}", status_code=status, details=details)

        if status == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise GitLabApiError(
                f"GitLab returned a non-JSON response for {path}", status_code=status, details=str(exc)
            ) from exc

    # --- projects ---

    async def list_projects(self, search: Optional[str] = None, per_page: Optional[int] = None) -> List[Dict[str, Any]]:
        return await self.request(
            "GET",
            "/projects",
            params={
                "membership": "true",
                "simple": "true",
                "search": search,
                "per_page": per_page or self.settings.per_page,
            },
        )

    async def get_project(self, project_id: str | int) -> Dict[str, Any]:
        return await self.request("GET", f"/projects/{_encode_project(project_id)}")

    # --- merge requests ---

    async def list_merge_requests(
        self,
        project_id: str | int,
        state: str = "opened",
        per_page: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        return await self.request(
            "GET",
            f"/projects/{_encode_project(project_id)}/merge_requests",
            params={"state": state, "per_page": per_page or self.settings.per_page},
        )

    async def get_merge_request(self, project_id: str | int, merge_request_iid: str | int) -> Dict[str, Any]:
        return await self.request(
            "GET", f"/projects/{_encode_project(project_id)}/merge_requests/{merge_request_iid}"
        )

    async def list_merge_request_discussions(
        self, project_id: str | int, merge_request_iid: str | int
    ) -> List[Dict[str, Any]]:
        # One page of up to 100 threads; the API caps per_page at 100.
        return await self.request(
            "GET",
            f"/projects/{_encode_project(project_id)}/merge_requests/{merge_request_iid}/discussions",
            params={"per_page": 100},
        )

    async def create_merge_request_discussion(
        self,
        project_id: str | int,
        merge_request_iid: str | int,
        body: str,
        position: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"body": body}
        if position is not None:
            payload["position"] = position
        return await self.request(
            "POST",
            f"/projects/{_encode_project(project_id)}/merge_requests/{merge_request_iid}/discussions",
            payload=payload,
        )

    async def get_merge_request_diffs(
        self, project_id: str | int, merge_request_iid: str | int
    ) -> List[Dict[str, Any]]:
        return await self.request(
            "GET",
            f"/projects/{_encode_project(project_id)}/merge_requests/{merge_request_iid}/diffs",
            params={"per_page": 100},
        )

    # --- issues ---

    async def list_issues(
        self,
        project_id: str | int,
        state: str = "opened",
        per_page: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        return await self.request(
            "GET",
            f"/projects/{_encode_project(project_id)}/issues",
            params={"state": state, "per_page": per_page or self.settings.per_page},
        )

    async def get_issue(self, project_id: str | int, issue_iid: str | int) -> Dict[str, Any]:
        return await self.request("GET", f"/projects/{_encode_project(project_id)}/issues/{issue_iid}")

    async def create_issue_note(self, project_id: str | int, issue_iid: str | int, body: str) -> Dict[str, Any]:
        return await self.request(
            "POST",
            f"/projects/{_encode_project(project_id)}/issues/{issue_iid}/notes",
            payload={"body": body},
        )
