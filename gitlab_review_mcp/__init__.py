"""
GitLab review tools exposed over the Model Context Protocol.

Tools live in gitlab_review_mcp.server; the comment grouping used by
get_merge_request_comments lives in gitlab_review_mcp.comments.
"""
from __future__ import annotations

__version__ = "1.0.0"
