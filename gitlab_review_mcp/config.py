from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .env_utils import env_str, is_production_env
from .errors import ConfigurationError

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "server.yaml"
DEFAULT_GITLAB_URL = "https://gitlab.com"
TRANSPORTS = ("stdio", "streamable-http")
TOOL_PROFILES = ("full", "readonly")


@dataclass(frozen=True)
class Settings:
    gitlab_token: str
    gitlab_url: str = DEFAULT_GITLAB_URL
    default_project_id: Optional[str] = None
    timeout_seconds: float = 30.0
    per_page: int = 20
    server_name: str = "gitlab-review-mcp"
    host: str = "127.0.0.1"
    port: int = 9000
    log_level: str = "INFO"
    transport: str = "stdio"
    server_token: Optional[str] = None
    tool_profile: str = "full"

    @property
    def api_url(self) -> str:
        return f"{self.gitlab_url.rstrip('/')}/api/v4"


def load_config(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"MCP server config not found at {path}")
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError("Config root must be a mapping")
    return data


def load_config_file() -> Dict[str, Any]:
    """
    Load the YAML config named by MCP_SERVER_CONFIG.

    The default path is optional; an explicitly configured path must exist.
    """
    explicit = env_str("MCP_SERVER_CONFIG")
    if explicit:
        return load_config(Path(explicit))
    if DEFAULT_CONFIG_PATH.exists():
        return load_config(DEFAULT_CONFIG_PATH)
    return {}


def _section(config: Dict[str, Any], name: str, problems: List[str]) -> Dict[str, Any]:
    value = config.get(name) or {}
    if not isinstance(value, dict):
        problems.append(f"config section '{name}' must be a mapping")
        return {}
    return value


def _as_int(raw: Any, label: str, problems: List[str], default: int) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        problems.append(f"{label} must be an integer, got {raw!r}")
        return default


def _as_float(raw: Any, label: str, problems: List[str], default: float) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError):
        problems.append(f"{label} must be a number, got {raw!r}")
        return default


def load_settings(config: Optional[Dict[str, Any]] = None) -> Settings:
    """
    Merge the YAML config with environment overrides and validate the result.

    Every problem is collected so a single ConfigurationError reports all of
    them at once. Secrets (GitLab token, server token) come from the
    environment only.
    """
    config = config or {}
    problems: List[str] = []
    server_cfg = _section(config, "server", problems)
    gitlab_cfg = _section(config, "gitlab", problems)

    token = env_str("PR_MCP_GITLAB_TOKEN")
    if not token:
        problems.append("PR_MCP_GITLAB_TOKEN environment variable is not set")

    gitlab_url = env_str("PR_MCP_GITLAB_URL") or str(gitlab_cfg.get("url") or DEFAULT_GITLAB_URL)
    if not gitlab_url.startswith(("http://", "https://")):
        problems.append(f"GitLab URL must start with http:// or https://, got {gitlab_url!r}")

    default_project = env_str("PR_MCP_GITLAB_PROJECT_ID") or gitlab_cfg.get("default_project_id")

    transport = (env_str("MCP_TRANSPORT") or str(server_cfg.get("transport", "stdio"))).lower()
    if transport not in TRANSPORTS:
        problems.append(f"transport must be one of {', '.join(TRANSPORTS)}, got {transport!r}")

    tool_profile = (env_str("MCP_TOOL_PROFILE") or "full").lower()
    if tool_profile not in TOOL_PROFILES:
        problems.append(f"MCP_TOOL_PROFILE must be one of {', '.join(TOOL_PROFILES)}, got {tool_profile!r}")

    server_token = env_str("MCP_SERVER_TOKEN")
    if transport == "streamable-http" and is_production_env() and not server_token:
        problems.append("MCP_SERVER_TOKEN is required in production for the streamable-http transport")

    port = _as_int(env_str("MCP_SERVER_PORT") or server_cfg.get("port", 9000), "port", problems, 9000)
    timeout = _as_float(gitlab_cfg.get("timeout_seconds", 30.0), "gitlab.timeout_seconds", problems, 30.0)
    per_page = _as_int(gitlab_cfg.get("per_page", 20), "gitlab.per_page", problems, 20)
    if not 1 <= per_page <= 100:
        problems.append(f"gitlab.per_page must be between 1 and 100, got {per_page}")

    if problems:
        raise ConfigurationError(problems)

    return Settings(
        gitlab_token=token or "",
        gitlab_url=gitlab_url,
        default_project_id=str(default_project) if default_project is not None else None,
        timeout_seconds=timeout,
        per_page=per_page,
        server_name=str(server_cfg.get("name", "gitlab-review-mcp")),
        host=env_str("MCP_SERVER_HOST") or str(server_cfg.get("host", "127.0.0.1")),
        port=port,
        log_level=str(server_cfg.get("log_level", "INFO")).upper(),
        transport=transport,
        server_token=server_token,
        tool_profile=tool_profile,
    )
