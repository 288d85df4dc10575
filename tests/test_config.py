from __future__ import annotations

from pathlib import Path

import pytest

from gitlab_review_mcp.config import Settings, load_config, load_config_file, load_settings
from gitlab_review_mcp.errors import ConfigurationError


def test_missing_token_is_reported(clean_env):
    with pytest.raises(ConfigurationError) as excinfo:
        load_settings({})
    assert any("PR_MCP_GITLAB_TOKEN" in p for p in excinfo.value.problems)


def test_defaults_with_token_only(clean_env):
    clean_env.setenv("PR_MCP_GITLAB_TOKEN", "glpat-abc")
    settings = load_settings({})
    assert settings.gitlab_token == "glpat-abc"
    assert settings.gitlab_url == "https://gitlab.com"
    assert settings.api_url == "https://gitlab.com/api/v4"
    assert settings.default_project_id is None
    assert settings.transport == "stdio"
    assert settings.tool_profile == "full"


def test_yaml_values_and_env_overrides(clean_env):
    config = {
        "server": {"name": "review-bot", "port": 9100, "log_level": "debug"},
        "gitlab": {"url": "https://git.internal/", "default_project_id": 42, "per_page": 50},
    }
    clean_env.setenv("PR_MCP_GITLAB_TOKEN", "glpat-abc")
    clean_env.setenv("PR_MCP_GITLAB_PROJECT_ID", "team/service")
    clean_env.setenv("MCP_SERVER_PORT", "9200")

    settings = load_settings(config)

    assert settings.server_name == "review-bot"
    assert settings.port == 9200
    assert settings.log_level == "DEBUG"
    assert settings.api_url == "https://git.internal/api/v4"
    assert settings.default_project_id == "team/service"
    assert settings.per_page == 50


def test_numeric_default_project_is_stringified(clean_env):
    clean_env.setenv("PR_MCP_GITLAB_TOKEN", "glpat-abc")
    settings = load_settings({"gitlab": {"default_project_id": 42}})
    assert settings.default_project_id == "42"


def test_all_problems_are_collected(clean_env):
    clean_env.setenv("MCP_TRANSPORT", "websocket")
    clean_env.setenv("MCP_TOOL_PROFILE", "admin")
    clean_env.setenv("MCP_SERVER_PORT", "http")
    with pytest.raises(ConfigurationError) as excinfo:
        load_settings({"gitlab": {"url": "gitlab.com", "per_page": 500}})
    problems = excinfo.value.problems
    assert len(problems) == 6
    assert "Invalid configuration" in str(excinfo.value)


def test_production_http_requires_server_token(clean_env):
    clean_env.setenv("PR_MCP_GITLAB_TOKEN", "glpat-abc")
    clean_env.setenv("MCP_TRANSPORT", "streamable-http")
    clean_env.setenv("ENVIRONMENT", "Production")
    with pytest.raises(ConfigurationError) as excinfo:
        load_settings({})
    assert "MCP_SERVER_TOKEN" in str(excinfo.value)

    clean_env.setenv("MCP_SERVER_TOKEN", "s3cret")
    assert load_settings({}).server_token == "s3cret"


def test_non_mapping_section_is_reported(clean_env):
    clean_env.setenv("PR_MCP_GITLAB_TOKEN", "glpat-abc")
    with pytest.raises(ConfigurationError) as excinfo:
        load_settings({"gitlab": ["https://gitlab.com"]})
    assert "gitlab" in str(excinfo.value)


def test_load_config_reads_yaml(tmp_path: Path):
    path = tmp_path / "server.yaml"
    path.write_text("server:\n  name: demo\ngitlab:\n  per_page: 10\n", encoding="utf-8")
    assert load_config(path) == {"server": {"name": "demo"}, "gitlab": {"per_page": 10}}


def test_load_config_empty_file(tmp_path: Path):
    path = tmp_path / "server.yaml"
    path.write_text("", encoding="utf-8")
    assert load_config(path) == {}


def test_load_config_rejects_non_mapping_root(tmp_path: Path):
    path = tmp_path / "server.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(path)


def test_explicit_config_path_must_exist(clean_env, tmp_path: Path):
    clean_env.setenv("MCP_SERVER_CONFIG", str(tmp_path / "missing.yaml"))
    with pytest.raises(FileNotFoundError):
        load_config_file()


def test_settings_are_immutable():
    settings = Settings(gitlab_token="t")
    with pytest.raises(AttributeError):
        settings.gitlab_token = "other"
