"""Configuration loading for agentflow.

Reads ``.agentflow/config.yaml`` (optional) and applies environment overrides.
Also home of the YAML frontmatter splitter shared by the workflow and agent
document parsers.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from agentflow.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_DIR = ".agentflow"
CONFIG_FILE = "config.yaml"

DEFAULT_API_BASE_URL = "https://todo.mdx.do/api"


# ── Config Models ────────────────────────────────────────────────────────────


class ProjectConfig(BaseModel):
    owner: str | None = None
    name: str | None = None
    default_branch: str = "main"


class DaemonConfig(BaseModel):
    workflows_dir: str | None = None
    beads_dir: str | None = None
    file_debounce: float = Field(default=0.1, ge=0, description="Seconds of quiet before reload")
    event_debounce: float = Field(default=0.5, ge=0, description="Seconds of quiet before diffing")
    poll_interval: float = Field(default=0.25, gt=0)


class LocalConfig(BaseModel):
    claude_binary: str = "claude"
    git_binary: str = "git"
    bd_binary: str = "bd"
    approval_poll_interval: float = Field(default=60.0, gt=0)
    approval_timeout: str = "7d"
    dag_cache_ttl: float = Field(
        default=0.0, ge=0, description="Seconds to reuse the issue list for dag.*; 0 = always refetch"
    )
    agents_path: str | None = None


class RemoteConfig(BaseModel):
    api_base_url: str = DEFAULT_API_BASE_URL
    sandbox_url: str | None = None
    installation_id: str | None = None

    @field_validator("api_base_url")
    @classmethod
    def _strip_slash(cls, v: str) -> str:
        return v.rstrip("/")


class GitHubConfig(BaseModel):
    token_env: list[str] = Field(default_factory=lambda: ["GITHUB_TOKEN", "GH_TOKEN"])
    app_id_env: str = "GITHUB_APP_ID"
    private_key_env: str = "GITHUB_PRIVATE_KEY"

    def token(self) -> str | None:
        for name in self.token_env:
            value = os.environ.get(name)
            if value:
                return value
        return None

    @property
    def app_id(self) -> str | None:
        return os.environ.get(self.app_id_env)

    @property
    def private_key(self) -> str | None:
        return os.environ.get(self.private_key_env)


class AgentflowConfig(BaseModel):
    """Top-level configuration (matches .agentflow/config.yaml)."""

    project: ProjectConfig = Field(default_factory=ProjectConfig)
    daemon: DaemonConfig = Field(default_factory=DaemonConfig)
    local: LocalConfig = Field(default_factory=LocalConfig)
    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    github: GitHubConfig = Field(default_factory=GitHubConfig)


def load_config(cwd: Path) -> AgentflowConfig:
    """Load configuration for the project rooted at ``cwd``.

    A missing config file yields defaults. Environment variables override
    the file.

    Raises:
        ConfigError: If the file is not valid YAML or fails validation.
    """
    config_path = cwd / CONFIG_DIR / CONFIG_FILE
    raw: dict[str, Any] = {}
    if config_path.exists():
        try:
            with open(config_path) as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"{config_path} must contain a mapping")

    try:
        config = AgentflowConfig(**raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid config {config_path}: {e}") from e

    workflows_dir = os.environ.get("AGENTFLOW_WORKFLOWS_DIR")
    if workflows_dir:
        config.daemon.workflows_dir = workflows_dir

    beads_dir = os.environ.get("AGENTFLOW_BEADS_DIR")
    if beads_dir:
        config.daemon.beads_dir = beads_dir

    api_base = os.environ.get("AGENTFLOW_API_BASE_URL")
    if api_base:
        config.remote.api_base_url = api_base.rstrip("/")

    sandbox_url = os.environ.get("AGENTFLOW_SANDBOX_URL")
    if sandbox_url:
        config.remote.sandbox_url = sandbox_url

    if config_path.exists():
        logger.info("Loaded agentflow config from %s", config_path)
    return config


# ── Frontmatter ──────────────────────────────────────────────────────────────

FRONTMATTER_PATTERN = re.compile(r"^---\r?\n([\s\S]*?)\r?\n---\r?\n?")


def split_frontmatter(content: str) -> tuple[dict[str, Any], str]:
    """Split a leading ``---`` metadata block from a markdown body.

    Returns (metadata, body). Without a block, returns ({}, content).
    YAML is tried first; if it rejects the block, a line-wise
    ``key: value`` reader takes over so loosely written documents still load.
    """
    match = FRONTMATTER_PATTERN.match(content)
    if not match:
        return {}, content

    text = match.group(1)
    body = content[match.end():]
    try:
        metadata = yaml.safe_load(text) or {}
    except yaml.YAMLError:
        logger.debug("Frontmatter is not valid YAML, falling back to key: value lines")
        metadata = _parse_simple_frontmatter(text)
    if not isinstance(metadata, dict):
        metadata = _parse_simple_frontmatter(text)
    return metadata, body


def _parse_simple_frontmatter(text: str) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or ":" not in stripped:
            continue
        key, _, value = stripped.partition(":")
        result[key.strip()] = _simple_value(value.strip())
    return result


def _simple_value(value: str) -> Any:
    if value == "true":
        return True
    if value == "false":
        return False
    if value in ("null", ""):
        return None
    if value.startswith("[") and value.endswith("]"):
        items = [item.strip().strip("'\"") for item in value[1:-1].split(",")]
        return [item for item in items if item]
    if len(value) >= 2 and value[0] in "'\"" and value[-1] == value[0]:
        return value[1:-1]
    return value
