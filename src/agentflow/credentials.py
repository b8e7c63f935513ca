"""Locally stored credentials for the CLI (``~/.agentflow/tokens.json``)."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ValidationError

from agentflow.errors import ConfigError

logger = logging.getLogger(__name__)

CREDENTIALS_DIR = Path.home() / ".agentflow"
TOKENS_FILE = CREDENTIALS_DIR / "tokens.json"


class StoredTokens(BaseModel):
    github_token: str
    claude_token: str | None = None
    expires_at: datetime | None = None

    @property
    def expired(self) -> bool:
        if self.expires_at is None:
            return False
        expires = self.expires_at
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return expires < datetime.now(timezone.utc)


def load_tokens(path: Path | None = None) -> StoredTokens | None:
    """Stored tokens, or None when nothing has been saved."""
    path = path or TOKENS_FILE
    if not path.exists():
        return None
    try:
        return StoredTokens.model_validate_json(path.read_text())
    except ValidationError as e:
        raise ConfigError(f"Corrupt credentials file {path}: {e}") from e


def save_tokens(tokens: StoredTokens, path: Path | None = None) -> Path:
    path = path or TOKENS_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    data = json.dumps(tokens.model_dump(mode="json", exclude_none=True), indent=2)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(data)
    # O_CREAT's mode only applies to new files
    os.chmod(path, 0o600)
    logger.debug("Saved credentials to %s", path)
    return path


def delete_tokens(path: Path | None = None) -> bool:
    """Remove stored tokens; returns False when there were none."""
    path = path or TOKENS_FILE
    if not path.exists():
        return False
    path.unlink()
    return True


def stored_github_token(path: Path | None = None) -> str | None:
    """The saved GitHub token if present and unexpired."""
    tokens = load_tokens(path)
    if tokens is None or tokens.expired:
        return None
    return tokens.github_token


def mask(token: str, visible: int = 8) -> str:
    return token[:visible] + "..." if len(token) > visible else "***"
