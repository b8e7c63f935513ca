"""Transport protocol and helpers shared by every transport."""

from __future__ import annotations

import logging
import re
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

import httpx
from pydantic import BaseModel

from agentflow.errors import NotFoundError, RemoteError
from agentflow.models import Issue, PullRequest

logger = logging.getLogger(__name__)

DEFAULT_APPROVAL_TIMEOUT = "7d"

_TIMEOUT_PATTERN = re.compile(r"^(\d+)(d|h|m|s)?$")
_UNIT_SECONDS = {"d": 86400, "h": 3600, "m": 60, "s": 1}


@runtime_checkable
class Transport(Protocol):
    """Carries ``namespace.action`` calls to whatever backend does the work."""

    async def call(self, method: str, args: list[Any]) -> Any: ...


MethodHandler = Callable[..., Awaitable[Any]]


class HandlerTable:
    """Static ``method name -> coroutine function`` dispatch for a transport."""

    def __init__(self, handlers: dict[str, MethodHandler]):
        self._handlers = handlers

    def __contains__(self, method: object) -> bool:
        return method in self._handlers

    def methods(self) -> list[str]:
        return sorted(self._handlers)

    async def dispatch(self, method: str, args: list[Any]) -> Any:
        handler = self._handlers.get(method)
        if handler is None:
            raise NotFoundError(f"Unknown method: {method}")
        logger.debug("dispatch %s", method)
        try:
            return await handler(*args)
        except httpx.HTTPStatusError as e:
            raise RemoteError(
                f"{method} failed: HTTP {e.response.status_code}",
                status_code=e.response.status_code,
                method=method,
            ) from e
        except httpx.RequestError as e:
            raise RemoteError(f"{method} failed: {e}", method=method) from e


def parse_timeout(value: str | int | float | None) -> float:
    """``"7d"``, ``"12h"``, ``"30m"``, ``"45s"`` to seconds.

    A bare number means days. Anything unparseable is seven days.
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value) * _UNIT_SECONDS["d"]
    match = _TIMEOUT_PATTERN.match((value or "").strip().lower())
    if not match:
        return 7 * _UNIT_SECONDS["d"]
    return float(int(match.group(1)) * _UNIT_SECONDS[match.group(2) or "d"])


def pr_number(pr: PullRequest | dict | int | str) -> int:
    if isinstance(pr, PullRequest):
        return pr.number
    if isinstance(pr, dict):
        return int(pr["number"])
    return int(pr)


def issue_id(issue: Issue | dict | str) -> str:
    if isinstance(issue, Issue):
        return issue.id
    if isinstance(issue, dict):
        return str(issue["id"])
    return str(issue)


def pr_approval_event(pr: PullRequest | dict | int) -> str:
    return f"pr.{pr_number(pr)}.approved"


def issue_ready_event(issue: Issue | dict | str) -> str:
    return f"issue.{issue_id(issue)}.ready"


def epic_completed_event(epic: Issue | dict | str) -> str:
    return f"epic.{issue_id(epic)}.completed"


def jsonable(value: Any) -> Any:
    """Convert models (recursively) into plain JSON-ready values."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", exclude_none=True)
    if isinstance(value, dict):
        return {k: jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(v) for v in value]
    return value


def opts_dict(value: Any) -> dict[str, Any]:
    """Options argument as a dict, whether it arrived as a model or a mapping."""
    if value is None:
        return {}
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True, exclude_none=True)
    return dict(value)
