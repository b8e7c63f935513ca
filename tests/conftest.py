"""Shared fixtures: a recording transport and a runtime wired to it."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pytest

from agentflow.models import Issue, Repo
from agentflow.runtime import RuntimeConfig, WorkflowRuntime, create_runtime


@dataclass
class RecordingTransport:
    """Records every call and answers from a canned ``method -> result`` table.

    A callable result is called with the args; an exception instance is raised.
    """

    results: dict[str, Any] = field(default_factory=dict)
    calls: list[tuple[str, list[Any]]] = field(default_factory=list)
    closed: bool = False

    async def call(self, method: str, args: list[Any]) -> Any:
        self.calls.append((method, list(args)))
        result = self.results.get(method)
        if isinstance(result, BaseException):
            raise result
        if callable(result):
            return result(*args)
        return result

    async def close(self) -> None:
        self.closed = True

    def methods(self) -> list[str]:
        return [method for method, _ in self.calls]


@pytest.fixture
def repo() -> Repo:
    return Repo(owner="acme", name="widgets", url="https://github.com/acme/widgets")


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def runtime(repo, transport) -> WorkflowRuntime:
    return create_runtime(RuntimeConfig(repo=repo, transport=transport))


@pytest.fixture
def issue() -> Issue:
    return Issue(id="bd-1", title="Add login page", description="Users need to sign in", priority=1)
