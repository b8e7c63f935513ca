"""Execution runtime handed to workflow code.

Each namespace is a small class whose methods forward to
``transport.call("<namespace>.<method>", args)``. Wire method names keep
the backend's camelCase (``pr.waitForApproval``, ``dag.criticalPath``);
Python method names are snake_case. Results come back as typed models.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, TypeVar, Union

from pydantic import BaseModel

from agentflow.models import (
    AgentConfig,
    AgentMatch,
    AskOpts,
    DoOpts,
    DoResult,
    EpicProgress,
    GitStatus,
    Issue,
    IssueFilter,
    PullRequest,
    Repo,
    ResearchOpts,
    ResearchResult,
    ReviewOpts,
    ReviewResult,
    Worktree,
)
from agentflow.transports.base import Transport, issue_id, opts_dict

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

TransportFactory = Callable[[], Any]


def _one(model: type[M], value: Any) -> M:
    if isinstance(value, model):
        return value
    return model.model_validate(value)


def _many(model: type[M], values: Any) -> list[M]:
    return [_one(model, v) for v in values or []]


def _optional(model: type[M], value: Any) -> M | None:
    return None if value is None else _one(model, value)


def render_prompt(*parts: Any) -> str:
    """Concatenate prompt fragments; structured values are rendered as indented JSON."""
    rendered = []
    for part in parts:
        if isinstance(part, BaseModel):
            rendered.append(part.model_dump_json(indent=2, exclude_none=True))
        elif isinstance(part, (dict, list, tuple)):
            rendered.append(json.dumps(part, indent=2, default=str))
        else:
            rendered.append(str(part))
    return "".join(rendered)


class TransportHandle:
    """Resolves a transport instance or factory once, on first use."""

    def __init__(self, transport: Union[Transport, TransportFactory]):
        self._source = transport
        self._transport: Transport | None = transport if hasattr(transport, "call") else None
        self._lock = asyncio.Lock()

    async def get(self) -> Transport:
        if self._transport is not None:
            return self._transport
        async with self._lock:
            if self._transport is None:
                result = self._source()
                if inspect.isawaitable(result):
                    result = await result
                self._transport = result
        return self._transport

    async def call(self, method: str, args: list[Any]) -> Any:
        transport = await self.get()
        logger.debug("call %s", method)
        return await transport.call(method, args)

    async def close(self) -> None:
        if self._transport is not None and hasattr(self._transport, "close"):
            await self._transport.close()


class _Namespace:
    _ns = ""

    def __init__(self, handle: TransportHandle):
        self._handle = handle

    async def _call(self, action: str, *args: Any) -> Any:
        return await self._handle.call(f"{self._ns}.{action}", list(args))


# ── claude ───────────────────────────────────────────────────────────────────


class ClaudeNamespace(_Namespace):
    """AI task execution.

    Two calling conventions per method: ``claude.do("text", obj, ...)``
    builds the prompt from its parts, ``claude.do_with(DoOpts(...))`` passes
    options through. Calling ``claude(...)`` itself is ``claude.do(...)``.
    """

    _ns = "claude"

    async def __call__(self, *parts: Any) -> DoResult:
        return await self.do(*parts)

    async def with_options(self, opts: DoOpts | dict) -> DoResult:
        return await self.do_with(opts)

    async def do(self, *parts: Any) -> DoResult:
        return await self.do_with({"task": render_prompt(*parts)})

    async def do_with(self, opts: DoOpts | dict) -> DoResult:
        return _one(DoResult, await self._call("do", opts_dict(opts)))

    async def research(self, *parts: Any) -> ResearchResult:
        return await self.research_with({"topic": render_prompt(*parts)})

    async def research_with(self, opts: ResearchOpts | dict) -> ResearchResult:
        return _one(ResearchResult, await self._call("research", opts_dict(opts)))

    async def review(self, *parts: Any) -> ReviewResult:
        return await self.review_with({"pr": render_prompt(*parts)})

    async def review_with(self, opts: ReviewOpts | dict) -> ReviewResult:
        return _one(ReviewResult, await self._call("review", opts_dict(opts)))

    async def ask(self, *parts: Any) -> str:
        return await self.ask_with({"question": render_prompt(*parts)})

    async def ask_with(self, opts: AskOpts | dict) -> str:
        return str(await self._call("ask", opts_dict(opts)))


# ── pr ───────────────────────────────────────────────────────────────────────


class PRNamespace(_Namespace):
    _ns = "pr"

    async def create(self, branch: str, title: str, body: str = "") -> PullRequest:
        opts = {"branch": branch, "title": title, "body": body}
        return _one(PullRequest, await self._call("create", opts))

    async def merge(self, pr: PullRequest | dict | int) -> None:
        await self._call("merge", pr)

    async def comment(self, pr: PullRequest | dict | int, message: str) -> None:
        await self._call("comment", pr, message)

    async def wait_for_approval(self, pr: PullRequest | dict | int, timeout: str | None = None) -> None:
        if timeout is None:
            await self._call("waitForApproval", pr)
        else:
            await self._call("waitForApproval", pr, {"timeout": timeout})

    async def list(self, state: str | None = None) -> list[PullRequest]:
        args = [{"state": state}] if state else []
        return _many(PullRequest, await self._call("list", *args))

    async def get(self, number: int) -> PullRequest:
        return _one(PullRequest, await self._call("get", number))

    async def push(self, branch: str, files: dict[str, str], message: str | None = None) -> str:
        """Commit ``{path: content}`` to ``branch`` in one commit; returns the sha."""
        opts: dict[str, Any] = {"branch": branch, "files": files}
        if message is not None:
            opts["message"] = message
        return str(await self._call("push", opts))

    async def branch(self, name: str, from_branch: str | None = None) -> str:
        if from_branch is None:
            return str(await self._call("branch", name))
        return str(await self._call("branch", name, from_branch))


# ── issues / epics ───────────────────────────────────────────────────────────


class IssuesNamespace(_Namespace):
    _ns = "issues"

    async def list(self, filter: IssueFilter | dict | None = None, **fields: Any) -> list[Issue]:
        criteria = {**opts_dict(filter), **fields}
        args = [criteria] if criteria else []
        return _many(Issue, await self._call("list", *args))

    async def ready(self) -> list[Issue]:
        return _many(Issue, await self._call("ready"))

    async def blocked(self) -> list[Issue]:
        return _many(Issue, await self._call("blocked"))

    async def create(
        self,
        title: str,
        description: str | None = None,
        type: str | None = None,
        priority: int | None = None,
    ) -> Issue:
        opts: dict[str, Any] = {"title": title}
        if description is not None:
            opts["description"] = description
        if type is not None:
            opts["type"] = type
        if priority is not None:
            opts["priority"] = priority
        return _one(Issue, await self._call("create", opts))

    async def update(self, issue: Issue | str, **fields: Any) -> Issue:
        return _one(Issue, await self._call("update", issue_id(issue), fields))

    async def close(self, issue: Issue | str, reason: str | None = None) -> None:
        if reason is None:
            await self._call("close", issue_id(issue))
        else:
            await self._call("close", issue_id(issue), reason)

    async def show(self, issue: Issue | str) -> Issue:
        return _one(Issue, await self._call("show", issue_id(issue)))


class EpicsNamespace(_Namespace):
    _ns = "epics"

    async def list(self) -> list[Issue]:
        return _many(Issue, await self._call("list"))

    async def progress(self, epic: Issue | str) -> EpicProgress:
        return _one(EpicProgress, await self._call("progress", issue_id(epic)))

    async def create(self, title: str, description: str | None = None) -> Issue:
        opts: dict[str, Any] = {"title": title}
        if description is not None:
            opts["description"] = description
        return _one(Issue, await self._call("create", opts))


# ── git ──────────────────────────────────────────────────────────────────────


class WorktreeNamespace(_Namespace):
    _ns = "git.worktree"

    async def create(self, name: str) -> str:
        return str(await self._call("create", name))

    async def remove(self, name: str) -> None:
        await self._call("remove", name)

    async def list(self) -> list[Worktree]:
        return _many(Worktree, await self._call("list"))


class GitNamespace(_Namespace):
    _ns = "git"

    def __init__(self, handle: TransportHandle):
        super().__init__(handle)
        self.worktree = WorktreeNamespace(handle)

    async def commit(self, message: str) -> str:
        return str(await self._call("commit", message))

    async def push(self, branch: str | None = None) -> None:
        if branch is None:
            await self._call("push")
        else:
            await self._call("push", branch)

    async def pull(self) -> None:
        await self._call("pull")

    async def branch(self, name: str) -> None:
        await self._call("branch", name)

    async def checkout(self, ref: str) -> None:
        await self._call("checkout", ref)

    async def status(self) -> GitStatus:
        return _one(GitStatus, await self._call("status"))

    async def diff(self, ref: str | None = None) -> str:
        if ref is None:
            return str(await self._call("diff"))
        return str(await self._call("diff", ref))


# ── todo / dag / agents ──────────────────────────────────────────────────────


class TodoNamespace(_Namespace):
    _ns = "todo"

    async def render(self) -> str:
        return str(await self._call("render"))

    async def ready(self, limit: int | None = None) -> str:
        if limit is None:
            return str(await self._call("ready"))
        return str(await self._call("ready", limit))

    async def blocked(self) -> str:
        return str(await self._call("blocked"))

    async def in_progress(self) -> str:
        return str(await self._call("inProgress"))


class DAGNamespace(_Namespace):
    _ns = "dag"

    async def ready(self) -> list[Issue]:
        return _many(Issue, await self._call("ready"))

    async def critical_path(self) -> list[Issue]:
        return _many(Issue, await self._call("criticalPath"))

    async def blocked_by(self, issue: Issue | str) -> list[Issue]:
        return _many(Issue, await self._call("blockedBy", issue_id(issue)))

    async def unblocks(self, issue: Issue | str) -> list[Issue]:
        return _many(Issue, await self._call("unblocks", issue_id(issue)))


class AgentsNamespace(_Namespace):
    _ns = "agents"

    async def list(self) -> list[AgentConfig]:
        return _many(AgentConfig, await self._call("list"))

    async def match(self, issue: Issue) -> AgentMatch | None:
        return _optional(AgentMatch, await self._call("match", issue))


# ── Runtime ──────────────────────────────────────────────────────────────────


@dataclass
class RuntimeConfig:
    repo: Repo
    transport: Union[Transport, TransportFactory]
    issue: Issue | None = None


class WorkflowRuntime:
    """Context plus namespaces exposed to workflow handlers."""

    def __init__(self, repo: Repo, handle: TransportHandle, issue: Issue | None = None):
        self.repo = repo
        self.issue = issue
        self._handle = handle
        self.claude = ClaudeNamespace(handle)
        self.pr = PRNamespace(handle)
        self.issues = IssuesNamespace(handle)
        self.epics = EpicsNamespace(handle)
        self.git = GitNamespace(handle)
        self.todo = TodoNamespace(handle)
        self.dag = DAGNamespace(handle)
        self.agents = AgentsNamespace(handle)

    def with_issue(self, issue: Issue | None) -> WorkflowRuntime:
        """Same transport, different triggering issue."""
        return WorkflowRuntime(self.repo, self._handle, issue)

    async def call(self, method: str, args: list[Any]) -> Any:
        return await self._handle.call(method, args)

    async def close(self) -> None:
        await self._handle.close()


def create_runtime(config: RuntimeConfig) -> WorkflowRuntime:
    return WorkflowRuntime(config.repo, TransportHandle(config.transport), config.issue)
