"""Remote transport: workflows running away from the developer's machine.

- ``claude.*``, ``git.*`` -> task-execution service (``POST {sandbox_url}/execute``)
- ``issues.*``, ``epics.*`` -> injected RPC callable, else ``POST {api_base_url}/rpc``
- ``todo.*``   -> ``POST {api_base_url}/todo/<action>``
- ``pr.*``     -> GitHub REST with a GitHub App installation token
- ``dag.*``, ``agents.*`` -> computed here over ``issues.list`` results
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

import httpx

from agentflow.config import GitHubConfig, RemoteConfig
from agentflow.dag import IssueGraph
from agentflow.errors import ConfigError
from agentflow.github_client import GitHubClient
from agentflow.matcher import match_agent
from agentflow.models import (
    AgentConfig,
    AgentMatch,
    DoResult,
    Issue,
    Repo,
    ResearchResult,
    ReviewResult,
)
from agentflow.transports.base import HandlerTable, issue_id, jsonable, opts_dict
from agentflow.transports.pulls import PullRequestOps

logger = logging.getLogger(__name__)

RpcCallable = Callable[[str, list], Awaitable[Any]]

ISSUE_METHODS = ("list", "ready", "blocked", "create", "update", "close", "show")
EPIC_METHODS = ("list", "progress", "create")
GIT_METHODS = (
    "commit",
    "push",
    "pull",
    "branch",
    "checkout",
    "status",
    "diff",
    "worktree.create",
    "worktree.remove",
    "worktree.list",
)
TODO_METHODS = ("render", "ready", "blocked", "inProgress")

REJECTION_MARKERS = ("reject", "changes requested", "request changes")


class RemoteTransport:
    """Transport backed by HTTP services and the GitHub API."""

    def __init__(
        self,
        repo: Repo,
        *,
        config: RemoteConfig | None = None,
        github_config: GitHubConfig | None = None,
        rpc: RpcCallable | None = None,
        http: httpx.AsyncClient | None = None,
        github: GitHubClient | None = None,
        agents: list[AgentConfig] | None = None,
        approval_poll_interval: float = 60.0,
    ):
        self.repo = repo
        self.config = config or RemoteConfig()
        self.github_config = github_config or GitHubConfig()
        self._rpc = rpc
        self._http = http
        self._owns_http = http is None
        self._github = github
        self._agents = agents

        self.pulls = PullRequestOps(repo, self._client, poll_interval=approval_poll_interval)

        handlers: dict[str, Any] = {
            "claude.do": self.claude_do,
            "claude.research": self.claude_research,
            "claude.review": self.claude_review,
            "claude.ask": self.claude_ask,
            "dag.ready": self.dag_ready,
            "dag.criticalPath": self.dag_critical_path,
            "dag.blockedBy": self.dag_blocked_by,
            "dag.unblocks": self.dag_unblocks,
            "agents.list": self.agents_list,
            "agents.match": self.agents_match,
            **self.pulls.handlers(),
        }
        for action in GIT_METHODS:
            handlers[f"git.{action}"] = self._sandbox_operation(f"git.{action}")
        for action in ISSUE_METHODS:
            handlers[f"issues.{action}"] = self._rpc_method(f"issues.{action}")
        for action in EPIC_METHODS:
            handlers[f"epics.{action}"] = self._rpc_method(f"epics.{action}")
        for action in TODO_METHODS:
            handlers[f"todo.{action}"] = self._todo_method(action)
        self._table = HandlerTable(handlers)

    async def call(self, method: str, args: list[Any]) -> Any:
        return await self._table.dispatch(method, args)

    async def close(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None
        if self._github is not None:
            await self._github.close()

    # ── HTTP plumbing ────────────────────────────────────────────────────

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                headers={"User-Agent": "agentflow/0.1.0"},
                timeout=httpx.Timeout(30.0, read=None),
            )
        return self._http

    async def _post(self, url: str, payload: dict[str, Any]) -> Any:
        resp = await self.http.post(url, json=jsonable(payload))
        resp.raise_for_status()
        if not resp.content:
            return None
        return resp.json()

    async def _execute(self, payload: dict[str, Any]) -> dict[str, Any]:
        if not self.config.sandbox_url:
            raise ConfigError("Task-execution service not configured (remote.sandbox_url)")
        url = f"{self.config.sandbox_url.rstrip('/')}/execute"
        body = {
            "repo": self.repo.full_name,
            "installationId": self.config.installation_id,
            **payload,
        }
        return await self._post(url, body) or {}

    def _sandbox_operation(self, method: str) -> Callable[..., Awaitable[Any]]:
        async def handler(*args: Any) -> Any:
            result = await self._execute({"operation": method, "args": list(args)})
            return result.get("result") if "result" in result else result

        return handler

    def _rpc_method(self, method: str) -> Callable[..., Awaitable[Any]]:
        async def handler(*args: Any) -> Any:
            return await self.rpc(method, list(args))

        return handler

    def _todo_method(self, action: str) -> Callable[..., Awaitable[Any]]:
        async def handler(*args: Any) -> Any:
            return await self._post(
                f"{self.config.api_base_url}/todo/{action}", {"args": list(args)}
            )

        return handler

    async def rpc(self, method: str, args: list[Any]) -> Any:
        """Issue-store call: the injected callable when present, else HTTP."""
        if self._rpc is not None:
            return await self._rpc(method, args)
        return await self._post(f"{self.config.api_base_url}/rpc", {"method": method, "args": args})

    async def _client(self) -> GitHubClient:
        if self._github is None:
            installation_id = self.config.installation_id
            app_id = self.github_config.app_id
            private_key = self.github_config.private_key
            if not installation_id:
                raise ConfigError("GitHub installation ID not configured")
            if not app_id or not private_key:
                raise ConfigError(
                    "GitHub App credentials not configured "
                    f"({self.github_config.app_id_env}, {self.github_config.private_key_env})"
                )
            self._github = GitHubClient(
                app_id=app_id, private_key=private_key, installation_id=installation_id
            )
        if not self._github.started:
            await self._github.start()
        return self._github

    # ── claude ───────────────────────────────────────────────────────────

    async def claude_do(self, opts: Any) -> DoResult:
        opts = opts_dict(opts)
        payload = {"task": opts["task"], "context": opts.get("context"), "push": opts.get("push", False)}
        for key in ("model", "targetBranch", "commitMessage"):
            if opts.get(key):
                payload[key] = opts[key]
        result = await self._execute(payload)
        if "pushedBranch" in result and "pushedToBranch" not in result:
            result["pushedToBranch"] = result.pop("pushedBranch")
        return DoResult.model_validate(result)

    async def claude_research(self, opts: Any) -> ResearchResult:
        opts = opts_dict(opts)
        result = await self._execute(
            {"task": f"Research: {opts['topic']}", "context": opts.get("context")}
        )
        return ResearchResult(findings=result.get("summary", ""), confidence="medium")

    async def claude_review(self, opts: Any) -> ReviewResult:
        opts = opts_dict(opts)
        pr = opts.get("pr")
        if isinstance(pr, dict):
            task = f"Review PR #{pr.get('number')}: {pr.get('title', '')}\n\n{pr.get('body', '')}"
        else:
            task = f"Review this pull request: {pr}"
        if opts.get("focus"):
            task += "\n\nFocus: " + ", ".join(opts["focus"])
        result = await self._execute({"task": task})
        summary = result.get("summary", "")
        approved = not any(marker in summary.lower() for marker in REJECTION_MARKERS)
        return ReviewResult(approved=approved, summary=summary)

    async def claude_ask(self, opts: Any) -> str:
        opts = opts_dict(opts)
        result = await self._execute({"task": opts["question"], "context": opts.get("context")})
        return result.get("summary", "")

    # ── dag / agents ─────────────────────────────────────────────────────

    async def _graph(self) -> IssueGraph:
        issues = await self.rpc("issues.list", [])
        return IssueGraph([Issue.model_validate(i) for i in issues or []])

    async def dag_ready(self) -> list[Issue]:
        return (await self._graph()).ready()

    async def dag_critical_path(self) -> list[Issue]:
        return (await self._graph()).critical_path()

    async def dag_blocked_by(self, issue: Any) -> list[Issue]:
        return (await self._graph()).blocked_by(issue_id(issue))

    async def dag_unblocks(self, issue: Any) -> list[Issue]:
        return (await self._graph()).unblocks(issue_id(issue))

    async def agents_list(self) -> list[AgentConfig]:
        if self._agents is None:
            rows = await self.rpc("agents.list", [])
            self._agents = [AgentConfig.model_validate(a) for a in rows or []]
        return self._agents

    async def agents_match(self, issue: Any) -> AgentMatch | None:
        if not isinstance(issue, Issue):
            issue = Issue.model_validate(issue)
        return match_agent(issue, await self.agents_list())
