"""Local transport: everything runs on this machine.

- ``claude.*``  -> the ``claude`` CLI
- ``git.*``     -> the ``git`` CLI in the working directory
- ``issues.*``, ``epics.*`` -> the ``.beads`` store found above the working directory
- ``pr.*``      -> GitHub REST with a personal token
- ``todo.*``    -> TODO.md and checklist rendering of store queries
- ``dag.*``     -> IssueGraph over the store's full issue list
- ``agents.*``  -> agent definition documents + matcher
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any

from agentflow.agent_definitions import find_agent_definitions, load_agent_documents
from agentflow.beads import BeadsStore, find_beads_dir
from agentflow.config import GitHubConfig, LocalConfig
from agentflow.credentials import stored_github_token
from agentflow.dag import IssueGraph
from agentflow.errors import ConfigError, NotFoundError
from agentflow.github_client import GitHubClient
from agentflow.matcher import match_agent
from agentflow.models import (
    AgentConfig,
    AgentMatch,
    DoResult,
    EpicProgress,
    GitStatus,
    Issue,
    IssueFilter,
    IssueStatus,
    IssueType,
    Repo,
    ResearchResult,
    ReviewResult,
    Worktree,
)
from agentflow.process import check_output
from agentflow.transports.base import HandlerTable, issue_id, opts_dict
from agentflow.transports.pulls import PullRequestOps

logger = logging.getLogger(__name__)

TODO_FILE = "TODO.md"

RESEARCH_PREFIXES = {
    "exhaustive": "Thoroughly research",
    "thorough": "Research in depth",
    "quick": "Quickly research",
}


def parse_porcelain_status(output: str) -> GitStatus:
    """Split ``git status --porcelain`` into modified, staged and untracked."""
    status = GitStatus()
    for line in output.splitlines():
        if not line.strip():
            continue
        code, path = line[:2], line[3:]
        if code.startswith("?"):
            status.untracked.append(path)
        elif code[0] != " ":
            status.staged.append(path)
        else:
            status.modified.append(path)
    return status


def parse_worktree_list(output: str) -> list[Worktree]:
    """Parse ``git worktree list --porcelain``; detached worktrees are skipped."""
    worktrees: list[Worktree] = []
    path: str | None = None
    branch: str | None = None
    for line in output.splitlines() + [""]:
        if line.startswith("worktree "):
            path, branch = line[len("worktree "):], None
        elif line.startswith("branch "):
            branch = line[len("branch "):].removeprefix("refs/heads/")
        elif not line.strip():
            if path and branch:
                worktrees.append(Worktree(path=path, branch=branch))
            path, branch = None, None
    return worktrees


def checklist(issues: list[Issue], tag: str | None = None) -> str:
    lines = []
    for issue in issues:
        marker = tag if tag is not None else f"P{issue.priority}"
        lines.append(f"- [ ] **{issue.id}** [{marker}]: {issue.title}")
    return "\n".join(lines)


class LocalTransport:
    """Transport for running workflows against a local checkout."""

    def __init__(
        self,
        repo: Repo,
        *,
        cwd: Path | None = None,
        config: LocalConfig | None = None,
        github_config: GitHubConfig | None = None,
        store: BeadsStore | None = None,
        github: GitHubClient | None = None,
        agents: list[AgentConfig] | None = None,
    ):
        self.repo = repo
        self.cwd = cwd or Path.cwd()
        self.config = config or LocalConfig()
        self.github_config = github_config or GitHubConfig()
        self._store = store
        self._github = github
        self._agents = agents
        self._dag_cache: tuple[float, list[Issue]] | None = None

        self.pulls = PullRequestOps(
            repo,
            self._client,
            poll_interval=self.config.approval_poll_interval,
            default_timeout=self.config.approval_timeout,
        )
        self._table = HandlerTable(
            {
                "claude.do": self.claude_do,
                "claude.research": self.claude_research,
                "claude.review": self.claude_review,
                "claude.ask": self.claude_ask,
                "git.commit": self.git_commit,
                "git.push": self.git_push,
                "git.pull": self.git_pull,
                "git.branch": self.git_branch,
                "git.checkout": self.git_checkout,
                "git.status": self.git_status,
                "git.diff": self.git_diff,
                "git.worktree.create": self.git_worktree_create,
                "git.worktree.remove": self.git_worktree_remove,
                "git.worktree.list": self.git_worktree_list,
                "issues.list": self.issues_list,
                "issues.ready": self.issues_ready,
                "issues.blocked": self.issues_blocked,
                "issues.create": self.issues_create,
                "issues.update": self.issues_update,
                "issues.close": self.issues_close,
                "issues.show": self.issues_show,
                "epics.list": self.epics_list,
                "epics.progress": self.epics_progress,
                "epics.create": self.epics_create,
                "todo.render": self.todo_render,
                "todo.ready": self.todo_ready,
                "todo.blocked": self.todo_blocked,
                "todo.inProgress": self.todo_in_progress,
                "dag.ready": self.dag_ready,
                "dag.criticalPath": self.dag_critical_path,
                "dag.blockedBy": self.dag_blocked_by,
                "dag.unblocks": self.dag_unblocks,
                "agents.list": self.agents_list,
                "agents.match": self.agents_match,
                **self.pulls.handlers(),
            }
        )

    async def call(self, method: str, args: list[Any]) -> Any:
        return await self._table.dispatch(method, args)

    async def close(self) -> None:
        if self._github is not None:
            await self._github.close()

    # ── claude ───────────────────────────────────────────────────────────

    async def _claude(self, prompt: str, context: str | None = None) -> str:
        args = [self.config.claude_binary, "--print", prompt]
        if context:
            args += ["--context", context]
        output = await check_output(*args, cwd=self.cwd, timeout=None)
        return output.strip()

    async def claude_do(self, opts: Any) -> DoResult:
        opts = opts_dict(opts)
        summary = await self._claude(opts["task"], opts.get("context"))
        return DoResult(summary=summary)

    async def claude_research(self, opts: Any) -> ResearchResult:
        opts = opts_dict(opts)
        prefix = RESEARCH_PREFIXES.get(opts.get("depth") or "thorough", RESEARCH_PREFIXES["quick"])
        findings = await self._claude(f"{prefix}: {opts['topic']}", opts.get("context"))
        return ResearchResult(findings=findings, confidence="medium")

    async def claude_review(self, opts: Any) -> ReviewResult:
        opts = opts_dict(opts)
        pr = opts.get("pr")
        if isinstance(pr, dict):
            target = pr.get("url") or f"#{pr.get('number')}"
        else:
            target = str(pr)
        focus = ", ".join(opts.get("focus") or []) or "general review"
        output = await self._claude(f"Review this pull request: {target}\n\nFocus: {focus}")
        return ReviewResult(approved="request changes" not in output.lower(), summary=output)

    async def claude_ask(self, opts: Any) -> str:
        opts = opts_dict(opts)
        return await self._claude(opts["question"], opts.get("context"))

    # ── git ──────────────────────────────────────────────────────────────

    async def _git(self, *args: str) -> str:
        output = await check_output(self.config.git_binary, *args, cwd=self.cwd)
        return output.strip()

    async def git_commit(self, message: str) -> str:
        await self._git("add", "-A")
        await self._git("commit", "-m", message)
        return await self._git("rev-parse", "HEAD")

    async def git_push(self, branch: str | None = None) -> None:
        if branch:
            await self._git("push", "-u", "origin", branch)
        else:
            await self._git("push")

    async def git_pull(self) -> None:
        await self._git("pull")

    async def git_branch(self, name: str) -> None:
        await self._git("checkout", "-b", name)

    async def git_checkout(self, ref: str) -> None:
        await self._git("checkout", ref)

    async def git_status(self) -> GitStatus:
        output = await check_output(
            self.config.git_binary, "status", "--porcelain", cwd=self.cwd
        )
        return parse_porcelain_status(output)

    async def git_diff(self, ref: str | None = None) -> str:
        if ref:
            return await self._git("diff", ref)
        return await self._git("diff")

    async def git_worktree_create(self, name: str) -> str:
        path = f"../{name}"
        await self._git("worktree", "add", path, "-b", name)
        return path

    async def git_worktree_remove(self, name: str) -> None:
        await self._git("worktree", "remove", f"../{name}")

    async def git_worktree_list(self) -> list[Worktree]:
        return parse_worktree_list(await self._git("worktree", "list", "--porcelain"))

    # ── issues / epics ───────────────────────────────────────────────────

    @property
    def store(self) -> BeadsStore:
        if self._store is None:
            beads_dir = find_beads_dir(self.cwd)
            if beads_dir is None:
                raise NotFoundError(
                    f"No .beads directory found starting from {self.cwd}. Run 'bd init' to initialize."
                )
            self._store = BeadsStore(beads_dir, bd_binary=self.config.bd_binary)
        return self._store

    async def issues_list(self, filter: Any = None) -> list[Issue]:
        criteria = IssueFilter.model_validate(opts_dict(filter)) if filter else None
        return self.store.list(criteria)

    async def issues_ready(self) -> list[Issue]:
        return self.store.ready()

    async def issues_blocked(self) -> list[Issue]:
        return self.store.blocked()

    async def issues_create(self, opts: Any) -> Issue:
        opts = opts_dict(opts)
        return await self.store.create(
            opts["title"],
            description=opts.get("description"),
            type=opts.get("type") or IssueType.TASK.value,
            priority=opts.get("priority", 2),
        )

    async def issues_update(self, issue: Any, fields: Any = None) -> Issue:
        return await self.store.update(issue_id(issue), opts_dict(fields))

    async def issues_close(self, issue: Any, reason: str | None = None) -> None:
        await self.store.close(issue_id(issue), reason)

    async def issues_show(self, issue: Any) -> Issue:
        return self.store.get(issue_id(issue))

    async def epics_list(self) -> list[Issue]:
        return self.store.epics()

    async def epics_progress(self, epic: Any) -> EpicProgress:
        return self.store.epic_progress(issue_id(epic))

    async def epics_create(self, opts: Any) -> Issue:
        opts = opts_dict(opts)
        return await self.store.create(
            opts["title"], description=opts.get("description"), type=IssueType.EPIC.value, priority=2
        )

    # ── pr ───────────────────────────────────────────────────────────────

    async def _client(self) -> GitHubClient:
        if self._github is None:
            token = self.github_config.token() or stored_github_token()
            if not token:
                raise ConfigError("GITHUB_TOKEN or GH_TOKEN environment variable required")
            self._github = GitHubClient(token=token)
        if not self._github.started:
            await self._github.start()
        return self._github

    # ── todo ─────────────────────────────────────────────────────────────

    async def todo_render(self) -> str:
        path = self.cwd / TODO_FILE
        return path.read_text() if path.exists() else ""

    async def todo_ready(self, limit: int | None = None) -> str:
        issues = self.store.ready()
        if limit:
            issues = issues[:limit]
        return checklist(issues)

    async def todo_blocked(self) -> str:
        return checklist(self.store.blocked(), "BLOCKED")

    async def todo_in_progress(self) -> str:
        issues = self.store.list(IssueFilter(status=IssueStatus.IN_PROGRESS))
        return checklist(issues, "IN PROGRESS")

    # ── dag ──────────────────────────────────────────────────────────────

    def _graph(self) -> IssueGraph:
        ttl = self.config.dag_cache_ttl
        now = time.monotonic()
        if ttl > 0 and self._dag_cache is not None and now - self._dag_cache[0] < ttl:
            logger.debug("dag: reusing issue list fetched %.1fs ago", now - self._dag_cache[0])
            return IssueGraph(self._dag_cache[1])
        issues = self.store.list()
        self._dag_cache = (now, issues)
        return IssueGraph(issues)

    async def dag_ready(self) -> list[Issue]:
        return self._graph().ready()

    async def dag_critical_path(self) -> list[Issue]:
        return self._graph().critical_path()

    async def dag_blocked_by(self, issue: Any) -> list[Issue]:
        return self._graph().blocked_by(issue_id(issue))

    async def dag_unblocks(self, issue: Any) -> list[Issue]:
        return self._graph().unblocks(issue_id(issue))

    # ── agents ───────────────────────────────────────────────────────────

    def _load_agents(self) -> list[AgentConfig]:
        if self._agents is not None:
            return self._agents
        if self.config.agents_path:
            path: Path | None = self.cwd / self.config.agents_path
        else:
            path = find_agent_definitions(self.cwd)
        return load_agent_documents(path) if path is not None else []

    async def agents_list(self) -> list[AgentConfig]:
        return self._load_agents()

    async def agents_match(self, issue: Any) -> AgentMatch | None:
        if not isinstance(issue, Issue):
            issue = Issue.model_validate(issue)
        return match_agent(issue, self._load_agents())
