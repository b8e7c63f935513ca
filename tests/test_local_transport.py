"""Tests for the local transport (git/claude/bd CLIs, .beads store, GitHub)."""

import json
from unittest.mock import AsyncMock

import httpx
import pytest
import respx

from agentflow.config import GitHubConfig, LocalConfig
from agentflow.errors import ApprovalTimeoutError, ConfigError, NotFoundError, RemoteError
from agentflow.github_client import GitHubClient
from agentflow.models import AgentConfig, DoResult, Issue, PullRequest
from agentflow.runtime import RuntimeConfig, create_runtime
from agentflow.transports.local import (
    LocalTransport,
    checklist,
    parse_porcelain_status,
    parse_worktree_list,
)

API = "https://api.github.com/repos/acme/widgets"


@pytest.fixture
def cli(monkeypatch):
    """Stand-in for every git/claude subprocess the transport runs."""
    mock = AsyncMock(return_value="")
    monkeypatch.setattr("agentflow.transports.local.check_output", mock)
    return mock


@pytest.fixture
def workdir(tmp_path):
    beads = tmp_path / ".beads"
    beads.mkdir()
    rows = [
        {"id": "bd-1", "title": "Schema", "status": "closed"},
        {"id": "bd-2", "title": "API", "priority": 1, "dependencies": [{"depends_on_id": "bd-1"}]},
        {"id": "bd-3", "title": "UI", "dependencies": [{"depends_on_id": "bd-2"}]},
        {"id": "bd-4", "title": "Docs", "status": "in_progress"},
    ]
    (beads / "issues.jsonl").write_text("\n".join(json.dumps(r) for r in rows) + "\n")
    return tmp_path


@pytest.fixture
def github():
    return GitHubClient(token="ghp_test")


@pytest.fixture
async def local(repo, workdir, github):
    transport = LocalTransport(
        repo,
        cwd=workdir,
        config=LocalConfig(approval_poll_interval=0.01),
        github=github,
        agents=[
            AgentConfig(name="Cody", capabilities=["code"]),
            AgentConfig(name="Wren", capabilities=["docs"]),
        ],
    )
    yield transport
    await transport.close()


# ── Parsers ──────────────────────────────────────────────────────────────────


class TestParsers:
    def test_porcelain_status(self):
        output = " M src/app.py\nM  src/staged.py\nA  new.py\n?? scratch.txt\n\n"
        status = parse_porcelain_status(output)
        assert status.modified == ["src/app.py"]
        assert status.staged == ["src/staged.py", "new.py"]
        assert status.untracked == ["scratch.txt"]

    def test_worktree_list(self):
        output = (
            "worktree /src/main\nHEAD abc\nbranch refs/heads/main\n\n"
            "worktree /src/feat\nHEAD def\nbranch refs/heads/feat/login\n\n"
            "worktree /src/detached\nHEAD 123\ndetached\n"
        )
        trees = parse_worktree_list(output)
        assert [(t.path, t.branch) for t in trees] == [
            ("/src/main", "main"),
            ("/src/feat", "feat/login"),
        ]

    def test_checklist(self):
        issues = [Issue(id="bd-1", title="One", priority=0), Issue(id="bd-2", title="Two")]
        assert checklist(issues) == "- [ ] **bd-1** [P0]: One\n- [ ] **bd-2** [P2]: Two"
        assert checklist(issues[:1], "BLOCKED") == "- [ ] **bd-1** [BLOCKED]: One"


# ── Dispatch ─────────────────────────────────────────────────────────────────


class TestDispatch:
    async def test_unknown_method(self, local):
        with pytest.raises(NotFoundError, match="Unknown method: nope.nothing"):
            await local.call("nope.nothing", [])

    async def test_through_runtime(self, repo, local, cli):
        cli.return_value = "  did it  \n"
        runtime = create_runtime(RuntimeConfig(repo=repo, transport=local))
        result = await runtime.claude.do("Fix it")
        assert result == DoResult(summary="did it")


# ── claude ───────────────────────────────────────────────────────────────────


class TestClaude:
    async def test_do_with_context(self, local, cli, workdir):
        cli.return_value = "summary"
        await local.call("claude.do", [{"task": "Fix", "context": "src/"}])
        assert cli.call_args.args == ("claude", "--print", "Fix", "--context", "src/")
        assert cli.call_args.kwargs == {"cwd": workdir, "timeout": None}

    async def test_research_prefix(self, local, cli):
        cli.return_value = "findings"
        result = await local.call("claude.research", [{"topic": "OAuth", "depth": "quick"}])
        assert result.findings == "findings"
        assert cli.call_args.args[2] == "Quickly research: OAuth"

    async def test_review_verdict(self, local, cli):
        cli.return_value = "Looks good"
        approved = await local.call("claude.review", [{"pr": {"number": 7}, "focus": ["tests"]}])
        assert approved.approved
        assert cli.call_args.args[2] == "Review this pull request: #7\n\nFocus: tests"

        cli.return_value = "I must REQUEST CHANGES here"
        rejected = await local.call("claude.review", [{"pr": "https://x/pull/7"}])
        assert not rejected.approved
        assert cli.call_args.args[2].endswith("Focus: general review")

    async def test_ask(self, local, cli):
        cli.return_value = "yes\n"
        assert await local.call("claude.ask", [{"question": "Ready?"}]) == "yes"


# ── git ──────────────────────────────────────────────────────────────────────


class TestGit:
    async def test_commit_returns_head(self, local, cli):
        cli.side_effect = ["", "", "abc123\n"]
        assert await local.call("git.commit", ["Add login"]) == "abc123"
        assert [c.args[1:] for c in cli.call_args_list] == [
            ("add", "-A"),
            ("commit", "-m", "Add login"),
            ("rev-parse", "HEAD"),
        ]

    async def test_push_branch(self, local, cli):
        await local.call("git.push", ["feat/x"])
        await local.call("git.push", [])
        assert [c.args[1:] for c in cli.call_args_list] == [
            ("push", "-u", "origin", "feat/x"),
            ("push",),
        ]

    async def test_branch_and_worktree(self, local, cli):
        await local.call("git.branch", ["feat/y"])
        path = await local.call("git.worktree.create", ["feat-y"])
        assert path == "../feat-y"
        assert cli.call_args_list[0].args[1:] == ("checkout", "-b", "feat/y")
        assert cli.call_args_list[1].args[1:] == ("worktree", "add", "../feat-y", "-b", "feat-y")

    async def test_status(self, local, cli):
        cli.return_value = "?? a.txt\n"
        status = await local.call("git.status", [])
        assert status.untracked == ["a.txt"]


# ── issues / todo / dag ──────────────────────────────────────────────────────


class TestIssues:
    async def test_reads(self, local):
        assert [i.id for i in await local.call("issues.ready", [])] == ["bd-2"]
        assert [i.id for i in await local.call("issues.blocked", [])] == ["bd-3"]
        listed = await local.call("issues.list", [{"status": "in_progress"}])
        assert [i.id for i in listed] == ["bd-4"]
        shown = await local.call("issues.show", [{"id": "bd-2"}])
        assert shown.depends_on == ["bd-1"]

    async def test_create_defaults(self, local, monkeypatch):
        bd = AsyncMock(return_value=json.dumps({"id": "bd-9", "title": "New"}))
        monkeypatch.setattr("agentflow.beads.check_output", bd)
        issue = await local.call("issues.create", [{"title": "New"}])
        assert issue.id == "bd-9"
        assert bd.call_args.args[1:] == ("create", "New", "--type", "task", "--priority", "2", "--json")

    async def test_epic_create(self, local, monkeypatch):
        bd = AsyncMock(return_value=json.dumps([{"id": "ep-1", "issue_type": "epic"}]))
        monkeypatch.setattr("agentflow.beads.check_output", bd)
        epic = await local.call("epics.create", [{"title": "Auth"}])
        assert epic.type == "epic"
        assert "--type" in bd.call_args.args and "epic" in bd.call_args.args

    async def test_missing_store(self, repo, tmp_path):
        transport = LocalTransport(repo, cwd=tmp_path)
        with pytest.raises(NotFoundError, match="No .beads directory"):
            await transport.call("issues.list", [])


class TestTodo:
    async def test_render(self, local, workdir):
        assert await local.call("todo.render", []) == ""
        (workdir / "TODO.md").write_text("# TODO\n")
        assert await local.call("todo.render", []) == "# TODO\n"

    async def test_checklists(self, local):
        assert await local.call("todo.ready", []) == "- [ ] **bd-2** [P1]: API"
        assert await local.call("todo.blocked", []) == "- [ ] **bd-3** [BLOCKED]: UI"
        assert await local.call("todo.inProgress", []) == "- [ ] **bd-4** [IN PROGRESS]: Docs"


class TestDag:
    async def test_queries(self, local):
        path = await local.call("dag.criticalPath", [])
        assert [i.id for i in path][-2:] == ["bd-2", "bd-3"]
        assert [i.id for i in await local.call("dag.blockedBy", ["bd-3"])] == ["bd-2"]
        assert [i.id for i in await local.call("dag.unblocks", ["bd-2"])] == ["bd-3"]

    async def test_refetches_without_cache(self, local, workdir):
        assert [i.id for i in await local.call("dag.ready", [])] == ["bd-2"]
        (workdir / ".beads" / "issues.jsonl").write_text(json.dumps({"id": "bd-7"}) + "\n")
        assert [i.id for i in await local.call("dag.ready", [])] == ["bd-7"]

    async def test_cache_ttl(self, repo, workdir):
        transport = LocalTransport(repo, cwd=workdir, config=LocalConfig(dag_cache_ttl=3600))
        assert [i.id for i in await transport.call("dag.ready", [])] == ["bd-2"]
        (workdir / ".beads" / "issues.jsonl").write_text(json.dumps({"id": "bd-7"}) + "\n")
        assert [i.id for i in await transport.call("dag.ready", [])] == ["bd-2"]


class TestAgents:
    async def test_list_and_match(self, local):
        names = [a.name for a in await local.call("agents.list", [])]
        assert names == ["Cody", "Wren"]
        match = await local.call("agents.match", [{"id": "bd-1", "title": "Crash", "labels": ["bug"]}])
        assert match.agent.name == "Cody"

    async def test_no_definitions(self, repo, tmp_path):
        transport = LocalTransport(repo, cwd=tmp_path)
        assert await transport.call("agents.list", []) == []


# ── pr ───────────────────────────────────────────────────────────────────────


class TestPullRequests:
    @respx.mock
    async def test_create_targets_default_branch(self, local):
        route = respx.post(f"{API}/pulls").mock(
            return_value=httpx.Response(
                201,
                json={
                    "number": 12,
                    "title": "Login",
                    "head": {"ref": "feat/login"},
                    "html_url": "https://github.com/acme/widgets/pull/12",
                    "state": "open",
                },
            )
        )
        pr = await local.call("pr.create", [{"branch": "feat/login", "title": "Login"}])
        assert pr == PullRequest(
            number=12,
            title="Login",
            branch="feat/login",
            url="https://github.com/acme/widgets/pull/12",
        )
        body = json.loads(route.calls[0].request.content)
        assert body == {"title": "Login", "body": "", "head": "feat/login", "base": "main"}
        assert route.calls[0].request.headers["Authorization"] == "token ghp_test"

    @respx.mock
    async def test_merge_squashes(self, local):
        route = respx.put(f"{API}/pulls/12/merge").mock(
            return_value=httpx.Response(200, json={"merged": True})
        )
        await local.call("pr.merge", [{"number": 12}])
        assert json.loads(route.calls[0].request.content) == {"merge_method": "squash"}

    @respx.mock
    async def test_wait_for_approval_polls(self, local):
        route = respx.get(f"{API}/pulls/12/reviews").mock(
            side_effect=[
                httpx.Response(200, json=[{"state": "COMMENTED"}]),
                httpx.Response(200, json=[{"state": "COMMENTED"}, {"state": "APPROVED"}]),
            ]
        )
        await local.call("pr.waitForApproval", [12, {"timeout": "1m"}])
        assert route.call_count == 2

    @respx.mock
    async def test_wait_for_approval_times_out(self, local):
        respx.get(f"{API}/pulls/12/reviews").mock(return_value=httpx.Response(200, json=[]))
        with pytest.raises(ApprovalTimeoutError, match="PR #12 approval timed out after 0s"):
            await local.call("pr.waitForApproval", [12, {"timeout": "0s"}])

    @respx.mock
    async def test_http_error_becomes_remote_error(self, local):
        respx.get(f"{API}/pulls/99").mock(return_value=httpx.Response(404, json={}))
        with pytest.raises(RemoteError) as exc_info:
            await local.call("pr.get", [99])
        assert exc_info.value.status_code == 404
        assert exc_info.value.method == "pr.get"

    @respx.mock
    async def test_list_defaults_to_open(self, local):
        route = respx.get(f"{API}/pulls").mock(
            return_value=httpx.Response(200, json=[{"number": 1, "merged_at": "2024-01-01"}])
        )
        prs = await local.call("pr.list", [])
        assert prs[0].state == "merged"
        assert route.calls[0].request.url.params["state"] == "open"

    async def test_missing_token(self, repo, workdir, monkeypatch, tmp_path):
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        monkeypatch.delenv("GH_TOKEN", raising=False)
        monkeypatch.setattr("agentflow.credentials.TOKENS_FILE", tmp_path / "none.json")
        transport = LocalTransport(repo, cwd=workdir, github_config=GitHubConfig())
        with pytest.raises(ConfigError, match="GITHUB_TOKEN"):
            await transport.call("pr.get", [1])
