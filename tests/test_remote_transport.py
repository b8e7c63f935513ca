"""Tests for the remote transport (task service, issue RPC, todo API, GitHub App)."""

import json
import time

import httpx
import pytest
import respx

from agentflow.config import GitHubConfig, RemoteConfig
from agentflow.errors import ConfigError, NotFoundError, RemoteError
from agentflow.github_client import GitHubClient
from agentflow.models import AgentConfig, Issue
from agentflow.transports.remote import RemoteTransport

SANDBOX = "https://sandbox.test"
API = "https://api.test"


@pytest.fixture
def config():
    return RemoteConfig(api_base_url=f"{API}/", sandbox_url=SANDBOX, installation_id="67890")


@pytest.fixture
async def remote(repo, config):
    transport = RemoteTransport(repo, config=config)
    yield transport
    await transport.close()


def request_json(route, index: int = 0):
    return json.loads(route.calls[index].request.content)


class TestClaude:
    @respx.mock
    async def test_do_sends_task_and_maps_pushed_branch(self, remote):
        route = respx.post(f"{SANDBOX}/execute").mock(
            return_value=httpx.Response(
                200,
                json={
                    "summary": "Implemented",
                    "diff": "+x",
                    "filesChanged": ["a.py"],
                    "pushedBranch": "feat/a",
                    "commitSha": "abc",
                },
            )
        )
        result = await remote.call(
            "claude.do", [{"task": "Build it", "push": True, "targetBranch": "feat/a"}]
        )
        assert result.pushed_to_branch == "feat/a"
        assert result.files_changed == ["a.py"]
        assert request_json(route) == {
            "repo": "acme/widgets",
            "installationId": "67890",
            "task": "Build it",
            "context": None,
            "push": True,
            "targetBranch": "feat/a",
        }

    @respx.mock
    async def test_research_and_ask(self, remote):
        route = respx.post(f"{SANDBOX}/execute").mock(
            return_value=httpx.Response(200, json={"summary": "Use OAuth"})
        )
        research = await remote.call("claude.research", [{"topic": "auth"}])
        answer = await remote.call("claude.ask", [{"question": "Which?"}])
        assert research.findings == "Use OAuth"
        assert answer == "Use OAuth"
        assert request_json(route, 0)["task"] == "Research: auth"
        assert request_json(route, 1)["task"] == "Which?"

    @respx.mock
    async def test_review_verdict(self, remote):
        route = respx.post(f"{SANDBOX}/execute").mock(
            side_effect=[
                httpx.Response(200, json={"summary": "All good"}),
                httpx.Response(200, json={"summary": "Changes requested: add tests"}),
            ]
        )
        pr = {"number": 3, "title": "Login", "body": "Adds login"}
        assert (await remote.call("claude.review", [{"pr": pr, "focus": ["security"]}])).approved
        assert not (await remote.call("claude.review", [{"pr": "#3"}])).approved
        assert request_json(route, 0)["task"] == (
            "Review PR #3: Login\n\nAdds login\n\nFocus: security"
        )
        assert request_json(route, 1)["task"] == "Review this pull request: #3"

    async def test_missing_sandbox(self, repo):
        transport = RemoteTransport(repo, config=RemoteConfig())
        with pytest.raises(ConfigError, match="sandbox_url"):
            await transport.call("claude.do", [{"task": "x"}])

    @respx.mock
    async def test_service_error(self, remote):
        respx.post(f"{SANDBOX}/execute").mock(return_value=httpx.Response(502))
        with pytest.raises(RemoteError) as exc_info:
            await remote.call("claude.do", [{"task": "x"}])
        assert exc_info.value.status_code == 502


class TestGit:
    @respx.mock
    async def test_operations_go_to_sandbox(self, remote):
        route = respx.post(f"{SANDBOX}/execute").mock(
            return_value=httpx.Response(200, json={"result": "abc123"})
        )
        assert await remote.call("git.commit", ["Add login"]) == "abc123"
        body = request_json(route)
        assert body["operation"] == "git.commit"
        assert body["args"] == ["Add login"]

    @respx.mock
    async def test_result_without_wrapper(self, remote):
        respx.post(f"{SANDBOX}/execute").mock(
            return_value=httpx.Response(200, json={"modified": ["a.py"]})
        )
        assert await remote.call("git.status", []) == {"modified": ["a.py"]}


class TestIssues:
    @respx.mock
    async def test_http_rpc(self, remote):
        route = respx.post(f"{API}/rpc").mock(
            return_value=httpx.Response(200, json=[{"id": "bd-1"}])
        )
        assert await remote.call("issues.list", [{"status": "open"}]) == [{"id": "bd-1"}]
        assert request_json(route) == {"method": "issues.list", "args": [{"status": "open"}]}

    async def test_injected_rpc(self, repo, config):
        calls = []

        async def rpc(method, args):
            calls.append((method, args))
            return {"total": 4, "completed": 1, "percentage": 25}

        transport = RemoteTransport(repo, config=config, rpc=rpc)
        progress = await transport.call("epics.progress", ["ep-1"])
        assert progress["percentage"] == 25
        assert calls == [("epics.progress", ["ep-1"])]

    @respx.mock
    async def test_models_serialized(self, remote):
        route = respx.post(f"{API}/rpc").mock(return_value=httpx.Response(200, json=None))
        await remote.call("issues.close", [Issue(id="bd-1"), "done"])
        assert request_json(route)["args"][0]["id"] == "bd-1"

    @respx.mock
    async def test_todo(self, remote):
        route = respx.post(f"{API}/todo/inProgress").mock(
            return_value=httpx.Response(200, json="- [ ] **bd-1**")
        )
        assert await remote.call("todo.inProgress", []) == "- [ ] **bd-1**"
        assert request_json(route) == {"args": []}


class TestComputed:
    @pytest.fixture
    def transport(self, repo, config):
        issues = [
            {"id": "a", "status": "closed"},
            {"id": "b", "dependsOn": ["a"], "labels": ["bug"]},
            {"id": "c", "dependsOn": ["b"]},
        ]

        async def rpc(method, args):
            if method == "agents.list":
                return [{"name": "Cody", "capabilities": ["code"]}]
            return issues

        return RemoteTransport(repo, config=config, rpc=rpc)

    async def test_dag(self, transport):
        assert [i.id for i in await transport.call("dag.ready", [])] == ["b"]
        assert [i.id for i in await transport.call("dag.unblocks", ["b"])] == ["c"]

    async def test_agents(self, transport):
        assert [a.name for a in await transport.call("agents.list", [])] == ["Cody"]
        match = await transport.call("agents.match", [{"id": "b", "labels": ["bug"]}])
        assert match.agent.name == "Cody"

    async def test_injected_agents(self, repo, config):
        transport = RemoteTransport(
            repo, config=config, agents=[AgentConfig(name="Wren", capabilities=["docs"])]
        )
        assert [a.name for a in await transport.call("agents.list", [])] == ["Wren"]

    async def test_unknown_method(self, transport):
        with pytest.raises(NotFoundError):
            await transport.call("git.rebase", [])


class TestPullRequests:
    @respx.mock
    async def test_uses_installation_client(self, repo, config):
        github = GitHubClient(app_id="1", private_key="fake", installation_id="67890")
        github._token = "ghs_fake_installation_token"
        github._token_expires_at = time.time() + 3600
        transport = RemoteTransport(repo, config=config, github=github)

        route = respx.post("https://api.github.com/repos/acme/widgets/issues/3/comments").mock(
            return_value=httpx.Response(201, json={"id": 1})
        )
        await transport.call("pr.comment", [3, "Looks good"])
        await transport.close()
        assert route.calls[0].request.headers["Authorization"] == "token ghs_fake_installation_token"

    async def test_missing_app_credentials(self, repo, config, monkeypatch):
        monkeypatch.delenv("GITHUB_APP_ID", raising=False)
        monkeypatch.delenv("GITHUB_PRIVATE_KEY", raising=False)
        transport = RemoteTransport(repo, config=config, github_config=GitHubConfig())
        with pytest.raises(ConfigError, match="GitHub App credentials"):
            await transport.call("pr.list", [])

    async def test_missing_installation(self, repo):
        transport = RemoteTransport(repo, config=RemoteConfig())
        with pytest.raises(ConfigError, match="installation ID"):
            await transport.call("pr.get", [1])
