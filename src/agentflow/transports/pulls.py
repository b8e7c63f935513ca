"""``pr.*`` handlers over the GitHub REST API, shared by local and remote transports."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

from agentflow.errors import ApprovalTimeoutError
from agentflow.github_client import GitHubClient
from agentflow.models import PullRequest, Repo
from agentflow.transports.base import (
    DEFAULT_APPROVAL_TIMEOUT,
    MethodHandler,
    opts_dict,
    parse_timeout,
    pr_number,
)

logger = logging.getLogger(__name__)


class PullRequestOps:
    """Pull request operations for one repository.

    ``client_factory`` returns a started ``GitHubClient``; it is awaited on
    every call so token acquisition stays lazy.
    """

    def __init__(
        self,
        repo: Repo,
        client_factory: Callable[[], Awaitable[GitHubClient]],
        *,
        poll_interval: float = 60.0,
        default_timeout: str = DEFAULT_APPROVAL_TIMEOUT,
    ):
        self.repo = repo
        self._client_factory = client_factory
        self.poll_interval = poll_interval
        self.default_timeout = default_timeout

    def handlers(self) -> dict[str, MethodHandler]:
        return {
            "pr.create": self.create,
            "pr.merge": self.merge,
            "pr.comment": self.comment,
            "pr.waitForApproval": self.wait_for_approval,
            "pr.list": self.list,
            "pr.get": self.get,
            "pr.push": self.push,
            "pr.branch": self.branch,
        }

    async def create(self, opts: Any) -> PullRequest:
        opts = opts_dict(opts)
        client = await self._client_factory()
        data = await client.create_pull_request(
            self.repo.owner,
            self.repo.name,
            title=opts["title"],
            body=opts.get("body") or "",
            head=opts["branch"],
            base=self.repo.default_branch,
        )
        logger.info("Opened PR #%s on %s", data.get("number"), self.repo.full_name)
        return PullRequest.from_github(data)

    async def merge(self, pr: Any) -> None:
        client = await self._client_factory()
        await client.merge_pull_request(self.repo.owner, self.repo.name, pr_number(pr))

    async def comment(self, pr: Any, message: str) -> None:
        client = await self._client_factory()
        await client.comment_on_issue(self.repo.owner, self.repo.name, pr_number(pr), message)

    async def wait_for_approval(self, pr: Any, opts: Any = None) -> None:
        """Poll reviews until one is APPROVED; raise once the timeout passes."""
        client = await self._client_factory()
        number = pr_number(pr)
        timeout = opts_dict(opts).get("timeout") or self.default_timeout
        deadline = time.monotonic() + parse_timeout(timeout)

        while True:
            reviews = await client.get_pr_reviews(self.repo.owner, self.repo.name, number)
            if any(r.get("state") == "APPROVED" for r in reviews):
                logger.info("PR #%d approved", number)
                return
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            await asyncio.sleep(min(self.poll_interval, remaining))

        raise ApprovalTimeoutError(f"PR #{number} approval timed out after {timeout}")

    async def list(self, filter: Any = None) -> list[PullRequest]:
        client = await self._client_factory()
        state = opts_dict(filter).get("state") or "open"
        data = await client.list_pull_requests(self.repo.owner, self.repo.name, state=state)
        return [PullRequest.from_github(d) for d in data]

    async def get(self, number: Any) -> PullRequest:
        client = await self._client_factory()
        data = await client.get_pull_request(self.repo.owner, self.repo.name, pr_number(number))
        return PullRequest.from_github(data)

    async def push(self, opts: Any) -> str:
        """Commit ``files`` (path -> content) to ``branch`` atomically; returns the sha."""
        opts = opts_dict(opts)
        client = await self._client_factory()
        return await client.push_files(
            self.repo.owner,
            self.repo.name,
            opts["branch"],
            opts["files"],
            opts.get("message") or "Update files",
        )

    async def branch(self, name: str, from_branch: str | None = None) -> str:
        client = await self._client_factory()
        await client.create_branch(
            self.repo.owner, self.repo.name, name, from_branch or self.repo.default_branch
        )
        return name
