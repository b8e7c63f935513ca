"""GitHub API client for agentflow.

Two ways to authenticate: a plain token (local use, ``GITHUB_TOKEN``) or a
GitHub App installation (JWT exchanged for an installation token, remote
use). Rate limits are tracked from response headers. Async via httpx.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from datetime import datetime, timezone

import httpx
import jwt

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"


class GitHubClient:
    """Async GitHub API client."""

    def __init__(
        self,
        *,
        token: str | None = None,
        app_id: str | None = None,
        private_key: str | None = None,
        installation_id: str | None = None,
        base_url: str = GITHUB_API,
    ):
        self.app_id = app_id
        self.private_key = private_key
        self.installation_id = installation_id
        self.base_url = base_url

        # A static token never expires; an installation token lives ~1 hour
        self._static_token = token
        self._token: str | None = None
        self._token_expires_at: float = 0

        self._rate_limit_remaining: int = 5000
        self._rate_limit_reset: float = 0
        self._rate_limit_reserve: int = 50
        self._rate_limit_lock: asyncio.Lock | None = None

        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        """Initialize HTTP client."""
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Accept": "application/vnd.github.v3+json",
                "User-Agent": "agentflow/0.1.0",
            },
            timeout=30.0,
        )
        self._rate_limit_lock = asyncio.Lock()
        logger.info("GitHub client started")

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def started(self) -> bool:
        return self._client is not None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("GitHub client not started")
        return self._client

    # ── Authentication ───────────────────────────────────────────────────

    async def _ensure_token(self) -> str:
        """Return a usable token, exchanging a fresh App JWT when needed.

        Retries the exchange on failure with exponential backoff; GitHub may
        throttle rapid JWT exchanges.
        """
        if self._static_token:
            return self._static_token
        if self._token and time.time() < self._token_expires_at - 60:
            return self._token

        if not self.app_id or not self.private_key or not self.installation_id:
            raise RuntimeError(
                "GitHub credentials not configured. "
                "Set GITHUB_TOKEN, or GITHUB_APP_ID + GITHUB_PRIVATE_KEY + installation id"
            )

        last_error: httpx.Response | None = None
        max_retries = 5
        for attempt in range(max_retries):
            app_jwt = self._generate_jwt()
            resp = await self.client.post(
                f"/app/installations/{self.installation_id}/access_tokens",
                headers={"Authorization": f"Bearer {app_jwt}"},
            )
            if resp.status_code == 201:
                self._token = resp.json()["token"]
                self._token_expires_at = time.time() + 3500
                logger.info("Refreshed GitHub installation token (expires in ~58m)")
                return self._token

            last_error = resp
            wait = min(2**attempt, 16)
            logger.warning(
                "Token exchange attempt %d/%d failed (%d): %s, retrying in %ds",
                attempt + 1,
                max_retries,
                resp.status_code,
                resp.text[:100],
                wait,
            )
            await asyncio.sleep(wait)

        assert last_error is not None
        last_error.raise_for_status()
        raise RuntimeError("GitHub token exchange failed")

    def _generate_jwt(self) -> str:
        """RS256 JWT identifying the GitHub App."""
        now = int(time.time())
        payload = {
            "iat": now - 10,  # clock skew
            "exp": now + 540,  # under GitHub's 10-minute limit
            "iss": self.app_id,
        }
        return jwt.encode(payload, self.private_key, algorithm="RS256")

    async def _auth_headers(self) -> dict[str, str]:
        token = await self._ensure_token()
        return {"Authorization": f"token {token}"}

    # ── Rate Limit Tracking ──────────────────────────────────────────────

    def _update_rate_limit(self, response: httpx.Response) -> None:
        remaining = response.headers.get("X-RateLimit-Remaining")
        reset = response.headers.get("X-RateLimit-Reset")
        if remaining:
            self._rate_limit_remaining = int(remaining)
        if reset:
            self._rate_limit_reset = float(reset)

        if self._rate_limit_remaining < 100:
            logger.warning(
                "GitHub API rate limit low: %d remaining (resets at %s)",
                self._rate_limit_remaining,
                datetime.fromtimestamp(self._rate_limit_reset, tz=timezone.utc).isoformat(),
            )

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Authenticated request; serialized through a lock once quota runs low."""
        if self._rate_limit_lock and self._rate_limit_remaining <= self._rate_limit_reserve:
            async with self._rate_limit_lock:
                await self._wait_for_rate_limit_reset()
                return await self._do_request(method, path, **kwargs)
        return await self._do_request(method, path, **kwargs)

    async def _do_request(self, method: str, path: str, **kwargs) -> httpx.Response:
        headers = await self._auth_headers()
        headers.update(kwargs.pop("headers", {}))
        resp = await self.client.request(method, path, headers=headers, **kwargs)
        self._update_rate_limit(resp)
        resp.raise_for_status()
        return resp

    async def _wait_for_rate_limit_reset(self) -> None:
        if self._rate_limit_remaining > 0:
            return
        wait = max(0, self._rate_limit_reset - time.time()) + 1
        logger.warning("Rate limit exhausted, sleeping %.1fs until reset", wait)
        await asyncio.sleep(wait)
        self._rate_limit_remaining = 100

    # ── PR Operations ────────────────────────────────────────────────────

    async def get_pull_request(self, owner: str, repo: str, pr_number: int) -> dict:
        resp = await self._request("GET", f"/repos/{owner}/{repo}/pulls/{pr_number}")
        return resp.json()

    async def list_pull_requests(
        self,
        owner: str,
        repo: str,
        *,
        state: str = "open",
        per_page: int = 100,
    ) -> list[dict]:
        """List pull requests. ``state`` is ``"open"``, ``"closed"`` or ``"all"``."""
        resp = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/pulls",
            params={"state": state, "per_page": per_page},
        )
        return resp.json()

    async def create_pull_request(
        self,
        owner: str,
        repo: str,
        title: str,
        body: str,
        head: str,
        base: str,
    ) -> dict:
        resp = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/pulls",
            json={"title": title, "body": body, "head": head, "base": base},
        )
        return resp.json()

    async def merge_pull_request(
        self,
        owner: str,
        repo: str,
        pr_number: int,
        *,
        merge_method: str = "squash",
    ) -> dict:
        """Merge a pull request. ``merge_method`` is 'merge', 'squash', or 'rebase'."""
        resp = await self._request(
            "PUT",
            f"/repos/{owner}/{repo}/pulls/{pr_number}/merge",
            json={"merge_method": merge_method},
        )
        return resp.json()

    async def comment_on_issue(self, owner: str, repo: str, issue_number: int, body: str) -> dict:
        """Comment on an issue or pull request (they share the comments API)."""
        resp = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/issues/{issue_number}/comments",
            json={"body": body},
        )
        return resp.json()

    async def get_pr_reviews(self, owner: str, repo: str, pr_number: int) -> list[dict]:
        """List reviews on a pull request.

        States: APPROVED, CHANGES_REQUESTED, COMMENTED.
        """
        resp = await self._request("GET", f"/repos/{owner}/{repo}/pulls/{pr_number}/reviews")
        return resp.json()

    # ── Git Data ─────────────────────────────────────────────────────────

    async def get_ref(self, owner: str, repo: str, branch: str) -> dict:
        resp = await self._request("GET", f"/repos/{owner}/{repo}/git/ref/heads/{branch}")
        return resp.json()

    async def create_branch(self, owner: str, repo: str, branch: str, from_branch: str) -> dict:
        """Create ``branch`` pointing at the head of ``from_branch``."""
        base = await self.get_ref(owner, repo, from_branch)
        resp = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/refs",
            json={"ref": f"refs/heads/{branch}", "sha": base["object"]["sha"]},
        )
        return resp.json()

    async def push_files(
        self,
        owner: str,
        repo: str,
        branch: str,
        files: dict[str, str],
        message: str,
    ) -> str:
        """Commit several files to ``branch`` in one commit; returns the commit sha.

        Blobs, then a tree on top of the branch's current tree, then a commit
        whose parent is the current head, then the ref moves. Nothing is
        visible on the branch until the final ref update.
        """
        ref = await self.get_ref(owner, repo, branch)
        parent_sha = ref["object"]["sha"]
        resp = await self._request("GET", f"/repos/{owner}/{repo}/git/commits/{parent_sha}")
        base_tree = resp.json()["tree"]["sha"]

        tree = []
        for path, content in files.items():
            resp = await self._request(
                "POST",
                f"/repos/{owner}/{repo}/git/blobs",
                json={"content": base64.b64encode(content.encode()).decode(), "encoding": "base64"},
            )
            tree.append({"path": path, "mode": "100644", "type": "blob", "sha": resp.json()["sha"]})

        resp = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/trees",
            json={"base_tree": base_tree, "tree": tree},
        )
        tree_sha = resp.json()["sha"]

        resp = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/commits",
            json={"message": message, "tree": tree_sha, "parents": [parent_sha]},
        )
        commit_sha = resp.json()["sha"]

        await self._request(
            "PATCH",
            f"/repos/{owner}/{repo}/git/refs/heads/{branch}",
            json={"sha": commit_sha},
        )
        logger.info("Pushed %d file(s) to %s/%s@%s", len(files), owner, repo, branch)
        return commit_sha
