"""agentflow CLI entry point."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import re
import sys
from pathlib import Path

from agentflow import credentials, planner
from agentflow.config import AgentflowConfig, load_config
from agentflow.credentials import (
    StoredTokens,
    delete_tokens,
    load_tokens,
    mask,
    save_tokens,
)
from agentflow.errors import AgentflowError, CommandError
from agentflow.models import Repo
from agentflow.process import check_output
from agentflow.runtime import RuntimeConfig, create_runtime
from agentflow.transports.local import LocalTransport

logger = logging.getLogger(__name__)

GITHUB_REMOTE_PATTERN = re.compile(r"github\.com[/:]([\w-]+)/([\w.-]+?)(\.git)?$")
ORIGIN_HEAD_PATTERN = re.compile(r"refs/remotes/origin/(.+)")
PLAN_ACTIONS = ("assign", "status", "critical-path")


# ── Repository detection ─────────────────────────────────────────────────────


def parse_repo(value: str) -> Repo:
    """``owner/name`` to a Repo."""
    owner, _, name = value.partition("/")
    if not owner or not name or "/" in name:
        raise ValueError(f'Invalid repo format: {value} (expected "owner/name")')
    return Repo(owner=owner, name=name, url=f"https://github.com/{owner}/{name}")


async def detect_repo(cwd: Path) -> Repo | None:
    """Repo from ``git remote get-url origin``; None if it is not a GitHub remote."""
    try:
        remote = (await check_output("git", "remote", "get-url", "origin", cwd=cwd)).strip()
    except (CommandError, OSError):
        return None

    match = GITHUB_REMOTE_PATTERN.search(remote)
    if not match:
        return None
    owner, name = match.group(1), match.group(2)

    default_branch = "main"
    try:
        head = await check_output("git", "symbolic-ref", "refs/remotes/origin/HEAD", cwd=cwd)
    except CommandError:
        logger.debug("origin/HEAD not set, assuming %s", default_branch)
    else:
        branch_match = ORIGIN_HEAD_PATTERN.search(head)
        if branch_match:
            default_branch = branch_match.group(1).strip()

    return Repo(
        owner=owner,
        name=name,
        default_branch=default_branch,
        url=f"https://github.com/{owner}/{name}",
    )


# ── Commands ─────────────────────────────────────────────────────────────────


def _auth(args) -> int:
    token = args.github_token or os.environ.get("GITHUB_TOKEN") or os.environ.get("GH_TOKEN")
    if not token:
        print("Error: pass --github-token or set GITHUB_TOKEN", file=sys.stderr)
        return 1
    path = save_tokens(StoredTokens(github_token=token, claude_token=args.claude_token))
    print("Authenticated")
    print(f"Tokens stored in: {path}")
    return 0


def _status(args) -> int:
    try:
        tokens = load_tokens()
    except AgentflowError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    if tokens is None:
        print("Not authenticated. Run `agentflow auth` to authenticate.")
        return 1

    print("Authenticated")
    print(f"Tokens file: {credentials.TOKENS_FILE}")
    if tokens.expires_at:
        suffix = " (EXPIRED)" if tokens.expired else ""
        print(f"Expires: {tokens.expires_at.isoformat()}{suffix}")
    print(f"  GitHub token: {mask(tokens.github_token)}")
    if tokens.claude_token:
        print(f"  Claude token: {mask(tokens.claude_token)}")
    return 1 if tokens.expired else 0


def _logout(args) -> int:
    if delete_tokens():
        print("Logged out")
    else:
        print("Not authenticated.")
    return 0


async def _resolve_repo(args, config: AgentflowConfig, cwd: Path) -> Repo | None:
    """``--repo``, then the project config, then the git remote. Prints why on failure."""
    if args.repo:
        try:
            return parse_repo(args.repo)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return None
    if config.project.owner and config.project.name:
        return Repo(
            owner=config.project.owner,
            name=config.project.name,
            default_branch=config.project.default_branch,
        )
    repo = await detect_repo(cwd)
    if repo is None:
        print("Error: could not detect repository; pass --repo owner/name", file=sys.stderr)
    return repo


async def _watch(args) -> int:
    from agentflow.daemon import Daemon

    cwd = args.cwd.resolve()
    try:
        config = load_config(cwd)
    except AgentflowError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    if args.workflows:
        config.daemon.workflows_dir = args.workflows
    if args.beads:
        config.daemon.beads_dir = args.beads

    repo = await _resolve_repo(args, config, cwd)
    if repo is None:
        return 1

    print(f"Repository: {repo.full_name}")
    print(f"Working directory: {cwd}")

    daemon = Daemon(repo, cwd=cwd, config=config)
    try:
        await daemon.run_until_interrupted()
    except AgentflowError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


async def _plan(args) -> int:
    cwd = args.cwd.resolve()
    try:
        config = load_config(cwd)
    except AgentflowError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    repo = await _resolve_repo(args, config, cwd)
    if repo is None:
        return 1

    runtime = create_runtime(
        RuntimeConfig(
            repo=repo,
            transport=lambda: LocalTransport(
                repo, cwd=cwd, config=config.local, github_config=config.github
            ),
        )
    )
    try:
        if args.action == "assign":
            report = planner.format_assignments(await planner.assign_ready_issues(runtime))
        elif args.action == "status":
            report = planner.format_status(await planner.queue_status(runtime))
        else:
            report = planner.format_critical_path(await runtime.dag.critical_path())
    except AgentflowError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await runtime.close()
    print(report)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agentflow",
        description="agentflow: workflow daemon for autonomous issue-to-PR development",
    )
    subparsers = parser.add_subparsers(dest="command")

    # agentflow watch
    watch_parser = subparsers.add_parser("watch", help="Watch workflows and issue events")
    watch_parser.add_argument("--repo", help="Repository as owner/name (default: from git remote)")
    watch_parser.add_argument("--workflows", help="Workflows directory (default: .workflows)")
    watch_parser.add_argument("--beads", help="Issue store directory (default: .beads)")
    watch_parser.add_argument(
        "--cwd",
        type=Path,
        default=Path.cwd(),
        help="Working directory (default: current directory)",
    )
    watch_parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    # agentflow auth
    auth_parser = subparsers.add_parser("auth", help="Store credentials")
    auth_parser.add_argument("--github-token", help="GitHub token (default: $GITHUB_TOKEN)")
    auth_parser.add_argument("--claude-token", help="Token for the claude CLI")

    # agentflow plan
    plan_parser = subparsers.add_parser("plan", help="Assign ready issues and inspect the queue")
    plan_parser.add_argument("action", choices=PLAN_ACTIONS)
    plan_parser.add_argument("--repo", help="Repository as owner/name (default: from git remote)")
    plan_parser.add_argument(
        "--cwd",
        type=Path,
        default=Path.cwd(),
        help="Working directory (default: current directory)",
    )
    plan_parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers.add_parser("status", help="Show authentication status")
    subparsers.add_parser("logout", help="Remove stored credentials")
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if getattr(args, "debug", False) else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if args.command == "auth":
        sys.exit(_auth(args))
    if args.command == "status":
        sys.exit(_status(args))
    if args.command == "logout":
        sys.exit(_logout(args))
    if args.command == "plan":
        sys.exit(asyncio.run(_plan(args)))
    sys.exit(asyncio.run(_watch(args)))


if __name__ == "__main__":
    main()
