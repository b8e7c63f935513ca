"""Local issue store backed by a ``.beads`` directory.

Reads go straight to the JSONL exports (``issues.jsonl`` and, when present,
``dependencies.jsonl``). Writes go through the ``bd`` command line so the
store's own database stays authoritative.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from agentflow.dag import IssueGraph
from agentflow.errors import AgentflowError, NotFoundError
from agentflow.models import EpicProgress, Issue, IssueFilter, IssueStatus
from agentflow.process import check_output

logger = logging.getLogger(__name__)

BEADS_DIR = ".beads"
ISSUES_FILE = "issues.jsonl"
DEPENDENCIES_FILE = "dependencies.jsonl"


def find_beads_dir(start: Path) -> Path | None:
    """Walk up from ``start`` looking for a ``.beads`` directory."""
    current = start.resolve()
    for directory in (current, *current.parents):
        candidate = directory / BEADS_DIR
        if candidate.is_dir():
            return candidate
    return None


def _read_jsonl(path: Path) -> list[dict[str, Any]]:
    if not path.exists():
        return []
    rows = []
    for lineno, line in enumerate(path.read_text().splitlines(), start=1):
        if not line.strip():
            continue
        try:
            row = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed line %d in %s", lineno, path.name)
            continue
        if isinstance(row, dict):
            rows.append(row)
    return rows


class BeadsStore:
    """Issue store SDK over a ``.beads`` directory."""

    def __init__(self, beads_dir: Path, *, bd_binary: str = "bd"):
        self.beads_dir = beads_dir
        self.bd_binary = bd_binary

    @property
    def issues_path(self) -> Path:
        return self.beads_dir / ISSUES_FILE

    # ── Reads ────────────────────────────────────────────────────────────

    def _dependency_rows(self, raw_issues: list[dict[str, Any]]) -> list[dict[str, Any]]:
        rows = _read_jsonl(self.beads_dir / DEPENDENCIES_FILE)
        # bd also embeds dependencies on each exported issue
        for raw in raw_issues:
            for dep in raw.get("dependencies") or []:
                if isinstance(dep, dict):
                    rows.append({"issue_id": raw.get("id"), **dep})
        return rows

    def load(self) -> list[Issue]:
        """Every issue with ``depends_on``/``blocks``/``parent``/``children`` filled in."""
        raw_issues = _read_jsonl(self.issues_path)
        issues: dict[str, Issue] = {}
        for raw in raw_issues:
            try:
                issue = Issue.model_validate(raw)
            except ValidationError as e:
                logger.debug("Skipping invalid issue %s: %s", raw.get("id"), e)
                continue
            issues[issue.id] = issue

        for row in self._dependency_rows(raw_issues):
            child, parent = row.get("issue_id"), row.get("depends_on_id")
            kind = row.get("dep_type") or row.get("type") or "blocks"
            if child not in issues or not parent:
                continue
            if kind == "blocks":
                if parent not in issues[child].depends_on:
                    issues[child].depends_on.append(parent)
                if parent in issues and child not in issues[parent].blocks:
                    issues[parent].blocks.append(child)
            elif kind == "parent-child":
                issues[child].parent = parent
                if parent in issues and child not in issues[parent].children:
                    issues[parent].children.append(child)
        return list(issues.values())

    def list(self, filter: IssueFilter | None = None) -> list[Issue]:
        issues = self.load()
        if filter is None:
            return issues
        return [i for i in issues if filter.matches(i)]

    def get(self, issue_id: str) -> Issue:
        for issue in self.load():
            if issue.id == issue_id:
                return issue
        raise NotFoundError(f"Issue not found: {issue_id}")

    def ready(self) -> list[Issue]:
        return IssueGraph(self.load()).ready()

    def blocked(self) -> list[Issue]:
        """Non-closed issues with at least one open blocker, or marked blocked."""
        issues = self.load()
        graph = IssueGraph(issues)
        result = []
        for issue in issues:
            if issue.is_closed:
                continue
            open_deps = [
                d for d in issue.depends_on if d in graph and not graph.get(d).is_closed
            ]
            if open_deps or issue.status == IssueStatus.BLOCKED:
                result.append(issue)
        return result

    def epics(self) -> list[Issue]:
        return [i for i in self.load() if i.type == "epic"]

    def epic_progress(self, epic_id: str) -> EpicProgress:
        issues = self.load()
        children = [i for i in issues if i.parent == epic_id]
        completed = sum(1 for c in children if c.is_closed)
        total = len(children)
        percentage = round(completed / total * 100) if total else 0
        return EpicProgress(total=total, completed=completed, percentage=percentage)

    # ── Writes (via bd) ──────────────────────────────────────────────────

    async def _bd(self, *args: str) -> Any:
        output = await check_output(self.bd_binary, *args, "--json", cwd=self.beads_dir.parent)
        try:
            return json.loads(output)
        except json.JSONDecodeError:
            return None

    @staticmethod
    def _single(result: Any) -> dict[str, Any] | None:
        if isinstance(result, list):
            result = result[0] if result else None
        return result if isinstance(result, dict) else None

    async def create(
        self,
        title: str,
        *,
        description: str | None = None,
        type: str | None = None,
        priority: int | None = None,
    ) -> Issue:
        args = ["create", title]
        if description:
            args += ["--description", description]
        if type:
            args += ["--type", str(type)]
        if priority is not None:
            args += ["--priority", str(priority)]
        created = self._single(await self._bd(*args))
        if created is None:
            raise AgentflowError(f"bd create returned no issue for {title!r}")
        logger.info("Created issue %s", created.get("id"))
        return Issue.model_validate(created)

    async def update(self, issue_id: str, fields: dict[str, Any]) -> Issue:
        args = ["update", issue_id]
        for key, value in fields.items():
            if value is None:
                continue
            if isinstance(value, IssueStatus):
                value = value.value
            args += [f"--{key.replace('_', '-')}", str(value)]
        updated = self._single(await self._bd(*args))
        if updated is not None:
            return Issue.model_validate(updated)
        return self.get(issue_id)

    async def close(self, issue_id: str, reason: str | None = None) -> None:
        args = ["close", issue_id]
        if reason:
            args += ["--reason", reason]
        await self._bd(*args)
        logger.info("Closed issue %s", issue_id)
