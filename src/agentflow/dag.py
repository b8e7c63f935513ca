"""Dependency-graph analysis over a snapshot of issues.

The graph is rebuilt from a flat issue list for every query; nothing is
indexed persistently. Dependencies are assumed acyclic but every traversal
tolerates cycles.
"""

from __future__ import annotations

from typing import Iterable

from agentflow.errors import NotFoundError
from agentflow.models import Issue, IssueStatus

_ACTIVE = (IssueStatus.OPEN, IssueStatus.IN_PROGRESS)


class IssueGraph:
    """Read-only DAG view over issues keyed by id."""

    def __init__(self, issues: Iterable[Issue]):
        self._issues: dict[str, Issue] = {i.id: i for i in issues}
        self._dependents: dict[str, list[str]] = {}
        for issue in self._issues.values():
            for dep_id in issue.depends_on:
                self._dependents.setdefault(dep_id, []).append(issue.id)

    def __len__(self) -> int:
        return len(self._issues)

    def __contains__(self, issue_id: object) -> bool:
        return issue_id in self._issues

    def get(self, issue_id: str) -> Issue:
        try:
            return self._issues[issue_id]
        except KeyError:
            raise NotFoundError(f"Issue not found: {issue_id}") from None

    def ready(self) -> list[Issue]:
        """Open issues whose dependencies all exist and are closed.

        A dependency id that does not resolve counts as an open blocker.
        """
        result = []
        for issue in self._issues.values():
            if issue.status != IssueStatus.OPEN:
                continue
            if all(self._is_closed(dep_id) for dep_id in issue.depends_on):
                result.append(issue)
        return result

    def critical_path(self) -> list[Issue]:
        """Longest chain of open/in-progress issues, dependency first.

        Closed issues end a chain. On a cycle the chain built so far is kept.
        Ties go to the chain found first in iteration order.
        """
        memo: dict[str, list[Issue]] = {}

        def longest(issue_id: str, visiting: frozenset[str]) -> list[Issue]:
            if issue_id in memo:
                return memo[issue_id]
            issue = self._issues.get(issue_id)
            if issue is None or issue.status not in _ACTIVE or issue_id in visiting:
                return []

            visiting = visiting | {issue_id}
            best: list[Issue] = []
            for dep_id in issue.depends_on:
                path = longest(dep_id, visiting)
                if len(path) > len(best):
                    best = path
            memo[issue_id] = [*best, issue]
            return memo[issue_id]

        critical: list[Issue] = []
        for issue in self._issues.values():
            if issue.status not in _ACTIVE:
                continue
            path = longest(issue.id, frozenset())
            if len(path) > len(critical):
                critical = path
        return critical

    def blocked_by(self, issue_id: str) -> list[Issue]:
        """Transitive dependencies of ``issue_id`` that are not closed.

        Closed dependencies are still walked through, so a closed issue in
        the middle does not hide an open one behind it. Results are in
        depth-first preorder.
        """
        self.get(issue_id)
        blockers: list[Issue] = []
        seen: set[str] = set()

        def collect(current_id: str) -> None:
            current = self._issues.get(current_id)
            if current is None:
                return
            for dep_id in current.depends_on:
                if dep_id in seen:
                    continue
                seen.add(dep_id)
                dep = self._issues.get(dep_id)
                if dep is None:
                    continue
                if dep.status != IssueStatus.CLOSED:
                    blockers.append(dep)
                collect(dep_id)

        collect(issue_id)
        return blockers

    def unblocks(self, issue_id: str) -> list[Issue]:
        """Issues that directly or transitively depend on ``issue_id``."""
        self.get(issue_id)
        result: list[Issue] = []
        seen: set[str] = {issue_id}
        stack = [issue_id]
        while stack:
            current = stack.pop()
            for dependent_id in self._dependents.get(current, []):
                if dependent_id in seen:
                    continue
                seen.add(dependent_id)
                result.append(self._issues[dependent_id])
                stack.append(dependent_id)
        return result

    def _is_closed(self, issue_id: str) -> bool:
        dep = self._issues.get(issue_id)
        return dep is not None and dep.status == IssueStatus.CLOSED
