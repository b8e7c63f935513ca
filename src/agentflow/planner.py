"""Planner: assigns ready issues to agents and reports on the queue.

Assignment only ever looks at issues the DAG reports as ready, skips anything
that already has an assignee, and records the winner of the agent match as
the issue's ``assignee``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from agentflow.models import AgentConfig, Issue, IssueFilter, IssueStatus
from agentflow.runtime import WorkflowRuntime

logger = logging.getLogger(__name__)

STATUS_PREVIEW = 5


@dataclass
class Assignment:
    issue: Issue
    agent: AgentConfig
    confidence: float
    reason: str


@dataclass
class QueueStatus:
    ready: list[Issue] = field(default_factory=list)
    in_progress: list[Issue] = field(default_factory=list)
    blocked: list[Issue] = field(default_factory=list)


async def assign_ready_issues(runtime: WorkflowRuntime) -> list[Assignment]:
    """Assign every unassigned ready issue to its best-fit agent.

    Issues no agent qualifies for are left alone.
    """
    assignments: list[Assignment] = []
    for issue in await runtime.dag.ready():
        if issue.assignee:
            logger.debug("Skipping %s, already assigned to %s", issue.id, issue.assignee)
            continue
        match = await runtime.agents.match(issue)
        if match is None:
            logger.debug("No agent matches %s", issue.id)
            continue
        await runtime.issues.update(issue.id, assignee=match.agent.name)
        logger.info(
            "Assigned %s to %s (%.0f%%)", issue.id, match.agent.name, match.confidence * 100
        )
        assignments.append(
            Assignment(
                issue=issue,
                agent=match.agent,
                confidence=match.confidence,
                reason=match.reason,
            )
        )
    return assignments


async def queue_status(runtime: WorkflowRuntime) -> QueueStatus:
    ready, blocked, in_progress = await asyncio.gather(
        runtime.issues.ready(),
        runtime.issues.blocked(),
        runtime.issues.list(IssueFilter(status=IssueStatus.IN_PROGRESS)),
    )
    return QueueStatus(ready=ready, in_progress=in_progress, blocked=blocked)


# ── Reports ──────────────────────────────────────────────────────────────────


def format_assignments(assignments: list[Assignment]) -> str:
    if not assignments:
        return "No ready issues to assign"
    plural = "" if len(assignments) == 1 else "s"
    lines = [f"Assigned {len(assignments)} issue{plural}:", ""]
    for a in assignments:
        lines.append(f"  {a.issue.id}: {a.issue.title}")
        lines.append(f"    -> {a.agent.name} ({round(a.confidence * 100)}% confidence)")
        lines.append(f"    -> {a.reason}")
    return "\n".join(lines)


def _preview(issues: list[Issue], show_assignee: bool = False) -> list[str]:
    lines = []
    for issue in issues[:STATUS_PREVIEW]:
        line = f"  - {issue.id}: {issue.title}"
        if show_assignee:
            line += f" ({issue.assignee or 'unassigned'})"
        lines.append(line)
    if len(issues) > STATUS_PREVIEW:
        lines.append(f"  ... and {len(issues) - STATUS_PREVIEW} more")
    return lines


def format_status(status: QueueStatus) -> str:
    lines = [f"Ready to assign: {len(status.ready)}", *_preview(status.ready)]
    lines += ["", f"In progress: {len(status.in_progress)}"]
    lines += _preview(status.in_progress, show_assignee=True)
    lines += ["", f"Blocked: {len(status.blocked)}", *_preview(status.blocked)]
    return "\n".join(lines)


def format_critical_path(path: list[Issue]) -> str:
    if not path:
        return "No critical path (all issues completed or no dependencies)"
    lines = [f"Length: {len(path)} issues", ""]
    for issue in path:
        lines.append(f"{issue.id}: {issue.title}")
        lines.append(f"   Status: {issue.status.value}, Priority: {issue.priority}")
        if issue.assignee:
            lines.append(f"   Assigned to: {issue.assignee}")
    return "\n".join(lines)
