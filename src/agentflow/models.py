"""Core data models for agentflow."""

from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ── Issues ───────────────────────────────────────────────────────────────────


class IssueStatus(str, enum.Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    CLOSED = "closed"


class IssueType(str, enum.Enum):
    BUG = "bug"
    FEATURE = "feature"
    TASK = "task"
    EPIC = "epic"
    CHORE = "chore"


class Issue(BaseModel):
    """A unit of work as read from the issue store.

    Snapshots only: mutation goes through the ``issues.*`` runtime calls.
    Accepts both the store's snake_case keys (``issue_type``) and the
    camelCase wire keys (``dependsOn``).
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    title: str = ""
    description: str = ""
    status: IssueStatus = IssueStatus.OPEN
    type: IssueType = Field(default=IssueType.TASK, alias="issue_type")
    priority: int = Field(default=2, description="Lower is more urgent (0-4)")
    labels: list[str] = Field(default_factory=list)
    depends_on: list[str] = Field(default_factory=list, alias="dependsOn")
    blocks: list[str] = Field(default_factory=list)
    parent: str | None = None
    children: list[str] = Field(default_factory=list)
    assignee: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    closed_at: str | None = None

    @field_validator("labels", "depends_on", "blocks", "children", mode="before")
    @classmethod
    def _none_to_list(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("type", mode="before")
    @classmethod
    def _unknown_type_is_task(cls, v: Any) -> Any:
        if isinstance(v, str) and v not in {t.value for t in IssueType}:
            return IssueType.TASK
        return v

    @property
    def is_closed(self) -> bool:
        return self.status == IssueStatus.CLOSED


class IssueFilter(BaseModel):
    status: IssueStatus | None = None
    priority: int | None = None
    type: IssueType | None = None
    assignee: str | None = None
    labels: list[str] | None = None

    def matches(self, issue: Issue) -> bool:
        if self.status is not None and issue.status != self.status:
            return False
        if self.priority is not None and issue.priority != self.priority:
            return False
        if self.type is not None and issue.type != self.type:
            return False
        if self.assignee is not None and issue.assignee != self.assignee:
            return False
        if self.labels and not set(self.labels).issubset(issue.labels):
            return False
        return True


class EpicProgress(BaseModel):
    total: int = 0
    completed: int = 0
    percentage: int = 0


class IssueEventType(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    CLOSED = "closed"
    REOPENED = "reopened"


class IssueEvent(BaseModel):
    """A change observed in the issue store."""

    type: IssueEventType
    issue: Issue
    previous_issue: Issue | None = None


# ── Agents ───────────────────────────────────────────────────────────────────


class AgentAutonomy(str, enum.Enum):
    FULL = "full"
    SUPERVISED = "supervised"
    MANUAL = "manual"


class CapabilityConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    operations: list[str] = Field(default_factory=list)
    description: str | None = None
    constraints: dict[str, Any] = Field(default_factory=dict)


class TriggerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    event: str | None = None
    condition: str | None = None
    cron: str | None = None
    handler: str | None = None


class AgentConfig(BaseModel):
    """An autonomous agent that can be matched to issues."""

    model_config = ConfigDict(frozen=True)

    name: str
    capabilities: list[CapabilityConfig] = Field(default_factory=list)
    focus: list[str] = Field(default_factory=list, description="Glob patterns for owned files")
    autonomy: AgentAutonomy = AgentAutonomy.SUPERVISED
    triggers: list[TriggerConfig] = Field(default_factory=list)
    model: str | None = None
    instructions: str | None = None
    description: str | None = None
    extends: str | None = None

    @field_validator("capabilities", mode="before")
    @classmethod
    def _bare_capability_names(cls, v: Any) -> Any:
        # ["code", "test"] is shorthand for [{"name": "code"}, {"name": "test"}]
        if isinstance(v, list):
            return [{"name": c} if isinstance(c, str) else c for c in v]
        return v

    @property
    def capability_names(self) -> set[str]:
        return {c.name for c in self.capabilities}


class AgentMatch(BaseModel):
    agent: AgentConfig
    confidence: float
    reason: str


# ── Repository & Pull Requests ───────────────────────────────────────────────


class Repo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    owner: str
    name: str
    default_branch: str = Field(default="main", alias="defaultBranch")
    url: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


class PullRequest(BaseModel):
    number: int
    title: str = ""
    body: str = ""
    branch: str = ""
    url: str = ""
    state: str = "open"

    @classmethod
    def from_github(cls, data: dict) -> PullRequest:
        """Build from a GitHub REST pull request payload."""
        state = data.get("state", "open")
        if data.get("merged") or data.get("merged_at"):
            state = "merged"
        return cls(
            number=data["number"],
            title=data.get("title") or "",
            body=data.get("body") or "",
            branch=(data.get("head") or {}).get("ref", ""),
            url=data.get("html_url") or "",
            state=state,
        )


# ── Claude request / response shapes ─────────────────────────────────────────


class DoOpts(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    task: str
    context: str | None = None
    model: str | None = None
    push: bool = False
    target_branch: str | None = Field(default=None, alias="targetBranch")
    commit_message: str | None = Field(default=None, alias="commitMessage")


class DoResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    summary: str = ""
    diff: str = ""
    files_changed: list[str] = Field(default_factory=list, alias="filesChanged")
    pushed_to_branch: str | None = Field(default=None, alias="pushedToBranch")
    commit_sha: str | None = Field(default=None, alias="commitSha")


class ResearchOpts(BaseModel):
    topic: str
    depth: str = "thorough"
    context: str | None = None


class ResearchResult(BaseModel):
    findings: str = ""
    sources: list[str] = Field(default_factory=list)
    confidence: str = "medium"


class ReviewOpts(BaseModel):
    pr: PullRequest | dict | str
    focus: list[str] = Field(default_factory=list)


class ReviewComment(BaseModel):
    file: str
    line: int = 0
    body: str = ""
    severity: str = "suggestion"


class ReviewResult(BaseModel):
    approved: bool = False
    comments: list[ReviewComment] = Field(default_factory=list)
    summary: str = ""


class AskOpts(BaseModel):
    question: str
    context: str | None = None


# ── Git ──────────────────────────────────────────────────────────────────────


class GitStatus(BaseModel):
    modified: list[str] = Field(default_factory=list)
    staged: list[str] = Field(default_factory=list)
    untracked: list[str] = Field(default_factory=list)


class Worktree(BaseModel):
    path: str
    branch: str = ""
