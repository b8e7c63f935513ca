"""Derive the capabilities an issue needs from its labels, type and text."""

from __future__ import annotations

import enum
import re

from agentflow.models import Issue, IssueType


class Capability(str, enum.Enum):
    CODE = "code"
    TEST = "test"
    REVIEW = "review"
    DOCS = "docs"
    SECURITY = "security"


LABEL_CAPABILITIES: dict[str, Capability] = {
    "bug": Capability.CODE,
    "feature": Capability.CODE,
    "docs": Capability.DOCS,
    "documentation": Capability.DOCS,
    "security": Capability.SECURITY,
    "test": Capability.TEST,
    "testing": Capability.TEST,
}

TYPE_CAPABILITIES: dict[IssueType, Capability] = {
    IssueType.BUG: Capability.CODE,
    IssueType.FEATURE: Capability.CODE,
}

_KEYWORDS: list[tuple[Capability, list[str]]] = [
    (
        Capability.TEST,
        [
            r"write tests?",
            r"add tests?",
            r"test coverage",
            r"testing",
            r"unit tests?",
            r"integration tests?",
            r"update tests?",
        ],
    ),
    (Capability.REVIEW, [r"code review", r"review code", r"review pr"]),
    (Capability.DOCS, [r"document", r"documentation", r"update docs?"]),
    (Capability.CODE, [r"fix", r"implement", r"refactor", r"develop"]),
]

KEYWORD_PATTERNS: list[tuple[Capability, re.Pattern[str]]] = [
    (cap, re.compile(r"\b(?:" + "|".join(words) + r")\b", re.IGNORECASE))
    for cap, words in _KEYWORDS
]


def parse_required_capabilities(issue: Issue) -> set[Capability]:
    """Union of label, type and keyword signals. Empty when nothing matches."""
    required: set[Capability] = set()

    for label in issue.labels:
        cap = LABEL_CAPABILITIES.get(label.lower())
        if cap is not None:
            required.add(cap)

    cap = TYPE_CAPABILITIES.get(issue.type)
    if cap is not None:
        required.add(cap)

    text = f"{issue.title} {issue.description}"
    for cap, pattern in KEYWORD_PATTERNS:
        if pattern.search(text):
            required.add(cap)

    return required
