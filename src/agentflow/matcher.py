"""Pick the best-fit agent for an issue.

Scoring:
1. Capability coverage: covered / required, 0-1.
2. Focus bonus when the issue text mentions file paths: up to +0.5 for
   agents whose focus globs match those paths, -0.1 for agents with no
   focus at all.
"""

from __future__ import annotations

import functools
import logging
import re

from agentflow.capabilities import parse_required_capabilities
from agentflow.models import AgentConfig, AgentMatch, Issue

logger = logging.getLogger(__name__)

FILE_PATH_PATTERN = re.compile(
    r"[\w\-./]+\.(?:ts|tsx|js|jsx|md|json|yaml|yml|css|scss|html|py|go|rs|java|c|cpp|h|hpp)\b",
    re.IGNORECASE,
)

FOCUS_BONUS_WEIGHT = 0.5
NO_FOCUS_PENALTY = 0.1


def extract_file_paths(text: str) -> list[str]:
    """File-path-like tokens (``src/foo/bar.ts``, ``README.md``) in ``text``."""
    return FILE_PATH_PATTERN.findall(text)


@functools.lru_cache(maxsize=256)
def _glob_regex(pattern: str) -> re.Pattern[str]:
    """Segment-aware glob: ``*`` and ``?`` stay inside one path segment,
    ``**/`` spans zero or more directories and a trailing ``**`` spans the rest.
    """
    out = []
    i, n = 0, len(pattern)
    while i < n:
        c = pattern[i]
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif c == "*":
            out.append("[^/]*")
            i += 1
        elif c == "?":
            out.append("[^/]")
            i += 1
        elif c == "[":
            end = pattern.find("]", i + 2)
            if end == -1:
                out.append(re.escape(c))
                i += 1
                continue
            body = pattern[i + 1 : end]
            if body.startswith("!"):
                body = "^" + body[1:]
            out.append(f"[{body}]")
            i = end + 1
        else:
            out.append(re.escape(c))
            i += 1
    return re.compile("".join(out) + r"\Z")


def glob_match(path: str, pattern: str) -> bool:
    return _glob_regex(pattern).match(path) is not None


def _matches_focus(path: str, focus: list[str]) -> bool:
    return any(glob_match(path, pattern) for pattern in focus)


def focus_score(paths: list[str], focus: list[str]) -> float:
    """Fraction of ``paths`` covered by any focus glob."""
    if not paths or not focus:
        return 0.0
    matched = sum(1 for p in paths if _matches_focus(p, focus))
    return matched / len(paths)


def match_agent(issue: Issue, agents: list[AgentConfig]) -> AgentMatch | None:
    """Return the highest-scoring agent, or None when nobody qualifies.

    Ties keep the first agent seen. Agents sharing no capability with the
    issue are never considered.
    """
    if not agents:
        return None

    required = parse_required_capabilities(issue)
    if not required:
        return None

    paths = extract_file_paths(f"{issue.title} {issue.description}")

    best: AgentMatch | None = None
    best_score = 0.0

    for agent in agents:
        covered = len({c.value for c in required} & agent.capability_names)
        if covered == 0:
            continue

        score = covered / len(required)
        if paths:
            if agent.focus:
                score += focus_score(paths, agent.focus) * FOCUS_BONUS_WEIGHT
            else:
                score -= NO_FOCUS_PENALTY
        score = max(0.0, score)

        if score > best_score:
            best_score = score
            reason = f"Covers {covered}/{len(required)} required capabilities"
            if agent.focus and any(_matches_focus(p, agent.focus) for p in paths):
                reason += " with focus area match"
            best = AgentMatch(agent=agent, confidence=min(score, 1.0), reason=reason)

    if best is not None:
        logger.debug(
            "Matched issue %s to agent %s (%.2f)", issue.id, best.agent.name, best.confidence
        )
    return best
