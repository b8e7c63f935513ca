"""Workflow document parsing.

A workflow document is markdown with an optional ``---`` metadata block and
any number of fenced ``python`` / ``py`` regions. The regions are the
workflow source; everything else is prose.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from agentflow.config import split_frontmatter

logger = logging.getLogger(__name__)

CODE_BLOCK_PATTERN = re.compile(r"```(?:python|py)[^\S\r\n]*\r?\n([\s\S]*?)```")
WORKFLOW_SUFFIXES = (".md", ".mdx")
WORKFLOW_DIR_CANDIDATES = (".workflows", "workflows")


@dataclass
class ParsedWorkflow:
    path: str
    name: str
    metadata: dict[str, Any] = field(default_factory=dict)
    code_blocks: list[str] = field(default_factory=list)
    source: str = ""
    raw_content: str = ""

    @property
    def enabled(self) -> bool:
        return self.metadata.get("enabled", True) is not False


def parse_workflow(content: str, path: str | Path) -> ParsedWorkflow:
    metadata, body = split_frontmatter(content)
    metadata.setdefault("name", Path(path).stem)
    metadata.setdefault("enabled", True)

    blocks = [m.group(1).strip() for m in CODE_BLOCK_PATTERN.finditer(body)]
    blocks = [b for b in blocks if b]

    return ParsedWorkflow(
        path=str(path),
        name=str(metadata["name"]),
        metadata=metadata,
        code_blocks=blocks,
        source="\n\n".join(blocks),
        raw_content=content,
    )


def load_workflows(directory: Path) -> list[ParsedWorkflow]:
    """Parse every workflow document in ``directory``, skipping disabled ones."""
    if not directory.is_dir():
        logger.warning("Workflows directory not found: %s", directory)
        return []

    workflows = []
    for path in sorted(directory.iterdir()):
        if path.suffix not in WORKFLOW_SUFFIXES or not path.is_file():
            continue
        parsed = parse_workflow(path.read_text(), path)
        if not parsed.enabled:
            logger.info("Skipping disabled workflow %s", parsed.name)
            continue
        workflows.append(parsed)
    return workflows


def find_workflows_dir(base: Path) -> Path | None:
    for name in WORKFLOW_DIR_CANDIDATES:
        candidate = base / name
        if candidate.is_dir():
            return candidate
    return None
