"""Agent definition documents.

Agents are declared in markdown/MDX files as self-closing tags::

    <Agent
      name="sam"
      autonomy="full"
      capabilities={[{ name: 'code' }, { name: 'security' }]}
      focus={['src/auth/**']}
    />

Array and object props use JS-literal syntax (single quotes, bare keys) and
are normalized to JSON before decoding.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from agentflow.config import split_frontmatter
from agentflow.models import AgentConfig

logger = logging.getLogger(__name__)

AGENT_TAG_PATTERN = re.compile(r"<Agent\s+([\s\S]*?)\s*/>")
STRING_PROPS = ("autonomy", "model", "extends", "description", "instructions")
JSON_PROPS = ("focus", "capabilities", "triggers")
AGENT_FILE_SUFFIXES = (".md", ".mdx")

_BARE_KEY = re.compile(r"([{,]\s*)([a-zA-Z_$][a-zA-Z0-9_$]*)(\s*:)")


@dataclass
class ParsedAgentDocument:
    path: str
    metadata: dict[str, Any]
    agents: list[AgentConfig] = field(default_factory=list)
    raw_content: str = ""


def _js_literal_to_json(text: str) -> str:
    """Single quotes to double (outside double-quoted strings), bare keys quoted."""
    out = []
    in_double = False
    prev = ""
    for ch in text:
        if ch == '"' and prev != "\\":
            in_double = not in_double
            out.append(ch)
        elif ch == "'" and prev != "\\" and not in_double:
            out.append('"')
        else:
            out.append(ch)
        prev = ch
    return _BARE_KEY.sub(r'\1"\2"\3', "".join(out))


def _extract_json_prop(props: str, name: str) -> Any | None:
    match = re.search(rf"\b{name}=\{{", props)
    if not match:
        return None

    start = match.end()
    depth = 1
    for i in range(start, len(props)):
        ch = props[i]
        if ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
        if depth == 0:
            literal = props[start:i]
            break
    else:
        return None

    try:
        return json.loads(_js_literal_to_json(literal))
    except json.JSONDecodeError:
        logger.warning("Could not decode %s={...} in agent definition", name)
        return None


def _extract_agent(props: str) -> AgentConfig | None:
    name = re.search(r"\bname=[\"']([^\"']+)[\"']", props)
    if not name:
        return None

    data: dict[str, Any] = {"name": name.group(1)}
    for prop in STRING_PROPS:
        m = re.search(rf"\b{prop}=[\"']([^\"']+)[\"']", props)
        if m:
            data[prop] = m.group(1)
    for prop in JSON_PROPS:
        value = _extract_json_prop(props, prop)
        if value:
            data[prop] = value

    try:
        return AgentConfig(**data)
    except ValidationError as e:
        logger.warning("Skipping invalid agent %r: %s", data["name"], e)
        return None


def parse_agent_document(content: str, path: str | Path) -> ParsedAgentDocument:
    metadata, body = split_frontmatter(content)
    agents = []
    for match in AGENT_TAG_PATTERN.finditer(body):
        agent = _extract_agent(match.group(1))
        if agent is not None:
            agents.append(agent)
    return ParsedAgentDocument(path=str(path), metadata=metadata, agents=agents, raw_content=content)


def load_agent_documents(path: Path) -> list[AgentConfig]:
    """Load agents from a single document or every .md/.mdx file in a directory."""
    if path.is_dir():
        files = sorted(p for p in path.iterdir() if p.suffix in AGENT_FILE_SUFFIXES)
    elif path.exists():
        files = [path]
    else:
        logger.warning("No agent definitions found at %s", path)
        return []

    agents: list[AgentConfig] = []
    for file in files:
        parsed = parse_agent_document(file.read_text(), file)
        agents.extend(parsed.agents)
        logger.info("Loaded %d agent(s) from %s", len(parsed.agents), file.name)
    return agents


def find_agent_definitions(cwd: Path) -> Path | None:
    for candidate in ("AGENTS.mdx", "agents.mdx", ".agents"):
        path = cwd / candidate
        if path.exists():
            return path
    return None


def validate_capabilities(agent: AgentConfig, known: list[str]) -> tuple[bool, list[str]]:
    """Check every declared capability against a list of known tool names."""
    errors = [f"Unknown capability: {c.name}" for c in agent.capabilities if c.name not in known]
    return not errors, errors


def agents_to_json(parsed: ParsedAgentDocument) -> str:
    return json.dumps(
        {
            "metadata": parsed.metadata,
            "agents": [a.model_dump(mode="json", exclude_none=True) for a in parsed.agents],
        },
        indent=2,
    )
