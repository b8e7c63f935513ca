"""Tests for agent definition documents."""

import json
from pathlib import Path

import pytest

from agentflow.agent_definitions import (
    agents_to_json,
    find_agent_definitions,
    load_agent_documents,
    parse_agent_document,
    validate_capabilities,
)
from agentflow.models import AgentAutonomy

DOCUMENT = """\
---
title: Team
version: 2
---

# Our agents

<Agent
  name="sam"
  autonomy="full"
  description="Security-minded engineer"
  capabilities={[{ name: 'code' }, { name: 'security', operations: ['audit'] }]}
  focus={['src/auth/**', "src/crypto/**"]}
/>

<Agent name="cody" capabilities={['code']} />

<Agent autonomy="full" />
"""


@pytest.fixture
def agents_dir(tmp_path: Path) -> Path:
    d = tmp_path / ".agents"
    d.mkdir()
    (d / "team.mdx").write_text(DOCUMENT)
    (d / "extra.md").write_text('<Agent name="doc" capabilities={["docs"]} />')
    (d / "notes.txt").write_text('<Agent name="ignored" />')
    return d


class TestParseAgentDocument:
    def test_frontmatter_and_agents(self):
        parsed = parse_agent_document(DOCUMENT, "AGENTS.mdx")
        assert parsed.metadata == {"title": "Team", "version": 2}
        assert [a.name for a in parsed.agents] == ["sam", "cody"]

    def test_js_literal_props(self):
        sam = parse_agent_document(DOCUMENT, "AGENTS.mdx").agents[0]
        assert sam.autonomy == AgentAutonomy.FULL
        assert sam.description == "Security-minded engineer"
        assert sam.capability_names == {"code", "security"}
        assert sam.capabilities[1].operations == ["audit"]
        assert sam.focus == ["src/auth/**", "src/crypto/**"]

    def test_bare_capability_names(self):
        cody = parse_agent_document(DOCUMENT, "AGENTS.mdx").agents[1]
        assert cody.capability_names == {"code"}
        assert cody.autonomy == AgentAutonomy.SUPERVISED

    def test_undecodable_literal_is_ignored(self):
        parsed = parse_agent_document('<Agent name="x" focus={[oops,]} />', "a.mdx")
        assert parsed.agents[0].focus == []

    def test_no_frontmatter(self):
        parsed = parse_agent_document('<Agent name="solo" />', "a.md")
        assert parsed.metadata == {}
        assert parsed.agents[0].name == "solo"


class TestLoading:
    def test_load_directory(self, agents_dir):
        names = [a.name for a in load_agent_documents(agents_dir)]
        assert names == ["doc", "sam", "cody"]

    def test_load_single_file(self, agents_dir):
        assert [a.name for a in load_agent_documents(agents_dir / "extra.md")] == ["doc"]

    def test_missing_path(self, tmp_path):
        assert load_agent_documents(tmp_path / "nope") == []

    def test_find_prefers_agents_mdx(self, tmp_path, agents_dir):
        assert find_agent_definitions(tmp_path) == agents_dir
        (tmp_path / "AGENTS.mdx").write_text(DOCUMENT)
        assert find_agent_definitions(tmp_path) == tmp_path / "AGENTS.mdx"

    def test_find_nothing(self, tmp_path):
        assert find_agent_definitions(tmp_path) is None


class TestHelpers:
    def test_validate_capabilities(self):
        sam = parse_agent_document(DOCUMENT, "AGENTS.mdx").agents[0]
        assert validate_capabilities(sam, ["code", "security"]) == (True, [])
        valid, errors = validate_capabilities(sam, ["code"])
        assert not valid
        assert errors == ["Unknown capability: security"]

    def test_agents_to_json(self):
        data = json.loads(agents_to_json(parse_agent_document(DOCUMENT, "AGENTS.mdx")))
        assert data["metadata"]["title"] == "Team"
        assert data["agents"][0]["name"] == "sam"
