"""Tests for agent matching."""

import pytest

from agentflow.matcher import extract_file_paths, focus_score, glob_match, match_agent
from agentflow.models import AgentConfig, Issue


@pytest.fixture
def sam():
    return AgentConfig(name="Sam", capabilities=["code", "security"])


@pytest.fixture
def cody():
    return AgentConfig(name="Cody", capabilities=["code"])


class TestMatchAgent:
    def test_superset_agent_wins(self, sam, cody):
        issue = Issue(id="i-1", title="Harden auth", labels=["bug", "security"])
        match = match_agent(issue, [cody, sam])
        assert match is not None
        assert match.agent.name == "Sam"
        assert match.confidence == 1.0
        assert match.reason == "Covers 2/2 required capabilities"

    def test_no_agents(self):
        assert match_agent(Issue(id="i-1", labels=["bug"]), []) is None

    def test_no_required_capabilities(self, sam):
        assert match_agent(Issue(id="i-1", title="Plan offsite"), [sam]) is None

    def test_zero_overlap(self):
        writer = AgentConfig(name="Wren", capabilities=["docs"])
        assert match_agent(Issue(id="i-1", labels=["security"]), [writer]) is None

    def test_ties_keep_first(self, cody):
        other = AgentConfig(name="Coda", capabilities=["code"])
        match = match_agent(Issue(id="i-1", labels=["bug"]), [cody, other])
        assert match.agent.name == "Cody"

    def test_superset_scores_at_least_as_high(self, sam, cody):
        issue = Issue(id="i-1", title="fix src/app.py", labels=["security"])
        sam_only = match_agent(issue, [sam])
        cody_only = match_agent(issue, [cody])
        assert sam_only.confidence >= cody_only.confidence

    def test_focus_bonus(self):
        frontend = AgentConfig(name="Fe", capabilities=["code"], focus=["src/ui/**/*.tsx"])
        generalist = AgentConfig(name="Gen", capabilities=["code"])
        issue = Issue(id="i-1", title="Fix button", description="Broken in src/ui/Button.tsx")
        match = match_agent(issue, [generalist, frontend])
        assert match.agent.name == "Fe"
        assert match.confidence == 1.0
        assert match.reason.endswith("with focus area match")

    def test_no_focus_penalty(self):
        generalist = AgentConfig(name="Gen", capabilities=["code"])
        match = match_agent(Issue(id="i-1", title="Fix crash in main.go"), [generalist])
        assert match.confidence == pytest.approx(0.9)


class TestPaths:
    def test_extract_file_paths(self):
        text = "See src/index.ts and README.md, not example.com"
        assert extract_file_paths(text) == ["src/index.ts", "README.md"]

    def test_double_star_matches_zero_directories(self):
        assert glob_match("src/Button.tsx", "src/**/*.tsx")
        assert glob_match("src/a/b/Button.tsx", "src/**/*.tsx")
        assert not glob_match("lib/Button.tsx", "src/**/*.tsx")

    def test_single_star_stays_in_segment(self):
        assert glob_match("src/x.ts", "src/*.ts")
        assert not glob_match("src/deep/x.ts", "src/*.ts")
        assert not glob_match("src/a.py", "*.py")
        assert glob_match("src/auth/login/form.ts", "src/auth/**")
        assert glob_match("src/a1.ts", "src/a?.ts")
        assert not glob_match("src/a/.ts", "src/a?.ts")

    def test_nested_path_gets_no_focus_bonus(self):
        shallow = AgentConfig(name="Shallow", capabilities=["code"], focus=["src/*.ts"])
        issue = Issue(id="i-1", title="Fix parser", description="Broken in src/deep/parse.ts")
        match = match_agent(issue, [shallow])
        assert match.confidence == pytest.approx(1.0)
        assert not match.reason.endswith("with focus area match")

    def test_focus_score_fraction(self):
        assert focus_score(["a.py", "b.md"], ["*.py"]) == 0.5
        assert focus_score([], ["*.py"]) == 0.0
