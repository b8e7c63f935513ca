"""Tests for capability extraction."""

from itertools import permutations

import pytest

from agentflow.capabilities import Capability, parse_required_capabilities
from agentflow.models import Issue


def issue(**kwargs) -> Issue:
    return Issue(id="t-1", **kwargs)


class TestLabels:
    @pytest.mark.parametrize(
        "label,expected",
        [
            ("bug", Capability.CODE),
            ("feature", Capability.CODE),
            ("docs", Capability.DOCS),
            ("Documentation", Capability.DOCS),
            ("SECURITY", Capability.SECURITY),
            ("test", Capability.TEST),
            ("testing", Capability.TEST),
        ],
    )
    def test_label_table(self, label, expected):
        assert parse_required_capabilities(issue(labels=[label])) == {expected}

    def test_unknown_labels_ignored(self):
        assert parse_required_capabilities(issue(labels=["wontfix", "p1"])) == set()

    def test_label_order_does_not_matter(self):
        labels = ["bug", "security", "docs"]
        results = {frozenset(parse_required_capabilities(issue(labels=list(p)))) for p in permutations(labels)}
        assert len(results) == 1


class TestTypeAndKeywords:
    def test_bug_type_needs_code(self):
        assert parse_required_capabilities(issue(type="bug")) == {Capability.CODE}

    def test_task_type_alone_is_empty(self):
        assert parse_required_capabilities(issue(type="task", title="Plan the offsite")) == set()

    def test_deduplicates_label_and_keyword(self):
        caps = parse_required_capabilities(issue(labels=["bug"], title="fix the bug"))
        assert caps == {Capability.CODE}

    def test_keywords_from_title_and_description(self):
        caps = parse_required_capabilities(
            issue(title="Add tests for parser", description="Then update docs and request a code review")
        )
        assert caps == {Capability.TEST, Capability.DOCS, Capability.REVIEW}

    def test_keywords_respect_word_boundaries(self):
        assert parse_required_capabilities(issue(title="prefix handling")) == set()

    def test_keywords_are_case_insensitive(self):
        assert parse_required_capabilities(issue(title="IMPLEMENT login")) == {Capability.CODE}
