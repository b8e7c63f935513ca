"""Tests for the directory and issue-store watchers."""

import json
import os
from pathlib import Path

import pytest

from agentflow.beads import BeadsStore
from agentflow.models import Issue, IssueEventType, IssueStatus
from agentflow.watchers import DirectoryWatcher, IssueEventWatcher, diff_issues


def touch(path: Path, content: str, bump: int = 1) -> None:
    path.write_text(content)
    stat = path.stat()
    # mtime granularity can hide rapid rewrites
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + bump * 1_000_000_000))


class TestDiffIssues:
    def test_created_and_unchanged(self):
        a = Issue(id="a", title="A")
        events = diff_issues({"a": a}, {"a": a, "b": Issue(id="b")})
        assert [(e.type, e.issue.id) for e in events] == [(IssueEventType.CREATED, "b")]

    def test_closed_and_reopened(self):
        open_a = Issue(id="a")
        closed_a = Issue(id="a", status=IssueStatus.CLOSED)
        [closed] = diff_issues({"a": open_a}, {"a": closed_a})
        assert closed.type == IssueEventType.CLOSED
        assert closed.previous_issue == open_a
        [reopened] = diff_issues({"a": closed_a}, {"a": open_a})
        assert reopened.type == IssueEventType.REOPENED

    def test_updated_carries_previous(self):
        before = Issue(id="a", status=IssueStatus.BLOCKED)
        after = Issue(id="a", status=IssueStatus.OPEN)
        [event] = diff_issues({"a": before}, {"a": after})
        assert event.type == IssueEventType.UPDATED
        assert event.previous_issue.status == IssueStatus.BLOCKED

    def test_deleted_open_issue_is_closed(self):
        before = Issue(id="a", title="Gone")
        [event] = diff_issues({"a": before}, {})
        assert event.type == IssueEventType.CLOSED
        assert event.issue.status == IssueStatus.CLOSED
        assert event.issue.title == "Gone"
        assert diff_issues({"a": Issue(id="a", status=IssueStatus.CLOSED)}, {}) == []


class TestDirectoryWatcher:
    async def test_reports_change_once(self, tmp_path):
        changes = []

        async def on_change():
            changes.append(True)

        (tmp_path / "a.md").write_text("one")
        watcher = DirectoryWatcher(tmp_path, on_change, debounce=0)
        watcher._prime()

        assert not await watcher.poll_once()
        touch(tmp_path / "a.md", "two")
        assert await watcher.poll_once()
        assert not await watcher.poll_once()
        assert changes == [True]

    async def test_ignores_other_suffixes(self, tmp_path):
        watcher = DirectoryWatcher(tmp_path, lambda: None, debounce=0)
        watcher._prime()
        (tmp_path / "notes.txt").write_text("x")
        assert not await watcher.poll_once()

    async def test_debounce_waits_for_quiet(self, tmp_path):
        async def on_change():
            pass

        watcher = DirectoryWatcher(tmp_path, on_change, debounce=60)
        watcher._prime()
        (tmp_path / "new.mdx").write_text("x")
        assert not await watcher.poll_once()
        assert not await watcher.poll_once()

    async def test_start_stop(self, tmp_path):
        async def on_change():
            pass

        watcher = DirectoryWatcher(tmp_path, on_change, poll_interval=0.01)
        await watcher.start()
        await watcher.stop()
        assert watcher._task is None


class TestIssueEventWatcher:
    @pytest.fixture
    def beads_dir(self, tmp_path):
        d = tmp_path / ".beads"
        d.mkdir()
        (d / "issues.jsonl").write_text(json.dumps({"id": "bd-1", "status": "blocked"}) + "\n")
        return d

    async def test_emits_events_on_change(self, beads_dir):
        events = []

        async def on_event(event):
            events.append(event)

        watcher = IssueEventWatcher(BeadsStore(beads_dir), on_event, debounce=0)
        watcher._prime()
        assert not await watcher.poll_once()

        rows = [{"id": "bd-1", "status": "open"}, {"id": "bd-2", "title": "New"}]
        touch(beads_dir / "issues.jsonl", "\n".join(json.dumps(r) for r in rows))
        assert await watcher.poll_once()

        assert [(e.type, e.issue.id) for e in events] == [
            (IssueEventType.UPDATED, "bd-1"),
            (IssueEventType.CREATED, "bd-2"),
        ]
        assert events[0].previous_issue.status == IssueStatus.BLOCKED

    async def test_file_appears_later(self, tmp_path):
        events = []

        async def on_event(event):
            events.append(event)

        store = BeadsStore(tmp_path)
        watcher = IssueEventWatcher(store, on_event, debounce=0)
        watcher._prime()
        store.issues_path.write_text(json.dumps({"id": "bd-1"}) + "\n")
        assert await watcher.poll_once()
        assert [e.type for e in events] == [IssueEventType.CREATED]
