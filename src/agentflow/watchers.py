"""Polling watchers feeding the daemon: workflow documents and issue-store changes.

Both poll on an interval and debounce: a burst of changes is reported once,
after things have been quiet for ``debounce`` seconds.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable

from agentflow.beads import BeadsStore
from agentflow.models import Issue, IssueEvent, IssueEventType, IssueStatus

logger = logging.getLogger(__name__)

Snapshot = dict[str, tuple[int, int]]


class _PollingWatcher:
    """Shared start/stop and debounce loop."""

    name = "watcher"

    def __init__(self, debounce: float, poll_interval: float):
        self.debounce = debounce
        self.poll_interval = poll_interval
        self._running = False
        self._task: asyncio.Task | None = None
        self._pending_since: float | None = None

    async def start(self) -> None:
        self._prime()
        self._running = True
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info("%s started (debounce=%.2fs)", self.name, self.debounce)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("%s stopped", self.name)

    async def _loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.poll_interval)
                await self.poll_once()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("%s poll failed", self.name)

    async def poll_once(self) -> bool:
        """One poll; returns True when a debounced change was delivered."""
        now = asyncio.get_running_loop().time()
        if self._changed():
            self._pending_since = now
        if self._pending_since is None or now - self._pending_since < self.debounce:
            return False
        self._pending_since = None
        await self._fire()
        return True

    def _prime(self) -> None:
        raise NotImplementedError

    def _changed(self) -> bool:
        raise NotImplementedError

    async def _fire(self) -> None:
        raise NotImplementedError


class DirectoryWatcher(_PollingWatcher):
    """Watch one directory (non-recursive) for files with the given suffixes."""

    name = "directory-watcher"

    def __init__(
        self,
        path: Path,
        on_change: Callable[[], Awaitable[None]],
        *,
        suffixes: tuple[str, ...] = (".md", ".mdx"),
        debounce: float = 0.1,
        poll_interval: float = 0.25,
    ):
        super().__init__(debounce, poll_interval)
        self.path = path
        self.suffixes = suffixes
        self.on_change = on_change
        self._snapshot: Snapshot = {}

    def snapshot(self) -> Snapshot:
        if not self.path.is_dir():
            return {}
        result: Snapshot = {}
        for entry in self.path.iterdir():
            if entry.suffix in self.suffixes and entry.is_file():
                stat = entry.stat()
                result[entry.name] = (stat.st_mtime_ns, stat.st_size)
        return result

    def _prime(self) -> None:
        self._snapshot = self.snapshot()

    def _changed(self) -> bool:
        current = self.snapshot()
        if current == self._snapshot:
            return False
        logger.debug("Change detected in %s", self.path)
        self._snapshot = current
        return True

    async def _fire(self) -> None:
        await self.on_change()


def diff_issues(previous: dict[str, Issue], current: dict[str, Issue]) -> list[IssueEvent]:
    """Events that turn snapshot ``previous`` into snapshot ``current``."""
    events: list[IssueEvent] = []
    for issue_id, issue in current.items():
        before = previous.get(issue_id)
        if before is None:
            events.append(IssueEvent(type=IssueEventType.CREATED, issue=issue))
        elif issue == before:
            continue
        elif issue.is_closed and not before.is_closed:
            events.append(IssueEvent(type=IssueEventType.CLOSED, issue=issue, previous_issue=before))
        elif before.is_closed and not issue.is_closed:
            events.append(
                IssueEvent(type=IssueEventType.REOPENED, issue=issue, previous_issue=before)
            )
        else:
            events.append(
                IssueEvent(type=IssueEventType.UPDATED, issue=issue, previous_issue=before)
            )

    for issue_id, before in previous.items():
        if issue_id not in current and not before.is_closed:
            gone = before.model_copy(update={"status": IssueStatus.CLOSED})
            events.append(IssueEvent(type=IssueEventType.CLOSED, issue=gone, previous_issue=before))
    return events


class IssueEventWatcher(_PollingWatcher):
    """Turn changes to the issue store's export into IssueEvents."""

    name = "issue-event-watcher"

    def __init__(
        self,
        store: BeadsStore,
        on_event: Callable[[IssueEvent], Awaitable[None]],
        *,
        debounce: float = 0.5,
        poll_interval: float = 0.25,
    ):
        super().__init__(debounce, poll_interval)
        self.store = store
        self.on_event = on_event
        self._issues: dict[str, Issue] = {}
        self._stamp: tuple[int, int] | None = None

    def _file_stamp(self) -> tuple[int, int] | None:
        path = self.store.issues_path
        if not path.exists():
            return None
        stat = path.stat()
        return (stat.st_mtime_ns, stat.st_size)

    def _load(self) -> dict[str, Issue]:
        return {issue.id: issue for issue in self.store.load()}

    def _prime(self) -> None:
        self._stamp = self._file_stamp()
        self._issues = self._load()

    def _changed(self) -> bool:
        stamp = self._file_stamp()
        if stamp == self._stamp:
            return False
        self._stamp = stamp
        return True

    async def _fire(self) -> None:
        current = self._load()
        events = diff_issues(self._issues, current)
        self._issues = current
        for event in events:
            logger.debug("Issue event: %s %s", event.type.value, event.issue.id)
            await self.on_event(event)
