"""Workflow daemon. Hot-reloads workflow documents and dispatches issue events.

Two producers (the workflow directory watcher and the issue-store watcher)
feed one ordered queue. A single consumer loop performs reloads and
dispatches, so handlers and reloads never overlap.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from agentflow.beads import BeadsStore, find_beads_dir
from agentflow.config import AgentflowConfig
from agentflow.errors import DaemonError
from agentflow.models import IssueEvent, IssueEventType, IssueStatus, Repo
from agentflow.runtime import RuntimeConfig, WorkflowRuntime, create_runtime
from agentflow.transports.local import LocalTransport
from agentflow.watchers import DirectoryWatcher, IssueEventWatcher
from agentflow.workflow.compiler import CompiledWorkflow, compile_workflows, execute_workflow
from agentflow.workflow.parser import find_workflows_dir, load_workflows
from agentflow.workflow.registration import WorkflowRegistration

logger = logging.getLogger(__name__)

EVENT_KEYS_BY_TYPE: dict[IssueEventType, str] = {
    IssueEventType.CREATED: "issue.created",
    IssueEventType.UPDATED: "issue.updated",
    IssueEventType.CLOSED: "issue.closed",
    IssueEventType.REOPENED: "issue.updated",
}


@dataclass
class ActiveWorkflow:
    name: str
    path: str
    compiled: CompiledWorkflow
    registration: WorkflowRegistration


class _Reload:
    def __repr__(self) -> str:
        return "<reload>"


RELOAD = _Reload()

WorkItem = Union[_Reload, IssueEvent]


def event_keys(event: IssueEvent) -> list[str]:
    """Handler keys an issue event fires, in dispatch order."""
    keys = [EVENT_KEYS_BY_TYPE[event.type]]
    previous = event.previous_issue
    if (
        event.type == IssueEventType.UPDATED
        and previous is not None
        and previous.status == IssueStatus.BLOCKED
        and event.issue.status == IssueStatus.OPEN
    ):
        keys.append("issue.ready")
    return keys


class Daemon:
    """Watches ``.workflows`` and the issue store and runs matching handlers."""

    def __init__(
        self,
        repo: Repo,
        *,
        cwd: Path | None = None,
        config: AgentflowConfig | None = None,
        runtime: WorkflowRuntime | None = None,
    ):
        self.repo = repo
        self.cwd = cwd or Path.cwd()
        self.config = config or AgentflowConfig()

        self.runtime = runtime or create_runtime(
            RuntimeConfig(
                repo=repo,
                transport=lambda: LocalTransport(
                    repo,
                    cwd=self.cwd,
                    config=self.config.local,
                    github_config=self.config.github,
                ),
            )
        )

        self.workflows: dict[str, ActiveWorkflow] = {}
        self.errors: dict[str, list[str]] = {}
        self.workflows_dir: Path | None = None

        self.queue: asyncio.Queue[WorkItem] = asyncio.Queue()
        self._file_watcher: DirectoryWatcher | None = None
        self._issue_watcher: IssueEventWatcher | None = None
        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._running

    # ── Lifecycle ────────────────────────────────────────────────────────

    def _resolve_workflows_dir(self) -> Path:
        configured = self.config.daemon.workflows_dir
        if configured:
            path = self.cwd / configured
            if not path.is_dir():
                raise DaemonError(f"Workflows directory not found: {path}")
            return path
        found = find_workflows_dir(self.cwd)
        if found is None:
            raise DaemonError(f"No .workflows or workflows directory found in {self.cwd}")
        return found

    def _resolve_beads_dir(self) -> Path | None:
        configured = self.config.daemon.beads_dir
        if configured:
            path = self.cwd / configured
            return path if path.is_dir() else None
        return find_beads_dir(self.cwd)

    async def start(self) -> None:
        if self._running:
            raise DaemonError("Daemon already running")

        self.workflows_dir = self._resolve_workflows_dir()
        logger.info("Watching workflows in %s", self.workflows_dir)
        await self.reload()

        daemon_config = self.config.daemon
        self._file_watcher = DirectoryWatcher(
            self.workflows_dir,
            self._on_workflows_changed,
            debounce=daemon_config.file_debounce,
            poll_interval=daemon_config.poll_interval,
        )
        await self._file_watcher.start()

        beads_dir = self._resolve_beads_dir()
        if beads_dir is not None:
            store = BeadsStore(beads_dir, bd_binary=self.config.local.bd_binary)
            self._issue_watcher = IssueEventWatcher(
                store,
                self._on_issue_event,
                debounce=daemon_config.event_debounce,
                poll_interval=daemon_config.poll_interval,
            )
            await self._issue_watcher.start()
        else:
            logger.warning("No .beads directory found; issue events disabled")

        self._running = True
        self._task = asyncio.create_task(self._consumer_loop(), name="workflow-dispatcher")
        logger.info("Daemon started with %d workflow(s)", len(self.workflows))

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False

        for watcher in (self._file_watcher, self._issue_watcher):
            if watcher is not None:
                await watcher.stop()
        self._file_watcher = None
        self._issue_watcher = None

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        self.workflows.clear()
        await self.runtime.close()
        logger.info("Daemon stopped")

    async def run_until_interrupted(self) -> None:
        """Start, block until SIGINT/SIGTERM, then stop."""
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop_event.set))

        await self.start()
        try:
            await stop_event.wait()
        finally:
            await self.stop()

    # ── Producers ────────────────────────────────────────────────────────

    async def _on_workflows_changed(self) -> None:
        await self.queue.put(RELOAD)

    async def _on_issue_event(self, event: IssueEvent) -> None:
        await self.queue.put(event)

    # ── Consumer ─────────────────────────────────────────────────────────

    async def _consumer_loop(self) -> None:
        while self._running:
            try:
                item = await asyncio.wait_for(self.queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break

            try:
                if isinstance(item, _Reload):
                    await self.reload()
                else:
                    await self.handle_event(item)
            except Exception:
                logger.exception("Error processing %r", item)

    async def reload(self) -> None:
        """Recompile every workflow document and replace the registry."""
        if self.workflows_dir is None:
            self.workflows_dir = self._resolve_workflows_dir()

        parsed = load_workflows(self.workflows_dir)
        logger.info("Found %d workflow file(s)", len(parsed))

        workflows: dict[str, ActiveWorkflow] = {}
        errors: dict[str, list[str]] = {}
        for compiled in compile_workflows(parsed):
            if not compiled.success:
                errors[compiled.path] = [str(e) for e in compiled.errors]
                for message in errors[compiled.path]:
                    logger.error("Compilation failed for %s: %s", compiled.name, message)
                continue
            try:
                registration = await execute_workflow(compiled, self.runtime)
            except Exception as e:
                errors[compiled.path] = [str(e)]
                logger.exception("Failed to execute workflow %s", compiled.name)
                continue
            workflows[compiled.path] = ActiveWorkflow(
                name=compiled.name,
                path=compiled.path,
                compiled=compiled,
                registration=registration,
            )

        self.workflows = workflows
        self.errors = errors
        logger.info("Loaded %d workflow(s)", len(workflows))

    async def handle_event(self, event: IssueEvent) -> int:
        """Run every subscribed handler for an event; returns how many ran cleanly.

        Workflows run in load order; within one workflow the handlers for the
        event's own key run before its ``issue.ready`` handlers.
        """
        issue = event.issue
        runtime = self.runtime.with_issue(issue)
        keys = event_keys(event)
        succeeded = 0
        for workflow in list(self.workflows.values()):
            handlers = workflow.registration.handlers
            for key in keys:
                for handler in handlers.get(key, []):
                    logger.info("Running %s handler from %s for %s", key, workflow.name, issue.id)
                    try:
                        await handler(issue, runtime)
                    except Exception:
                        logger.exception(
                            "Handler error in workflow %s (%s, issue %s)",
                            workflow.name,
                            key,
                            issue.id,
                        )
                        continue
                    succeeded += 1
        return succeeded
