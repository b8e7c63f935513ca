"""Exception hierarchy for agentflow.

Everything raised on purpose by this package derives from AgentflowError so
callers (the daemon dispatch loop, the CLI) can catch one base class.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from agentflow.workflow.compiler import CompilationError


class AgentflowError(Exception):
    """Base class for agentflow errors."""


class ConfigError(AgentflowError):
    """Invalid or unreadable configuration."""


class WorkflowValidationError(AgentflowError):
    """A workflow document failed compilation.

    Carries the individual compilation errors so the daemon can record them
    per document.
    """

    def __init__(self, message: str, errors: list[CompilationError] | None = None):
        super().__init__(message)
        self.errors = list(errors or [])


class NotFoundError(AgentflowError, LookupError):
    """Unknown issue, agent, or transport method."""


class RemoteError(AgentflowError):
    """A remote service returned a non-success response."""

    def __init__(self, message: str, *, status_code: int | None = None, method: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.method = method


class ApprovalTimeoutError(AgentflowError, TimeoutError):
    """Waiting for a pull request approval exceeded its timeout."""


class ExecutionError(AgentflowError):
    """A workflow module or handler failed while running."""

    def __init__(self, message: str, *, workflow: str | None = None, line: int | None = None):
        super().__init__(message)
        self.workflow = workflow
        self.line = line


class CommandError(AgentflowError):
    """An external command (git, claude, bd) exited non-zero."""

    def __init__(self, command: list[str], returncode: int, stderr: str = ""):
        detail = stderr.strip() or "no output"
        super().__init__(f"{' '.join(command)} exited with {returncode}: {detail}")
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


class DaemonError(AgentflowError):
    """The daemon could not be set up."""
