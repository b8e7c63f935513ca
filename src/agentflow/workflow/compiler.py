"""Workflow compilation and execution.

``compile_workflow`` validates a parsed document without running anything
and records every problem it finds. ``execute_workflow`` runs a compiled
module once against a runtime and returns what it registered.
"""

from __future__ import annotations

import ast
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from agentflow.errors import WorkflowValidationError
from agentflow.runtime import WorkflowRuntime
from agentflow.workflow.interpreter import Interpreter, WorkflowFunction, validate
from agentflow.workflow.parser import ParsedWorkflow
from agentflow.workflow.registration import Every, On, WorkflowRegistration

logger = logging.getLogger(__name__)

EVENT_HANDLER_PATTERN = re.compile(r"\bon\.(issue|epic)\.(\w+)\s*\(|@\s*on\.(issue|epic)\.\w+")
SCHEDULE_PATTERN = re.compile(
    r"\bevery\.(day|hour|minute|week)\s*\(|@\s*every\.(day|hour|minute|week)\b"
)

NO_CODE_MESSAGE = "No python code blocks found in workflow"
NO_REGISTRATION_MESSAGE = (
    "Workflow must contain at least one event handler (on.issue.*, on.epic.*) "
    "or schedule (every.*)"
)


@dataclass
class CompilationError:
    message: str
    line: int | None = None
    column: int | None = None

    def __str__(self) -> str:
        if self.line is None:
            return self.message
        return f"line {self.line}: {self.message}"


@dataclass
class CompiledWorkflow:
    name: str
    path: str
    metadata: dict[str, Any]
    source: str
    success: bool
    errors: list[CompilationError] = field(default_factory=list)
    module: ast.Module | None = None

    def raise_for_errors(self) -> None:
        if not self.success:
            summary = "; ".join(str(e) for e in self.errors)
            raise WorkflowValidationError(f"Workflow {self.name} is invalid: {summary}", self.errors)


def _shallow_checks(source: str) -> list[CompilationError]:
    errors: list[CompilationError] = []

    if not EVENT_HANDLER_PATTERN.search(source) and not SCHEDULE_PATTERN.search(source):
        errors.append(CompilationError(NO_REGISTRATION_MESSAGE))

    opening, closing = source.count("{"), source.count("}")
    if opening != closing:
        errors.append(
            CompilationError(f"Unbalanced braces: {opening} opening, {closing} closing")
        )

    opening, closing = source.count("("), source.count(")")
    if opening != closing:
        errors.append(
            CompilationError(f"Unbalanced parentheses: {opening} opening, {closing} closing")
        )
    return errors


def compile_workflow(workflow: ParsedWorkflow) -> CompiledWorkflow:
    """Validate a parsed workflow. Never raises for an invalid document."""
    compiled = CompiledWorkflow(
        name=workflow.name,
        path=workflow.path,
        metadata=workflow.metadata,
        source=workflow.source,
        success=False,
    )
    if not workflow.source.strip():
        compiled.errors.append(CompilationError(NO_CODE_MESSAGE))
        return compiled

    compiled.errors.extend(_shallow_checks(workflow.source))

    try:
        module = ast.parse(workflow.source, filename=workflow.path)
    except SyntaxError as e:
        compiled.errors.append(CompilationError(f"Syntax error: {e.msg}", e.lineno, e.offset))
    else:
        for violation in validate(module):
            compiled.errors.append(
                CompilationError(violation.message, violation.line, violation.column)
            )
        compiled.module = module

    compiled.success = not compiled.errors
    if not compiled.success:
        compiled.module = None
        logger.debug("Workflow %s failed compilation with %d error(s)", workflow.name, len(compiled.errors))
    return compiled


def compile_workflows(workflows: list[ParsedWorkflow]) -> list[CompiledWorkflow]:
    return [compile_workflow(w) for w in workflows]


# ── Execution ────────────────────────────────────────────────────────────────


def build_bindings(runtime: WorkflowRuntime, on: On, every: Every, workflow: str) -> dict[str, Any]:
    """The read-only names a workflow sees for one invocation."""
    return {
        "on": on,
        "every": every,
        "repo": runtime.repo,
        "issue": runtime.issue,
        "claude": runtime.claude,
        "pr": runtime.pr,
        "issues": runtime.issues,
        "epics": runtime.epics,
        "git": runtime.git,
        "todo": runtime.todo,
        "dag": runtime.dag,
        "agents": runtime.agents,
        "log": logging.getLogger(f"agentflow.workflow.{workflow}"),
    }


class WorkflowHandler:
    """A registered workflow function, rebound to the runtime it is called with.

    The daemon calls issue handlers as ``handler(issue, runtime)`` and
    schedules as ``handler(runtime)``; the last runtime argument supplies
    the binding table for that invocation.
    """

    def __init__(self, fn: WorkflowFunction, workflow: str, on: On, every: Every):
        self.fn = fn
        self.workflow = workflow
        self._on = on
        self._every = every

    def __repr__(self) -> str:
        return f"<WorkflowHandler {self.workflow}.{self.fn.name}>"

    async def __call__(self, *args: Any) -> Any:
        runtimes = [a for a in args if isinstance(a, WorkflowRuntime)]
        bindings = None
        if runtimes:
            bindings = build_bindings(runtimes[-1], self._on, self._every, self.workflow)
        return await self.fn.call_with_bindings(args, {}, bindings)


async def execute_workflow(compiled: CompiledWorkflow, runtime: WorkflowRuntime) -> WorkflowRegistration:
    """Run a compiled workflow's module body once and collect its registrations.

    Raises:
        WorkflowValidationError: If the workflow did not compile.
        ExecutionError: If the module body fails.
    """
    compiled.raise_for_errors()
    assert compiled.module is not None

    registration = WorkflowRegistration(name=compiled.name)
    on, every = On(registration), Every(registration)

    interpreter = Interpreter(compiled.module, compiled.name)
    await interpreter.run_module(build_bindings(runtime, on, every, compiled.name))

    def wrap(handler: Any) -> Any:
        if isinstance(handler, WorkflowFunction):
            return WorkflowHandler(handler, compiled.name, on, every)
        return handler

    registration.map_handlers(wrap)
    logger.info(
        "Workflow %s registered %d handler(s), %d schedule(s)",
        compiled.name,
        registration.handler_count,
        len(registration.schedules),
    )
    return registration
