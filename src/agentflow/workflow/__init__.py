"""Workflow documents: parsing, compilation, and the closed interpreter they run on."""

from agentflow.workflow.compiler import (
    CompilationError,
    CompiledWorkflow,
    compile_workflow,
    compile_workflows,
    execute_workflow,
)
from agentflow.workflow.parser import (
    ParsedWorkflow,
    find_workflows_dir,
    load_workflows,
    parse_workflow,
)
from agentflow.workflow.registration import Every, On, Schedule, WorkflowRegistration, time_to_cron

__all__ = [
    "CompilationError",
    "CompiledWorkflow",
    "Every",
    "On",
    "ParsedWorkflow",
    "Schedule",
    "WorkflowRegistration",
    "compile_workflow",
    "compile_workflows",
    "execute_workflow",
    "find_workflows_dir",
    "load_workflows",
    "parse_workflow",
    "time_to_cron",
]
