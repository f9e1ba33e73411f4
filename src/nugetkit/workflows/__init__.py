"""Registry command workflows: Ping, Search, Publish, Unlist, Relist, View, Login."""

from nugetkit.workflows.commands import (
    WORKFLOW_TYPES,
    Login,
    Ping,
    Publish,
    Relist,
    Search,
    Unlist,
    View,
    Workflow,
    run_workflow,
    run_workflows,
    supported_endpoints,
)
from nugetkit.workflows.context import WorkflowContext
from nugetkit.workflows.types import (
    ExitCode,
    Step,
    TerminalState,
    ViewPart,
    WorkflowOutcome,
    exit_code_for,
)

__all__ = [
    "WORKFLOW_TYPES",
    "ExitCode",
    "Login",
    "Ping",
    "Publish",
    "Relist",
    "Search",
    "Step",
    "TerminalState",
    "Unlist",
    "View",
    "ViewPart",
    "Workflow",
    "WorkflowContext",
    "WorkflowOutcome",
    "exit_code_for",
    "run_workflow",
    "run_workflows",
    "supported_endpoints",
]
