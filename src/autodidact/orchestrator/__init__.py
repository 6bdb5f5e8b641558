"""Task orchestration: single tasks and parallel agent runs."""

from .functions import (
    CREATE_AGENT_JOB,
    PROCESS_TASK,
    RUN_AGENT_JOB,
    TOKEN_HEADER,
    DisabledFunctionsClient,
    FakeFunctionsClient,
    FunctionsClient,
    RemoteInvocationError,
)
from .parallel import AgentRun, ParallelExecutor
from .pricing import CostEstimate, estimate_cost, estimate_time, sample_complexity
from .tasks import TASK_TRANSITIONS, TaskOptions, TaskOrchestrator, can_transition

__all__ = [
    "AgentRun",
    "CREATE_AGENT_JOB",
    "CostEstimate",
    "DisabledFunctionsClient",
    "FakeFunctionsClient",
    "FunctionsClient",
    "PROCESS_TASK",
    "ParallelExecutor",
    "RUN_AGENT_JOB",
    "RemoteInvocationError",
    "TASK_TRANSITIONS",
    "TOKEN_HEADER",
    "TaskOptions",
    "TaskOrchestrator",
    "can_transition",
    "estimate_cost",
    "estimate_time",
    "sample_complexity",
]
