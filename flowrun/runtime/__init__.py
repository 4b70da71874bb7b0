"""Runtime: engine, recorder, worker pool, pre-flight gates and scheduling."""

from flowrun.runtime.engine import NodeExecutionFailed, WorkflowEngine
from flowrun.runtime.preflight import AllowAllGate, CreditGate, PreflightRejected, Principal, SubmissionGate
from flowrun.runtime.recorder import RunRecorder
from flowrun.runtime.schedule import ScheduleConfig, ScheduledWorkflow, calculate_next_run, trigger_due
from flowrun.runtime.worker import RunWorker

__all__ = [
    "AllowAllGate",
    "CreditGate",
    "NodeExecutionFailed",
    "PreflightRejected",
    "Principal",
    "RunRecorder",
    "RunWorker",
    "ScheduleConfig",
    "ScheduledWorkflow",
    "SubmissionGate",
    "WorkflowEngine",
    "calculate_next_run",
    "trigger_due",
]
