"""Runtime orchestration: plan resolution, process control and session state."""

from kubeforward.runtime.orchestrator import DownResult, Outcome, SessionOrchestrator, UpResult
from kubeforward.runtime.plan import (
    PlanBuildError,
    PlanBuildResult,
    ResolvedEnvironment,
    ResolvedForward,
    ResolvedPlan,
    build_resolved_plan,
)
from kubeforward.runtime.process_runner import (
    NoopProcessRunner,
    PosixProcessRunner,
    ProcessRunner,
    ProcessRunnerError,
    ProcessStartError,
    ProcessStopError,
    StartedProcess,
    StartProcessRequest,
    make_process_runner,
)
from kubeforward.runtime.state_store import (
    ManagedForwardProcess,
    ManagedSession,
    RuntimeState,
    StateLoadResult,
    StateStoreError,
    default_state_path_for_config,
    load_state,
    save_state,
)

__all__ = [
    "DownResult",
    "ManagedForwardProcess",
    "ManagedSession",
    "NoopProcessRunner",
    "Outcome",
    "PlanBuildError",
    "PlanBuildResult",
    "PosixProcessRunner",
    "ProcessRunner",
    "ProcessRunnerError",
    "ProcessStartError",
    "ProcessStopError",
    "ResolvedEnvironment",
    "ResolvedForward",
    "ResolvedPlan",
    "RuntimeState",
    "SessionOrchestrator",
    "StartProcessRequest",
    "StartedProcess",
    "StateLoadResult",
    "StateStoreError",
    "UpResult",
    "build_resolved_plan",
    "default_state_path_for_config",
    "load_state",
    "make_process_runner",
    "save_state",
]
