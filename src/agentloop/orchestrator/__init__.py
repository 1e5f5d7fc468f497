from .context_pack import ContextPack, ProvenanceEntry, build_context_pack
from .feedback import (
    FailedReply,
    HeuristicReply,
    IterationAnalysis,
    StructuredReply,
    analyze_iteration,
    decide_feedback,
    parse_judge_reply,
)
from .runner import OrchestratorResult, compose_task_prompt, run_orchestrator
from .task_loop import (
    SessionStartError,
    TaskLoopResult,
    TaskLoopStep,
    TaskLoopSummary,
    run_task_loop,
)

__all__ = [
    "ContextPack",
    "FailedReply",
    "HeuristicReply",
    "IterationAnalysis",
    "OrchestratorResult",
    "ProvenanceEntry",
    "SessionStartError",
    "StructuredReply",
    "TaskLoopResult",
    "TaskLoopStep",
    "TaskLoopSummary",
    "analyze_iteration",
    "build_context_pack",
    "compose_task_prompt",
    "decide_feedback",
    "parse_judge_reply",
    "run_orchestrator",
    "run_task_loop",
]
