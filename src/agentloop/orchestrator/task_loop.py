from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Literal, Optional

from pydantic import BaseModel

from ..config import Settings
from ..interfaces import AgentBackend, JudgeBackend, coerce_agent_result
from ..provenance import ProvenanceWriter
from ..schemas import ArtifactRecord, FeedbackReport, ProvenanceRecord
from ..utils import ensure_dir, new_run_id, now_iso
from .feedback import analyze_iteration

logger = logging.getLogger(__name__)

SUCCESS_REASON = "Judge reported completion"
EXHAUSTED_REASON = "Max iterations reached"


class SessionStartError(RuntimeError):
    pass


class TaskLoopStep(BaseModel):
    id: str
    iteration: int
    adapter: Literal["agent", "llm", "feedback"]
    input: Any = None
    output: Any = None


class TaskLoopSummary(BaseModel):
    success: bool
    reason: Optional[str] = None


@dataclass
class TaskLoopResult:
    run_id: str
    steps: List[TaskLoopStep]
    summary: TaskLoopSummary
    artifacts_path: Path
    artifacts: List[ArtifactRecord] = field(default_factory=list)


def build_iteration_prompt(task: str, iteration: int, previous_output: str) -> str:
    return f"Task: {task}\nIteration: {iteration}\nPrevious output: {previous_output}"


def is_completion(
    feedback: FeedbackReport, judge_text: Optional[str], yes_fallback: bool = True
) -> bool:
    if feedback.verdict == "complete":
        return True
    if not yes_fallback or judge_text is None:
        return False
    normalized = judge_text.strip().lower()
    return normalized.startswith("yes") or normalized == "y" or "yes" in normalized


def allocate_run_dir(runs_root: Path) -> Path:
    run_dir = Path(runs_root) / new_run_id()
    ensure_dir(run_dir)
    return run_dir


def _stop_quietly(agent: AgentBackend, run_id: str) -> None:
    stop = getattr(agent, "stop", None)
    if stop is None:
        return
    try:
        stop()
    except Exception as exc:  # noqa: BLE001
        logger.warning("run %s: agent stop failed: %s", run_id, exc)
    else:
        logger.info("run %s: agent session stopped", run_id)


def run_task_loop(
    task: str,
    agent: AgentBackend,
    judge: JudgeBackend,
    work_dir: Path,
    max_iterations: int = 6,
    run_dir: Optional[Path] = None,
    *,
    settings: Optional[Settings] = None,
) -> TaskLoopResult:
    if max_iterations < 1:
        raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")
    settings = settings or Settings()

    if run_dir is None:
        run_dir = allocate_run_dir(settings.runs_root(Path(work_dir)))
    else:
        run_dir = Path(run_dir)
        ensure_dir(run_dir)
    run_id = run_dir.name
    writer = ProvenanceWriter(run_dir, marker=settings.redaction_marker)
    steps: List[TaskLoopStep] = []

    try:
        try:
            session_id = agent.start_session({})
        except Exception as exc:
            raise SessionStartError(f"agent session failed to start: {exc}") from exc
        logger.info("run %s: agent session %s started", run_id, session_id)
        session_input = {"action": "startSession"}
        session_output = {"sessionId": session_id}
        steps.append(
            TaskLoopStep(
                id="s-0", iteration=0, adapter="agent", input=session_input, output=session_output
            )
        )
        writer.write_record(
            0,
            "session",
            ProvenanceRecord(
                id="s-0",
                timestamp=now_iso(),
                adapter="agent",
                type="session",
                input=session_input,
                output=session_output,
            ),
        )

        previous_output = ""
        for iteration in range(1, max_iterations + 1):
            prompt = build_iteration_prompt(task, iteration, previous_output)
            agent_result = coerce_agent_result(agent.run(session_id, prompt))
            previous_output = agent_result.text
            steps.append(
                TaskLoopStep(
                    id=f"a-{iteration}",
                    iteration=iteration,
                    adapter="agent",
                    input=prompt,
                    output=agent_result,
                )
            )

            analysis = analyze_iteration(
                judge=judge,
                run_id=run_id,
                iteration=iteration,
                task=task,
                agent_output=agent_result,
                max_tokens=settings.judge_max_tokens,
            )
            judge_call = analysis.judge_call
            if judge_call is not None:
                steps.append(
                    TaskLoopStep(
                        id=f"l-{iteration}",
                        iteration=iteration,
                        adapter="llm",
                        input=analysis.judge_messages,
                        output=judge_call,
                    )
                )
            steps.append(
                TaskLoopStep(
                    id=f"f-{iteration}",
                    iteration=iteration,
                    adapter="feedback",
                    input={"agent": agent_result},
                    output=analysis.feedback,
                )
            )

            writer.write_record(iteration, "feedback", analysis.feedback)
            writer.write_step(
                iteration, {"iteration": iteration, "agent": agent_result, "llm": judge_call}
            )
            diff = agent_result.extra_field("diff")
            writer.write_record(
                iteration,
                "agent",
                ProvenanceRecord(
                    id=f"a-{iteration}",
                    timestamp=now_iso(),
                    adapter="agent",
                    type="diff" if diff else "exec",
                    input={"prompt": prompt},
                    output=agent_result,
                    diff=diff or None,
                    stdout=agent_result.extra_text("stdout"),
                    stderr=agent_result.extra_text("stderr"),
                ),
            )
            if judge_call is not None:
                writer.write_record(
                    iteration,
                    "llm",
                    ProvenanceRecord(
                        id=f"l-{iteration}",
                        timestamp=now_iso(),
                        adapter="llm",
                        type="llm-call",
                        input={"messages": analysis.judge_messages},
                        output=judge_call,
                    ),
                )

            judge_text = judge_call.text if judge_call is not None else None
            if is_completion(analysis.feedback, judge_text, settings.judge_yes_fallback):
                logger.info("run %s: completed at iteration %d", run_id, iteration)
                return TaskLoopResult(
                    run_id=run_id,
                    steps=steps,
                    summary=TaskLoopSummary(success=True, reason=SUCCESS_REASON),
                    artifacts_path=run_dir,
                    artifacts=list(writer.records),
                )

        logger.info("run %s: no completion after %d iterations", run_id, max_iterations)
        return TaskLoopResult(
            run_id=run_id,
            steps=steps,
            summary=TaskLoopSummary(success=False, reason=EXHAUSTED_REASON),
            artifacts_path=run_dir,
            artifacts=list(writer.records),
        )
    finally:
        _stop_quietly(agent, run_id)
