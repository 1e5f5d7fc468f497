from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from ..config import Settings
from ..interfaces import AgentBackend, JudgeBackend
from ..progress import ProgressStore
from ..provenance import redact
from ..schemas import ProgressPatch, ProgressTask, SummaryPatch
from ..utils import new_run_id, write_json, write_text
from .context_pack import ContextPack, build_context_pack
from .task_loop import TaskLoopResult, run_task_loop

logger = logging.getLogger(__name__)

COMPILED_PROMPT_FILE = "compiled_prompt.md"
SUMMARY_FILE = "summary.json"

TaskInput = Union[ProgressTask, Mapping[str, Any]]


@dataclass
class OrchestratorResult:
    run_id: str
    run_dir: Path
    loop: TaskLoopResult


def compose_task_prompt(task: str, pack: ContextPack) -> str:
    if not pack.checklist:
        return task
    lines = [task.rstrip(), "", "## Checklist"]
    lines.extend(f"- [ ] {item}" for item in pack.checklist)
    return "\n".join(lines) + "\n"


def _failure_patch(errors: List[str], phase: str) -> ProgressPatch:
    return ProgressPatch(summary=SummaryPatch(success=False, errors=errors), phase=phase)


def run_orchestrator(
    task: str,
    agent: AgentBackend,
    judge: JudgeBackend,
    *,
    work_dir: Path,
    spec_path: Optional[str] = None,
    tasks: Optional[Sequence[TaskInput]] = None,
    settings: Optional[Settings] = None,
) -> OrchestratorResult:
    settings = settings or Settings()
    store = ProgressStore(settings.runs_root(Path(work_dir)))
    run_id = new_run_id()
    run_dir = store.run_dir(run_id)

    store.init_progress(run_id, spec_path)
    seed: Dict[str, Any] = {"phase": "task-loop"}
    if tasks:
        seed["tasks"] = [
            item if isinstance(item, ProgressTask) else ProgressTask.model_validate(dict(item))
            for item in tasks
        ]
    store.update_progress(run_id, ProgressPatch(**seed))
    logger.info("run %s: progress initialised (%d seeded tasks)", run_id, len(tasks or []))

    pack = build_context_pack(store, run_id, max_provenance=settings.max_provenance)
    prompt = compose_task_prompt(task, pack)
    write_text(run_dir / COMPILED_PROMPT_FILE, prompt)

    try:
        loop = run_task_loop(
            prompt,
            agent,
            judge,
            Path(work_dir),
            max_iterations=settings.max_iterations,
            run_dir=run_dir,
            settings=settings,
        )
    except Exception as exc:
        logger.error("run %s: task loop failed: %s", run_id, exc)
        try:
            store.update_progress(run_id, _failure_patch([str(exc)], "failed"))
        except Exception as patch_exc:  # noqa: BLE001
            logger.error("run %s: could not record failure: %s", run_id, patch_exc)
        raise

    write_json(
        run_dir / SUMMARY_FILE,
        redact(
            {"runId": loop.run_id, "summary": loop.summary, "steps": loop.steps},
            settings.redaction_marker,
        ),
    )
    if loop.summary.success:
        patch = ProgressPatch(summary=SummaryPatch(success=True, errors=[]), phase="done")
    else:
        patch = _failure_patch([loop.summary.reason or "failed"], "done")
    store.update_progress(run_id, patch)
    logger.info("run %s: finished success=%s", run_id, loop.summary.success)
    return OrchestratorResult(run_id=run_id, run_dir=run_dir, loop=loop)
