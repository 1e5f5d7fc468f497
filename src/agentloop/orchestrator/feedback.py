from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import orjson
from pydantic import ValidationError

from ..interfaces import (
    AgentRunResult,
    JudgeBackend,
    JudgeCallResult,
    JudgeMessage,
    coerce_judge_result,
)
from ..schemas import FeedbackReport, Issue, SteeringAction

logger = logging.getLogger(__name__)

RATIONALE_LIMIT = 1000
HEURISTIC_RATIONALE_LIMIT = 200
COMPLETION_WORDS = ("complete", "yes", "done")
VERDICTS = ("complete", "partial", "incomplete", "fail")

SYSTEM_PROMPT = (
    "You are an automated reviewer. Reply with a JSON object exactly matching the schema: "
    "{verdict,confidence,rationale,issues,steering}. verdict is one of "
    "complete|partial|incomplete|fail and confidence is a number between 0 and 1. "
    "Keep the JSON compact."
)

_FENCE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?```$", re.DOTALL)


@dataclass(frozen=True)
class StructuredReply:
    text: str
    payload: Dict[str, Any]


@dataclass(frozen=True)
class HeuristicReply:
    text: str


@dataclass(frozen=True)
class FailedReply:
    error: str


JudgeReply = Union[StructuredReply, HeuristicReply, FailedReply]


@dataclass
class IterationAnalysis:
    feedback: FeedbackReport
    judge_call: Optional[JudgeCallResult] = None
    judge_messages: List[JudgeMessage] = field(default_factory=list)


def build_judge_messages(task: str, iteration: int, agent_text: str) -> List[JudgeMessage]:
    user = (
        f"Task: {task}\nIteration: {iteration}\nAgent output:\n{agent_text}\n\n"
        "Return JSON: {verdict,confidence,rationale,issues,steering}"
    )
    return [
        JudgeMessage(role="system", content=SYSTEM_PROMPT),
        JudgeMessage(role="user", content=user),
    ]


def parse_judge_reply(text: str) -> Union[StructuredReply, HeuristicReply]:
    candidate = text.strip()
    fenced = _FENCE.match(candidate)
    if fenced:
        candidate = fenced.group(1).strip()
    try:
        payload = orjson.loads(candidate)
    except orjson.JSONDecodeError:
        return HeuristicReply(text=text)
    if not isinstance(payload, dict):
        return HeuristicReply(text=text)
    return StructuredReply(text=text, payload=payload)


def _valid_items(raw: Any, model: Any) -> List[Any]:
    if not isinstance(raw, list):
        return []
    items = []
    for entry in raw:
        try:
            items.append(model.model_validate(entry))
        except ValidationError:
            logger.debug("dropping malformed %s entry from judge reply", model.__name__)
    return items


def _confidence(raw: Any, default: float) -> float:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return default
    if not 0.0 <= raw <= 1.0:
        return default
    return float(raw)


def decide_feedback(reply: JudgeReply, duration_ms: int) -> FeedbackReport:
    if isinstance(reply, FailedReply):
        return FeedbackReport(
            verdict="incomplete",
            confidence=0.0,
            rationale=f"Judge call failed: {reply.error}",
            issues=[
                Issue(
                    id="judge-call-failed",
                    type="other",
                    severity="high",
                    message="Judge call failed",
                    evidence=reply.error,
                )
            ],
            metrics={"durationMs": duration_ms},
        )
    if isinstance(reply, StructuredReply):
        payload = reply.payload
        verdict = payload.get("verdict")
        rationale = payload.get("rationale")
        metrics = payload.get("metrics")
        metrics = dict(metrics) if isinstance(metrics, dict) else {}
        metrics["durationMs"] = duration_ms
        if not isinstance(rationale, str) or not rationale:
            rationale = reply.text[:RATIONALE_LIMIT]
        return FeedbackReport(
            verdict=verdict if verdict in VERDICTS else "incomplete",
            confidence=_confidence(payload.get("confidence"), 0.5),
            rationale=rationale,
            issues=_valid_items(payload.get("issues"), Issue),
            steering=_valid_items(payload.get("steering"), SteeringAction),
            metrics=metrics,
        )
    lowered = reply.text.lower()
    looks_done = any(word in lowered for word in COMPLETION_WORDS)
    return FeedbackReport(
        verdict="complete" if looks_done else "incomplete",
        confidence=0.6 if looks_done else 0.4,
        rationale=reply.text[:HEURISTIC_RATIONALE_LIMIT],
        metrics={"durationMs": duration_ms},
    )


def analyze_iteration(
    *,
    judge: JudgeBackend,
    run_id: str,
    iteration: int,
    task: str,
    agent_output: AgentRunResult,
    max_tokens: int = 512,
) -> IterationAnalysis:
    messages = build_judge_messages(task, iteration, agent_output.text or "")
    started = time.monotonic()
    try:
        raw_reply = judge.call(messages, max_tokens=max_tokens)
    except Exception as exc:  # noqa: BLE001
        duration_ms = int((time.monotonic() - started) * 1000)
        logger.warning("run %s iteration %d: judge call failed: %s", run_id, iteration, exc)
        feedback = decide_feedback(FailedReply(error=str(exc)), duration_ms)
        return IterationAnalysis(feedback=feedback, judge_messages=messages)
    duration_ms = int((time.monotonic() - started) * 1000)
    judge_call = coerce_judge_result(raw_reply)
    if judge_call.model_extra and "invalid" in judge_call.model_extra:
        logger.warning(
            "run %s iteration %d: judge reply had invalid fields: %s",
            run_id,
            iteration,
            judge_call.model_extra["invalid"],
        )
    reply = parse_judge_reply(judge_call.text)
    feedback = decide_feedback(reply, duration_ms)
    logger.info(
        "run %s iteration %d: verdict=%s confidence=%.2f (%s)",
        run_id,
        iteration,
        feedback.verdict,
        feedback.confidence,
        type(reply).__name__,
    )
    return IterationAnalysis(feedback=feedback, judge_call=judge_call, judge_messages=messages)
