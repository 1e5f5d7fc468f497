from __future__ import annotations

from agentloop.interfaces import AgentRunResult, JudgeCallResult
from agentloop.orchestrator.feedback import (
    FailedReply,
    HeuristicReply,
    StructuredReply,
    analyze_iteration,
    decide_feedback,
    parse_judge_reply,
)


def test_structured_reply_full_payload() -> None:
    text = (
        '{"verdict": "partial", "confidence": 0.7, "rationale": "half way",'
        ' "issues": [{"id": "i1", "type": "test", "severity": "medium", "message": "flaky"},'
        ' {"id": "i2", "severity": "bogus"}],'
        ' "steering": [{"id": "s1", "type": "run-command", "description": "rerun",'
        ' "safe": true, "command": {"cmd": "pytest"}}],'
        ' "metrics": {"tokens": 12}}'
    )
    reply = parse_judge_reply(text)
    assert isinstance(reply, StructuredReply)
    report = decide_feedback(reply, 42)
    assert report.verdict == "partial"
    assert report.confidence == 0.7
    assert report.rationale == "half way"
    assert [issue.id for issue in report.issues] == ["i1"]
    assert report.steering[0].command is not None
    assert report.steering[0].command.cmd == "pytest"
    assert report.metrics == {"tokens": 12, "durationMs": 42}


def test_structured_reply_defaults() -> None:
    text = '{"verdict": "finished", "issues": "none", "steering": {"id": "x"}}'
    report = decide_feedback(parse_judge_reply(text), 5)
    assert report.verdict == "incomplete"
    assert report.confidence == 0.5
    assert report.rationale == text
    assert report.issues == []
    assert report.steering == []
    assert report.metrics == {"durationMs": 5}


def test_confidence_outside_range_falls_back() -> None:
    for raw in ("1.5", "-0.1", '"high"', "true", "null"):
        text = f'{{"verdict": "complete", "confidence": {raw}}}'
        assert decide_feedback(parse_judge_reply(text), 1).confidence == 0.5
    report = decide_feedback(parse_judge_reply('{"verdict": "fail", "confidence": 1}'), 1)
    assert report.confidence == 1.0
    assert report.verdict == "fail"


def test_long_rationale_default_is_truncated() -> None:
    text = '{"verdict": "partial", "note": "' + "x" * 2000 + '"}'
    report = decide_feedback(parse_judge_reply(text), 1)
    assert len(report.rationale) == 1000


def test_fenced_json_is_unwrapped() -> None:
    text = '```json\n{"verdict": "complete", "confidence": 0.8, "rationale": "ok"}\n```'
    reply = parse_judge_reply(text)
    assert isinstance(reply, StructuredReply)
    assert reply.payload["verdict"] == "complete"
    assert reply.text == text


def test_non_object_json_is_heuristic() -> None:
    assert isinstance(parse_judge_reply("[1, 2]"), HeuristicReply)
    assert isinstance(parse_judge_reply('"complete"'), HeuristicReply)
    assert isinstance(parse_judge_reply("{broken"), HeuristicReply)


def test_heuristic_verdicts() -> None:
    done = decide_feedback(HeuristicReply(text="Yes, looks COMPLETE"), 3)
    assert done.verdict == "complete"
    assert done.confidence == 0.6
    assert done.metrics == {"durationMs": 3}

    pending = decide_feedback(HeuristicReply(text="nope " + "z" * 300), 3)
    assert pending.verdict == "incomplete"
    assert pending.confidence == 0.4
    assert len(pending.rationale) == 200


def test_failed_reply() -> None:
    report = decide_feedback(FailedReply(error="connection reset"), 17)
    assert report.verdict == "incomplete"
    assert report.confidence == 0.0
    assert "connection reset" in report.rationale
    issue = report.issues[0]
    assert (issue.id, issue.type, issue.severity) == ("judge-call-failed", "other", "high")
    assert issue.evidence == "connection reset"
    assert report.metrics == {"durationMs": 17}


def test_analyze_iteration_never_raises(make_judge) -> None:
    judge = make_judge([ValueError("bad gateway")])
    analysis = analyze_iteration(
        judge=judge,
        run_id="r1",
        iteration=2,
        task="fix the bug",
        agent_output=AgentRunResult(text="patched"),
    )
    assert analysis.judge_call is None
    assert analysis.feedback.issues[0].id == "judge-call-failed"
    assert [message.role for message in analysis.judge_messages] == ["system", "user"]
    user = analysis.judge_messages[1].content
    assert "Task: fix the bug" in user
    assert "Iteration: 2" in user
    assert "patched" in user
    assert judge.calls[0]["max_tokens"] == 512


def test_analyze_iteration_accepts_mapping_reply(make_judge) -> None:
    judge = make_judge([{"text": '{"verdict": "complete"}', "tokensUsed": 9}])
    analysis = analyze_iteration(
        judge=judge,
        run_id="r1",
        iteration=1,
        task="t",
        agent_output=AgentRunResult(text="x"),
        max_tokens=64,
    )
    assert isinstance(analysis.judge_call, JudgeCallResult)
    assert analysis.judge_call.tokens_used == 9
    assert analysis.feedback.verdict == "complete"
    assert "durationMs" in analysis.feedback.metrics
    assert judge.calls[0]["max_tokens"] == 64


def test_analyze_iteration_keeps_mistyped_reply(make_judge) -> None:
    judge = make_judge([{"text": "yes, complete", "tokensUsed": "many"}])
    analysis = analyze_iteration(
        judge=judge,
        run_id="r1",
        iteration=1,
        task="t",
        agent_output=AgentRunResult(text="x"),
    )
    assert analysis.judge_call is not None
    assert analysis.judge_call.text == "yes, complete"
    assert analysis.judge_call.tokens_used is None
    assert analysis.judge_call.model_extra["invalid"] == ["tokensUsed"]
    assert analysis.feedback.verdict == "complete"
