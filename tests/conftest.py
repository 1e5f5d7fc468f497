import os
from typing import Any, Callable, Dict, List, Optional, Sequence

import pytest


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    _ = config
    run_slow = os.getenv("RUN_SLOW_TESTS", "") or os.getenv("AGENTLOOP_RUN_SLOW", "")
    if str(run_slow).strip().lower() in {"1", "true", "yes"}:
        return
    skip_slow = pytest.mark.skip(reason="set RUN_SLOW_TESTS=1 to run slow tests")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


class ScriptedAgent:
    """Agent backend replaying canned outputs; exceptions in the script are raised."""

    def __init__(
        self,
        outputs: Sequence[Any] = ("working",),
        start_error: Optional[Exception] = None,
        stop_error: Optional[Exception] = None,
    ) -> None:
        self.outputs = list(outputs)
        self.start_error = start_error
        self.stop_error = stop_error
        self.prompts: List[str] = []
        self.stop_calls = 0

    def start_session(self, options: Dict[str, Any]) -> str:
        if self.start_error is not None:
            raise self.start_error
        return "session-1"

    def run(self, session_id: str, text: str) -> Any:
        self.prompts.append(text)
        index = min(len(self.prompts) - 1, len(self.outputs) - 1)
        output = self.outputs[index]
        if isinstance(output, Exception):
            raise output
        if isinstance(output, str):
            return {"text": output}
        return output

    def stop(self) -> None:
        self.stop_calls += 1
        if self.stop_error is not None:
            raise self.stop_error


class ScriptedJudge:
    """Judge backend replaying canned replies; the last reply repeats."""

    def __init__(self, replies: Sequence[Any] = ("no",)) -> None:
        self.replies = list(replies)
        self.calls: List[Dict[str, Any]] = []

    def call(self, messages, *, max_tokens=None, temperature=None) -> Any:
        self.calls.append({"messages": list(messages), "max_tokens": max_tokens})
        index = min(len(self.calls) - 1, len(self.replies) - 1)
        reply = self.replies[index]
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, str):
            return {"text": reply}
        return reply


@pytest.fixture
def make_agent() -> Callable[..., ScriptedAgent]:
    return ScriptedAgent


@pytest.fixture
def make_judge() -> Callable[..., ScriptedJudge]:
    return ScriptedJudge
