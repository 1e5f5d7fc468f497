from __future__ import annotations

from typing import Any, Dict, List, Literal, Mapping, Optional, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel


class AgentRunResult(BaseModel):
    # backends may attach diff/stdout/stderr or anything else; keep it all
    model_config = ConfigDict(extra="allow")

    text: str = ""
    tasks: Optional[List[Dict[str, Any]]] = None
    meta: Optional[Dict[str, Any]] = None

    def extra_field(self, name: str) -> Any:
        return (self.model_extra or {}).get(name)

    def extra_text(self, name: str) -> Optional[str]:
        value = self.extra_field(name)
        return value if isinstance(value, str) else None


class JudgeMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class JudgeCallResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    text: str = ""
    tokens_used: Optional[int] = None
    citations: Optional[List[Dict[str, Any]]] = None
    parsed_tasks: Optional[List[Dict[str, Any]]] = None


class ExecOptions(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    cmd: str
    cwd: Optional[str] = None
    env: Optional[Dict[str, str]] = None
    timeout_ms: Optional[int] = None


class ExecResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = Field(default=0, ge=0)
    signal: Optional[str] = None
    timed_out: bool = False
    error: Optional[str] = None


class AgentBackend(Protocol):
    def start_session(self, options: Dict[str, Any]) -> str:
        ...

    def run(self, session_id: str, text: str) -> Union[AgentRunResult, Mapping[str, Any]]:
        ...

    def stop(self) -> None:
        ...


class JudgeBackend(Protocol):
    def call(
        self,
        messages: List[JudgeMessage],
        *,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> Union[JudgeCallResult, Mapping[str, Any]]:
        ...


class CommandRunner(Protocol):
    def run(self, options: ExecOptions) -> ExecResult:
        ...


def _invalid_fields(exc: ValidationError) -> List[str]:
    return [".".join(str(part) for part in error["loc"]) for error in exc.errors()]


def _raw_text(data: Mapping[str, Any]) -> str:
    text = data.get("text")
    return text if isinstance(text, str) else ""


def coerce_agent_result(raw: Any) -> AgentRunResult:
    if isinstance(raw, AgentRunResult):
        return raw
    if isinstance(raw, Mapping):
        data = dict(raw)
        try:
            return AgentRunResult.model_validate(data)
        except ValidationError as exc:
            # keep the malformed reply for provenance
            return AgentRunResult(
                text=_raw_text(data), meta={"raw": data, "invalid": _invalid_fields(exc)}
            )
    return AgentRunResult(text="" if raw is None else str(raw))


def coerce_judge_result(raw: Any) -> JudgeCallResult:
    if isinstance(raw, JudgeCallResult):
        return raw
    if isinstance(raw, Mapping):
        data = dict(raw)
        try:
            return JudgeCallResult.model_validate(data)
        except ValidationError as exc:
            return JudgeCallResult(text=_raw_text(data), raw=data, invalid=_invalid_fields(exc))
    return JudgeCallResult(text="" if raw is None else str(raw))
