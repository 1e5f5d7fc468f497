from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence, Union

import orjson
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..interfaces import CommandRunner, ExecOptions, ExecResult
from ..provenance import REDACTION_MARKER, append_provenance_event
from ..schemas import RollupStatus, TaskVerification, VerificationCheck
from ..utils import ensure_dir
from .shell import LocalShellRunner

logger = logging.getLogger(__name__)

DEFAULT_PROVENANCE_LOG = ".agent_provenance.log"


class CommandSpec(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    name: str
    cmd: str
    cwd: Optional[str] = None
    env: Optional[Dict[str, str]] = None
    timeout_ms: Optional[int] = Field(default=None, ge=0)
    accept_exit_codes: List[int] = Field(default_factory=lambda: [0])


class CheckResult(BaseModel):
    name: str
    status: Literal["pass", "fail"]
    result: ExecResult


class VerificationResult(BaseModel):
    checks: List[CheckResult] = Field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(check.status == "pass" for check in self.checks)

    def rollup(self) -> RollupStatus:
        statuses = {check.status for check in self.checks}
        if statuses == {"fail"}:
            return "fail"
        if "fail" in statuses:
            return "partial"
        return "pass"

    def to_task_verification(self, output_path: Optional[str] = None) -> TaskVerification:
        return TaskVerification(
            checks=[
                VerificationCheck(name=check.name, status=check.status, output_path=output_path)
                for check in self.checks
            ],
            status=self.rollup(),
        )


def classify(result: ExecResult, accept_exit_codes: Sequence[int]) -> Literal["pass", "fail"]:
    if result.timed_out or result.code is None:
        return "fail"
    return "pass" if result.code in accept_exit_codes else "fail"


def load_plan(path: Path) -> List[CommandSpec]:
    data = orjson.loads(path.read_bytes())
    if isinstance(data, dict):
        data = data.get("commands")
    if not isinstance(data, list):
        raise ValueError(f"plan {path} must be a list of commands or {{'commands': [...]}}")
    return [CommandSpec.model_validate(item) for item in data]


def run_verification(
    commands: Sequence[Union[CommandSpec, Mapping[str, Any]]],
    *,
    provenance_path: Optional[Path] = None,
    runner: Optional[CommandRunner] = None,
    run_id: Optional[str] = None,
    marker: str = REDACTION_MARKER,
) -> VerificationResult:
    specs = [
        spec if isinstance(spec, CommandSpec) else CommandSpec.model_validate(dict(spec))
        for spec in commands
    ]
    log_path = Path(provenance_path) if provenance_path else Path.cwd() / DEFAULT_PROVENANCE_LOG
    ensure_dir(log_path.parent)
    runner = runner or LocalShellRunner()

    outcome = VerificationResult()
    for spec in specs:
        started = time.monotonic()
        options = ExecOptions(cmd=spec.cmd, cwd=spec.cwd, env=spec.env, timeout_ms=spec.timeout_ms)
        try:
            result = runner.run(options)
        except Exception as exc:  # noqa: BLE001
            result = ExecResult(
                code=None,
                stderr=str(exc),
                duration_ms=int((time.monotonic() - started) * 1000),
                error=str(exc),
            )
        status = classify(result, spec.accept_exit_codes)
        outcome.checks.append(CheckResult(name=spec.name, status=status, result=result))
        append_provenance_event(
            log_path,
            event_type="verification.check",
            name=spec.name,
            run_id=run_id,
            payload={
                "cmd": spec.cmd,
                "cwd": spec.cwd,
                "env": spec.env,
                "timeoutMs": spec.timeout_ms,
                "acceptExitCodes": spec.accept_exit_codes,
                "result": result.model_dump(mode="json", by_alias=True),
            },
            marker=marker,
        )
        logger.info(
            "check %s %s (code=%s timed_out=%s)", spec.name, status, result.code, result.timed_out
        )
    return outcome
