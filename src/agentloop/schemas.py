from __future__ import annotations

import re
from datetime import datetime
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional

import orjson
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, StrictBool, StrictStr
from pydantic.alias_generators import to_camel

from .utils import HASH_ALGORITHM

_ISO_DATETIME = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})[Tt ](\d{2}):(\d{2}):(\d{2})(?:\.\d+)?"
    r"(?:[Zz]|[+-](\d{2}):(\d{2}))$"
)


def _check_timestamp(value: str) -> str:
    match = _ISO_DATETIME.match(value)
    if match is None:
        raise ValueError("must be an ISO-8601 date-time with a UTC offset")
    year, month, day, hour, minute, second = (int(part) for part in match.groups()[:6])
    try:
        # 60 is a legal leap second in RFC 3339
        datetime(year, month, day, hour, minute, min(second, 59))
    except ValueError as exc:
        raise ValueError(f"invalid date-time: {exc}") from exc
    offset_hours, offset_minutes = match.group(7), match.group(8)
    if offset_hours is not None and (int(offset_hours) > 23 or int(offset_minutes) > 59):
        raise ValueError("invalid UTC offset")
    return value


Timestamp = Annotated[StrictStr, AfterValidator(_check_timestamp)]

TaskType = Literal["diff", "exec", "llm-call", "meta"]
TaskStatus = Literal["pending", "in-progress", "applied", "verified", "blocked", "skipped"]
CheckStatus = Literal["pass", "fail", "skipped"]
RollupStatus = Literal["pass", "fail", "partial"]
ReviewState = Literal["unreviewed", "approved", "changes_requested", "commented"]
Verdict = Literal["complete", "partial", "incomplete", "fail"]
ProvenanceAdapter = Literal["agent", "llm", "feedback", "verification.check"]


class DocumentModel(BaseModel):
    """Closed on-disk shape: camelCase keys, unknown keys rejected."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


class VerificationCheck(DocumentModel):
    name: StrictStr
    status: CheckStatus
    output_path: Optional[StrictStr] = None


class TaskVerification(DocumentModel):
    checks: List[VerificationCheck]
    status: RollupStatus


class Review(DocumentModel):
    state: ReviewState
    by: Optional[StrictStr] = None
    at: Optional[Timestamp] = None
    notes: Optional[StrictStr] = None


class ProgressTask(DocumentModel):
    id: StrictStr
    title: StrictStr
    type: TaskType
    status: TaskStatus
    applied_at: Optional[Timestamp] = None
    provenance_path: Optional[StrictStr] = None
    verification: Optional[TaskVerification] = None
    review: Optional[Review] = None


class ProgressSummary(DocumentModel):
    success: StrictBool
    errors: List[StrictStr]


class ProgressDocument(DocumentModel):
    run_id: StrictStr
    created_at: Timestamp
    spec: Optional[StrictStr] = None
    phase: Optional[StrictStr] = None
    tasks: List[ProgressTask]
    summary: Optional[ProgressSummary] = None


class SummaryPatch(DocumentModel):
    success: Optional[StrictBool] = None
    errors: Optional[List[StrictStr]] = None


class ProgressPatch(DocumentModel):
    """Partial document; fields left unset are not touched by a merge."""

    run_id: Optional[StrictStr] = None
    created_at: Optional[Timestamp] = None
    spec: Optional[StrictStr] = None
    phase: Optional[StrictStr] = None
    tasks: Optional[List[ProgressTask]] = None
    summary: Optional[SummaryPatch] = None


class ReportModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class IssueLocation(ReportModel):
    path: Optional[str] = None
    line: Optional[int] = None


class Issue(ReportModel):
    id: str
    type: str
    severity: Literal["low", "medium", "high", "critical"]
    message: str
    evidence: Optional[str] = None
    location: Optional[IssueLocation] = None


class SteeringPatch(ReportModel):
    path: str
    diff: str


class SteeringCommand(ReportModel):
    cmd: str
    cwd: Optional[str] = None
    env: Optional[Dict[str, str]] = None


class SteeringAction(ReportModel):
    id: str
    type: Literal["file-edit", "run-command", "rerun-agent", "adjust-prompt", "noop"]
    description: str
    safe: bool
    patch: Optional[SteeringPatch] = None
    command: Optional[SteeringCommand] = None


class FeedbackReport(ReportModel):
    verdict: Verdict
    confidence: float = Field(ge=0.0, le=1.0)
    rationale: str
    issues: List[Issue] = Field(default_factory=list)
    steering: List[SteeringAction] = Field(default_factory=list)
    metrics: Dict[str, Any] = Field(default_factory=dict)


class ProvenanceRecord(ReportModel):
    id: str
    timestamp: str
    adapter: ProvenanceAdapter
    type: str
    input: Any = None
    output: Any = None
    diff: Any = None
    stdout: Optional[str] = None
    stderr: Optional[str] = None


class ArtifactRecord(BaseModel):
    path: str
    content_hash: str
    bytes: int
    kind: str
    hash_algorithm: str = HASH_ALGORITHM


def export_schemas(output_dir: str) -> List[Path]:
    output = Path(output_dir)
    output.mkdir(parents=True, exist_ok=True)
    models = [ProgressDocument, ProgressPatch, FeedbackReport, ProvenanceRecord, ArtifactRecord]
    written: List[Path] = []
    for model in models:
        schema = model.model_json_schema(by_alias=True)
        path = output / f"{model.__name__}.schema.json"
        path.write_bytes(orjson.dumps(schema, option=orjson.OPT_SORT_KEYS))
        written.append(path)
    return written
