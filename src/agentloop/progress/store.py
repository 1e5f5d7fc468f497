from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import orjson
from pydantic import ValidationError

from ..ledger.audit import AuditLog
from ..schemas import ProgressDocument, ProgressPatch
from ..utils import ensure_dir, now_iso, read_json, write_json_atomic
from .merge import deep_merge

logger = logging.getLogger(__name__)

PROGRESS_FILE = "progress.json"
AUDIT_FILE = "progress.audit.log"

PatchInput = Union[ProgressPatch, Mapping[str, Any]]
DocumentInput = Union[ProgressDocument, Mapping[str, Any]]


class ProgressValidationError(ValueError):
    def __init__(self, context: str, exc: ValidationError) -> None:
        self.errors = [
            (".".join(str(part) for part in error["loc"]), error["msg"]) for error in exc.errors()
        ]
        details = "; ".join(f"{loc or '<root>'}: {msg}" for loc, msg in self.errors)
        super().__init__(f"{context}: {details}")


def _validate_document(data: Any, context: str) -> ProgressDocument:
    try:
        return ProgressDocument.model_validate(data)
    except ValidationError as exc:
        raise ProgressValidationError(context, exc) from exc


def _validate_patch(patch: PatchInput) -> Dict[str, Any]:
    if isinstance(patch, ProgressPatch):
        return patch.to_document()
    try:
        return ProgressPatch.model_validate(dict(patch)).to_document()
    except ValidationError as exc:
        raise ProgressValidationError("progress patch invalid", exc) from exc


class ProgressStore:
    """Schema-validated progress documents, one per run directory under ``runs_root``."""

    def __init__(self, runs_root: Path) -> None:
        self.runs_root = Path(runs_root)

    def run_dir(self, run_id: str) -> Path:
        return self.runs_root / run_id

    def progress_path(self, run_id: str) -> Path:
        return self.run_dir(run_id) / PROGRESS_FILE

    def audit_path(self, run_id: str) -> Path:
        return self.run_dir(run_id) / AUDIT_FILE

    def init_progress(self, run_id: str, spec: Optional[str] = None) -> ProgressDocument:
        document = ProgressDocument(
            run_id=run_id,
            created_at=now_iso(),
            spec=spec,
            phase=None,
            tasks=[],
            summary=None,
        )
        self.write_progress(run_id, document)
        AuditLog(self.audit_path(run_id)).append("init")
        return document

    def read_progress(self, run_id: str) -> Optional[ProgressDocument]:
        path = self.progress_path(run_id)
        if not path.exists():
            return None
        return _validate_document(read_json(path), f"{path} validation failed")

    def write_progress(self, run_id: str, document: DocumentInput) -> ProgressDocument:
        if not isinstance(document, ProgressDocument):
            document = _validate_document(dict(document), "progress document invalid")
        else:
            # revalidate: models built with model_construct skip checks
            document = _validate_document(document.to_document(), "progress document invalid")
        path = self.progress_path(run_id)
        write_json_atomic(path, document.to_document())
        logger.debug("wrote progress for run %s", run_id)
        return document

    def update_progress(self, run_id: str, patch: PatchInput) -> ProgressDocument:
        patch_data = _validate_patch(patch)
        existing = self.read_progress(run_id)
        if existing is not None:
            base = existing.to_document()
        else:
            base = {"runId": run_id, "createdAt": now_iso(), "tasks": []}
        merged = deep_merge(base, patch_data)
        merged["runId"] = run_id
        if base.get("createdAt"):
            merged["createdAt"] = base["createdAt"]
        document = _validate_document(merged, "merged progress invalid")
        ensure_dir(self.run_dir(run_id))
        write_json_atomic(self.progress_path(run_id), document.to_document())
        AuditLog(self.audit_path(run_id)).append("update", patch_data)
        logger.debug("updated progress for run %s keys=%s", run_id, sorted(patch_data))
        return document


def load_patch_file(path: Path) -> Dict[str, Any]:
    data = orjson.loads(path.read_bytes())
    if not isinstance(data, dict):
        raise ValueError(f"patch file {path} must contain a JSON object")
    return data
