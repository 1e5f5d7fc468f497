from __future__ import annotations

import logging
from typing import Any, List, Optional

import orjson
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..progress import ProgressStore, ProgressValidationError
from ..schemas import ProgressDocument, ProgressTask

logger = logging.getLogger(__name__)


class ProvenanceEntry(BaseModel):
    file: str
    content: Any = None


class ContextPack(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    run_id: str
    created_at: Optional[str] = None
    spec: Optional[str] = None
    phase: Optional[str] = None
    tasks: List[ProgressTask] = Field(default_factory=list)
    recent_provenance: List[ProvenanceEntry] = Field(default_factory=list)
    checklist: Optional[List[str]] = None


def _read_progress_tolerant(store: ProgressStore, run_id: str) -> Optional[ProgressDocument]:
    try:
        return store.read_progress(run_id)
    except (ProgressValidationError, orjson.JSONDecodeError, OSError) as exc:
        logger.warning("run %s: progress document unreadable: %s", run_id, exc)
        return None


def _recent_provenance(store: ProgressStore, run_id: str, limit: int) -> List[ProvenanceEntry]:
    provenance_dir = store.run_dir(run_id) / "provenance"
    if limit <= 0 or not provenance_dir.is_dir():
        return []
    names = sorted(path.name for path in provenance_dir.iterdir() if path.is_file())
    entries: List[ProvenanceEntry] = []
    for name in names[-limit:]:
        try:
            raw = (provenance_dir / name).read_bytes()
        except OSError as exc:
            logger.warning("run %s: cannot read provenance %s: %s", run_id, name, exc)
            entries.append(ProvenanceEntry(file=name))
            continue
        try:
            content: Any = orjson.loads(raw)
        except orjson.JSONDecodeError:
            content = raw.decode("utf-8", errors="replace")
        entries.append(ProvenanceEntry(file=name, content=content))
    return entries


def build_context_pack(store: ProgressStore, run_id: str, max_provenance: int = 5) -> ContextPack:
    document = _read_progress_tolerant(store, run_id)
    pack = ContextPack(
        run_id=run_id,
        recent_provenance=_recent_provenance(store, run_id, max_provenance),
    )
    if document is not None:
        pack.created_at = document.created_at
        pack.spec = document.spec
        pack.phase = document.phase
        pack.tasks = list(document.tasks)
        titles = [task.title for task in document.tasks if task.title]
        if titles:
            pack.checklist = titles
    return pack
