from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .schemas import ArtifactRecord, FeedbackReport, ProvenanceRecord
from .utils import ensure_dir, hash_bytes, now_iso, pretty_dumps, to_jsonable, write_jsonl_line

logger = logging.getLogger(__name__)

REDACTION_MARKER = "[REDACTED]"
SENSITIVE_KEY = re.compile(r"token|secret|key|password|private", re.IGNORECASE)


def redact(value: Any, marker: str = REDACTION_MARKER) -> Any:
    """Return a JSON-ready copy of ``value`` with sensitive-looking keys masked."""
    return _scrub(to_jsonable(value), marker)


def _scrub(value: Any, marker: str) -> Any:
    if isinstance(value, dict):
        return {
            key: marker if SENSITIVE_KEY.search(key) else _scrub(item, marker)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_scrub(item, marker) for item in value]
    return value


def sequence_name(sequence: int, kind: Optional[str] = None) -> str:
    if kind is None:
        return f"{sequence:03d}.json"
    return f"{sequence:03d}-{kind}.json"


class ProvenanceWriter:
    def __init__(self, run_dir: Path, marker: str = REDACTION_MARKER) -> None:
        self.run_dir = run_dir
        self.provenance_dir = run_dir / "provenance"
        self.marker = marker
        self.records: List[ArtifactRecord] = []
        ensure_dir(self.provenance_dir)

    def write_record(
        self, sequence: int, kind: str, record: Union[ProvenanceRecord, FeedbackReport]
    ) -> ArtifactRecord:
        path = self.provenance_dir / sequence_name(sequence, kind)
        return self._write(path, record, kind)

    def write_step(self, sequence: int, data: Dict[str, Any]) -> ArtifactRecord:
        path = self.run_dir / sequence_name(sequence)
        return self._write(path, data, "step")

    def _write(self, path: Path, data: Any, kind: str) -> ArtifactRecord:
        payload = pretty_dumps(redact(data, self.marker))
        path.write_bytes(payload)
        record = ArtifactRecord(
            path=str(path), content_hash=hash_bytes(payload), bytes=len(payload), kind=kind
        )
        self.records.append(record)
        logger.debug("wrote %s (%d bytes)", path, record.bytes)
        return record


def append_provenance_event(
    path: Path,
    *,
    event_type: str,
    payload: Dict[str, Any],
    name: Optional[str] = None,
    run_id: Optional[str] = None,
    marker: str = REDACTION_MARKER,
) -> None:
    event = {
        "runId": run_id,
        "name": name,
        "type": event_type,
        "payload": redact(payload, marker),
        "timestamp": now_iso(),
    }
    write_jsonl_line(path, event)
