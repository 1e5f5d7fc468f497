from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from ..utils import now_iso, read_jsonl, stable_hash, to_jsonable, write_jsonl_line


class AuditLog:
    """Append-only JSONL trail; each line carries the hash of the line before it."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._last_hash = ""
        if path.exists():
            entries = read_jsonl(path)
            if entries:
                self._last_hash = entries[-1].get("hash", "")

    def append(self, op: str, patch: Optional[Dict[str, Any]] = None) -> str:
        entry: Dict[str, Any] = {"at": now_iso(), "op": op}
        if patch is not None:
            entry["patch"] = to_jsonable(patch)
        entry["prev_hash"] = self._last_hash
        entry_hash = stable_hash(entry)
        entry["hash"] = entry_hash
        write_jsonl_line(self.path, entry)
        self._last_hash = entry_hash
        return entry_hash

    @staticmethod
    def verify_chain(path: Path) -> Tuple[bool, str]:
        entries = read_jsonl(path)
        prev_hash = ""
        for idx, entry in enumerate(entries):
            expected_hash = entry.get("hash", "")
            body = {key: value for key, value in entry.items() if key != "hash"}
            if entry.get("prev_hash") != prev_hash:
                return False, f"prev_hash mismatch at {idx}"
            if stable_hash(body) != expected_hash:
                return False, f"hash mismatch at {idx}"
            prev_hash = expected_hash
        return True, "ok"
