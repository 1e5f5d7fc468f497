from .merge import deep_merge
from .store import (
    AUDIT_FILE,
    PROGRESS_FILE,
    ProgressStore,
    ProgressValidationError,
    load_patch_file,
)

__all__ = [
    "AUDIT_FILE",
    "PROGRESS_FILE",
    "ProgressStore",
    "ProgressValidationError",
    "deep_merge",
    "load_patch_file",
]
