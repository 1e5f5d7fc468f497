from .engine import (
    CheckResult,
    CommandSpec,
    VerificationResult,
    classify,
    load_plan,
    run_verification,
)
from .shell import LocalShellRunner

__all__ = [
    "CheckResult",
    "CommandSpec",
    "LocalShellRunner",
    "VerificationResult",
    "classify",
    "load_plan",
    "run_verification",
]
