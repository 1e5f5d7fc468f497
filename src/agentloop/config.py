from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="AGENTLOOP_")

    artifacts_dirname: str = ".agent"
    max_iterations: int = Field(default=6, ge=1)
    max_provenance: int = Field(default=5, ge=0)
    judge_max_tokens: int = Field(default=512, ge=1)
    # substring "yes" in the raw judge text also ends the loop
    judge_yes_fallback: bool = True
    redaction_marker: str = "[REDACTED]"
    verification_log: str = ".agent_provenance.log"
    log_level: str = "WARNING"

    def runs_root(self, work_dir: Path) -> Path:
        return Path(work_dir) / self.artifacts_dirname / "run"
