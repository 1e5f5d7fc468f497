from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from agentloop.cli import app
from agentloop.utils import read_json, read_jsonl, write_json


def _invoke(*args: str):
    return CliRunner().invoke(app, list(args))


def test_progress_init_show_update(tmp_path: Path) -> None:
    runs_root = str(tmp_path / "runs")
    result = _invoke(
        "progress", "init", "--run-id", "r1", "--spec", "specs/x.md", "--runs-root", runs_root
    )
    assert result.exit_code == 0, result.output
    assert read_json(tmp_path / "runs" / "r1" / "progress.json")["spec"] == "specs/x.md"

    patch_file = tmp_path / "patch.json"
    write_json(
        patch_file,
        {"tasks": [{"id": "t1", "title": "Parse", "type": "diff", "status": "pending"}]},
    )
    result = _invoke(
        "progress",
        "update",
        "--run-id",
        "r1",
        "--patch-file",
        str(patch_file),
        "--runs-root",
        runs_root,
    )
    assert result.exit_code == 0, result.output
    assert read_json(tmp_path / "runs" / "r1" / "progress.json")["tasks"][0]["id"] == "t1"

    result = _invoke("progress", "show", "--run-id", "r1", "--runs-root", runs_root)
    assert result.exit_code == 0, result.output
    assert "Parse" in result.output


def test_progress_show_missing_run_fails(tmp_path: Path) -> None:
    result = _invoke("progress", "show", "--run-id", "ghost", "--runs-root", str(tmp_path))
    assert result.exit_code == 1


def test_progress_update_rejects_invalid_patch(tmp_path: Path) -> None:
    runs_root = str(tmp_path / "runs")
    _invoke("progress", "init", "--run-id", "r1", "--runs-root", runs_root)
    progress_path = tmp_path / "runs" / "r1" / "progress.json"
    before = progress_path.read_bytes()
    patch_file = tmp_path / "patch.json"
    write_json(patch_file, {"phase": 7})

    result = _invoke(
        "progress",
        "update",
        "--run-id",
        "r1",
        "--patch-file",
        str(patch_file),
        "--runs-root",
        runs_root,
    )
    assert result.exit_code == 1
    assert "phase" in result.output
    assert progress_path.read_bytes() == before


def test_config_file_sets_artifacts_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    config = tmp_path / "config.json"
    write_json(config, {"artifacts_dirname": ".custom"})
    result = _invoke("progress", "init", "--run-id", "r1", "--config", str(config))
    assert result.exit_code == 0, result.output
    assert (tmp_path / ".custom" / "run" / "r1" / "progress.json").exists()


def test_audit_verify(tmp_path: Path) -> None:
    runs_root = str(tmp_path / "runs")
    _invoke("progress", "init", "--run-id", "r1", "--runs-root", runs_root)
    result = _invoke("audit", "verify", "--run-id", "r1", "--runs-root", runs_root)
    assert result.exit_code == 0, result.output

    audit_path = tmp_path / "runs" / "r1" / "progress.audit.log"
    tampered = audit_path.read_text(encoding="utf-8").replace("init", "edit")
    audit_path.write_text(tampered, encoding="utf-8")
    result = _invoke("audit", "verify", "--run-id", "r1", "--runs-root", runs_root)
    assert result.exit_code == 1

    result = _invoke("audit", "verify", "--run-id", "none", "--runs-root", runs_root)
    assert result.exit_code == 1


def test_context_command(tmp_path: Path) -> None:
    runs_root = str(tmp_path / "runs")
    _invoke("progress", "init", "--run-id", "r1", "--runs-root", runs_root)
    result = _invoke("context", "--run-id", "r1", "--runs-root", runs_root)
    assert result.exit_code == 0, result.output
    assert "runId" in result.output


def test_verify_command(tmp_path: Path) -> None:
    log = tmp_path / "prov.log"
    good = tmp_path / "good.json"
    write_json(good, {"commands": [{"name": "ok", "cmd": "true"}]})
    result = _invoke("verify", "--plan", str(good), "--provenance", str(log), "--run-id", "r9")
    assert result.exit_code == 0, result.output
    assert read_jsonl(log)[0]["runId"] == "r9"

    bad = tmp_path / "bad.json"
    write_json(bad, [{"name": "ok", "cmd": "true"}, {"name": "nope", "cmd": "exit 4"}])
    result = _invoke("verify", "--plan", str(bad), "--provenance", str(log))
    assert result.exit_code == 1
    assert len(read_jsonl(log)) == 3


def test_log_level_option(tmp_path: Path) -> None:
    result = _invoke("--log-level", "debug", "schema", "export", "--out-dir", str(tmp_path / "s"))
    assert result.exit_code == 0, result.output


def test_schema_export(tmp_path: Path) -> None:
    out_dir = tmp_path / "schemas"
    result = _invoke("schema", "export", "--out-dir", str(out_dir))
    assert result.exit_code == 0, result.output
    schema = read_json(out_dir / "ProgressDocument.schema.json")
    assert "runId" in schema["properties"]
    assert (out_dir / "FeedbackReport.schema.json").exists()
