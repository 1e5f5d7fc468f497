from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import Settings
from .ledger.audit import AuditLog
from .orchestrator.context_pack import build_context_pack
from .progress import ProgressStore, ProgressValidationError, load_patch_file
from .schemas import export_schemas
from .utils import read_json, to_jsonable
from .verify import load_plan, run_verification

app = typer.Typer(help="agentloop CLI")
console = Console()
err_console = Console(stderr=True)

CONFIG_OPTION = typer.Option(None, "--config", exists=True, dir_okay=False)
RUNS_ROOT_OPTION = typer.Option(None, "--runs-root", file_okay=False)
RUN_ID_OPTION = typer.Option(..., "--run-id")
SPEC_OPTION = typer.Option(None, "--spec")
PATCH_FILE_OPTION = typer.Option(..., "--patch-file", exists=True, dir_okay=False)
PLAN_OPTION = typer.Option(..., "--plan", exists=True, dir_okay=False)
PROVENANCE_OPTION = typer.Option(None, "--provenance")
VERIFY_RUN_ID_OPTION = typer.Option(None, "--run-id")
MAX_PROVENANCE_OPTION = typer.Option(None, "--max-provenance", min=0)
SCHEMA_OUT_OPTION = typer.Option(Path("schemas"), "--out-dir")
LOG_LEVEL_OPTION = typer.Option(None, "--log-level", help="Logging level (default WARNING).")

progress_app = typer.Typer(help="Progress document commands")
audit_app = typer.Typer(help="Audit trail commands")
schema_app = typer.Typer(help="Schema utilities")


def _load_settings(config: Optional[Path]) -> Settings:
    if config is None:
        return Settings()
    data = read_json(config)
    return Settings(**data)


def _store(settings: Settings, runs_root: Optional[Path]) -> ProgressStore:
    if runs_root is None:
        runs_root = settings.runs_root(Path.cwd())
    return ProgressStore(runs_root)


@app.callback()
def main(log_level: Optional[str] = LOG_LEVEL_OPTION) -> None:
    level = (log_level or Settings().log_level).upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


@progress_app.command("init")
def progress_init_cmd(
    run_id: str = RUN_ID_OPTION,
    spec: Optional[str] = SPEC_OPTION,
    runs_root: Optional[Path] = RUNS_ROOT_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
) -> None:
    store = _store(_load_settings(config), runs_root)
    document = store.init_progress(run_id, spec)
    console.print(document.to_document())


@progress_app.command("show")
def progress_show_cmd(
    run_id: str = RUN_ID_OPTION,
    runs_root: Optional[Path] = RUNS_ROOT_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
) -> None:
    store = _store(_load_settings(config), runs_root)
    try:
        document = store.read_progress(run_id)
    except ProgressValidationError as exc:
        console.print({"ok": False, "errors": [f"{loc}: {msg}" for loc, msg in exc.errors]})
        raise typer.Exit(code=1) from exc
    if document is None:
        console.print({"ok": False, "message": f"no progress for run {run_id}"})
        raise typer.Exit(code=1)
    console.print(document.to_document())


@progress_app.command("update")
def progress_update_cmd(
    run_id: str = RUN_ID_OPTION,
    patch_file: Path = PATCH_FILE_OPTION,
    runs_root: Optional[Path] = RUNS_ROOT_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
) -> None:
    store = _store(_load_settings(config), runs_root)
    try:
        document = store.update_progress(run_id, load_patch_file(patch_file))
    except ProgressValidationError as exc:
        console.print({"ok": False, "errors": [f"{loc}: {msg}" for loc, msg in exc.errors]})
        raise typer.Exit(code=1) from exc
    console.print(document.to_document())


@app.command("context")
def context_cmd(
    run_id: str = RUN_ID_OPTION,
    max_provenance: Optional[int] = MAX_PROVENANCE_OPTION,
    runs_root: Optional[Path] = RUNS_ROOT_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
) -> None:
    settings = _load_settings(config)
    limit = settings.max_provenance if max_provenance is None else max_provenance
    pack = build_context_pack(_store(settings, runs_root), run_id, max_provenance=limit)
    console.print(to_jsonable(pack))


@app.command("verify")
def verify_cmd(
    plan: Path = PLAN_OPTION,
    provenance: Optional[Path] = PROVENANCE_OPTION,
    run_id: Optional[str] = VERIFY_RUN_ID_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
) -> None:
    settings = _load_settings(config)
    commands = load_plan(plan)
    outcome = run_verification(
        commands,
        provenance_path=provenance or Path.cwd() / settings.verification_log,
        run_id=run_id,
        marker=settings.redaction_marker,
    )
    table = Table(title="Verification")
    table.add_column("Check")
    table.add_column("Status")
    table.add_column("Code")
    table.add_column("Duration (ms)")
    for check in outcome.checks:
        code = "timeout" if check.result.timed_out else str(check.result.code)
        table.add_row(check.name, check.status, code, str(check.result.duration_ms))
    console.print(table)
    console.print({"status": outcome.rollup()})
    if not outcome.passed:
        raise typer.Exit(code=1)


@audit_app.command("verify")
def audit_verify_cmd(
    run_id: str = RUN_ID_OPTION,
    runs_root: Optional[Path] = RUNS_ROOT_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
) -> None:
    store = _store(_load_settings(config), runs_root)
    path = store.audit_path(run_id)
    if not path.exists():
        console.print({"ok": False, "message": f"no audit log for run {run_id}"})
        raise typer.Exit(code=1)
    ok, message = AuditLog.verify_chain(path)
    console.print({"ok": ok, "message": message})
    if not ok:
        raise typer.Exit(code=1)


@schema_app.command("export")
def schema_export_cmd(out_dir: Path = SCHEMA_OUT_OPTION) -> None:
    export_schemas(str(out_dir))
    console.print({"schemas": str(out_dir)})


app.add_typer(progress_app, name="progress")
app.add_typer(audit_app, name="audit")
app.add_typer(schema_app, name="schema")

if __name__ == "__main__":
    app()
