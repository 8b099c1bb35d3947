"""CLI entrypoint.

Primary command:
- shardrun run MATRIX ...

Utilities:
- shardrun expand MATRIX
- shardrun status --run ID

CONTRACT
- Inputs: Command line arguments (parsed by Typer)
- Outputs (required):
  - Exit code 0 when the run verdict is success
  - Exit code 1 when a blocking shard failed
  - Exit code 2 for command-line usage errors (Click's own convention)
  - Exit code 3 when the run crashed outside any shard
  - Exit code 4 when the matrix description is malformed
  - Console output (rich table) or JSON report on stdout
- Invariants:
  - Run ids are validated before execution
  - Orchestrator actions are delegated to the orchestrator module
- Failure:
  - ConfigurationError is printed and mapped to exit code 4, never shared
    with usage errors or test failures
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from . import __version__
from .artifacts.schemas import RunVerdict, ShardStatus
from .config import RunConfig, load_matrix_file
from .errors import ConfigurationError
from .orchestrator import STATUS_CRASH, STATUS_SUCCESS, run_session
from .util.ids import new_run_id, validate_run_id
from .util.paths import ensure_dir

EXIT_OK = 0
EXIT_TEST_FAILURE = 1
EXIT_USAGE = 2  # raised by Click for bad options and typer.BadParameter
EXIT_CRASH = 3
EXIT_CONFIG_ERROR = 4

app = typer.Typer(add_completion=False, help="Expand a CI build matrix into shards and run them.")

console = Console()
err_console = Console(stderr=True)


def _version_callback(value: bool):
    if value:
        console.print(f"shardrun version: {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO", format="{time:HH:mm:ss} | {level:<7} | {message}")


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version."
    )
):
    pass


_MATRIX_ARGUMENT = typer.Argument(..., help="Matrix description (.travis.yml-style YAML).")
_ARTIFACTS_DIR_OPTION = typer.Option(
    Path(".shardrun/runs"),
    "--artifacts-dir",
    help="Artifacts root dir.",
)
_RUN_ID_OPTION = typer.Option(
    None,
    "--run-id",
    help="Run id (default: auto).",
)
_RUN_ID_REQUIRED_OPTION = typer.Option(
    ...,
    "--run",
    help="Run id.",
)
_PARALLEL_OPTION = typer.Option(
    None,
    "--parallel",
    "-j",
    min=1,
    help="Max shards running at once (default: unlimited).",
)
_FAST_FINISH_OPTION = typer.Option(
    None,
    "--fast-finish/--no-fast-finish",
    help="Override the matrix file's fast_finish setting.",
)
_STEP_TIMEOUT_OPTION = typer.Option(
    None,
    "--step-timeout",
    min=0.001,
    help="Per-step timeout in seconds.",
)
_WAIT_ALLOWED_OPTION = typer.Option(
    False,
    "--wait-allowed-failures",
    help="With fast_finish, still wait for allow-failure shards before returning.",
)
_CWD_OPTION = typer.Option(
    Path("."),
    "--cwd",
    help="Working directory for steps.",
)
_DOCKER_OPTION = typer.Option(
    False,
    "--docker",
    help="Run steps inside docker.",
)
_DOCKER_IMAGE_OPTION = typer.Option(
    "{toolchain}",
    "--docker-image",
    help="Image template, formatted with {toolchain}, {shard}, {tag}.",
)
_JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Print the machine-readable report on stdout.",
)
_VERBOSE_OPTION = typer.Option(
    False,
    "--verbose",
    "-v",
    help="Show step-level details.",
)

_STATUS_STYLE = {
    ShardStatus.PASSED: "green",
    ShardStatus.FAILED: "red",
    ShardStatus.SKIPPED: "yellow",
}


def _verdict_table(verdict: RunVerdict) -> Table:
    table = Table(title="shardrun report")
    table.add_column("Shard")
    table.add_column("Status")
    table.add_column("Allow failure")
    table.add_column("Exit statuses")
    for r in verdict.shards:
        style = _STATUS_STYLE[r.status]
        table.add_row(
            r.shard_id,
            f"[{style}]{r.status.value}[/{style}]",
            "yes" if r.allow_failure else "",
            " ".join(str(c) for c in r.exit_statuses) or "-",
        )
    return table


@app.command()
def run(
    matrix: Path = _MATRIX_ARGUMENT,
    parallel: int | None = _PARALLEL_OPTION,
    fast_finish: bool | None = _FAST_FINISH_OPTION,
    step_timeout: float | None = _STEP_TIMEOUT_OPTION,
    wait_allowed_failures: bool = _WAIT_ALLOWED_OPTION,
    artifacts_dir: Path = _ARTIFACTS_DIR_OPTION,
    run_id: str | None = _RUN_ID_OPTION,
    cwd: Path = _CWD_OPTION,
    use_docker: bool = _DOCKER_OPTION,
    docker_image: str = _DOCKER_IMAGE_OPTION,
    as_json: bool = _JSON_OPTION,
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """Run every shard of the matrix and report the verdict."""
    _configure_logging(verbose)
    try:
        rid = validate_run_id(run_id or new_run_id())
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    ensure_dir(artifacts_dir)

    cfg = RunConfig(
        matrix_path=matrix,
        run_id=rid,
        artifacts_root=artifacts_dir,
        cwd=cwd,
        parallelism=parallel,
        fast_finish=fast_finish,
        step_timeout_s=step_timeout,
        wait_for_allowed_failures=wait_allowed_failures,
        use_docker=use_docker,
        docker_image=docker_image,
    )
    try:
        result = asyncio.run(run_session(cfg))
    except ConfigurationError as exc:
        err_console.print(f"[red]Malformed matrix description:[/red] {exc}")
        raise typer.Exit(code=EXIT_CONFIG_ERROR)

    if result.status == STATUS_CRASH or result.verdict is None:
        err_console.print(f"[red]Run {rid} crashed[/red]; see {result.run_dir / 'CRASH.txt'}")
        raise typer.Exit(code=EXIT_CRASH)

    if as_json:
        console.print_json(result.verdict.model_dump_json())
    else:
        console.print(_verdict_table(result.verdict))
        console.print(f"[bold]Run[/bold] {rid} finished with status: {result.status}")
        console.print(f"Artifacts: {result.run_dir}")
    if result.status != STATUS_SUCCESS:
        raise typer.Exit(code=EXIT_TEST_FAILURE)


@app.command()
def expand(
    matrix: Path = _MATRIX_ARGUMENT,
    as_json: bool = _JSON_OPTION,
) -> None:
    """Expand the matrix and list the shards without running anything."""
    try:
        shards = load_matrix_file(matrix).expand()
    except ConfigurationError as exc:
        err_console.print(f"[red]Malformed matrix description:[/red] {exc}")
        raise typer.Exit(code=EXIT_CONFIG_ERROR)

    if as_json:
        console.print_json(json.dumps([s.describe() for s in shards]))
        return
    table = Table(title="shardrun matrix")
    table.add_column("#")
    table.add_column("Shard")
    table.add_column("Toolchain")
    table.add_column("Allow failure")
    table.add_column("Steps")
    for i, s in enumerate(shards):
        table.add_row(
            str(i),
            s.id,
            s.toolchain or "",
            "yes" if s.allow_failure else "",
            str(len(s.before_steps) + len(s.steps)),
        )
    console.print(table)


@app.command()
def status(
    run_id: str = _RUN_ID_REQUIRED_OPTION,
    artifacts_dir: Path = _ARTIFACTS_DIR_OPTION,
) -> None:
    """Print the stored report (or status) of a previous run."""
    try:
        validate_run_id(run_id)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    run_dir = artifacts_dir / run_id
    for name in ("REPORT.json", "RUN_STATUS.json"):
        p = run_dir / name
        if p.exists():
            console.print_json(p.read_text(encoding="utf-8"))
            return
    raise typer.BadParameter(f"No report found in {run_dir}")


if __name__ == "__main__":
    app()
