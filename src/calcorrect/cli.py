# src/calcorrect/cli.py
from __future__ import annotations

import json
import sys
import time
from pathlib import Path
from typing import List, Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.markup import escape

from calcorrect import get_logger, get_version, set_verbosity
from calcorrect.calib.grid import SamplingGrid, align
from calcorrect.config import load_config, resolve_directories
from calcorrect.errors import AlignmentError, CalCorrectError, ConfigurationError
from calcorrect.logging.events import EventLogger
from calcorrect.pipeline.runner import associations_from_lists, build_runner, records_from_table
from calcorrect.utils.io import ensure_dir, read_association_table

__all__ = ["app", "main"]

# ======================================================================================
# App declaration
# ======================================================================================

app = typer.Typer(
    name="calcorrect",
    help="calcorrect — apply master dark / relative-response calibrations to science exposures.",
    add_completion=False,
    no_args_is_help=True,
    pretty_exceptions_show_locals=False,
)

logger = get_logger(__name__)

EXIT_CONFIG = 2


def _ok(msg: str) -> None:
    rprint(f"[bold green]✓[/bold green] {escape(msg)}")


def _warn(msg: str) -> None:
    rprint(f"[yellow]warn:[/yellow] {escape(msg)}")


def _fail(msg: str, code: int = 1) -> None:
    rprint(f"[bold red]error:[/bold red] {escape(msg)}")
    raise typer.Exit(code=code)


def _parse_ids(raw: Optional[str], label: str) -> List[int]:
    if raw is None:
        return []
    try:
        return [int(tok) for tok in raw.replace(",", " ").split()]
    except ValueError as e:
        raise ConfigurationError(f"{label} must be a comma-separated list of integers: {raw!r}") from e


def _cli_overrides(
    mode: Optional[str],
    clobber: Optional[bool],
    verbose: Optional[int],
    display: Optional[int],
    events: Optional[bool],
) -> List[str]:
    out: List[str] = []
    if mode is not None:
        out.append(f"mode={mode}")
    if clobber is not None:
        out.append(f"clobber={str(clobber).lower()}")
    if verbose is not None:
        out.append(f"verbose={verbose}")
    if display is not None:
        out.append(f"display={display}")
    if events is not None:
        out.append(f"events={str(events).lower()}")
    return out


# ======================================================================================
# run
# ======================================================================================

@app.command("run")
def run(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML run configuration"),
    set: List[str] = typer.Option([], "--set", "-s", help="Overrides: key=value (repeatable)"),
    mode: Optional[str] = typer.Option(None, help="Correction mode: dark | response"),
    exposures: Optional[str] = typer.Option(None, help="Exposure ids, comma separated"),
    calibrations: Optional[str] = typer.Option(None, help="Calibration ids parallel to --exposures (-1 = none)"),
    links: Optional[Path] = typer.Option(None, help="CSV link table with exposure,calibration columns"),
    clobber: Optional[bool] = typer.Option(None, "--clobber/--no-clobber", help="Overwrite existing outputs"),
    verbose: Optional[int] = typer.Option(None, "--verbose", "-v", help="0 quiet, 1 normal, 2 debug"),
    display: Optional[int] = typer.Option(None, help="Print a summary table when > 0"),
    events: Optional[bool] = typer.Option(None, "--events/--no-events", help="Write the JSONL event stream"),
    report: Optional[Path] = typer.Option(None, help="Write the batch report as JSON here"),
) -> None:
    """
    Correct a batch of exposures with their associated master calibrations.
    """
    try:
        cfg = load_config(config, [*set, *_cli_overrides(mode, clobber, verbose, display, events)])
        set_verbosity(cfg.verbose)

        if links is not None:
            if exposures is not None or calibrations is not None:
                raise ConfigurationError("use either --links or --exposures/--calibrations, not both")
            try:
                records = records_from_table(read_association_table(links))
            except (OSError, ValueError) as e:
                raise ConfigurationError(f"cannot read link table {links}: {e}") from e
        else:
            exp_ids = _parse_ids(exposures, "--exposures")
            cal_ids = _parse_ids(calibrations, "--calibrations")
            if not exp_ids:
                raise ConfigurationError("no exposures given (use --exposures or --links)")
            records = associations_from_lists(exp_ids, cal_ids)

        paths = resolve_directories(cfg)
        event_log = None
        if cfg.events:
            run_id = time.strftime("%Y%m%dT%H%M%S")
            event_log = EventLogger.for_run(stage=cfg.mode, run_id=run_id, root=paths.events_dir)

        runner = build_runner(cfg, paths=paths, events=event_log, console=Console())
        try:
            result = runner.run(records)
        finally:
            if event_log is not None:
                event_log.close()
    except CalCorrectError as e:
        logger.error("%s", e)
        _fail(str(e), code=EXIT_CONFIG)
        return

    if report is not None:
        ensure_dir(report.parent)
        report.write_text(json.dumps(result.to_dict(), indent=2), encoding="utf-8")
    if result.corrected:
        _ok(result.summary())
    else:
        _warn(result.summary())


# ======================================================================================
# align
# ======================================================================================

@app.command("align")
def align_cmd(
    ref_origin: float = typer.Option(..., help="Reference grid origin"),
    ref_length: int = typer.Option(..., help="Reference grid length"),
    target_origin: float = typer.Option(..., help="Target grid origin"),
    target_length: int = typer.Option(..., help="Target grid length"),
    step: float = typer.Option(1.0, help="Shared grid step"),
    target_step: Optional[float] = typer.Option(None, help="Target step when it differs (rejected)"),
) -> None:
    """Print the overlapping index ranges of two sampling grids."""
    ref = SamplingGrid(origin=ref_origin, step=step, length=ref_length)
    tgt = SamplingGrid(origin=target_origin, step=target_step if target_step is not None else step, length=target_length)
    try:
        ref_rng, tgt_rng = align(ref, tgt)
    except AlignmentError as e:
        _fail(str(e))
        return
    typer.echo(
        json.dumps(
            {
                "reference": [ref_rng.start, ref_rng.end],
                "target": [tgt_rng.start, tgt_rng.end],
                "length": ref_rng.length,
            }
        )
    )


# ======================================================================================
# version
# ======================================================================================

@app.command("version")
def version() -> None:
    """Print package and Python versions."""
    info = {
        "calcorrect": get_version(),
        "python": sys.version.split()[0],
        "platform": sys.platform,
    }
    typer.echo(json.dumps(info, indent=2))


# ======================================================================================
# entrypoint
# ======================================================================================

def main() -> None:
    app()


if __name__ == "__main__":
    main()
