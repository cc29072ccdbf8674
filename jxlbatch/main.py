import shutil
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeRemainingColumn

from jxlbatch.config.loader import load_config
from jxlbatch.config.models import AppConfig, TRUE_VALUE
from jxlbatch.domain.events import AbortRequested
from jxlbatch.domain.models import ERROR_OUTCOMES, ConversionJob
from jxlbatch.infrastructure.event_bus import EventBus
from jxlbatch.infrastructure.file_scanner import FileScanner, read_file_list
from jxlbatch.infrastructure.housekeeping import HousekeepingService
from jxlbatch.infrastructure.logging import setup_logging
from jxlbatch.pipeline.orchestrator import Orchestrator, clamp_thread_count
from jxlbatch.pipeline.stats import StatisticsAggregator
from jxlbatch.ui.manager import UIManager
from jxlbatch.ui.report import render_report
from jxlbatch.ui.state import UIState

app = typer.Typer(help="jxlbatch - batch image conversion with the JPEG XL / jpegli command line tools")

EXIT_ERRORS = 2
WAIT_SLICE_S = 0.2


def parse_option_pairs(pairs: List[str]) -> Dict[str, str]:
    """Parses repeated KEY=VALUE options; a bare KEY maps to an empty value."""
    options: Dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        key = key.strip()
        if not key:
            raise ValueError(f"Invalid option '{pair}', expected KEY=VALUE")
        options[key] = value.strip() if sep else ""
    return options


def collect_inputs(
    input_path: Optional[Path],
    file_list: Optional[Path],
    config: AppConfig,
    output_dir: Path,
) -> Tuple[List[Path], Path, bool]:
    """Returns (files, base path, explicit list flag)."""
    if file_list is not None:
        if not file_list.is_file():
            raise ValueError(f"File list not found: {file_list}")
        files = read_file_list(file_list)
        missing = [f for f in files if not f.is_file()]
        if missing:
            raise ValueError(f"{len(missing)} listed file(s) do not exist, first: {missing[0]}")
        base_path = files[0].parent if files else output_dir
        return files, base_path, True

    if input_path is None:
        raise ValueError("Missing input: pass a file or directory, or --file-list")
    input_path = input_path.expanduser().absolute()
    if input_path.is_file():
        return [input_path], input_path.parent, False
    if not input_path.is_dir():
        raise ValueError(f"Input not found: {input_path}")

    scanner = FileScanner(
        config.general.extensions,
        recursive=config.general.recursive,
        exclude_dirs=[output_dir],
    )
    return list(scanner.scan(input_path)), input_path, False


@app.command()
def convert(
    input_path: Optional[Path] = typer.Argument(None, help="Input image or directory"),
    output_dir_opt: Optional[Path] = typer.Option(None, "--output", "-o", help="Output directory"),
    binary_opt: Optional[str] = typer.Option(None, "--binary", "-b", help="Encoder/decoder executable (cjxl, djxl, cjpegli, djpegli)"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    file_list: Optional[Path] = typer.Option(None, "--file-list", help="Text file with one input path per line (output is flat)"),
    threads: Optional[int] = typer.Option(None, "--threads", "-t", help="Number of parallel workers"),
    recursive: Optional[bool] = typer.Option(None, "--recursive/--no-recursive", help="Scan subfolders and mirror them in the output"),
    extensions: Optional[str] = typer.Option(None, "--ext", help="Comma separated input extensions"),
    overwrite: bool = typer.Option(False, "--overwrite", help="Overwrite existing output files"),
    silent: bool = typer.Option(False, "--silent", help="Do not log skipped files"),
    timeout: Optional[int] = typer.Option(None, "--timeout", help="Per-file timeout in seconds (0 = none)"),
    stop_on_error: bool = typer.Option(False, "--stop-on-error", help="Abort the whole batch on the first failure"),
    copy_on_error: bool = typer.Option(False, "--copy-on-error", help="Copy the source to the output folder when conversion fails"),
    keep_date: bool = typer.Option(False, "--keep-date", help="Copy file access/modification times to the output"),
    non_ascii: bool = typer.Option(False, "--non-ascii", help="Work around encoders that cannot open non-ASCII paths (Windows)"),
    suffix: Optional[str] = typer.Option(None, "--suffix", help="Output name suffix; supports %hash% and %rnd%"),
    out_format: Optional[str] = typer.Option(None, "--out-format", help="Output extension (default .jxl)"),
    custom_flags: Optional[str] = typer.Option(None, "--custom-flags", help="Extra arguments passed verbatim to the binary"),
    jpeg_transcode: bool = typer.Option(False, "--jpeg-transcode", help="Lossless JPEG transcode (-j 1); drops -d/-q for JPEG input"),
    opt: Optional[List[str]] = typer.Option(None, "--opt", "-O", help="Encoder option KEY=VALUE (repeatable), e.g. -O -d=1.0"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (default: <output>/conversion.log)"),
    quiet: bool = typer.Option(False, "--quiet", help="Only show the progress bar and the final report"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Convert images by running an external encoder/decoder for each file."""
    try:
        try:
            config = load_config(config_path) if config_path else AppConfig()
        except (FileNotFoundError, ValueError, ValidationError) as exc:
            typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)

        # CLI overrides
        if threads is not None:
            if threads < 1:
                typer.secho("Error: --threads must be at least 1", fg=typer.colors.RED, err=True)
                raise typer.Exit(code=1)
            config.general.threads = threads
        if recursive is not None:
            config.general.recursive = recursive
        if extensions:
            config.general.extensions = [ext.strip() for ext in extensions.split(",") if ext.strip()]
            config = AppConfig.model_validate(config.model_dump())
        if debug:
            config.general.debug = True
        if log_path:
            config.general.log_path = str(log_path)

        binary_value = binary_opt or config.binary
        if not binary_value:
            typer.secho("Error: no encoder binary given (--binary or 'binary' in config)", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)
        binary = shutil.which(binary_value)
        if binary is None:
            typer.secho(f"Error: encoder binary not found or not executable: {binary_value}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)

        output_value = output_dir_opt or (Path(config.output_dir) if config.output_dir else None)
        if output_value is None:
            typer.secho("Error: no output directory given (--output or 'output_dir' in config)", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)
        output_dir = Path(output_value).expanduser().absolute()

        try:
            files, base_path, use_file_list = collect_inputs(input_path, file_list, config, output_dir)
            options = dict(config.options)
            options.update(parse_option_pairs(opt or []))
        except (OSError, ValueError) as exc:
            typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)

        if not files:
            typer.secho("Error: input contains no file(s) to convert!", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)

        worker_count = clamp_thread_count(config.general.threads)
        flags = {
            "overwrite": overwrite,
            "silent": silent,
            "globalStopOnError": stop_on_error,
            "globalCopyOnError": copy_on_error,
            "keepDateTime": keep_date,
            "processNonAscii": non_ascii,
            "-j": jpeg_transcode,
        }
        for key, enabled in flags.items():
            if enabled:
                options[key] = TRUE_VALUE
        if timeout is not None:
            options["globalTimeout"] = str(timeout)
        if suffix is not None:
            options["outSuffix"] = suffix
        if out_format is not None:
            options["outFormat"] = out_format
        if custom_flags is not None:
            options["customFlags"] = custom_flags
        options["useMultithread"] = TRUE_VALUE if worker_count > 1 else "0"
        if input_path is not None and not use_file_list:
            options["directoryInput"] = str(input_path.expanduser().absolute())

        try:
            output_dir.mkdir(parents=True, exist_ok=True)
            job = ConversionJob.create(
                binary=Path(binary),
                output_dir=output_dir,
                options=options,
                base_path=base_path,
                use_file_list=use_file_list,
            )
        except (OSError, ValidationError) as exc:
            typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)

        log_path_value = Path(config.general.log_path) if config.general.log_path else None
        logger = setup_logging(output_dir, debug=config.general.debug, log_path=log_path_value)
        logger.info(f"jxlbatch started: files={len(files)}, output={output_dir}, binary={binary}")
        logger.info(f"Config: threads={worker_count}, recursive={config.general.recursive}, options={options}")

        bus = EventBus()
        console = Console()
        ui_state = UIState()
        aggregator = StatisticsAggregator()
        orchestrator = Orchestrator(job, aggregator, bus, debug=config.general.debug)

        progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.completed}/{task.total}"),
            TimeRemainingColumn(),
            console=console,
            transient=True,
        )
        task_id = progress.add_task("Converting", total=len(files))
        UIManager(
            bus,
            ui_state,
            console=console,
            show_worker=worker_count > 1,
            quiet=quiet,
            on_progress=lambda completed, total: progress.update(task_id, completed=completed, total=total),
        )

        interrupted = False
        with progress:
            orchestrator.start(files, threads=worker_count)
            try:
                while not orchestrator.wait(timeout=WAIT_SLICE_S):
                    pass
            except KeyboardInterrupt:
                interrupted = True
                logger.info("Ctrl+C received - aborting workers")
                bus.publish(AbortRequested())
                orchestrator.wait()

        removed = HousekeepingService().remove_empty_outputs(orchestrator.produced_outputs)
        if removed:
            logger.info(f"Removed {removed} empty output file(s)")

        snapshot = orchestrator.snapshot or aggregator.snapshot()
        render_report(snapshot, ui_state.elapsed_seconds, console=console)
        logger.info(
            f"jxlbatch finished: outcomes={snapshot.count()}, errors={snapshot.count(ERROR_OUTCOMES)}, "
            f"elapsed={ui_state.elapsed_seconds:.2f}s"
        )

        if interrupted:
            typer.secho("\n✓ Conversion stopped by user (Ctrl+C)", fg=typer.colors.YELLOW)
            raise typer.Exit(code=130)
        if snapshot.count(ERROR_OUTCOMES) > 0:
            raise typer.Exit(code=EXIT_ERRORS)

    except typer.Exit:
        raise

    except Exception as e:
        import logging
        logging.getLogger(__name__).exception("Fatal error")
        typer.secho(f"Fatal Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
