"""End-of-run report rendered with rich."""

from typing import List, Optional

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from jxlbatch.domain.events import LogColor
from jxlbatch.domain.models import ERROR_OUTCOMES, OutcomeCode, StatsSnapshot
from jxlbatch.ui.manager import COLOR_STYLES

SEPARATOR = "=----------------="

# Recorded outcomes in report order, with their label and colour
OUTCOME_ROWS = [
    (OutcomeCode.OK, "Converted", LogColor.OK),
    (OutcomeCode.SKIPPED_ALREADY_EXIST, "Skipped (output exists)", LogColor.WARNING),
    (OutcomeCode.SKIPPED_TIMEOUT, "Skipped (timeout)", LogColor.WARNING),
    (OutcomeCode.OUT_FOLDER_ERR, "Output folder error", LogColor.ERROR),
    (OutcomeCode.ENCODE_ERR_SKIP, "Encode error (skipped)", LogColor.ERROR),
    (OutcomeCode.ENCODE_ERR_COPY, "Encode error (source copied)", LogColor.ERROR),
    (OutcomeCode.ENCODE_ERR_ABORT, "Encode error (batch stopped)", LogColor.ERROR),
    (OutcomeCode.ABORTED, "Aborted", LogColor.ERROR),
]


def format_size(size: float) -> str:
    for unit in ["B", "KB", "MB", "GB"]:
        if size < 1024.0:
            return f"{size:.1f}{unit}"
        size /= 1024.0
    return f"{size:.1f}TB"


def summary_lines(snapshot: StatsSnapshot, elapsed_seconds: float) -> List[Text]:
    """Plain-language summary in the order the log view prints it."""
    def styled(message: str, color: LogColor) -> Text:
        return Text(message, style=COLOR_STYLES[color])

    attempted = snapshot.count() - snapshot.count(OutcomeCode.ABORTED)
    lines = [styled(f"Conversion done for {attempted} image(s)", LogColor.STATS)]

    errors = snapshot.count(ERROR_OUTCOMES)
    if errors:
        lines.append(styled(f"{errors} image(s) had errors", LogColor.ERROR))
    skipped = snapshot.count(OutcomeCode.SKIPPED_ALREADY_EXIST)
    if skipped:
        lines.append(styled(f"{skipped} image(s) skipped because the output already exists", LogColor.WARNING))
    timeouts = snapshot.count(OutcomeCode.SKIPPED_TIMEOUT)
    if timeouts:
        lines.append(styled(f"{timeouts} image(s) skipped after exceeding the timeout", LogColor.WARNING))
    aborted = snapshot.count(OutcomeCode.ABORTED)
    if aborted:
        lines.append(styled(f"{aborted} worker(s) aborted", LogColor.ERROR))

    if errors or timeouts:
        lines.append(styled("Some image(s) have errors during conversion", LogColor.ERROR))
    else:
        lines.append(styled("All image(s) successfully converted", LogColor.OK))

    if snapshot.total_input_bytes > 0 and snapshot.total_output_bytes > 0:
        delta = snapshot.delta_percent
        lines.append(styled(
            f"Input: {format_size(snapshot.total_input_bytes)} -> Output: "
            f"{format_size(snapshot.total_output_bytes)} ({delta:+.2f}%)",
            LogColor.STATS,
        ))
    if snapshot.throughput_samples > 0:
        lines.append(styled(f"Average speed: {snapshot.average_throughput:.2f} MP/s", LogColor.STATS))
    lines.append(styled(f"Elapsed time: {elapsed_seconds:.2f} second(s)", LogColor.STATS))
    return lines


def build_outcome_table(snapshot: StatsSnapshot) -> Table:
    table = Table(show_header=True, header_style="bold")
    table.add_column("Outcome")
    table.add_column("Files", justify="right")
    for code, label, color in OUTCOME_ROWS:
        count = snapshot.count(code)
        if count:
            table.add_row(Text(label, style=COLOR_STYLES[color]), str(count))
    table.add_row(Text("Total", style="bold"), str(snapshot.count()))
    return table


def build_failed_files_table(snapshot: StatsSnapshot) -> Optional[Table]:
    failed = [(path, code) for path, code in snapshot.entries if code in ERROR_OUTCOMES]
    if not failed:
        return None
    table = Table(show_header=True, header_style="bold", title="Files with errors")
    table.add_column("File", overflow="fold")
    table.add_column("Outcome")
    for path, code in failed:
        table.add_row(str(path), Text(code.value, style=COLOR_STYLES[LogColor.ERROR]))
    return table


def build_report(snapshot: StatsSnapshot, elapsed_seconds: float) -> Panel:
    parts = [build_outcome_table(snapshot)]
    failed = build_failed_files_table(snapshot)
    if failed is not None:
        parts.append(failed)
    parts.extend(summary_lines(snapshot, elapsed_seconds))
    parts.append(Text(SEPARATOR, style=COLOR_STYLES[LogColor.STATS]))
    return Panel(Group(*parts), title="jxlbatch", expand=False)


def render_report(snapshot: StatsSnapshot, elapsed_seconds: float, console: Optional[Console] = None):
    console = console or Console()
    if not snapshot.is_valid:
        console.print(Text("No image was processed.", style=COLOR_STYLES[LogColor.WARNING]))
        return
    console.print(build_report(snapshot, elapsed_seconds))
