"""report 命令 / report command"""

from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from field_evo.core.serializer import load_batch_result
from field_evo.models import FieldResult, FieldStatus, OptimizationBatchResult
from field_evo.utils.i18n import t

console = Console()

_STATUS_STYLE = {
    FieldStatus.CONVERGED: "green",
    FieldStatus.MAX_ITERATIONS_REACHED: "yellow",
    FieldStatus.FAILED: "red",
    FieldStatus.CANCELLED: "dim",
}


def _outcome(result: FieldResult) -> str:
    if result.status == FieldStatus.FAILED:
        return f"[red]{t('outcome_failed')}[/red]"
    if not result.has_ground_truth or not result.verified:
        return f"[cyan]{t('outcome_unverified')}[/cyan]"
    if result.holdout_regressed:
        return f"[yellow]{t('outcome_holdout_regressed')}[/yellow]"
    if result.improved:
        return f"[green]{t('outcome_apply')}[/green]"
    return f"[yellow]{t('outcome_skip')}[/yellow]"


def _accuracy(value: float, verified: bool) -> str:
    return f"{value:.0%}" if verified else "-"


def _holdout(result: FieldResult) -> str:
    if result.holdout_accuracy is None or result.holdout_initial_accuracy is None:
        return "-"
    return f"{result.holdout_initial_accuracy:.0%} → {result.holdout_accuracy:.0%}"


def print_batch(batch: OptimizationBatchResult, show_prompts: bool = False) -> None:
    """在终端打印运行结果 / Print a batch result in the terminal"""
    console.print(f"\n[bold]{t('report_title')}[/bold]  run={batch.run_id}  model={batch.test_model}\n")
    if batch.cancelled:
        console.print(f"[yellow]{t('cancelled')}[/yellow]")

    table = Table()
    table.add_column(t("col_field"))
    table.add_column(t("col_status"))
    table.add_column(t("col_initial"), justify="right")
    table.add_column(t("col_final"), justify="right")
    table.add_column(t("col_holdout"), justify="right")
    table.add_column(t("col_iterations"), justify="right")
    table.add_column(t("col_outcome"))

    for r in batch.per_field:
        style = _STATUS_STYLE.get(r.status, "white")
        table.add_row(
            f"{r.field_name} ({r.field_key})",
            f"[{style}]{r.status.value}[/{style}]",
            _accuracy(r.initial_accuracy, r.verified),
            _accuracy(r.final_accuracy, r.verified),
            _holdout(r),
            str(r.iteration_count),
            _outcome(r),
        )
    console.print(table)

    console.print(t("report_counts").format(
        apply=len(batch.will_apply),
        skip=len(batch.will_skip),
        unverified=len(batch.no_ground_truth),
        failed=len(batch.failed),
    ))
    console.print(f"{t('duration')}: {batch.duration_seconds:.2f}s")

    if show_prompts:
        for r in batch.per_field:
            body = escape(r.final_prompt)
            if r.error_message:
                body += f"\n\n[red]{escape(r.error_message)}[/red]"
            console.print(Panel(body, title=t("report_prompt_for").format(field=r.field_key)))


def show_report(input_file: str, show_prompts: bool = False):
    """显示优化结果 / Display an optimization result"""
    if not Path(input_file).exists():
        console.print(f"[red]❌ {t('config_file_missing').format(path=input_file)}[/red]")
        raise SystemExit(1)

    batch = load_batch_result(input_file)
    print_batch(batch, show_prompts)
