"""sample 命令：预览失败映射与采样结果"""

from typing import Optional

from rich.console import Console
from rich.table import Table

from field_evo.core.config import find_config_file, load_config
from field_evo.core.loop import resolve_sample
from field_evo.core.sampler import build_field_failure_map, select_docs_for_optimizer
from field_evo.core.serializer import load_snapshot
from field_evo.models import Config
from field_evo.utils.i18n import t

console = Console()


def run_sample(comparison_path: str, field_keys: Optional[list[str]], config_path: Optional[str]):
    """打印每个字段的失败数与测试文档"""
    try:
        if config_path or find_config_file():
            config = load_config(config_path)
        else:
            config = Config()
        snapshot = load_snapshot(comparison_path)
    except FileNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)

    keys = field_keys or [f.key for f in snapshot.fields]
    failure_map = build_field_failure_map(snapshot, keys)
    cap = min(config.optimization.max_sample_docs, config.runtime.max_docs)
    sampling = select_docs_for_optimizer(failure_map, cap=cap, holdout_ratio=config.optimization.holdout_ratio)

    console.print(f"\n[bold]{t('sample_title')}[/bold] (cap={cap})\n")
    if not sampling.selected_doc_ids:
        console.print(f"[yellow]{t('sample_no_failures')}[/yellow]")
    else:
        console.print(t("sample_selected").format(
            n=len(sampling.selected_doc_ids), docs=", ".join(sampling.selected_doc_ids),
        ))
        if sampling.holdout_doc_ids:
            console.print(t("sample_holdout").format(
                train=len(sampling.train_doc_ids),
                holdout=len(sampling.holdout_doc_ids),
                docs=", ".join(sampling.holdout_doc_ids),
            ))
        elif config.optimization.holdout_ratio > 0:
            console.print(f"[yellow]{t('sample_holdout_skipped')}[/yellow]")

    table = Table()
    table.add_column(t("col_field"))
    table.add_column(t("col_failures"), justify="right")
    table.add_column(t("col_docs"))
    for key, failures in failure_map.items():
        docs = resolve_sample(key, sampling, config.optimization, config.runtime.max_docs)
        assigned = sampling.docs_for(key)
        label = ", ".join(docs) if docs else "-"
        if docs and not assigned:
            label = f"[dim]{label}[/dim]"
        table.add_row(key, str(len(failures)), label)
    console.print(table)
