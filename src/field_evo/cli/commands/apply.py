"""apply 命令 / apply command"""

from pathlib import Path
from typing import Optional

from rich.console import Console

from field_evo.core.aggregator import apply_batch
from field_evo.core.serializer import YamlPromptStore, load_batch_result
from field_evo.utils.i18n import t

console = Console()


def run_apply(input_file: str, prompts_path: str, field_keys: Optional[list[str]] = None):
    """将有提升的提示词写入提示词存储 / Save improved prompts into the prompt store"""
    if not Path(input_file).exists():
        console.print(f"[red]❌ {t('config_file_missing').format(path=input_file)}[/red]")
        raise SystemExit(1)

    batch = load_batch_result(input_file)
    applied = apply_batch(batch, YamlPromptStore(prompts_path), field_keys)

    if not applied:
        console.print(f"[yellow]{t('apply_none')}[/yellow]")
        return

    for key in applied:
        console.print(f"  {t('apply_item').format(field=key)}")
    console.print(f"\n[bold green]{t('apply_done').format(n=len(applied), path=prompts_path)}[/bold green]")
