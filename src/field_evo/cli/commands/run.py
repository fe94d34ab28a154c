"""run 命令 / run command"""

import asyncio
import signal
from typing import Any, Optional

from pydantic import ValidationError
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn

from field_evo.adapters.callable import CallableExtractionGateway
from field_evo.adapters.llm import LLMCompletionGateway
from field_evo.cli.commands.report import print_batch
from field_evo.core.config import load_config
from field_evo.core.pipeline import Pipeline
from field_evo.core.serializer import (
    YamlPromptStore, load_snapshot, save_batch_result, with_stored_prompts,
)
from field_evo.errors import RunConfigurationError
from field_evo.models import ProgressSnapshot, RuntimeConfig
from field_evo.utils.i18n import t

console = Console()


def _describe(snapshot: ProgressSnapshot) -> str:
    active = ", ".join(f"{p.field_key}#{p.iteration + 1}" for p in snapshot.processing)
    return f"{t('run_progress')} [cyan]{active}[/cyan]" if active else t("run_progress")


async def run_optimize(
    comparison_path: str,
    field_keys: Optional[list[str]],
    config_path: Optional[str],
    output: str,
    prompts_path: Optional[str] = None,
    overrides: Optional[dict[str, Any]] = None,
):
    """运行提示词优化 / Run prompt optimization"""
    try:
        config = load_config(config_path)
        if config.extractor is None:
            console.print(f"[red]{t('extractor_missing')}[/red]")
            raise SystemExit(1)

        updates = {k: v for k, v in (overrides or {}).items() if v is not None}
        runtime = RuntimeConfig(**{**config.runtime.model_dump(), **updates})

        snapshot = load_snapshot(comparison_path)
        if prompts_path:
            snapshot = with_stored_prompts(snapshot, YamlPromptStore(prompts_path))

        pipeline = Pipeline(
            extraction=CallableExtractionGateway.from_config(config.extractor),
            completion=LLMCompletionGateway(
                config.llm,
                config.optimization.max_failure_examples,
                timeout=config.optimization.completion_timeout_s,
            ),
            runtime=runtime,
            optimization=config.optimization,
        )

        console.print(f"\n[bold blue]{t('run_start')}[/bold blue]\n")

        # Ctrl-C 取消运行但保留已完成字段
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, pipeline.cancel)
        except NotImplementedError:
            pass

        with Progress(
            SpinnerColumn(),
            TextColumn("{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            console=console,
        ) as progress:
            task = progress.add_task(t("run_progress"), total=None)

            def on_progress(snapshot: ProgressSnapshot) -> None:
                progress.update(
                    task,
                    total=snapshot.total_fields,
                    completed=snapshot.completed,
                    description=_describe(snapshot),
                )

            try:
                batch = await pipeline.run(snapshot, field_keys, on_progress)
            finally:
                try:
                    loop.remove_signal_handler(signal.SIGINT)
                except NotImplementedError:
                    pass

        path = save_batch_result(batch, output)
        print_batch(batch)
        console.print(f"\n{t('result_saved').format(path=path)}")

    except FileNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)
    except (RunConfigurationError, ValidationError) as e:
        console.print(f"[red]{t('exec_failed').format(msg=e)}[/red]")
        raise SystemExit(1)
    except Exception as e:
        console.print(f"[red]{t('exec_failed').format(msg=e)}[/red]")
        console.print_exception()
        raise SystemExit(1)
