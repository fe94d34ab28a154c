"""FieldEvo CLI 主入口"""

import asyncio
import logging
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from field_evo import __version__

app = typer.Typer(
    name="field-evo",
    help="FieldEvo - 文档字段抽取提示词自动优化",
    add_completion=False,
)
console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"FieldEvo version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(False, "--version", "-V", callback=version_callback, is_eager=True, help="显示版本号"),
    log_level: str = typer.Option("WARNING", "--log-level", help="日志级别: DEBUG/INFO/WARNING/ERROR"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出 INFO 日志"),
):
    """FieldEvo - 文档字段抽取提示词自动优化"""
    level = "INFO" if verbose and log_level.upper() == "WARNING" else log_level.upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


@app.command()
def init(
    path: str = typer.Argument(".", help="项目路径"),
):
    """初始化 FieldEvo 配置"""
    from field_evo.cli.commands.init import run_init
    run_init(path)


@app.command()
def sample(
    comparison: str = typer.Argument(..., help="比对数据文件（JSON/YAML）"),
    fields: Optional[str] = typer.Option(None, "-f", "--fields", help="只处理指定字段（逗号分隔）"),
    config: Optional[str] = typer.Option(None, "-c", "--config", help="配置文件路径"),
):
    """预览失败映射与采样结果"""
    from field_evo.cli.commands.sample import run_sample
    field_list = fields.split(",") if fields else None
    run_sample(comparison, field_list, config)


@app.command()
def run(
    comparison: str = typer.Argument(..., help="比对数据文件（JSON/YAML）"),
    fields: Optional[str] = typer.Option(None, "-f", "--fields", help="只优化指定字段（逗号分隔）"),
    config: Optional[str] = typer.Option(None, "-c", "--config", help="配置文件路径"),
    output: str = typer.Option("./field-evo-result.json", "-o", "--output", help="结果输出路径"),
    prompts: Optional[str] = typer.Option(None, "-p", "--prompts", help="提示词存储 YAML，用作当前提示词"),
    max_iterations: Optional[int] = typer.Option(None, "--max-iterations", help="覆盖每字段最大迭代次数"),
    field_concurrency: Optional[int] = typer.Option(None, "--field-concurrency", help="覆盖字段并发数"),
    test_model: Optional[str] = typer.Option(None, "--model", help="覆盖测试模型"),
):
    """运行提示词优化"""
    from field_evo.cli.commands.run import run_optimize
    field_list = fields.split(",") if fields else None
    overrides = {
        "max_iterations": max_iterations,
        "field_concurrency": field_concurrency,
        "test_model": test_model,
    }
    asyncio.run(run_optimize(comparison, field_list, config, output, prompts, overrides))


@app.command()
def report(
    input_file: str = typer.Argument(..., help="结果 JSON 文件路径"),
    show_prompts: bool = typer.Option(False, "--prompts", help="显示最终提示词"),
):
    """查看优化结果"""
    from field_evo.cli.commands.report import show_report
    show_report(input_file, show_prompts)


@app.command()
def apply(
    input_file: str = typer.Argument(..., help="结果 JSON 文件路径"),
    prompts: str = typer.Option("./prompts.yaml", "-p", "--prompts", help="提示词存储 YAML"),
    fields: Optional[str] = typer.Option(None, "-f", "--fields", help="只应用指定字段（逗号分隔）"),
):
    """将有提升的提示词写入提示词存储"""
    from field_evo.cli.commands.apply import run_apply
    field_list = fields.split(",") if fields else None
    run_apply(input_file, prompts, field_list)


if __name__ == "__main__":
    app()
