# enrich_hub/cli/main.py
"""Enrich-Hub CLI 的主入口点。"""

from typing import Annotated

import typer
from rich.console import Console

import enrich_hub
from enrich_hub.cli.enrich import providers, summarize, translate
from enrich_hub.cli.key import key_app
from enrich_hub.cli.models import models_app
from enrich_hub.cli.state import State
from enrich_hub.config import EnrichHubConfig
from enrich_hub.logging_config import setup_logging
from enrich_hub.registry import discover_providers

app = typer.Typer(
    name="enrich-hub",
    help="📰 Enrich-Hub: 为文章生成西班牙语译文与摘要，并在多个引擎之间自动回退。",
    add_completion=False,
    no_args_is_help=True,
)

app.command("translate")(translate)
app.command("summarize")(summarize)
app.command("providers")(providers)
app.add_typer(models_app, name="models")
app.add_typer(key_app, name="key")

console = Console()


def version_callback(value: bool) -> None:
    if value:
        console.print(f"Enrich-Hub [bold cyan]v{enrich_hub.__version__}[/bold cyan]")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-v",
            help="显示版本信息并退出。",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """主回调函数，在任何子命令执行前加载配置、配置日志并发现适配器。"""
    try:
        config = EnrichHubConfig()
        setup_logging(log_level=config.logging.level, log_format=config.logging.format)
        discover_providers()
        ctx.obj = State(config=config)
    except Exception as e:
        console.print("[bold red]❌ 启动失败：无法加载配置或初始化日志。[/bold red]")
        console.print(f"[dim]{e}[/dim]")
        raise typer.Exit(code=1) from e
