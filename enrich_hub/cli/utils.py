# enrich_hub/cli/utils.py
"""CLI 命令共享的构造函数与输出辅助。"""

import sys
from pathlib import Path

import typer
from rich.console import Console

from enrich_hub.config import EnrichHubConfig
from enrich_hub.core.types import ProgressEvent
from enrich_hub.orchestrator import FallbackOrchestrator
from enrich_hub.registry import AdapterRegistry
from enrich_hub.result_cache import create_result_store

console = Console()


def create_orchestrator(config: EnrichHubConfig) -> FallbackOrchestrator:
    """根据配置创建一个未初始化的编排器。这是 CLI 创建编排器的唯一入口。"""
    registry = AdapterRegistry(config)
    store = create_result_store(config.result_store_url, config.result_cache)
    return FallbackOrchestrator(config, registry, store)


def read_source(path: Path | None) -> str:
    """从文件或标准输入读取源文本。"""
    if path is None or str(path) == "-":
        if sys.stdin.isatty():
            console.print("[bold red]❌ 请提供输入文件，或通过标准输入传入文本。[/bold red]")
            raise typer.Exit(code=1)
        return sys.stdin.read()
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        console.print(f"[bold red]❌ 无法读取文件 '{path}': {e}[/bold red]")
        raise typer.Exit(code=1) from e


def print_event(event: ProgressEvent) -> None:
    provider = f" [cyan]({event.provider.value})[/cyan]" if event.provider else ""
    console.print(
        f"[dim]{event.status.value:<12}[/dim] {event.progress_pct:5.1f}% "
        f"{event.message}{provider}"
    )


def format_bytes(size: int | None) -> str:
    if size is None:
        return "?"
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"
