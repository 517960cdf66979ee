# enrich_hub/cli/models.py
"""管理本机缓存模型的 CLI 命令。"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Annotated, TypeVar

import typer
from rich.table import Table

from enrich_hub.cli.state import State
from enrich_hub.cli.utils import console, format_bytes
from enrich_hub.config import EnrichHubConfig
from enrich_hub.model_cache import CacheReport, DeletionOutcome, ModelCacheManager
from enrich_hub.registry import AdapterRegistry

_T = TypeVar("_T")

models_app = typer.Typer(help="查看和删除适配器缓存的模型。")


async def _with_manager(
    config: EnrichHubConfig, action: Callable[[ModelCacheManager], Awaitable[_T]]
) -> _T:
    registry = AdapterRegistry(config)
    try:
        return await action(ModelCacheManager(registry))
    finally:
        await registry.close()


@models_app.command("list")
def list_models(ctx: typer.Context) -> None:
    """列出已缓存的模型及其占用空间。"""
    state: State = ctx.obj
    report: CacheReport = asyncio.run(
        _with_manager(state.config, lambda m: m.list_models())
    )
    if not report.models:
        console.print("[dim]没有已缓存的模型。[/dim]")
        return

    table = Table("模型", "适配器", "能力", "文件数", "大小", title="模型缓存")
    for model in report.models:
        table.add_row(
            model.model_id,
            model.provider.value,
            model.capability or "-",
            str(model.file_count),
            format_bytes(model.size_bytes),
        )
    console.print(table)
    by_capability = ", ".join(
        f"{kind}: {format_bytes(size)}"
        for kind, size in sorted(report.bytes_by_capability.items())
    )
    console.print(f"总计 {format_bytes(report.total_bytes)}（{by_capability}）")


@models_app.command("delete")
def delete_model(
    ctx: typer.Context,
    model_id: Annotated[str, typer.Argument(help="要删除的模型 ID。")],
) -> None:
    """删除一个已缓存的模型。"""
    state: State = ctx.obj
    outcome: DeletionOutcome = asyncio.run(
        _with_manager(state.config, lambda m: m.delete_model(model_id))
    )
    if outcome is DeletionOutcome.NOT_FOUND:
        console.print(f"[bold red]❌ 未找到模型 '{model_id}'。[/bold red]")
        raise typer.Exit(code=1)
    if outcome is DeletionOutcome.ADVISORY:
        console.print(
            f"[yellow]⚠️ 已请求平台释放 '{model_id}'，但平台仍报告其可用。[/yellow]"
        )
        return
    console.print(f"[bold green]✅ 模型 '{model_id}' 已删除。[/bold green]")


@models_app.command("clear")
def clear_models(
    ctx: typer.Context,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="跳过确认。")] = False,
) -> None:
    """删除所有本地推理模型。"""
    if not yes:
        typer.confirm("确定要删除所有本地模型吗？", abort=True)
    state: State = ctx.obj
    removed: int = asyncio.run(_with_manager(state.config, lambda m: m.clear_local()))
    console.print(f"[bold green]✅ 已删除 {removed} 个本地缓存条目。[/bold green]")
