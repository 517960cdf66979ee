# enrich_hub/cli/enrich.py
"""翻译、摘要与适配器状态命令。"""

import asyncio
import hashlib
from pathlib import Path
from typing import Annotated, Optional

import structlog
import typer
from rich.table import Table

from enrich_hub.cli.state import State
from enrich_hub.cli.utils import console, create_orchestrator, print_event, read_source
from enrich_hub.config import EnrichHubConfig
from enrich_hub.core.exceptions import ConfigurationError, EnrichmentFailed, InputRejected
from enrich_hub.core.types import (
    EnrichmentJob,
    EnrichmentResult,
    JobKind,
    ProviderTag,
    SummaryLength,
)
from enrich_hub.registry import AdapterRegistry

logger = structlog.get_logger(__name__)


def _content_id_for(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


async def _run_job(
    config: EnrichHubConfig,
    job: EnrichmentJob,
    order: list[ProviderTag] | None,
    regenerate: bool,
    show_progress: bool,
) -> EnrichmentResult:
    orchestrator = create_orchestrator(config)
    try:
        await orchestrator.initialize()
        handle = orchestrator.start(job, order, regenerate=regenerate)
        if show_progress:
            async for event in handle.events():
                print_event(event)
        return await handle.result()
    finally:
        await orchestrator.close()


def _print_failure(error: EnrichmentFailed) -> None:
    console.print("[bold red]❌ 所有适配器均失败。[/bold red]")
    table = Table("适配器", "原因", "详情")
    for attempt in error.attempts:
        table.add_row(attempt.provider.value, attempt.error_kind, attempt.message)
    console.print(table)
    if error.quota_reset_at is not None:
        console.print(
            f"[yellow]配额将于 {error.quota_reset_at.isoformat()} 重置。[/yellow]"
        )


def _execute(
    state: State,
    kind: JobKind,
    source: Optional[Path],
    content_id: Optional[str],
    source_lang: Optional[str],
    length: Optional[SummaryLength],
    providers: Optional[list[ProviderTag]],
    regenerate: bool,
    quiet: bool,
) -> None:
    text = read_source(source)
    try:
        job = EnrichmentJob(
            content_id=content_id or _content_id_for(text),
            kind=kind,
            source_text=text,
            source_language_hint=source_lang,
            target_length=length,
        )
    except ValueError as e:
        console.print(f"[bold red]❌ 参数无效: {e}[/bold red]")
        raise typer.Exit(code=1) from e

    try:
        result = asyncio.run(
            _run_job(state.config, job, providers or None, regenerate, not quiet)
        )
    except InputRejected as e:
        console.print(f"[bold red]❌ 输入被拒绝: {e}[/bold red]")
        raise typer.Exit(code=1) from e
    except EnrichmentFailed as e:
        _print_failure(e)
        raise typer.Exit(code=1) from e
    except ConfigurationError as e:
        console.print(f"[bold red]❌ 配置错误: {e}[/bold red]")
        raise typer.Exit(code=1) from e

    origin = "（来自缓存）" if result.from_cache else ""
    if not quiet:
        console.print(
            f"[bold green]✅ 由 {result.provider_used.value} 完成{origin}[/bold green] "
            f"[dim]{result.source_language} → {result.target_language}[/dim]"
        )
    typer.echo(result.output_text)


SourceArg = Annotated[
    Optional[Path], typer.Argument(help="输入文件（文本或 HTML）；省略或 '-' 表示标准输入。")
]
ContentIdOpt = Annotated[
    Optional[str], typer.Option("--content-id", help="结果缓存键；默认使用文本哈希。")
]
SourceLangOpt = Annotated[
    Optional[str], typer.Option("--source-lang", "-s", help="源语言代码，跳过语言检测。")
]
ProviderOpt = Annotated[
    Optional[list[ProviderTag]],
    typer.Option("--provider", "-p", help="按顺序指定要尝试的适配器，可重复。"),
]
RegenerateOpt = Annotated[
    bool, typer.Option("--regenerate", help="忽略结果缓存并重新生成。")
]
QuietOpt = Annotated[bool, typer.Option("--quiet", "-q", help="只输出结果文本。")]


def translate(
    ctx: typer.Context,
    source: SourceArg = None,
    content_id: ContentIdOpt = None,
    source_lang: SourceLangOpt = None,
    provider: ProviderOpt = None,
    regenerate: RegenerateOpt = False,
    quiet: QuietOpt = False,
) -> None:
    """把文章文本或 HTML 翻译为目标语言。"""
    _execute(
        ctx.obj, JobKind.TRANSLATE, source, content_id, source_lang, None,
        provider, regenerate, quiet,
    )


def summarize(
    ctx: typer.Context,
    source: SourceArg = None,
    content_id: ContentIdOpt = None,
    source_lang: SourceLangOpt = None,
    length: Annotated[
        SummaryLength, typer.Option("--length", "-l", help="摘要长度。")
    ] = SummaryLength.MEDIUM,
    provider: ProviderOpt = None,
    regenerate: RegenerateOpt = False,
    quiet: QuietOpt = False,
) -> None:
    """为文章生成目标语言的摘要。"""
    _execute(
        ctx.obj, JobKind.SUMMARIZE, source, content_id, source_lang, length,
        provider, regenerate, quiet,
    )


async def _provider_rows(config: EnrichHubConfig) -> list[tuple[str, ...]]:
    registry = AdapterRegistry(config)
    rows: list[tuple[str, ...]] = []
    try:
        for descriptor in registry.descriptors():
            try:
                provider = registry.get(descriptor.tag)
            except ConfigurationError as e:
                logger.warning("适配器配置无效", provider=descriptor.tag.value, error=str(e))
                availability = {kind: False for kind in JobKind}
            else:
                availability = {
                    kind: await provider.check_availability(kind) for kind in JobKind
                }
            marks = [
                ("✅" if availability[kind] else "❌")
                if kind in descriptor.capabilities
                else "-"
                for kind in JobKind
            ]
            rows.append(
                (
                    descriptor.tag.value,
                    descriptor.cost_class.value,
                    descriptor.version,
                    *marks,
                )
            )
    finally:
        await registry.close()
    return rows


def providers(ctx: typer.Context) -> None:
    """列出已注册的适配器及其当前可用性。"""
    state: State = ctx.obj
    rows = asyncio.run(_provider_rows(state.config))
    table = Table("适配器", "成本", "版本", "翻译", "摘要", title="适配器状态")
    for row in rows:
        table.add_row(*row)
    console.print(table)
