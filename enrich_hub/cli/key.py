# enrich_hub/cli/key.py
"""管理用户 API 密钥的 CLI 命令。"""

import asyncio
from typing import Annotated, Optional

import typer

from enrich_hub.cli.state import State
from enrich_hub.cli.utils import console
from enrich_hub.config import EnrichHubConfig
from enrich_hub.core.types import ProviderTag
from enrich_hub.credentials import KEYED_API_KEY, CredentialStore
from enrich_hub.registry import AdapterRegistry

key_app = typer.Typer(help="管理用户密钥型适配器的 API 密钥。")


def _mask(secret: str) -> str:
    if len(secret) <= 8:
        return "*" * len(secret)
    return f"{secret[:4]}{'*' * (len(secret) - 8)}{secret[-4:]}"


@key_app.command("set")
def set_key(
    ctx: typer.Context,
    api_key: Annotated[
        Optional[str], typer.Argument(help="API 密钥；省略时交互式输入。")
    ] = None,
) -> None:
    """保存 API 密钥。"""
    state: State = ctx.obj
    if api_key is None:
        api_key = typer.prompt("API 密钥", hide_input=True)
    try:
        CredentialStore(state.config.credentials_path).store(KEYED_API_KEY, api_key)
    except ValueError as e:
        console.print(f"[bold red]❌ {e}[/bold red]")
        raise typer.Exit(code=1) from e
    console.print("[bold green]✅ API 密钥已保存。[/bold green]")


@key_app.command("show")
def show_key(ctx: typer.Context) -> None:
    """显示已保存的 API 密钥（部分遮盖）。"""
    state: State = ctx.obj
    secret = CredentialStore(state.config.credentials_path).get(KEYED_API_KEY)
    if secret is None:
        console.print("[yellow]尚未保存 API 密钥。[/yellow]")
        raise typer.Exit(code=1)
    console.print(_mask(secret.get_secret_value()))


@key_app.command("clear")
def clear_key(ctx: typer.Context) -> None:
    """删除已保存的 API 密钥。"""
    state: State = ctx.obj
    if CredentialStore(state.config.credentials_path).clear(KEYED_API_KEY):
        console.print("[bold green]✅ API 密钥已删除。[/bold green]")
    else:
        console.print("[dim]没有需要删除的 API 密钥。[/dim]")


async def _validate(config: EnrichHubConfig, api_key: str) -> bool:
    registry = AdapterRegistry(config)
    try:
        provider = registry.get(ProviderTag.KEYED)
        return await provider.validate_key(api_key)  # type: ignore[attr-defined, no-any-return]
    finally:
        await registry.close()


@key_app.command("validate")
def validate_key(ctx: typer.Context) -> None:
    """用一个最小请求验证已保存的 API 密钥。"""
    state: State = ctx.obj
    secret = CredentialStore(state.config.credentials_path).get(KEYED_API_KEY)
    if secret is None:
        console.print("[yellow]尚未保存 API 密钥。[/yellow]")
        raise typer.Exit(code=1)
    if asyncio.run(_validate(state.config, secret.get_secret_value())):
        console.print("[bold green]✅ API 密钥有效。[/bold green]")
    else:
        console.print("[bold red]❌ API 密钥无效或无法访问端点。[/bold red]")
        raise typer.Exit(code=1)
