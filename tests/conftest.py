# tests/conftest.py
"""项目全局共享的测试 Fixtures。"""

from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
from pytest_mock import MockerFixture
from rich.console import Console

from enrich_hub.config import EnrichHubConfig


@pytest.fixture(scope="session", autouse=True)
def disable_rich_colors_for_tests(
    session_mocker: MockerFixture,
) -> Generator[None, None, None]:
    """全局禁用 rich 库的颜色输出，以确保测试结果的确定性。"""
    original_init = Console.__init__

    def new_init(self: Console, *args: Any, **kwargs: Any) -> None:
        kwargs["force_terminal"] = False
        kwargs["color_system"] = None
        original_init(self, *args, **kwargs)

    session_mocker.patch("rich.console.Console.__init__", new=new_init)
    yield


@pytest.fixture(autouse=True)
def isolate_environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> Generator[None, None, None]:
    """避免开发者本机的 EH_* 环境变量和 .env 文件影响测试。"""
    import os

    for name in list(os.environ):
        if name.startswith("EH_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    yield


@pytest.fixture
def make_config(tmp_path: Path):  # type: ignore[no-untyped-def]
    """构造一个指向临时目录的配置；关键字参数覆盖默认值。"""

    def _make(**overrides: Any) -> EnrichHubConfig:
        overrides.setdefault("credentials_path", tmp_path / "settings.json")
        provider_configs = overrides.setdefault("provider_configs", {})
        provider_configs.setdefault("local", {}).setdefault(
            "cache_dir", str(tmp_path / "hf-cache")
        )
        return EnrichHubConfig(**overrides)

    return _make
