# tests/unit/cli/test_models_and_key.py
"""针对 `models` 与 `key` 子命令的单元测试。"""

from pathlib import Path

import pytest
from typer.testing import CliRunner

from enrich_hub.cli.main import app

runner = CliRunner()


@pytest.fixture
def hub(tmp_path: Path) -> Path:
    root = tmp_path / "hub"
    blob = root / "models--sshleifer--distilbart-cnn-6-6" / "blobs" / "aaa"
    blob.parent.mkdir(parents=True)
    blob.write_bytes(b"x" * 2048)
    other = root / "xet" / "chunk"
    other.parent.mkdir(parents=True)
    other.write_bytes(b"x" * 10)
    return root


@pytest.fixture
def env(tmp_path: Path, hub: Path) -> dict[str, str]:
    return {
        "EH_CREDENTIALS_PATH": str(tmp_path / "settings.json"),
        "EH_LOGGING__LEVEL": "WARNING",
        "EH_PROVIDER_CONFIGS__LOCAL__CACHE_DIR": str(hub),
    }


def test_models_list(env: dict[str, str]) -> None:
    result = runner.invoke(app, ["models", "list"], env=env)

    assert result.exit_code == 0, result.output
    assert "Cache: xet" in result.output
    assert "总计 2.0 KB" in result.output


def test_models_delete(env: dict[str, str], hub: Path) -> None:
    result = runner.invoke(
        app, ["models", "delete", "sshleifer/distilbart-cnn-6-6"], env=env
    )

    assert result.exit_code == 0, result.output
    assert not (hub / "models--sshleifer--distilbart-cnn-6-6").exists()

    missing = runner.invoke(app, ["models", "delete", "nobody/nothing"], env=env)
    assert missing.exit_code == 1
    assert "未找到模型" in missing.output


def test_models_clear_requires_confirmation(env: dict[str, str], hub: Path) -> None:
    aborted = runner.invoke(app, ["models", "clear"], input="n\n", env=env)
    assert aborted.exit_code == 1
    assert len(list(hub.iterdir())) == 2

    result = runner.invoke(app, ["models", "clear", "--yes"], env=env)
    assert result.exit_code == 0, result.output
    assert "已删除 2 个" in result.output
    assert list(hub.iterdir()) == []


def test_models_list_empty(tmp_path: Path) -> None:
    env = {
        "EH_CREDENTIALS_PATH": str(tmp_path / "settings.json"),
        "EH_PROVIDER_CONFIGS__LOCAL__CACHE_DIR": str(tmp_path / "empty"),
    }
    result = runner.invoke(app, ["models", "list"], env=env)
    assert result.exit_code == 0
    assert "没有已缓存的模型" in result.output


def test_key_lifecycle(env: dict[str, str], tmp_path: Path) -> None:
    assert runner.invoke(app, ["key", "show"], env=env).exit_code == 1

    saved = runner.invoke(app, ["key", "set", "abcd1234wxyz"], env=env)
    assert saved.exit_code == 0, saved.output
    assert (tmp_path / "settings.json").exists()

    shown = runner.invoke(app, ["key", "show"], env=env)
    assert "abcd****wxyz" in shown.output
    assert "abcd1234wxyz" not in shown.output

    cleared = runner.invoke(app, ["key", "clear"], env=env)
    assert "API 密钥已删除" in cleared.output
    assert runner.invoke(app, ["key", "show"], env=env).exit_code == 1


def test_key_set_prompts_when_argument_missing(env: dict[str, str]) -> None:
    result = runner.invoke(app, ["key", "set"], input="prompted-secret-key\n", env=env)
    assert result.exit_code == 0, result.output

    shown = runner.invoke(app, ["key", "show"], env=env)
    assert "prom" in shown.output


def test_key_validate_without_key(env: dict[str, str]) -> None:
    result = runner.invoke(app, ["key", "validate"], env=env)
    assert result.exit_code == 1
    assert "尚未保存 API 密钥" in result.output
