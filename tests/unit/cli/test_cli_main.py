# tests/unit/cli/test_cli_main.py
"""针对 Enrich-Hub CLI 主入口与翻译/摘要命令的单元测试，通过 CliRunner 驱动。"""

from pathlib import Path

import pytest
from typer.testing import CliRunner

import enrich_hub
from enrich_hub.cli.main import app

ARTICLE = (
    "The city council approved the new budget on Monday. The plan includes "
    "funding for schools and public transport. Critics said the proposal was "
    "rushed and lacked detail."
)

runner = CliRunner()


@pytest.fixture
def env(tmp_path: Path) -> dict[str, str]:
    return {
        "EH_CREDENTIALS_PATH": str(tmp_path / "settings.json"),
        "EH_LOGGING__LEVEL": "WARNING",
        "EH_PROVIDER_CONFIGS__LOCAL__CACHE_DIR": str(tmp_path / "hub"),
    }


def write_source(tmp_path: Path, text: str) -> str:
    path = tmp_path / "article.txt"
    path.write_text(text, encoding="utf-8")
    return str(path)


def test_version_flag() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert f"v{enrich_hub.__version__}" in result.output


def test_no_args_shows_help() -> None:
    result = runner.invoke(app, [])
    assert "translate" in result.output
    assert "summarize" in result.output


def test_translate_with_debug_provider(tmp_path: Path, env: dict[str, str]) -> None:
    source = write_source(tmp_path, "Hello there, friend.")

    result = runner.invoke(app, ["translate", source, "-s", "en", "-p", "debug", "-q"], env=env)

    assert result.exit_code == 0, result.output
    assert "Translated(Hello there, friend.) to es" in result.output


def test_translate_reads_stdin_and_uses_configured_order(env: dict[str, str]) -> None:
    env = {**env, "EH_PROVIDER_ORDER": '["debug"]'}

    result = runner.invoke(app, ["translate", "-", "-s", "en"], input="Good morning, everyone.", env=env)

    assert result.exit_code == 0, result.output
    assert "由 debug 完成" in result.output
    assert "Translated(Good morning, everyone.) to es" in result.output


def test_summarize_with_length(tmp_path: Path, env: dict[str, str]) -> None:
    source = write_source(tmp_path, ARTICLE)

    result = runner.invoke(
        app, ["summarize", source, "-l", "short", "-p", "debug", "-q"], env=env
    )

    assert result.exit_code == 0, result.output
    assert "Summary[short/es]: The city council" in result.output


def test_failure_lists_attempts(tmp_path: Path, env: dict[str, str]) -> None:
    source = write_source(tmp_path, ARTICLE)
    env = {**env, "EH_PROVIDER_CONFIGS__DEBUG__MODE": "FAIL"}

    result = runner.invoke(
        app, ["translate", source, "-s", "en", "-p", "platform", "-p", "debug"], env=env
    )

    assert result.exit_code == 1
    assert "所有适配器均失败" in result.output
    assert "transform_failure" in result.output


def test_short_input_is_rejected(tmp_path: Path, env: dict[str, str]) -> None:
    source = write_source(tmp_path, "Hola")

    result = runner.invoke(app, ["translate", source, "-p", "debug"], env=env)

    assert result.exit_code == 1
    assert "输入被拒绝" in result.output


def test_invalid_language_hint(tmp_path: Path, env: dict[str, str]) -> None:
    source = write_source(tmp_path, ARTICLE)

    result = runner.invoke(app, ["translate", source, "-s", "not a lang!"], env=env)

    assert result.exit_code == 1
    assert "参数无效" in result.output


def test_missing_file(tmp_path: Path, env: dict[str, str]) -> None:
    result = runner.invoke(app, ["translate", str(tmp_path / "absent.txt")], env=env)
    assert result.exit_code == 1
    assert "无法读取文件" in result.output


def test_providers_table(env: dict[str, str]) -> None:
    result = runner.invoke(app, ["providers"], env=env)

    assert result.exit_code == 0, result.output
    assert "适配器状态" in result.output
    for tag in ("platform", "shared", "keyed", "local", "debug"):
        assert tag in result.output


def test_invalid_configuration_fails_at_startup(env: dict[str, str]) -> None:
    env = {**env, "EH_PROVIDER_ORDER": '["debug", "debug"]'}

    result = runner.invoke(app, ["providers"], env=env)

    assert result.exit_code == 1
    assert "启动失败" in result.output
