# tests/unit/providers/test_keyed_provider.py
"""针对用户密钥型大模型适配器的单元测试。客户端被替换为 AsyncMock。"""

from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest
from openai.types.chat import ChatCompletion
from pytest_mock import MockerFixture

from enrich_hub.core.exceptions import (
    ContentRejected,
    CredentialMissing,
    ProviderUnavailable,
    QuotaExceeded,
    TransformFailure,
)
from enrich_hub.core.types import JobKind, SummaryLength
from enrich_hub.credentials import KEYED_API_KEY, CredentialStore
from enrich_hub.providers import keyed
from enrich_hub.providers.keyed import KeyedModelConfig, KeyedModelProvider

REQUEST = httpx.Request("POST", "https://llm.example.test/chat/completions")


def completion(content: str | None, finish_reason: str = "stop") -> ChatCompletion:
    return ChatCompletion.model_validate(
        {
            "id": "cmpl-1",
            "object": "chat.completion",
            "created": 0,
            "model": "gemini-2.5-flash",
            "choices": [
                {
                    "index": 0,
                    "finish_reason": finish_reason,
                    "message": {"role": "assistant", "content": content},
                }
            ],
            "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
        }
    )


def make_client(result: Any) -> MagicMock:
    client = MagicMock()
    if isinstance(result, Exception):
        client.chat.completions.create = AsyncMock(side_effect=result)
    else:
        client.chat.completions.create = AsyncMock(return_value=result)
    client.close = AsyncMock()
    return client


def make_provider(client: MagicMock, api_key: str | None = "test-key") -> KeyedModelProvider:
    return KeyedModelProvider(KeyedModelConfig(api_key=api_key), client=client)


def status_error(cls: type[openai.APIStatusError], status: int, **kwargs: Any) -> openai.APIStatusError:
    response = httpx.Response(status, request=REQUEST, headers=kwargs.pop("headers", None))
    return cls("error", response=response, body=kwargs.pop("body", None))


@pytest.mark.asyncio
async def test_summarize_builds_spanish_prompt_and_reports_usage() -> None:
    client = make_client(completion("  Resumen del artículo.  "))
    provider = make_provider(client)

    output = await provider.summarize("Texto original.", SummaryLength.SHORT, "en", "es")

    assert output.text == "Resumen del artículo."
    assert output.usage == {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15}
    prompt = client.chat.completions.create.call_args.kwargs["messages"][0]["content"]
    assert "aproximadamente 50 palabras (2-3 frases)" in prompt
    assert "Escribe el resumen en español." in prompt
    assert "Texto original." in prompt


@pytest.mark.asyncio
async def test_translate_strips_wrapping_quotes() -> None:
    client = make_client(completion('"Hola [[TAG_0]]mundo[[TAG_1]]"'))
    output = await make_provider(client).translate(
        "Hello [[TAG_0]]world[[TAG_1]]", "en", "es"
    )
    assert output.text == "Hola [[TAG_0]]mundo[[TAG_1]]"


@pytest.mark.asyncio
async def test_missing_key_is_credential_missing(tmp_path: Path) -> None:
    provider = KeyedModelProvider(
        KeyedModelConfig(), credentials=CredentialStore(tmp_path / "s.json")
    )

    assert not await provider.check_availability(JobKind.SUMMARIZE)
    with pytest.raises(CredentialMissing):
        await provider.summarize("Texto.", SummaryLength.SHORT, "en", "es")


@pytest.mark.asyncio
async def test_key_from_credential_store(tmp_path: Path) -> None:
    store = CredentialStore(tmp_path / "s.json")
    store.store(KEYED_API_KEY, "stored-key")
    provider = KeyedModelProvider(KeyedModelConfig(), credentials=store)

    assert await provider.check_availability(JobKind.TRANSLATE)
    assert provider._api_key() == "stored-key"


@pytest.mark.asyncio
async def test_rate_limit_maps_to_quota_with_retry_after() -> None:
    error = status_error(openai.RateLimitError, 429, headers={"retry-after": "30"})
    provider = make_provider(make_client(error))

    with pytest.raises(QuotaExceeded) as exc_info:
        await provider.summarize("Texto.", SummaryLength.SHORT, "en", "es")

    assert 25 <= exc_info.value.retry_after_seconds <= 30  # type: ignore[operator]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error, expected",
    [
        (status_error(openai.AuthenticationError, 401), CredentialMissing),
        (status_error(openai.PermissionDeniedError, 403), CredentialMissing),
        (
            status_error(
                openai.BadRequestError,
                400,
                body={"error": {"details": [{"reason": "API_KEY_INVALID"}]}},
            ),
            CredentialMissing,
        ),
        (status_error(openai.BadRequestError, 400), ContentRejected),
        (status_error(openai.InternalServerError, 503), ProviderUnavailable),
        (openai.APIConnectionError(request=REQUEST), ProviderUnavailable),
    ],
)
async def test_api_errors_are_classified(error: Exception, expected: type[Exception]) -> None:
    provider = make_provider(make_client(error))
    with pytest.raises(expected) as exc_info:
        await provider.translate("Hello", "en", "es")
    assert exc_info.value.provider == "keyed"  # type: ignore[attr-defined]


@pytest.mark.asyncio
async def test_content_filter_and_empty_content() -> None:
    with pytest.raises(ContentRejected, match="安全过滤器"):
        await make_provider(make_client(completion("x", "content_filter"))).translate(
            "Hello", "en", "es"
        )
    with pytest.raises(TransformFailure):
        await make_provider(make_client(completion(None))).translate("Hello", "en", "es")


@pytest.mark.asyncio
async def test_validate_key(mocker: MockerFixture) -> None:
    good = make_client(completion("ok"))
    bad = make_client(status_error(openai.AuthenticationError, 401))
    provider = make_provider(make_client(completion("unused")))

    mocker.patch.object(provider, "_build_client", return_value=good)
    assert await provider.validate_key("good-key") is True
    good.close.assert_awaited_once()

    mocker.patch.object(provider, "_build_client", return_value=bad)
    assert await provider.validate_key("bad-key") is False


def test_language_instruction() -> None:
    assert keyed.language_instruction("en") == "Write the summary in English."
    assert keyed.language_instruction("fr") == "Write the summary in fr."
