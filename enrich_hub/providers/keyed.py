# enrich_hub/providers/keyed.py
"""
用户密钥型大模型适配器。

通过 OpenAI 兼容的 Chat Completions 接口调用远程大模型（默认是 Gemini 的
OpenAI 兼容端点）。密钥来自用户的凭证存储，也可以通过 `EH_KEYED_API_KEY` 提供。
"""

from datetime import datetime, timedelta, timezone
from typing import Any, cast

import httpx
import structlog
from openai import (
    APIConnectionError,
    APIStatusError,
    AsyncOpenAI,
    AuthenticationError,
    OpenAIError,
    PermissionDeniedError,
    RateLimitError,
)
from openai.types.chat import ChatCompletionUserMessageParam
from pydantic import Field, HttpUrl, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from enrich_hub.core.exceptions import (
    ContentRejected,
    CredentialMissing,
    ProviderError,
    ProviderUnavailable,
    QuotaExceeded,
    TransformFailure,
)
from enrich_hub.core.types import (
    LENGTH_PROFILES,
    CostClass,
    JobKind,
    ProviderOutput,
    ProviderTag,
    SummaryLength,
)
from enrich_hub.credentials import KEYED_API_KEY, CredentialStore
from enrich_hub.platform import DownloadCallback
from enrich_hub.providers.base import BaseProvider, BaseProviderConfig

logger = structlog.get_logger(__name__)

GEMINI_OPENAI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/openai/"
PROMPT_INPUT_LIMIT = 15000

SUMMARY_PROMPT = """Eres un experto en resumir artículos de noticias. Tu tarea es crear un resumen claro y conciso.

Instrucciones:
- Crea un resumen de aproximadamente {words} palabras ({sentences} frases)
- Captura los puntos principales y la información más relevante
- Mantén un tono neutral e informativo
- {language_instruction}
- No incluyas introducciones como "Este artículo trata sobre..." o "En resumen..."
- Ve directo al contenido del resumen

Artículo a resumir:
{text}

Resumen:"""

TRANSLATE_PROMPT = """Traduce el siguiente texto del idioma '{source_lang}' al idioma '{target_lang}'.

Instrucciones:
- Devuelve únicamente la traducción, sin explicaciones ni comillas
- Conserva exactamente los marcadores con el formato [[TAG_n]] en su posición
- Conserva los saltos de párrafo

Texto:
{text}"""


def language_instruction(output_language: str) -> str:
    if output_language == "es":
        return "Escribe el resumen en español."
    if output_language == "en":
        return "Write the summary in English."
    return f"Write the summary in {output_language}."


class KeyedModelConfig(BaseSettings, BaseProviderConfig):
    """用户密钥型适配器的配置模型。"""

    model_config = SettingsConfigDict(env_prefix="EH_KEYED_", extra="ignore")

    api_key: SecretStr | None = Field(default=None)
    endpoint: HttpUrl = Field(default=cast(HttpUrl, GEMINI_OPENAI_ENDPOINT))
    model: str = "gemini-2.5-flash"
    temperature: float = 0.3
    max_chunk_chars: int = Field(default=4000, gt=0)
    max_input_chars: int = Field(default=PROMPT_INPUT_LIMIT, gt=0)
    timeout_total: float = 60.0
    timeout_connect: float = 5.0
    max_retries: int = 1


class KeyedModelProvider(BaseProvider[KeyedModelConfig]):
    """使用用户自有 API 密钥的远程大模型适配器。"""

    TAG = ProviderTag.KEYED
    COST_CLASS = CostClass.METERED
    CAPABILITIES = frozenset({JobKind.TRANSLATE, JobKind.SUMMARIZE})
    CONFIG_MODEL = KeyedModelConfig
    VERSION = "1.0.0"

    def __init__(
        self,
        config: KeyedModelConfig,
        credentials: CredentialStore | None = None,
        client: AsyncOpenAI | None = None,
    ):
        super().__init__(config)
        self._credentials = credentials
        self._client = client
        self._client_key: str | None = None

    def _api_key(self) -> str | None:
        if self.config.api_key is not None:
            return self.config.api_key.get_secret_value()
        if self._credentials is not None:
            secret = self._credentials.get(KEYED_API_KEY)
            if secret is not None:
                return secret.get_secret_value()
        return None

    def _build_client(self, api_key: str) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=api_key,
            base_url=str(self.config.endpoint),
            timeout=httpx.Timeout(
                self.config.timeout_total, connect=self.config.timeout_connect
            ),
            max_retries=self.config.max_retries,
        )

    def _get_client(self) -> AsyncOpenAI:
        api_key = self._api_key()
        if api_key is None:
            raise CredentialMissing("未配置 API 密钥", provider=self.TAG.value)
        if self._client is None or (
            self._client_key is not None and self._client_key != api_key
        ):
            self._client = self._build_client(api_key)
            self._client_key = api_key
        return self._client

    async def _check_availability(
        self, kind: JobKind, source_lang: str | None, target_lang: str | None
    ) -> bool:
        # 只检查密钥是否存在，不发起网络请求
        return self._api_key() is not None

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
        await super().close()

    def _map_error(self, e: OpenAIError) -> ProviderError:
        provider = self.TAG.value
        if isinstance(e, RateLimitError):
            retry_after = e.response.headers.get("retry-after")
            reset_at = None
            if retry_after and retry_after.isdigit():
                reset_at = datetime.now(timezone.utc) + timedelta(
                    seconds=int(retry_after)
                )
            return QuotaExceeded(
                f"远程模型配额已用尽: {e.message}", provider=provider, reset_at=reset_at
            )
        if isinstance(e, (AuthenticationError, PermissionDeniedError)):
            return CredentialMissing(
                f"API 密钥无效或权限不足: {e.message}", provider=provider
            )
        if isinstance(e, APIConnectionError):
            return ProviderUnavailable(f"无法连接远程模型端点: {e}", provider=provider)
        if isinstance(e, APIStatusError):
            if "API_KEY_INVALID" in str(e.body):
                return CredentialMissing("API 密钥无效", provider=provider)
            if e.status_code >= 500:
                return ProviderUnavailable(
                    f"远程模型服务错误 (HTTP {e.status_code})", provider=provider
                )
            return ContentRejected(
                f"远程模型拒绝了请求 (HTTP {e.status_code}): {e.message}",
                provider=provider,
            )
        return TransformFailure(f"远程模型调用失败: {e}", provider=provider)

    async def _complete(self, prompt: str) -> ProviderOutput:
        client = self._get_client()
        try:
            response = await client.chat.completions.create(
                model=self.config.model,
                messages=[ChatCompletionUserMessageParam(role="user", content=prompt)],
                temperature=self.config.temperature,
            )
        except OpenAIError as e:
            raise self._map_error(e) from e

        if not response.choices:
            raise TransformFailure(
                "API 返回了空的 'choices' 列表。", provider=self.TAG.value
            )
        choice = response.choices[0]
        if choice.finish_reason == "content_filter":
            raise ContentRejected("内容被安全过滤器拦截", provider=self.TAG.value)

        content = (choice.message.content or "").strip()
        if not content:
            raise TransformFailure("API 返回了空内容。", provider=self.TAG.value)

        usage: dict[str, Any] | None = None
        if response.usage is not None:
            usage = response.usage.model_dump(
                include={"prompt_tokens", "completion_tokens", "total_tokens"}
            )
        return ProviderOutput(
            text=content, model=response.model or self.config.model, usage=usage
        )

    async def _translate(
        self,
        text: str,
        source_lang: str,
        target_lang: str,
        on_download: DownloadCallback | None,
    ) -> ProviderOutput:
        prompt = TRANSLATE_PROMPT.format(
            source_lang=source_lang, target_lang=target_lang, text=text
        )
        output = await self._complete(prompt)
        output.text = output.text.strip('"')
        return output

    async def _summarize(
        self,
        text: str,
        length: SummaryLength,
        source_lang: str,
        target_lang: str,
        on_download: DownloadCallback | None,
    ) -> ProviderOutput:
        profile = LENGTH_PROFILES[length]
        prompt = SUMMARY_PROMPT.format(
            words=profile.words,
            sentences=profile.sentences,
            language_instruction=language_instruction(target_lang),
            text=text[:PROMPT_INPUT_LIMIT],
        )
        return await self._complete(prompt)

    async def validate_key(self, api_key: str) -> bool:
        """发起一个最小请求来验证密钥是否可用。"""
        client = self._build_client(api_key)
        try:
            await client.chat.completions.create(
                model=self.config.model,
                messages=[
                    ChatCompletionUserMessageParam(role="user", content="Say 'ok'")
                ],
                max_tokens=5,
            )
            return True
        except OpenAIError as e:
            logger.warning("API 密钥验证失败", error=str(e))
            return False
        finally:
            await client.close()
