# enrich_hub/orchestrator.py
"""
回退编排器。

对每个作业：校验输入 → 查询结果缓存 → 确定源语言 → 计算适配器顺序 →
依次尝试适配器，直到某个成功或全部失败。每个失败都会被分类并记录，
全部失败时抛出列出每个适配器失败原因的 `EnrichmentFailed`。

同一 (content_id, kind) 同时只会有一个执行；重复请求会加入正在运行的作业。
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Sequence
from typing import Any, NoReturn

import structlog

from enrich_hub.chunker import reduce_to_budget, split
from enrich_hub.config import EnrichHubConfig
from enrich_hub.core.exceptions import (
    ConfigurationError,
    EnrichmentFailed,
    InputRejected,
    ProviderError,
    QuotaExceeded,
    TransformFailure,
)
from enrich_hub.core.interfaces import ResultStore
from enrich_hub.core.types import (
    EnrichmentJob,
    EnrichmentResult,
    JobKind,
    LENGTH_PROFILES,
    ProviderAttempt,
    ProviderOutput,
    ProviderTag,
    SummaryLength,
)
from enrich_hub.language import LanguageIdentifier
from enrich_hub.platform import DownloadCallback
from enrich_hub.progress import JobProgress, ProgressChannel
from enrich_hub.providers.base import BaseProvider
from enrich_hub.registry import AdapterRegistry
from enrich_hub.structure_codec import (
    clean_translation_artifacts,
    decode,
    encode,
    html_to_text,
    looks_like_html,
    scrub_tokens,
)
from enrich_hub.utils import count_words

logger = structlog.get_logger(__name__)

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")

JobKey = tuple[str, JobKind]


class JobHandle:
    """一个正在运行（或已结束）的作业。可以订阅进度事件，也可以等待结果。"""

    def __init__(
        self,
        job: EnrichmentJob,
        progress: JobProgress,
        task: asyncio.Task[EnrichmentResult],
    ):
        self.job = job
        self.progress = progress
        self.task = task

    @property
    def key(self) -> JobKey:
        return self.job.key

    def done(self) -> bool:
        return self.task.done()

    def events(self) -> ProgressChannel:
        return self.progress.subscribe()

    async def result(self) -> EnrichmentResult:
        # shield: 一个等待者被取消不应取消其他加入者共享的作业
        return await asyncio.shield(self.task)


def _merge_usage(
    total: dict[str, Any] | None, usage: dict[str, Any] | None
) -> dict[str, Any] | None:
    if usage is None:
        return total
    merged = dict(total or {})
    for key, value in usage.items():
        if isinstance(value, (int, float)) and isinstance(merged.get(key), (int, float)):
            merged[key] += value
        else:
            merged[key] = value
    return merged


class FallbackOrchestrator:
    """按优先级尝试各个适配器，并在部分失败时回退。"""

    def __init__(
        self,
        config: EnrichHubConfig,
        registry: AdapterRegistry,
        result_store: ResultStore,
        identifier: LanguageIdentifier | None = None,
    ):
        self.config = config
        self.registry = registry
        self.result_store = result_store
        self.identifier = identifier or LanguageIdentifier(
            registry.platform,
            heuristic_threshold=config.language.heuristic_threshold,
            platform_threshold=config.language.platform_threshold,
            tie_margin=config.language.tie_margin,
        )
        self._in_flight: dict[JobKey, JobHandle] = {}
        self.initialized = False

    async def initialize(self) -> None:
        """连接结果缓存。"""
        if self.initialized:
            return
        await self.result_store.connect()
        self.initialized = True
        logger.info("编排器初始化完成。")

    async def close(self) -> None:
        """取消仍在运行的作业，并关闭适配器与结果缓存。"""
        tasks = [h.task for h in self._in_flight.values() if not h.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.registry.close()
        if self.initialized:
            await self.result_store.close()
            self.initialized = False
        logger.info("编排器已关闭。")

    def start(
        self,
        job: EnrichmentJob,
        provider_order: Sequence[ProviderTag] | None = None,
        *,
        regenerate: bool = False,
    ) -> JobHandle:
        """启动作业并立即返回句柄。必须在运行中的事件循环里调用。"""
        existing = self._in_flight.get(job.key)
        if existing is not None and not existing.done():
            logger.debug(
                "加入正在执行的作业", content_id=job.content_id, kind=job.kind.value
            )
            return existing

        progress = JobProgress(job.kind, job_key=f"{job.kind.value}:{job.content_id}")
        task = asyncio.create_task(
            self._execute(job, progress, provider_order, regenerate),
            name=f"enrich-{job.kind.value}-{job.content_id}",
        )
        handle = JobHandle(job, progress, task)
        self._in_flight[job.key] = handle
        task.add_done_callback(lambda t: self._forget(handle, t))
        return handle

    async def run(
        self,
        job: EnrichmentJob,
        provider_order: Sequence[ProviderTag] | None = None,
        *,
        regenerate: bool = False,
    ) -> EnrichmentResult:
        return await self.start(job, provider_order, regenerate=regenerate).result()

    def _forget(self, handle: JobHandle, task: asyncio.Task[EnrichmentResult]) -> None:
        if self._in_flight.get(handle.key) is handle:
            del self._in_flight[handle.key]
        # 标记异常已被读取；调用方通过 result() 获得同一个异常
        if not task.cancelled():
            task.exception()

    async def _execute(
        self,
        job: EnrichmentJob,
        progress: JobProgress,
        provider_order: Sequence[ProviderTag] | None,
        regenerate: bool,
    ) -> EnrichmentResult:
        structlog.contextvars.bind_contextvars(
            content_id=job.content_id, job_kind=job.kind.value
        )
        try:
            return await self._process(job, progress, provider_order, regenerate)
        except (Exception, asyncio.CancelledError) as e:
            # 订阅者依赖终止事件结束迭代
            if not progress.status.is_terminal:
                progress.failed(f"作业异常中止: {e!r}")
                logger.error("作业异常中止", exc_info=True)
            raise

    async def _process(
        self,
        job: EnrichmentJob,
        progress: JobProgress,
        provider_order: Sequence[ProviderTag] | None,
        regenerate: bool,
    ) -> EnrichmentResult:
        target_lang = self.config.target_lang

        plain = html_to_text(job.source_text)
        min_chars = (
            self.config.input.min_translate_chars
            if job.kind is JobKind.TRANSLATE
            else self.config.input.min_summarize_chars
        )
        if len(plain) < min_chars:
            self._reject(progress, f"文本过短（至少需要 {min_chars} 个字符）")

        if not regenerate:
            cached = await self.result_store.get(job.content_id, job.kind)
            if cached is not None:
                logger.info("命中结果缓存", provider=cached.provider_used.value)
                progress.completed("已从缓存加载", provider=cached.provider_used)
                return cached.model_copy(update={"from_cache": True})

        source_lang = await self._resolve_language(job, plain, progress)
        if job.kind is JobKind.TRANSLATE and source_lang == target_lang:
            self._reject(progress, f"文本已经是目标语言 '{target_lang}'")

        order = self.registry.resolve_order(
            job.kind, provider_order, job.preferred_provider
        )
        candidates, attempts = await self._filter_candidates(
            job.kind, order, source_lang, target_lang
        )
        logger.info(
            "作业开始",
            source_lang=source_lang,
            candidates=[t.value for t in candidates],
        )

        for index, tag in enumerate(candidates):
            provider = self.registry.get(tag)
            progress.begin_attempt(tag)
            try:
                if job.kind is JobKind.TRANSLATE:
                    output = await self._translate_with(
                        provider, job.source_text, source_lang, target_lang, progress
                    )
                else:
                    output = await self._summarize_with(
                        provider, job, plain, source_lang, target_lang, progress
                    )
            except InputRejected as e:
                self._reject(progress, str(e))
            except ProviderError as e:
                attempts.append(
                    ProviderAttempt(
                        provider=tag,
                        error_kind=e.error_kind,
                        message=e.message,
                        retry_at=e.reset_at if isinstance(e, QuotaExceeded) else None,
                    )
                )
                is_last = index == len(candidates) - 1
                if isinstance(e, QuotaExceeded) and is_last:
                    logger.warning(
                        "最后一个适配器配额耗尽，作业终止",
                        provider=tag.value,
                        retry_after=e.retry_after_seconds,
                    )
                    break
                logger.warning(
                    "适配器失败，尝试下一个",
                    provider=tag.value,
                    error_kind=e.error_kind,
                    error=e.message,
                )
                continue

            result = EnrichmentResult(
                content_id=job.content_id,
                kind=job.kind,
                output_text=output.text,
                provider_used=tag,
                source_language=source_lang,
                target_language=target_lang,
                model=output.model,
                usage=output.usage,
                summary_length=job.target_length
                if job.kind is JobKind.SUMMARIZE
                else None,
            )
            await self.result_store.put(result)
            progress.completed(provider=tag)
            logger.info("作业完成", provider=tag.value)
            return result

        error = EnrichmentFailed("所有适配器均失败", attempts)
        progress.failed(str(error))
        logger.error("作业失败", attempts=len(attempts))
        raise error

    def _reject(self, progress: JobProgress, message: str) -> NoReturn:
        progress.failed(message)
        raise InputRejected(message)

    async def _resolve_language(
        self, job: EnrichmentJob, plain: str, progress: JobProgress
    ) -> str:
        if job.source_language_hint:
            return job.source_language_hint

        progress.detecting()
        verdict = await self.identifier.identify(
            plain, self.config.language.max_sample_chars
        )
        if verdict.is_unknown:
            logger.info(
                "无法识别源语言，使用默认语言",
                default=self.config.default_source_lang,
            )
            return self.config.default_source_lang
        logger.debug(
            "源语言已识别",
            language=verdict.language_code,
            confidence=verdict.confidence,
            method=verdict.method.value,
        )
        return verdict.language_code

    async def _filter_candidates(
        self,
        kind: JobKind,
        order: Sequence[ProviderTag],
        source_lang: str,
        target_lang: str,
    ) -> tuple[list[ProviderTag], list[ProviderAttempt]]:
        candidates: list[ProviderTag] = []
        attempts: list[ProviderAttempt] = []

        def _skip(tag: ProviderTag, message: str) -> None:
            attempts.append(
                ProviderAttempt(provider=tag, error_kind="unavailable", message=message)
            )

        for tag in order:
            if not self.registry.is_registered(tag):
                _skip(tag, "适配器未注册")
                continue
            try:
                provider = self.registry.get(tag)
            except ConfigurationError as e:
                _skip(tag, str(e))
                continue
            if not provider.supports(kind):
                _skip(tag, f"不支持 {kind.value}")
                continue
            if not await provider.check_availability(kind, source_lang, target_lang):
                _skip(tag, "当前不可用")
                continue
            candidates.append(tag)
        return candidates, attempts

    def _download_callback(
        self, progress: JobProgress, tag: ProviderTag
    ) -> DownloadCallback:
        def _on_download(pct: float) -> None:
            progress.downloading(pct, artifact=f"{tag.value}-model", provider=tag)

        return _on_download

    async def _translate_with(
        self,
        provider: BaseProvider[Any],
        text: str,
        source_lang: str,
        target_lang: str,
        progress: JobProgress,
    ) -> ProviderOutput:
        tag = provider.tag
        tags = None
        encoded = text
        if looks_like_html(text):
            encoded, tags = encode(text)

        paragraphs = [p for p in _PARAGRAPH_BREAK.split(encoded) if p.strip()]
        chunked = [split(p, provider.max_chunk_chars) for p in paragraphs]
        total = sum(len(chunks) for chunks in chunked)
        if total == 0:
            raise TransformFailure("编码后没有可翻译的文本", provider=tag.value)

        on_download = self._download_callback(progress, tag)
        model: str | None = None
        usage: dict[str, Any] | None = None
        done = 0
        translated_paragraphs: list[str] = []
        for chunks in chunked:
            pieces: list[str] = []
            for chunk in chunks:
                output = await provider.translate(
                    chunk.text, source_lang, target_lang, on_download
                )
                cleaned = clean_translation_artifacts(output.text)
                if not cleaned:
                    raise TransformFailure(
                        f"片段 {done + 1} 的翻译为空", provider=tag.value
                    )
                pieces.append(cleaned)
                model = output.model or model
                usage = _merge_usage(usage, output.usage)
                done += 1
                progress.working(
                    done / total * 100,
                    f"Traduciendo... {done}/{total}",
                    provider=tag,
                )
            translated_paragraphs.append(" ".join(pieces))

        joined = "\n\n".join(translated_paragraphs)
        if tags is not None:
            final = decode(joined, tags)
        else:
            final, removed = scrub_tokens(joined)
            if removed:
                logger.warning("纯文本译文中出现占位符令牌，已剥离", count=removed)
        return ProviderOutput(text=final, model=model, usage=usage)

    async def _summarize_with(
        self,
        provider: BaseProvider[Any],
        job: EnrichmentJob,
        plain: str,
        source_lang: str,
        target_lang: str,
        progress: JobProgress,
    ) -> ProviderOutput:
        tag = provider.tag
        text = plain
        if len(text) > provider.max_input_chars:
            text = reduce_to_budget(
                split(text, self.config.chunking.max_chunk_chars),
                provider.max_input_chars,
            )
            logger.debug(
                "摘要输入超出上限，已截取",
                original=len(plain),
                reduced=len(text),
                provider=tag.value,
            )

        length = job.target_length or SummaryLength.MEDIUM
        progress.working(10, "Generando resumen...", provider=tag)
        output = await provider.summarize(
            text,
            length,
            source_lang,
            target_lang,
            self._download_callback(progress, tag),
        )
        # 模型下载可能发生在调用期间，必须先回到工作状态才能完成
        progress.working(60, "Resumen generado.", provider=tag)
        summary_lang = provider.summary_language(source_lang, target_lang)
        if summary_lang != target_lang and self.config.translate_summaries:
            progress.working(70, "Traduciendo resumen...", provider=tag)
            output.text = await self._translate_summary(
                output.text, summary_lang, target_lang
            )
        progress.working(100, "Resumen listo.", provider=tag)
        self._check_summary_length(output.text, length, tag)
        return output

    def _check_summary_length(
        self, summary: str, length: SummaryLength, tag: ProviderTag
    ) -> None:
        """摘要词数超出该长度等级的可接受区间时记录诊断警告，不影响结果。"""
        profile = LENGTH_PROFILES[length]
        words = count_words(summary)
        if not profile.min_words <= words <= profile.max_words:
            logger.warning(
                "摘要词数超出预期区间",
                provider=tag.value,
                length=length.value,
                words=words,
                expected=(profile.min_words, profile.max_words),
            )

    async def _translate_summary(
        self, summary: str, source_lang: str, target_lang: str
    ) -> str:
        """用翻译链把摘要译为目标语言；全部失败时保留原文摘要。"""
        order = self.registry.resolve_order(JobKind.TRANSLATE)
        candidates, _ = await self._filter_candidates(
            JobKind.TRANSLATE, order, source_lang, target_lang
        )
        for tag in candidates:
            provider = self.registry.get(tag)
            try:
                pieces = []
                for chunk in split(summary, provider.max_chunk_chars):
                    output = await provider.translate(chunk.text, source_lang, target_lang)
                    pieces.append(clean_translation_artifacts(output.text))
                translated = " ".join(p for p in pieces if p)
            except ProviderError as e:
                logger.debug("摘要翻译失败，尝试下一个", provider=tag.value, error=e.message)
                continue
            if translated:
                return translated
        logger.warning(
            "摘要翻译失败，保留原文摘要", source_lang=source_lang, target_lang=target_lang
        )
        return summary
