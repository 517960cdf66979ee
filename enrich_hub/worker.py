# enrich_hub/worker.py
"""
本地推理工作线程。

模型加载与推理都是阻塞的 CPU 密集操作，因此放在一个专用线程中执行，
调用方的事件循环只通过消息与它交互：

    请求: load-model | unload-model | summarize | translate | get-status
    响应: progress | result | error | status

每个请求携带生成的 ID，通过挂起请求表解析；超过截止时间的请求会以
`TimeoutExceeded` 失败并从表中清除，之后到达的迟到响应只记录日志并丢弃。
线程中同一时刻只驻留一个模型，切换模型时会先卸载旧模型。
"""

from __future__ import annotations

import asyncio
import queue
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

import structlog
from pydantic import BaseModel, Field

from enrich_hub.core.exceptions import (
    InsufficientStorageError,
    ProviderError,
    ProviderUnavailable,
    TimeoutExceeded,
    TransformFailure,
)
from enrich_hub.platform import is_storage_error

logger = structlog.get_logger(__name__)

DEFAULT_REQUEST_TIMEOUT = 300.0
TRANSLATION_MODEL_TEMPLATE = "Helsinki-NLP/opus-mt-{src}-{tgt}"


class LocalModelSpec(BaseModel):
    id: str
    name: str
    size: str
    description: str
    max_input_tokens: int = 1024


LOCAL_MODEL_CATALOG: dict[str, LocalModelSpec] = {
    "distilbart-cnn-6-6": LocalModelSpec(
        id="sshleifer/distilbart-cnn-6-6",
        name="DistilBART CNN 6-6",
        size="~460MB",
        description="快速、轻量的摘要模型",
    ),
    "distilbart-cnn-12-6": LocalModelSpec(
        id="sshleifer/distilbart-cnn-12-6",
        name="DistilBART CNN 12-6",
        size="~1.2GB",
        description="质量与速度的平衡",
    ),
    "bart-large-cnn": LocalModelSpec(
        id="facebook/bart-large-cnn",
        name="BART Large CNN",
        size="~1.6GB",
        description="英文摘要质量最高",
    ),
}
DEFAULT_LOCAL_MODEL = "distilbart-cnn-6-6"


def translation_model_for(source_lang: str, target_lang: str) -> str:
    return TRANSLATION_MODEL_TEMPLATE.format(src=source_lang, tgt=target_lang)


class WorkerMessageType(str, Enum):
    LOAD_MODEL = "load-model"
    UNLOAD_MODEL = "unload-model"
    SUMMARIZE = "summarize"
    TRANSLATE = "translate"
    GET_STATUS = "get-status"


class WorkerReplyType(str, Enum):
    PROGRESS = "progress"
    RESULT = "result"
    ERROR = "error"
    STATUS = "status"


class WorkerRequest(BaseModel):
    id: str
    type: WorkerMessageType
    data: dict[str, Any] = Field(default_factory=dict)


class WorkerReply(BaseModel):
    id: str
    type: WorkerReplyType
    data: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    error_kind: str | None = None


class WorkerProgress(BaseModel):
    """模型加载进度。`progress` 为 0-100 的百分比。"""

    status: str
    file: str | None = None
    progress: float | None = None
    loaded: int | None = None
    total: int | None = None
    name: str | None = None


class ModelStatus(BaseModel):
    is_loaded: bool
    model_id: str | None
    is_loading: bool


ProgressHandler = Callable[[WorkerProgress], None]


class ModelBackend(Protocol):
    """工作线程中真正执行加载与推理的后端。所有方法都在工作线程中同步调用。"""

    def load(self, model_id: str, task: str, on_progress: ProgressHandler) -> None: ...

    def unload(self) -> None: ...

    def run(self, task: str, text: str, **params: Any) -> str: ...


class TransformersBackend:
    """基于 Hugging Face transformers 的本地推理后端。"""

    def __init__(self, cache_dir: Path | None = None):
        self.cache_dir = cache_dir
        self._pipeline: Any = None

    def load(self, model_id: str, task: str, on_progress: ProgressHandler) -> None:
        try:
            from transformers import AutoModelForSeq2SeqLM, AutoTokenizer, pipeline
        except ImportError as e:
            raise ImportError(
                "要使用本地推理, 请安装 'transformers' 库: "
                '"pip install "enrich-hub[local]"'
            ) from e

        cache_dir = str(self.cache_dir) if self.cache_dir else None
        on_progress(WorkerProgress(status="initiate", name=model_id, progress=0.0))
        tokenizer = AutoTokenizer.from_pretrained(model_id, cache_dir=cache_dir)
        on_progress(WorkerProgress(status="progress", name=model_id, progress=30.0))
        model = AutoModelForSeq2SeqLM.from_pretrained(model_id, cache_dir=cache_dir)
        on_progress(WorkerProgress(status="done", name=model_id, progress=100.0))
        self._pipeline = pipeline(task, model=model, tokenizer=tokenizer)
        on_progress(WorkerProgress(status="ready", name=model_id, progress=100.0))

    def unload(self) -> None:
        self._pipeline = None

    def run(self, task: str, text: str, **params: Any) -> str:
        if self._pipeline is None:
            raise RuntimeError("没有已加载的模型")
        outputs = self._pipeline(text, truncation=True, do_sample=False, **params)
        key = "summary_text" if task == "summarization" else "translation_text"
        return str(outputs[0][key])


@dataclass
class _PendingRequest:
    future: asyncio.Future[dict[str, Any]]
    on_progress: ProgressHandler | None


_STOP = None


class InferenceWorker:
    """托管 `ModelBackend` 的专用工作线程及其异步客户端。"""

    def __init__(
        self,
        backend: ModelBackend | None = None,
        *,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        self.backend: ModelBackend = backend or TransformersBackend()
        self.timeout = timeout
        self._inbox: queue.Queue[WorkerRequest | None] = queue.Queue()
        self._pending: dict[str, _PendingRequest] = {}
        self._thread: threading.Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        # 以下状态只在工作线程中写入
        self._model_id: str | None = None
        self._task: str | None = None
        self._loading = False

    @property
    def resident_model(self) -> str | None:
        return self._model_id

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def _ensure_started(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(
            target=self._serve, name="enrich-hub-inference", daemon=True
        )
        self._thread.start()
        logger.debug("本地推理工作线程已启动")

    def shutdown(self, wait: bool = True) -> None:
        if self._thread is None:
            return
        self._inbox.put(_STOP)
        if wait:
            self._thread.join(timeout=5)
        self._thread = None
        for entry in self._pending.values():
            if not entry.future.done():
                entry.future.set_exception(
                    ProviderUnavailable("本地推理工作线程已关闭", provider="local")
                )
        self._pending.clear()

    # ---- 事件循环一侧 ----

    async def request(
        self,
        message_type: WorkerMessageType,
        data: dict[str, Any] | None = None,
        on_progress: ProgressHandler | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        self._loop = asyncio.get_running_loop()
        self._ensure_started()

        request_id = uuid.uuid4().hex
        future: asyncio.Future[dict[str, Any]] = self._loop.create_future()
        self._pending[request_id] = _PendingRequest(future, on_progress)
        self._inbox.put(WorkerRequest(id=request_id, type=message_type, data=data or {}))

        deadline = self.timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(future, timeout=deadline)
        except asyncio.TimeoutError as e:
            logger.warning(
                "本地推理请求超时，已清除",
                request_id=request_id,
                type=message_type.value,
                timeout=deadline,
            )
            raise TimeoutExceeded(
                f"本地推理请求在 {deadline:g} 秒内未完成", provider="local"
            ) from e
        finally:
            self._pending.pop(request_id, None)

    def _post(self, reply: WorkerReply) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._dispatch, reply)

    def _dispatch(self, reply: WorkerReply) -> None:
        entry = self._pending.get(reply.id)
        if entry is None:
            logger.warning(
                "收到未知请求 ID 的迟到响应，已丢弃",
                request_id=reply.id,
                type=reply.type.value,
            )
            return

        if reply.type is WorkerReplyType.PROGRESS:
            if entry.on_progress is not None:
                try:
                    entry.on_progress(WorkerProgress.model_validate(reply.data))
                except Exception:
                    logger.exception("进度回调执行失败", request_id=reply.id)
            return

        self._pending.pop(reply.id, None)
        if entry.future.done():
            return
        if reply.type is WorkerReplyType.ERROR:
            entry.future.set_exception(_error_from_reply(reply))
        else:
            entry.future.set_result(reply.data)

    async def load_model(
        self, model_id: str, task: str, on_progress: ProgressHandler | None = None
    ) -> None:
        await self.request(
            WorkerMessageType.LOAD_MODEL,
            {"model_id": model_id, "task": task},
            on_progress,
        )

    async def unload_model(self) -> None:
        await self.request(WorkerMessageType.UNLOAD_MODEL)

    async def summarize(
        self,
        text: str,
        model_id: str,
        min_length: int,
        max_length: int,
        on_progress: ProgressHandler | None = None,
    ) -> str:
        data = await self.request(
            WorkerMessageType.SUMMARIZE,
            {
                "text": text,
                "model_id": model_id,
                "min_length": min_length,
                "max_length": max_length,
            },
            on_progress,
        )
        return str(data["text"])

    async def translate(
        self, text: str, model_id: str, on_progress: ProgressHandler | None = None
    ) -> str:
        data = await self.request(
            WorkerMessageType.TRANSLATE,
            {"text": text, "model_id": model_id},
            on_progress,
        )
        return str(data["text"])

    async def get_status(self) -> ModelStatus:
        data = await self.request(WorkerMessageType.GET_STATUS)
        return ModelStatus.model_validate(data)

    # ---- 工作线程一侧 ----

    def _serve(self) -> None:
        while True:
            message = self._inbox.get()
            if message is _STOP:
                self._unload()
                return
            try:
                reply = self._handle(message)
            except Exception as e:
                kind = _classify_worker_error(e)
                logger.error(
                    "本地推理请求失败",
                    request_id=message.id,
                    type=message.type.value,
                    error=str(e),
                )
                reply = WorkerReply(
                    id=message.id,
                    type=WorkerReplyType.ERROR,
                    error=str(e) or e.__class__.__name__,
                    error_kind=kind,
                )
            self._post(reply)

    def _handle(self, message: WorkerRequest) -> WorkerReply:
        data = message.data
        if message.type is WorkerMessageType.GET_STATUS:
            return WorkerReply(
                id=message.id,
                type=WorkerReplyType.STATUS,
                data=ModelStatus(
                    is_loaded=self._model_id is not None,
                    model_id=self._model_id,
                    is_loading=self._loading,
                ).model_dump(),
            )
        if message.type is WorkerMessageType.UNLOAD_MODEL:
            self._unload()
            return WorkerReply(id=message.id, type=WorkerReplyType.RESULT)

        if message.type is WorkerMessageType.LOAD_MODEL:
            self._ensure_model(message.id, data["model_id"], data["task"])
            return WorkerReply(
                id=message.id,
                type=WorkerReplyType.RESULT,
                data={"model_id": data["model_id"]},
            )

        if message.type is WorkerMessageType.SUMMARIZE:
            self._ensure_model(message.id, data["model_id"], "summarization")
            text = self.backend.run(
                "summarization",
                data["text"],
                min_length=data["min_length"],
                max_length=data["max_length"],
            )
        else:
            self._ensure_model(message.id, data["model_id"], "translation")
            text = self.backend.run("translation", data["text"])
        return WorkerReply(
            id=message.id, type=WorkerReplyType.RESULT, data={"text": text}
        )

    def _ensure_model(self, request_id: str, model_id: str, task: str) -> None:
        if self._model_id == model_id and self._task == task:
            return
        if self._model_id is not None:
            logger.info("切换本地模型，卸载旧模型", old=self._model_id, new=model_id)
            self._unload()

        def _progress(progress: WorkerProgress) -> None:
            self._post(
                WorkerReply(
                    id=request_id,
                    type=WorkerReplyType.PROGRESS,
                    data=progress.model_dump(),
                )
            )

        self._loading = True
        try:
            self.backend.load(model_id, task, _progress)
        finally:
            self._loading = False
        self._model_id = model_id
        self._task = task
        logger.info("本地模型已加载", model_id=model_id, task=task)

    def _unload(self) -> None:
        if self._model_id is None:
            return
        self.backend.unload()
        logger.info("本地模型已卸载", model_id=self._model_id)
        self._model_id = None
        self._task = None


def _classify_worker_error(exc: BaseException) -> str:
    if is_storage_error(exc):
        return InsufficientStorageError.error_kind
    if isinstance(exc, ImportError):
        return ProviderUnavailable.error_kind
    return TransformFailure.error_kind


def _error_from_reply(reply: WorkerReply) -> ProviderError:
    message = reply.error or "本地推理失败"
    if reply.error_kind == InsufficientStorageError.error_kind:
        return InsufficientStorageError(message, provider="local")
    if reply.error_kind == ProviderUnavailable.error_kind:
        return ProviderUnavailable(message, provider="local")
    return TransformFailure(message, provider="local")
