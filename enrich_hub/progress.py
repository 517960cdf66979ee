# enrich_hub/progress.py
"""
进度发射器与作业状态机。

每个作业拥有一个独立的 `JobProgress` 实例，它是作业状态的唯一事实来源：
    idle → {detecting} → {downloading}* → {translating|summarizing} → {completed|error}

每次状态迁移都会同步通知所有监听器，不做任何批处理或防抖；
`ProgressChannel` 在此之上提供异步迭代器形式的订阅，把传输与业务逻辑解耦。
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable

import structlog

from enrich_hub.core.exceptions import ProgressStateError
from enrich_hub.core.types import JobKind, JobStatus, ProgressEvent, ProviderTag

logger = structlog.get_logger(__name__)

ProgressListener = Callable[[ProgressEvent], None]

_ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.IDLE: frozenset(
        {
            JobStatus.DETECTING,
            JobStatus.DOWNLOADING,
            JobStatus.TRANSLATING,
            JobStatus.SUMMARIZING,
            JobStatus.COMPLETED,
            JobStatus.ERROR,
        }
    ),
    JobStatus.DETECTING: frozenset(
        {
            JobStatus.DOWNLOADING,
            JobStatus.TRANSLATING,
            JobStatus.SUMMARIZING,
            JobStatus.ERROR,
        }
    ),
    JobStatus.DOWNLOADING: frozenset(
        {
            JobStatus.DOWNLOADING,
            JobStatus.TRANSLATING,
            JobStatus.SUMMARIZING,
            JobStatus.ERROR,
        }
    ),
    JobStatus.TRANSLATING: frozenset(
        {
            JobStatus.TRANSLATING,
            JobStatus.DOWNLOADING,
            JobStatus.COMPLETED,
            JobStatus.ERROR,
        }
    ),
    JobStatus.SUMMARIZING: frozenset(
        {
            JobStatus.SUMMARIZING,
            JobStatus.DOWNLOADING,
            JobStatus.COMPLETED,
            JobStatus.ERROR,
        }
    ),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.ERROR: frozenset(),
}


class ProgressChannel:
    """
    一个作业进度事件的异步迭代订阅。

    创建时会先回放该作业已发生的事件，因此晚到的订阅者不会丢失状态；
    收到终止事件（completed/error）后迭代结束。
    """

    def __init__(self, progress: JobProgress):
        self._queue: asyncio.Queue[ProgressEvent] = asyncio.Queue()
        self._finished = False
        for event in progress.history:
            self._queue.put_nowait(event)
        self._unsubscribe = progress.add_listener(self._queue.put_nowait)

    def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        return self

    async def __anext__(self) -> ProgressEvent:
        if self._finished:
            raise StopAsyncIteration
        event = await self._queue.get()
        if event.status.is_terminal:
            self._finished = True
            self._unsubscribe()
        return event

    def close(self) -> None:
        """停止监听。作业本身不会被取消，只是不再接收事件。"""
        if not self._finished:
            self._finished = True
            self._unsubscribe()


class JobProgress:
    """单个作业的状态机。"""

    def __init__(self, kind: JobKind, job_key: str = ""):
        self.kind = kind
        self.job_key = job_key
        self.status = JobStatus.IDLE
        self.history: list[ProgressEvent] = []
        self._listeners: list[ProgressListener] = []
        self._download_pct: dict[str, float] = {}
        self._work_pct = 0.0

    @property
    def working_status(self) -> JobStatus:
        if self.kind is JobKind.TRANSLATE:
            return JobStatus.TRANSLATING
        return JobStatus.SUMMARIZING

    def add_listener(self, listener: ProgressListener) -> Callable[[], None]:
        """注册一个同步监听器，返回取消注册的函数。"""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def subscribe(self) -> ProgressChannel:
        return ProgressChannel(self)

    def _transition(
        self,
        status: JobStatus,
        progress_pct: float,
        message: str,
        provider: ProviderTag | None = None,
        artifact: str | None = None,
    ) -> ProgressEvent:
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise ProgressStateError(
                f"非法的状态迁移: {self.status.value} -> {status.value}"
            )
        event = ProgressEvent(
            status=status,
            progress_pct=min(max(progress_pct, 0.0), 100.0),
            message=message,
            provider=provider,
            artifact=artifact,
        )
        self.status = status
        self.history.append(event)
        logger.debug(
            "作业状态迁移",
            job=self.job_key,
            status=status.value,
            progress=event.progress_pct,
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("进度监听器执行失败", job=self.job_key)
        return event

    def detecting(self, message: str = "正在检测语言...") -> ProgressEvent:
        return self._transition(JobStatus.DETECTING, 0.0, message)

    def downloading(
        self,
        progress_pct: float,
        artifact: str,
        provider: ProviderTag | None = None,
        message: str | None = None,
    ) -> ProgressEvent:
        """报告模型下载进度。同一产物的下载百分比不会回退。"""
        previous = self._download_pct.get(artifact, 0.0)
        if progress_pct < previous:
            logger.debug(
                "下载进度回退，已钳制",
                artifact=artifact,
                reported=progress_pct,
                kept=previous,
            )
        pct = max(progress_pct, previous)
        self._download_pct[artifact] = pct
        return self._transition(
            JobStatus.DOWNLOADING,
            pct,
            message or f"正在下载模型 {artifact}: {round(pct)}%",
            provider=provider,
            artifact=artifact,
        )

    def begin_attempt(
        self, provider: ProviderTag, message: str | None = None
    ) -> ProgressEvent:
        """开始一次新的适配器尝试；工作进度从 0 重新计算。"""
        self._work_pct = 0.0
        return self._transition(
            self.working_status,
            0.0,
            message or f"正在使用 {provider.value} 处理...",
            provider=provider,
        )

    def working(
        self, progress_pct: float, message: str, provider: ProviderTag | None = None
    ) -> ProgressEvent:
        """报告翻译或摘要进度；在同一次尝试内单调不减。"""
        self._work_pct = max(self._work_pct, progress_pct)
        return self._transition(
            self.working_status, self._work_pct, message, provider=provider
        )

    def completed(
        self, message: str = "已完成", provider: ProviderTag | None = None
    ) -> ProgressEvent:
        return self._transition(JobStatus.COMPLETED, 100.0, message, provider=provider)

    def failed(self, message: str) -> ProgressEvent:
        return self._transition(JobStatus.ERROR, self._work_pct, message)
