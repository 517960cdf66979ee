# enrich_hub/logging_config.py
"""
集中配置 structlog 日志系统。

控制台模式下使用 Rich 面板渲染每条日志，键值上下文以对齐的表格展示；
JSON 模式下输出 ISO 时间戳的机器可读日志，适合收集到日志平台。
"""

import logging
from collections.abc import MutableMapping
from typing import Any, Literal

import structlog
from rich.console import Console, Group, RenderableType
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from structlog.typing import Processor

APP_LOGGER_NAME = "enrich_hub"

_LEVEL_STYLES: dict[str, tuple[str, str]] = {
    "debug": ("blue", "DEBUG   "),
    "info": ("green", "INFO    "),
    "warning": ("yellow", "WARNING "),
    "error": ("bold red", "ERROR   "),
    "critical": ("bold magenta", "CRITICAL"),
}


class PanelRenderer:
    """把一条 structlog 事件渲染为 Rich 面板字符串的处理器。"""

    def __init__(
        self,
        kv_truncate_at: int = 256,
        show_timestamp: bool = True,
        show_logger_name: bool = True,
        kv_key_width: int = 15,
    ):
        self._console = Console()
        self._kv_truncate_at = kv_truncate_at
        self._show_timestamp = show_timestamp
        self._show_logger_name = show_logger_name
        self._kv_key_width = kv_key_width

    def __call__(
        self, logger: Any, name: str, event_dict: MutableMapping[str, Any]
    ) -> str:
        event = str(event_dict.pop("event", "")).strip()
        if not event:
            return ""

        timestamp = event_dict.pop("timestamp", "")
        level = event_dict.pop("level", "info").lower()
        logger_name = event_dict.pop("logger", "unknown")
        style, level_text = _LEVEL_STYLES.get(level, ("default", level.upper()))

        title = f"[{style}]{level_text}[/]"
        if self._show_logger_name:
            title += f" [cyan dim]({logger_name})[/]"

        body: list[RenderableType] = [Text(event)]
        if event_dict:
            body.append(self._kv_table(event_dict))

        with self._console.capture() as capture:
            self._console.print(
                Panel(
                    Group(*body),
                    title=Text.from_markup(title),
                    title_align="left",
                    subtitle=Text(str(timestamp), style="dim")
                    if self._show_timestamp and timestamp
                    else None,
                    subtitle_align="right",
                    border_style=style,
                    expand=False,
                )
            )
        return capture.get().rstrip()

    def _kv_table(self, kv: MutableMapping[str, Any]) -> Table:
        table = Table(show_header=False, show_edge=False, box=None, padding=(0, 1))
        table.add_column(style="dim", justify="right", width=self._kv_key_width)
        table.add_column(style="bright_white", overflow="fold")
        for key, value in sorted(kv.items()):
            shown = repr(value)
            # 长字符串去掉引号，便于折行
            if isinstance(value, str) and (
                len(shown) > self._kv_truncate_at or "\n" in value
            ):
                shown = value
            table.add_row(f"{key} :", Text(shown))
        return table


class _PassthroughFormatter(logging.Formatter):
    """structlog 已经完成渲染，这里原样输出消息。"""

    def format(self, record: logging.LogRecord) -> str:
        return str(record.getMessage())


def setup_logging(
    log_level: str = "INFO",
    log_format: Literal["json", "console"] = "console",
    show_timestamp: bool = True,
    show_logger_name: bool = True,
    kv_truncate_at: int = 80,
) -> None:
    """
    配置全局的 structlog 日志系统。这是整个应用的日志配置入口。

    Args:
        log_level: 应用日志的最低级别。
        log_format: 'console' 使用 Rich 面板，'json' 使用 JSONRenderer。
        show_timestamp: 控制台模式下是否显示时间戳。
        show_logger_name: 控制台模式下是否显示记录器名称。
        kv_truncate_at: 控制台模式下长字符串值的折行阈值。
    """
    level = log_level.upper()
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "console":
        processors.insert(3, structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"))
        processors.append(
            PanelRenderer(
                kv_truncate_at=kv_truncate_at,
                show_timestamp=show_timestamp,
                show_logger_name=show_logger_name,
            )
        )
    else:
        processors.insert(3, structlog.processors.TimeStamper(fmt="iso", utc=True))
        processors.append(structlog.processors.JSONRenderer(ensure_ascii=False))

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(_PassthroughFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    # 第三方库（httpx、transformers 等）只输出警告以上的日志
    root_logger.setLevel(logging.WARNING)

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    app_logger.setLevel(level)
    app_logger.propagate = True

    structlog.get_logger("enrich_hub.logging_config").debug(
        "日志系统已配置完成。", log_format=log_format, app_log_level=level
    )
