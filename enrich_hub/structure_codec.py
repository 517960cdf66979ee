# enrich_hub/structure_codec.py
"""
结构编解码器：在纯文本转换前把内联 HTML 格式替换为不透明的占位符，转换后再还原。

编码顺序是确定的：
1. 空元素（换行、水平线、图片）各替换为一个占位符；
2. 链接拆分为开始标签占位符与结束标签占位符，链接文字保留待翻译；
3. 白名单内的内联格式标签，其开始与结束标签各替换为一个占位符；
4. 块级容器转换为换行符，稍后通过段落重新包装来重建；
5. 其余标签直接剥离（有意的有损步骤）。
"""

from __future__ import annotations

import html as html_lib
import re
from collections.abc import Iterator

import structlog

logger = structlog.get_logger(__name__)

PRESERVED_INLINE_TAGS: tuple[str, ...] = (
    "strong", "b", "em", "i", "u", "s", "strike", "del", "ins", "mark",
    "small", "sub", "sup", "code", "kbd", "var", "samp", "abbr", "cite",
    "dfn", "q", "time", "span",
)
BLOCK_TAGS: tuple[str, ...] = (
    "p", "div", "article", "section", "header", "footer", "main", "aside",
    "nav", "figure", "figcaption", "ul", "ol", "li", "h1", "h2", "h3", "h4",
    "h5", "h6", "blockquote",
)

TOKEN_PATTERN = re.compile(r"\[\[TAG_\d+\]\]")

_BR = re.compile(r"<br\s*/?>", re.I)
_HR = re.compile(r"<hr\s*/?>", re.I)
_IMG = re.compile(r"<img\s+[^>]*>", re.I)
_ANCHOR = re.compile(r"(<a\s+[^>]*>)(.*?)(</a>)", re.I | re.S)
_BLOCK = re.compile(
    r"</?(?:%s)(?:\s+[^>]*)?>" % "|".join(BLOCK_TAGS), re.I
)
_ANY_TAG = re.compile(r"<[^>]+>")
_EXTRA_NEWLINES = re.compile(r"\n{3,}")
_PARAGRAPH_BREAK = re.compile(r"\n\s*\n+")
_LOOKS_LIKE_HTML = re.compile(r"</?[a-zA-Z][^>]*>")
_SCRIPT_STYLE = re.compile(r"<(script|style)[^>]*>.*?</\1>", re.I | re.S)

# 引擎内部可能泄漏出的标记；刻意只匹配小写 tag，避免误删本模块的 [[TAG_n]]
_ARTIFACT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\s*\[\[/?tag_\d+\]\]\s*"),
    re.compile(r"\s*\{\{tag_\d+\}\}\s*"),
    re.compile(r"\s*\{tag_\d+\}\s*"),
    re.compile(r"\s*</?tag_\d+>\s*"),
    re.compile(r"\s*(?<!\[)\[\d+\](?!\])\s*"),
    re.compile(r"\s*\{\d+\}\s*"),
)


class PlaceholderMap:
    """
    占位符令牌与原始标签片段之间的双向映射。

    每个作业新建一个实例；令牌编号从 0 单调递增，不会在作业之间复用。
    """

    def __init__(self) -> None:
        self._by_token: dict[str, str] = {}
        self._next_index = 0

    def create(self, fragment: str) -> str:
        token = f"[[TAG_{self._next_index}]]"
        self._next_index += 1
        self._by_token[token] = fragment
        return token

    def fragment(self, token: str) -> str | None:
        return self._by_token.get(token)

    def items(self) -> Iterator[tuple[str, str]]:
        return iter(self._by_token.items())

    def __len__(self) -> int:
        return len(self._by_token)

    def __contains__(self, token: object) -> bool:
        return token in self._by_token


def looks_like_html(text: str) -> bool:
    return bool(_LOOKS_LIKE_HTML.search(text))


def encode(html: str) -> tuple[str, PlaceholderMap]:
    """把 HTML 编码为带占位符的近似纯文本。"""
    tags = PlaceholderMap()
    if not html or not html.strip():
        return "", tags

    text = _BR.sub(lambda m: tags.create(m.group(0)), html)
    text = _HR.sub(lambda m: tags.create(m.group(0)), text)
    text = _IMG.sub(lambda m: tags.create(m.group(0)), text)
    text = _ANCHOR.sub(
        lambda m: tags.create(m.group(1)) + m.group(2) + tags.create(m.group(3)),
        text,
    )

    for tag in PRESERVED_INLINE_TAGS:
        open_re = re.compile(rf"<{tag}(\s+[^>]*)?>", re.I)
        close_re = re.compile(rf"</{tag}>", re.I)
        text = open_re.sub(lambda m: tags.create(m.group(0)), text)
        text = close_re.sub(lambda m: tags.create(m.group(0)), text)

    text = _BLOCK.sub("\n", text)
    text = _ANY_TAG.sub("", text)
    text = _EXTRA_NEWLINES.sub("\n\n", text).strip()
    return text, tags


def scrub_tokens(text: str) -> tuple[str, int]:
    """移除所有未能还原的占位符，返回 (清理后的文本, 移除数量)。"""
    cleaned, removed = TOKEN_PATTERN.subn("", text)
    return cleaned, removed


def wrap_paragraphs(text: str) -> str:
    paragraphs = [p.strip() for p in _PARAGRAPH_BREAK.split(text)]
    return "\n".join(f"<p>{p}</p>" for p in paragraphs if p)


def decode(text: str, tags: PlaceholderMap) -> str:
    """
    把占位符还原为原始标签，并重新包装段落。

    未能解析的孤立令牌（提供者丢失或重复了令牌）会被防御性地移除，
    这属于可在本地恢复的结构性损坏，只记录警告而不抛出错误。
    """
    restored = text
    for token, fragment in tags.items():
        restored = restored.replace(token, fragment, 1)

    restored, orphans = scrub_tokens(restored)
    if orphans:
        logger.warning("检测到无法解析的占位符令牌，已剥离", orphan_count=orphans)

    return wrap_paragraphs(restored)


def html_to_text(html: str) -> str:
    """提取纯文本：移除脚本和样式，剥离标签，解码实体并折叠空白。"""
    text = _SCRIPT_STYLE.sub("", html)
    text = _ANY_TAG.sub(" ", text)
    text = html_lib.unescape(text)
    return " ".join(text.split())


def clean_translation_artifacts(text: str) -> str:
    """清理翻译引擎泄漏出的内部标记，并修正标点周围的空格。"""
    cleaned = text
    for pattern in _ARTIFACT_PATTERNS:
        cleaned = pattern.sub(" ", cleaned)
    cleaned = re.sub(r"[ \t]{2,}", " ", cleaned)
    cleaned = re.sub(r"[ \t]+([.,;:!?)])", r"\1", cleaned)
    cleaned = re.sub(r"([(\[\"])[ \t]+(?!\[)", r"\1", cleaned)
    return cleaned.strip()
