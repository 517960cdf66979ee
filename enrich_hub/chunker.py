# enrich_hub/chunker.py
"""将长文本按句子边界切分为有界片段的纯函数。"""

from __future__ import annotations

import re

from enrich_hub.core.types import Chunk

DEFAULT_MAX_CHUNK_CHARS = 500

_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")


def split_sentences(text: str) -> list[str]:
    return [s for s in _SENTENCE_BOUNDARY.split(text.strip()) if s]


def split(text: str, max_chunk_chars: int = DEFAULT_MAX_CHUNK_CHARS) -> list[Chunk]:
    """
    按句子贪心地打包文本片段。

    单个超过 `max_chunk_chars` 的句子保持完整，不会在词中间截断；
    片段以单个空格拼接后与规范化空白后的原文等价。
    """
    if max_chunk_chars <= 0:
        raise ValueError("max_chunk_chars 必须为正数")

    pieces: list[str] = []
    current = ""
    for sentence in split_sentences(text):
        sentence = " ".join(sentence.split())
        if current and len(current) + 1 + len(sentence) > max_chunk_chars:
            pieces.append(current)
            current = sentence
        else:
            current = f"{current} {sentence}" if current else sentence
    if current:
        pieces.append(current)

    return [Chunk(index=i, text=piece) for i, piece in enumerate(pieces)]


def reduce_to_budget(chunks: list[Chunk], budget: int) -> str:
    """
    按原始顺序保留能放入 `budget` 个字符的前若干片段，并以空格拼接。

    至少保留第一个片段；若它本身超出预算，则在预算内的最后一个词边界处截断。
    """
    if not chunks:
        return ""
    kept: list[str] = []
    used = 0
    for chunk in chunks:
        extra = chunk.char_length + (1 if kept else 0)
        if used + extra > budget:
            break
        kept.append(chunk.text)
        used += extra

    if kept:
        return " ".join(kept)

    head = chunks[0].text[:budget]
    cut = head.rfind(" ")
    return head[:cut] if cut > 0 else head
