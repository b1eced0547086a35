from __future__ import annotations

import math
from typing import Optional, Sequence

from storyloom.models.chapter import Chapter
from storyloom.models.novel import Novel
from storyloom.services.providers import ChatMessage


SYSTEM_PROMPT = """你是一位专业网络小说作家，擅长创作吸引读者的长篇连载小说。
要求：
- 情节紧凑，每章都有冲突或转折
- 人物对话生动自然
- 环境描写细腻但不拖沓
- 根据指定风格调整文笔 (玄幻/科幻/言情/悬疑等)
- 每章字数控制在3000-5000字

请直接输出小说内容，不要包含任何解释性文字。"""

CONTEXT_CHAPTERS = 3
PREVIEW_CHARS = 500


def estimate_tokens(text: str) -> int:
    """Rough token count: two characters per token, rounded up."""
    return math.ceil(len(text) / 2)


def build_context(
    novel: Novel,
    recent_chapters: Sequence[Chapter],
    genre: Optional[str] = None,
    style: Optional[str] = None,
    previous_context: Optional[str] = None,
) -> str:
    """Context block of the user turn.

    ``recent_chapters`` is newest first, as fetched; the preview lists them
    oldest first so the story reads forward.
    """
    context = f"小说类型：{genre or novel.genre or '未指定'}\n"
    if style:
        context += f"写作风格：{style}\n"
    if novel.synopsis:
        context += f"小说简介：{novel.synopsis}\n"

    if recent_chapters:
        context += "\n前文概要：\n"
        for chapter in reversed(list(recent_chapters)[:CONTEXT_CHAPTERS]):
            preview = chapter.content[:PREVIEW_CHARS]
            context += f"第{chapter.chapter_number}章：{preview}...\n"

    if previous_context:
        context += f"\n续写要求：{previous_context}\n"
    return context


def build_messages(
    novel: Novel,
    recent_chapters: Sequence[Chapter],
    prompt: str,
    genre: Optional[str] = None,
    style: Optional[str] = None,
    previous_context: Optional[str] = None,
) -> list[ChatMessage]:
    context = build_context(novel, recent_chapters, genre=genre, style=style, previous_context=previous_context)
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": f"{context}\n请根据以下要求创作新章节：\n{prompt}"},
    ]


def estimate_input_tokens(messages: Sequence[ChatMessage]) -> int:
    return sum(estimate_tokens(m["content"]) for m in messages)
