from storyloom.models.chapter import Chapter
from storyloom.models.novel import Novel
from storyloom.services.prompts import SYSTEM_PROMPT, build_context, build_messages, estimate_tokens


def _chapter(number: int, content: str) -> Chapter:
    return Chapter(chapter_number=number, content=content, prompt_used="", model="m", temperature=0.7)


def test_estimate_tokens_rounds_up():
    assert estimate_tokens("") == 0
    assert estimate_tokens("a") == 1
    assert estimate_tokens("abcd") == 2
    assert estimate_tokens("你好世") == 2


def test_context_uses_novel_fields_and_fallbacks():
    novel = Novel(title="t", genre=None, synopsis=None)
    assert build_context(novel, []) == "小说类型：未指定\n"

    novel = Novel(title="t", genre="悬疑", synopsis="一桩密室案")
    context = build_context(novel, [], style="冷峻", previous_context="揭开凶手身份")
    assert "小说类型：悬疑" in context
    assert "写作风格：冷峻" in context
    assert "小说简介：一桩密室案" in context
    assert context.endswith("\n续写要求：揭开凶手身份\n")

    assert "小说类型：科幻" in build_context(novel, [], genre="科幻")


def test_previews_are_oldest_first_and_truncated():
    novel = Novel(title="t", genre="玄幻")
    newest_first = [_chapter(5, "五" * 800), _chapter(4, "四"), _chapter(3, "三")]

    context = build_context(novel, newest_first)

    assert context.index("第3章：三...") < context.index("第4章：四...") < context.index("第5章：")
    assert "第5章：" + "五" * 500 + "...\n" in context


def test_messages_shape():
    novel = Novel(title="t", genre="玄幻")
    messages = build_messages(novel, [], "主角觉醒")

    assert messages[0] == {"role": "system", "content": SYSTEM_PROMPT}
    assert messages[1]["role"] == "user"
    assert messages[1]["content"].endswith("\n请根据以下要求创作新章节：\n主角觉醒")
