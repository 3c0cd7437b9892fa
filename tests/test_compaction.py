"""
Tests for conversation compaction module.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from mcpilot.agent.compaction import (
    CompactionConfig,
    ContextCompactor,
    build_summary_message,
    build_transcript,
)
from mcpilot.agent.conversation import Conversation
from mcpilot.errors import NotEnoughHistoryError
from mcpilot.llm.base import LLMMessage, ToolCall


def make_history(turns: int) -> list[LLMMessage]:
    messages = [LLMMessage(role="system", content="sys")]
    for i in range(turns):
        messages.append(LLMMessage(role="user", content=f"question {i}"))
        messages.append(LLMMessage(role="assistant", content=f"answer {i}"))
    return messages


def make_archive(path: str = "/sessions/default_archive.txt") -> MagicMock:
    archive = MagicMock()
    archive.archive_path.return_value = path
    return archive


def test_build_transcript():
    messages = [
        LLMMessage(role="user", content="Read a.py"),
        LLMMessage(role="assistant", content="", tool_calls=[ToolCall(id="1", name="read_file", arguments='{"path":"a.py"}')]),
        LLMMessage(role="tool", content="print(1)", tool_call_id="1"),
    ]

    transcript = build_transcript(messages)

    assert transcript == (
        "[user]\nRead a.py\n\n"
        '[assistant]\ntool_call: read_file {"path":"a.py"}\n\n'
        "[tool]\nprint(1)"
    )


def test_build_summary_message():
    message = build_summary_message("  the gist  ", "/tmp/archive.txt")

    assert message.role == "assistant"
    assert message.content == (
        "<summary>\nthe gist\n</summary>\n"
        "<archive>\n/tmp/archive.txt\nUse session_search to look up details.\n</archive>"
    )


def test_threshold_tokens():
    assert CompactionConfig().threshold_tokens == 180_000
    assert CompactionConfig(max_context_tokens=1000, compaction_threshold=0.5).threshold_tokens == 500


def test_should_compact_crosses_threshold():
    """720000 characters (~180000 tokens) triggers compaction at the default budget."""
    compactor = ContextCompactor(AsyncMock())
    conversation = Conversation.from_system_prompt("")
    conversation.messages.append(LLMMessage(role="user", content="x" * 720_000))

    assert compactor.should_compact(conversation.stats()) is True

    conversation.messages[-1].content = "x" * 719_996
    assert compactor.should_compact(conversation.stats()) is False


def test_should_compact_disabled():
    compactor = ContextCompactor(AsyncMock(), CompactionConfig(enabled=False))
    conversation = Conversation.from_system_prompt("x" * 1_000_000)

    assert compactor.should_compact(conversation.stats()) is False


@pytest.mark.asyncio
async def test_compact_refuses_short_history():
    summarize = AsyncMock(return_value="summary")
    compactor = ContextCompactor(summarize)
    messages = make_history(3)  # system + 6 messages

    with pytest.raises(NotEnoughHistoryError):
        await compactor.compact(messages)

    summarize.assert_not_called()
    assert len(messages) == 7


@pytest.mark.asyncio
async def test_compact_at_minimum_history():
    summarize = AsyncMock(return_value="summary")
    compactor = ContextCompactor(summarize)
    messages = make_history(4)[:-1]  # system + 7 messages

    result = await compactor.compact(messages)

    assert len(messages) == 8
    assert len(result.messages) == 8
    assert result.compacted_message_count == 8
    assert result.archive_text == "[user]\nquestion 0"
    assert result.messages[2:] == messages[-6:]
    summarize.assert_awaited_once()


@pytest.mark.asyncio
async def test_compact_keeps_system_summary_and_tail():
    summarize = AsyncMock(return_value="they discussed question 0")
    compactor = ContextCompactor(summarize)
    messages = make_history(4)  # system + 8 messages
    archive = make_archive()

    result = await compactor.compact(messages, archive)

    assert result.compacted_message_count == 2 + 6
    assert len(result.messages) == 8
    assert result.messages[0] is messages[0]
    assert result.messages[1].role == "assistant"
    assert "<summary>\nthey discussed question 0\n</summary>" in result.messages[1].content
    assert "/sessions/default_archive.txt" in result.messages[1].content
    assert result.messages[2:] == messages[-6:]

    # Older segment goes to the archive, verbatim
    archived = archive.append_archive.call_args.args[0]
    assert "question 0" in archived and "answer 0" in archived
    assert "question 1" not in archived
    archive.write_summary.assert_called_once_with("they discussed question 0")
    summarize.assert_awaited_once_with(archived)

    # Input is not mutated
    assert len(messages) == 9


@pytest.mark.asyncio
async def test_compact_summarize_failure_writes_nothing():
    summarize = AsyncMock(side_effect=RuntimeError("endpoint down"))
    compactor = ContextCompactor(summarize)
    archive = make_archive()

    with pytest.raises(RuntimeError):
        await compactor.compact(make_history(5), archive)

    archive.append_archive.assert_not_called()
    archive.write_summary.assert_not_called()


@pytest.mark.asyncio
async def test_compact_custom_keep_recent():
    compactor = ContextCompactor(AsyncMock(return_value="s"), CompactionConfig(keep_recent_messages=2))

    result = await compactor.compact(make_history(3))

    assert result.compacted_message_count == 4
    assert result.messages[-1].content == "answer 2"
