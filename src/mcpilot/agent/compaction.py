"""
Conversation Compaction - replace older history with a summary.

When the approximate context size crosses a fraction of the budget, the
older part of the conversation is rendered to a plain-text transcript,
summarized by the compaction model, appended to the session archive and
replaced by a single summary message. The system prompt and the most
recent messages are kept verbatim.

Compaction is single-flight per session: callers must not run two
compactions, or a compaction and a turn, concurrently on one conversation.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol

import structlog

from ..errors import NotEnoughHistoryError
from ..llm.base import LLMMessage
from .conversation import CHARS_PER_TOKEN, ConversationStats

logger = structlog.get_logger()

DEFAULT_CONTEXT_BUDGET_TOKENS = 200_000
DEFAULT_COMPACTION_THRESHOLD = 0.9  # Compact when 90% of budget used
DEFAULT_KEEP_RECENT = 6  # Messages kept verbatim after the summary

SUMMARY_SYSTEM_PROMPT = (
    "Summarize the conversation content into a concise, structured summary. "
    "Preserve key requirements, decisions, file paths, commands, and open questions. "
    "Use bullets where helpful."
)

ARCHIVE_SEARCH_HINT = "Use session_search to look up details."


class CompactionArchive(Protocol):
    """Where compaction writes the raw transcript and the latest summary."""

    def archive_path(self) -> str:
        ...

    def append_archive(self, content: str) -> None:
        ...

    def write_summary(self, content: str) -> None:
        ...


@dataclass
class CompactionConfig:
    """Configuration for conversation compaction."""

    max_context_tokens: int = DEFAULT_CONTEXT_BUDGET_TOKENS
    compaction_threshold: float = DEFAULT_COMPACTION_THRESHOLD
    keep_recent_messages: int = DEFAULT_KEEP_RECENT
    enabled: bool = True

    @property
    def threshold_tokens(self) -> int:
        return int(self.max_context_tokens * self.compaction_threshold)


@dataclass
class CompactionResult:
    """Result of a compaction operation."""

    messages: list[LLMMessage]
    archive_text: str
    summary: str
    original_message_count: int
    compacted_message_count: int
    tokens_saved_estimate: int = 0


def build_transcript(messages: list[LLMMessage]) -> str:
    """Render messages as role-tagged plain text blocks."""
    blocks = []
    for msg in messages:
        lines = [f"[{msg.role or 'unknown'}]"]
        if msg.content:
            lines.append(msg.content)
        for call in msg.tool_calls:
            lines.append(f"tool_call: {call.name} {call.arguments}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks).strip()


def build_summary_message(summary: str, archive_hint: str) -> LLMMessage:
    """Assistant message that stands in for the compacted history."""
    return LLMMessage(
        role="assistant",
        content=(
            f"<summary>\n{summary.strip()}\n</summary>\n"
            f"<archive>\n{archive_hint}\n{ARCHIVE_SEARCH_HINT}\n</archive>"
        ),
    )


class ContextCompactor:
    """Decides when to compact and performs the compaction.

    ``summarize`` is the model call that turns a transcript into a summary;
    the Agent supplies one bound to its compaction model.
    """

    def __init__(
        self,
        summarize: Callable[[str], Awaitable[str]],
        config: CompactionConfig | None = None,
    ):
        self.summarize = summarize
        self.config = config or CompactionConfig()

    def should_compact(self, stats: ConversationStats) -> bool:
        if not self.config.enabled:
            return False
        return stats.approx_tokens >= self.config.threshold_tokens

    def split(self, messages: list[LLMMessage]) -> tuple[list[LLMMessage], list[LLMMessage]]:
        """Split history into (older, recent), excluding the system prompt.

        Raises:
            NotEnoughHistoryError: if there is nothing between the system
                prompt and the retained tail
        """
        keep = self.config.keep_recent_messages
        if len(messages) - 1 <= keep:
            raise NotEnoughHistoryError(
                f"not enough history to compact (need more than {keep + 1} messages, have {len(messages)})"
            )
        return messages[1:len(messages) - keep], messages[len(messages) - keep:]

    async def compact(
        self,
        messages: list[LLMMessage],
        archive: CompactionArchive | None = None,
    ) -> CompactionResult:
        """Summarize and archive the older segment of ``messages``.

        The input list is not modified; the caller swaps in
        ``result.messages``. Nothing is written if summarization fails.
        """
        older, recent = self.split(messages)

        transcript = build_transcript(older)
        if not transcript:
            raise NotEnoughHistoryError("nothing to compact")

        logger.info(
            "Starting conversation compaction",
            message_count=len(messages),
            older=len(older),
            kept=len(recent),
        )

        summary = await self.summarize(transcript)

        archive_hint = ""
        if archive is not None:
            archive.append_archive(transcript)
            archive.write_summary(summary)
            archive_hint = archive.archive_path()

        compacted = [messages[0], build_summary_message(summary, archive_hint)] + list(recent)

        before = sum(len(m.content) for m in messages)
        after = sum(len(m.content) for m in compacted)
        result = CompactionResult(
            messages=compacted,
            archive_text=transcript,
            summary=summary,
            original_message_count=len(messages),
            compacted_message_count=len(compacted),
            tokens_saved_estimate=max(0, (before - after) // CHARS_PER_TOKEN),
        )

        logger.info(
            "Compaction complete",
            original=result.original_message_count,
            compacted=result.compacted_message_count,
            tokens_saved=result.tokens_saved_estimate,
        )

        return result
