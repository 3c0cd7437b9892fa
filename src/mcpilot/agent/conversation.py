"""
In-memory conversation history.

Index 0 always holds the active system prompt. History is append-only
during a turn; the only wholesale changes are ``reset`` (back to the
system prompt) and ``replace`` (session load, compaction).
"""

import json
from dataclasses import dataclass, field

from ..llm.base import LLMMessage, ToolCall

CHARS_PER_TOKEN = 4


@dataclass
class ConversationStats:
    """Approximate context usage.

    ``approx_tokens`` is characters / 4: a model-independent heuristic, not
    a tokenizer. Compaction thresholds are tuned against it.
    """

    message_count: int = 0
    tool_call_count: int = 0
    char_count: int = 0
    approx_tokens: int = 0


def wrap_user_task(text: str) -> str:
    """Wrap user input in the task envelope the model is told to expect."""
    trimmed = text.strip()
    if not trimmed:
        return "<task></task>"
    return f"<task>\n<request>\n{trimmed}\n</request>\n</task>"


@dataclass
class Conversation:
    """Ordered message history owned by one Agent."""

    messages: list[LLMMessage] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.messages or self.messages[0].role != "system":
            self.messages.insert(0, LLMMessage(role="system", content=""))

    @classmethod
    def from_system_prompt(cls, system_prompt: str) -> "Conversation":
        return cls([LLMMessage(role="system", content=system_prompt)])

    @property
    def system_prompt(self) -> str:
        return self.messages[0].content

    @property
    def tail(self) -> list[LLMMessage]:
        """Everything after the system prompt."""
        return self.messages[1:]

    @property
    def message_count(self) -> int:
        return len(self.messages)

    def __len__(self) -> int:
        return len(self.messages)

    def add_user_message(self, content: str) -> LLMMessage:
        """Append a user message wrapped in the task envelope."""
        message = LLMMessage(role="user", content=wrap_user_task(content))
        self.messages.append(message)
        return message

    def add_assistant_message(
        self, content: str, tool_calls: list[ToolCall] | None = None
    ) -> LLMMessage:
        message = LLMMessage(
            role="assistant",
            content=content,
            tool_calls=list(tool_calls or []),
        )
        self.messages.append(message)
        return message

    def add_tool_result(self, tool_call_id: str, result: str, tool_name: str = "") -> LLMMessage:
        message = LLMMessage(
            role="tool",
            content=result,
            tool_call_id=tool_call_id,
            name=tool_name or None,
        )
        self.messages.append(message)
        return message

    def add_context(self, label: str, content: str) -> bool:
        """Append extra context as a system message. Blank content is ignored."""
        body = content.strip()
        if not body:
            return False
        self.messages.append(LLMMessage(
            role="system",
            content=f"<context source={json.dumps(label)}>\n{body}\n</context>",
        ))
        return True

    def reset(self) -> None:
        """Drop everything but the system prompt."""
        del self.messages[1:]

    def replace(self, messages: list[LLMMessage]) -> None:
        """Replace the whole history. The first message must be the system prompt."""
        if not messages or messages[0].role != "system":
            raise ValueError("conversation must start with a system message")
        self.messages = list(messages)

    def snapshot(self) -> list[LLMMessage]:
        """Shallow copy of the message list for readers outside the loop."""
        return list(self.messages)

    def stats(self) -> ConversationStats:
        stats = ConversationStats(message_count=len(self.messages))
        for msg in self.messages:
            stats.char_count += len(msg.content)
            for call in msg.tool_calls:
                stats.tool_call_count += 1
                stats.char_count += len(call.name) + len(call.arguments)
        stats.approx_tokens = stats.char_count // CHARS_PER_TOKEN
        return stats
