"""
Tool-choice steering for the first completion call of a turn.

Follow-up calls after tool results always use ``auto``; only the opening
call consults the policy.
"""

from typing import Protocol

from ..llm.base import ToolChoice, ToolDefinition


class ToolChoicePolicy(Protocol):
    def choose(self, user_text: str, tools: list[ToolDefinition]) -> ToolChoice:
        ...


class AutoToolChoice:
    """Let the model decide."""

    def choose(self, user_text: str, tools: list[ToolDefinition]) -> ToolChoice:
        return ToolChoice.auto()


class KeywordToolChoice:
    """Force a specific tool when the user text contains a keyword.

    Keywords are matched case-insensitively, in mapping order. A keyword
    whose tool is not currently advertised is skipped.
    """

    def __init__(self, keywords: dict[str, str]):
        self.keywords = {k.lower(): v for k, v in keywords.items() if k.strip() and v.strip()}

    def choose(self, user_text: str, tools: list[ToolDefinition]) -> ToolChoice:
        text = user_text.lower()
        available = {tool.name for tool in tools}
        for keyword, tool_name in self.keywords.items():
            if keyword in text and tool_name in available:
                return ToolChoice.require(tool_name)
        return ToolChoice.auto()


def create_policy(keywords: dict[str, str] | None) -> ToolChoicePolicy:
    if keywords:
        return KeywordToolChoice(keywords)
    return AutoToolChoice()
