"""
Agent module - the brain of the system.

Includes:
- Agent: the tool-calling loop over the completion endpoint and tool server
- Conversation: in-memory message history and size stats
- ContextCompactor: summarize-and-archive of older history
- SessionStore / SessionManager: persistent conversation sessions
"""

from .core import Agent, run_with_deadline, strip_reasoning
from .conversation import Conversation, ConversationStats
from .events import AgentEvents
from .policy import AutoToolChoice, KeywordToolChoice, ToolChoicePolicy, create_policy
from .compaction import CompactionConfig, CompactionResult, ContextCompactor
from .session import SessionManager, SessionRecord, SessionStore, sanitize_session_name

__all__ = [
    "Agent",
    "run_with_deadline",
    "strip_reasoning",
    "Conversation",
    "ConversationStats",
    "AgentEvents",
    "AutoToolChoice",
    "KeywordToolChoice",
    "ToolChoicePolicy",
    "create_policy",
    "CompactionConfig",
    "CompactionResult",
    "ContextCompactor",
    "SessionManager",
    "SessionRecord",
    "SessionStore",
    "sanitize_session_name",
]
