"""
Core agent implementation: the tool-calling loop.

This is the brain of the system. It:
1. Connects to the MCP tool server and advertises its tools plus local ones
2. Drives one user turn through the completion endpoint, executing tool
   calls in the order the model returns them until a reply has none
3. Exposes the conversation to session persistence and compaction

One Agent owns one Conversation. Turns are not re-entrant: the caller
must wait for ``run_turn`` to finish before starting another turn or a
compaction.
"""

import asyncio
import re
from typing import Any, Awaitable, TypeVar

import structlog

from ..config import Settings, get_settings
from ..errors import CompletionError, TurnCancelledError
from ..llm import BaseLLM, LLMMessage, LLMResponse, ToolCall, ToolChoice, ToolDefinition, create_llm
from ..mcp.client import MCPClient
from ..tools import Tool, ToolRegistry
from .compaction import SUMMARY_SYSTEM_PROMPT, CompactionArchive, CompactionConfig, CompactionResult, ContextCompactor
from .conversation import Conversation, ConversationStats
from .events import AgentEvents, preview
from .policy import ToolChoicePolicy, create_policy

logger = structlog.get_logger()

T = TypeVar("T")

TOOLING_GUIDANCE = """Tool Use Policy:
- Use tools for any file, repo, or project action (read/write/search/execute).
- Do not claim actions you did not perform via tools.
- When a tool is needed, respond with tool calls and wait for results before final answers."""

_REASONING_PATTERN = re.compile(r"<think>.*?</think>", re.DOTALL)


def strip_reasoning(content: str) -> str:
    """Remove <think>...</think> segments from model output."""
    if not content:
        return content
    return _REASONING_PATTERN.sub("", content).strip()


def build_fallback_prompt(tools: list[ToolDefinition]) -> str:
    """System prompt for servers that send no instructions."""
    lines = [
        "You are mcpilot, a lean coding assistant working through an MCP tool server.",
        "",
        "You have access to tools that can read and analyze code, edit files, search",
        "the codebase, and run project commands.",
        "",
        "Available tools:",
    ]
    lines += [f"- {tool.name}: {tool.description}" for tool in tools]
    lines += [
        "",
        "When the user asks you to do something:",
        "1. Think about what tools you need",
        "2. Use the available tools appropriately",
        "3. Interpret the results",
        "4. Provide a helpful response",
        "",
        "Be direct and efficient. Focus on getting things done.",
    ]
    return "\n".join(lines)


def append_tooling_guidance(system_prompt: str) -> str:
    prompt = system_prompt.strip()
    if not prompt:
        return TOOLING_GUIDANCE
    return f"{prompt}\n\n{TOOLING_GUIDANCE}"


async def run_with_deadline(
    awaitable: Awaitable[T],
    timeout: float | None,
    cancel_event: asyncio.Event | None = None,
) -> T:
    """Await ``awaitable`` under a timeout and an optional cancel signal.

    Raises:
        TimeoutError: the timeout elapsed first
        TurnCancelledError: ``cancel_event`` was set first
    """
    if cancel_event is not None and cancel_event.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise TurnCancelledError("cancelled by user")

    deadline = timeout if timeout and timeout > 0 else None
    if cancel_event is None:
        return await asyncio.wait_for(awaitable, timeout=deadline)

    task = asyncio.ensure_future(awaitable)
    cancel_waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait(
            {task, cancel_waiter},
            timeout=deadline,
            return_when=asyncio.FIRST_COMPLETED,
        )
    except BaseException:
        task.cancel()
        raise
    finally:
        cancel_waiter.cancel()

    if task in done:
        return task.result()

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    if cancel_event.is_set():
        raise TurnCancelledError("cancelled by user")
    raise TimeoutError()


class Agent:
    """Drives conversations between the completion endpoint and the tool server."""

    def __init__(
        self,
        llm: BaseLLM,
        tool_registry: ToolRegistry | None = None,
        mcp_client: MCPClient | None = None,
        settings: Settings | None = None,
        system_prompt: str = "",
        events: AgentEvents | None = None,
        tool_choice_policy: ToolChoicePolicy | None = None,
        compaction_model: str | None = None,
    ):
        self.settings = settings or get_settings()
        self.llm = llm
        self.mcp_client = mcp_client
        if tool_registry is None:
            tool_registry = ToolRegistry(mcp_client)
        elif tool_registry.mcp_client is None:
            tool_registry.mcp_client = mcp_client
        self.tool_registry = tool_registry
        self.events = events or AgentEvents()
        self.tool_choice_policy = tool_choice_policy or create_policy(self.settings.tool_choice_keywords)
        self.compaction_model = compaction_model or self.settings.llm_compaction_model or llm.model
        self.llm_timeout = self.settings.llm_timeout_seconds
        self.tool_timeout = self.settings.tool_timeout_seconds
        self.conversation = Conversation.from_system_prompt(system_prompt)

        self.compactor = ContextCompactor(
            self.summarize,
            CompactionConfig(
                max_context_tokens=self.settings.context_budget_tokens,
                compaction_threshold=self.settings.compaction_threshold,
                keep_recent_messages=self.settings.compaction_keep_recent,
                enabled=self.settings.auto_compact,
            ),
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None, events: AgentEvents | None = None) -> "Agent":
        """Build an agent with the configured LLM provider and MCP server."""
        settings = settings or get_settings()
        llm_config = settings.get_llm_config()
        mcp_client = MCPClient(settings.get_mcp_config(), show_server_log=settings.debug)
        return cls(
            llm=create_llm(llm_config),
            mcp_client=mcp_client,
            settings=settings,
            events=events,
            compaction_model=llm_config.compaction_model,
        )

    async def initialize(self) -> None:
        """Connect to the tool server, discover tools and set the system prompt."""
        instructions = ""
        definitions: list[ToolDefinition] = []
        if self.mcp_client is not None:
            instructions = await self.mcp_client.connect()
            definitions = await self.mcp_client.list_tools()
            self.tool_registry.register_remote(definitions)

        prompt = instructions if instructions.strip() else build_fallback_prompt(definitions)
        self.conversation = Conversation.from_system_prompt(append_tooling_guidance(prompt))

        logger.info(
            "Agent initialized",
            tools=len(self.tool_registry),
            server_instructions=bool(instructions.strip()),
        )
        logger.debug("System prompt", system_prompt=self.system_prompt)

    async def close(self) -> None:
        if self.mcp_client is not None:
            await self.mcp_client.close()

    # Conversation access

    @property
    def model(self) -> str:
        return self.llm.model

    def set_model(self, model: str) -> None:
        self.llm.set_model(model)
        logger.info("Model switched", model=model)

    @property
    def system_prompt(self) -> str:
        return self.conversation.system_prompt

    def messages(self) -> list[LLMMessage]:
        return self.conversation.snapshot()

    def replace_messages(self, messages: list[LLMMessage]) -> None:
        self.conversation.replace(messages)

    def reset(self) -> None:
        """Clear the conversation, keeping the system prompt."""
        self.conversation.reset()

    def add_context(self, label: str, content: str) -> bool:
        return self.conversation.add_context(label, content)

    def stats(self) -> ConversationStats:
        return self.conversation.stats()

    def tools(self) -> list[ToolDefinition]:
        return self.tool_registry.get_definitions()

    def register_tool(self, tool: Tool) -> None:
        """Register a local tool; it shadows any remote tool with the same name."""
        self.tool_registry.register(tool)

    # Turn loop

    async def run_turn(
        self,
        user_text: str,
        cancel_event: asyncio.Event | None = None,
        tool_choice: ToolChoice | None = None,
    ) -> str:
        """Process one user message through to a reply with no tool calls.

        Tool failures, tool timeouts and tool cancellations are fed back to
        the model as tool results. Completion failures, MCP transport
        failures and malformed tool arguments abort the turn; the
        conversation then keeps the user message but drops the unfinished
        assistant step.

        Returns:
            The final assistant text with reasoning segments removed
        """
        self.conversation.add_user_message(user_text)

        tools = self.tool_registry.get_definitions()
        choice = tool_choice or self.tool_choice_policy.choose(user_text, tools)

        response = await self._complete(tools, choice, cancel_event)

        while True:
            content = strip_reasoning(response.content)
            checkpoint = len(self.conversation)
            self.conversation.add_assistant_message(content, response.tool_calls)

            if not response.tool_calls:
                return content

            logger.debug("Executing tool calls", count=len(response.tool_calls))
            try:
                for tool_call in response.tool_calls:
                    result_text = await self._execute_tool_call(tool_call, cancel_event)
                    self.conversation.add_tool_result(tool_call.id, result_text, tool_call.name)
            except BaseException:
                del self.conversation.messages[checkpoint:]
                raise

            response = await self._complete(tools, ToolChoice.auto(), cancel_event)

    async def _complete(
        self,
        tools: list[ToolDefinition],
        tool_choice: ToolChoice,
        cancel_event: asyncio.Event | None,
    ) -> LLMResponse:
        model = self.llm.model
        self.events.status(f"thinking (model={model})")
        logger.debug(
            "LLM request",
            model=model,
            messages=len(self.conversation),
            tools=len(tools),
            tool_choice=tool_choice.tool_name or tool_choice.mode,
        )

        try:
            response = await run_with_deadline(
                self.llm.generate(
                    messages=self.conversation.snapshot(),
                    tools=tools or None,
                    tool_choice=tool_choice,
                ),
                self.llm_timeout,
                cancel_event,
            )
        except TimeoutError:
            raise CompletionError(
                f"LLM call timed out after {self.llm_timeout:g}s", model=model
            ) from None

        logger.debug("LLM response", tool_calls=len(response.tool_calls), chars=len(response.content))
        return response

    async def _execute_tool_call(self, tool_call: ToolCall, cancel_event: asyncio.Event | None) -> str:
        self.events.tool_start(tool_call.name, tool_call.arguments)
        arguments: dict[str, Any] = tool_call.parse_arguments()

        try:
            result = await run_with_deadline(
                self.tool_registry.execute(tool_call.name, arguments),
                self.tool_timeout,
                cancel_event,
            )
        except TimeoutError:
            logger.warning("Tool call timed out", tool=tool_call.name, timeout=self.tool_timeout)
            content, is_error = f'Error: tool "{tool_call.name}" timed out waiting for a response.', True
        except TurnCancelledError:
            logger.info("Tool call cancelled", tool=tool_call.name)
            content, is_error = f'Error: tool "{tool_call.name}" was cancelled before it finished.', True
        else:
            content, is_error = result.to_content(), not result.success

        logger.debug("Tool result", tool=tool_call.name, is_error=is_error, result=preview(content, 200))
        self.events.tool_end(tool_call.name, content, is_error)
        return content

    # Compaction

    async def summarize(self, text: str) -> str:
        """Summarize text with the compaction model."""
        messages = [
            LLMMessage(role="system", content=SUMMARY_SYSTEM_PROMPT),
            LLMMessage(role="user", content=text),
        ]
        logger.debug("Compaction summarize start", model=self.compaction_model, chars=len(text))
        try:
            response = await run_with_deadline(
                self.llm.generate(messages=messages, model=self.compaction_model),
                self.llm_timeout,
            )
        except TimeoutError:
            raise CompletionError(
                f"summary call timed out after {self.llm_timeout:g}s", model=self.compaction_model
            ) from None
        return strip_reasoning(response.content)

    def should_compact(self) -> bool:
        return self.compactor.should_compact(self.stats())

    async def compact(self, archive: CompactionArchive | None = None) -> CompactionResult:
        """Compact the conversation in place; raises NotEnoughHistoryError when there is too little."""
        result = await self.compactor.compact(self.conversation.snapshot(), archive)
        self.conversation.replace(result.messages)
        return result
