"""
Command-line interface for mcpilot.
"""

import argparse
import asyncio
import itertools
import json
import logging
import signal
import sys
import threading
from pathlib import Path

import structlog

from . import __version__
from .agent import Agent, AgentEvents, SessionManager, SessionStore
from .agent.session import DEFAULT_SESSION_NAME
from .config import Settings, get_settings, mask_secret
from .errors import AgentError, NotEnoughHistoryError, UnknownModelError
from .tools import create_archive_search_tool

logger = structlog.get_logger()

HELP_TEXT = """Commands:
  /help                    Show this help
  /model                   List models
  /model <value>           Switch model by index or name
  /models                  Alias for /model
  /config                  Show resolved config (API key masked)
  /reset                   Clear the conversation context
  /stats                   Show context usage
  /compact                 Summarize older history into the session archive
  /context <path>          Add a file to the conversation as context
  /session [list]          List sessions
  /session new <name>      Create and switch to a session
  /session switch <name>   Switch to a session
  /session delete <name>   Delete a session
  /session info            Show the active session
  /exit, /quit             Exit the CLI"""


def configure_logging(settings: Settings) -> None:
    """Route structlog through stdlib logging on stderr at the configured level."""
    level = logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, stream=sys.stderr, format="%(message)s")

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class Spinner:
    """Status line animated on a background thread."""

    FRAMES = "|/-\\"

    def __init__(self, stream=None, interval: float = 0.1):
        self.stream = stream or sys.stderr
        self.interval = interval
        self.enabled = self.stream.isatty()
        self._message = ""
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def update(self, message: str) -> None:
        with self._lock:
            self._message = message
        if self._thread is None:
            self.start()

    def start(self) -> None:
        if not self.enabled or self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        thread, self._thread = self._thread, None
        if thread is None:
            return
        self._stop.set()
        thread.join()
        self.stream.write("\r\033[K")
        self.stream.flush()

    def _run(self) -> None:
        for frame in itertools.cycle(self.FRAMES):
            if self._stop.is_set():
                return
            with self._lock:
                message = self._message
            self.stream.write(f"\r\033[K{frame} {message}")
            self.stream.flush()
            self._stop.wait(self.interval)


class ConsoleUI:
    """Renders agent events on the terminal."""

    def __init__(self, out=None):
        self.out = out or sys.stdout
        self.spinner = Spinner()

    def events(self) -> AgentEvents:
        return AgentEvents(
            on_status=self.on_status,
            on_tool_start=self.on_tool_start,
            on_tool_end=self.on_tool_end,
        )

    def on_status(self, message: str) -> None:
        self.spinner.update(message)

    def on_tool_start(self, name: str, arguments: str) -> None:
        self.spinner.stop()
        print(f"-> {name} {arguments}".rstrip(), file=self.out)
        self.spinner.update(f"running {name}")

    def on_tool_end(self, name: str, result: str, is_error: bool) -> None:
        self.spinner.stop()
        marker = "!!" if is_error else "<-"
        print(f"{marker} {name}: {result}".rstrip(), file=self.out)

    def done(self) -> None:
        self.spinner.stop()


def parse_command(line: str) -> tuple[str, list[str]]:
    """Split "/cmd a b" into ("cmd", ["a", "b"])."""
    fields = line.split()
    if not fields:
        return "", []
    return fields[0].removeprefix("/").lower(), fields[1:]


def resolve_model(value: str, models: list[str]) -> str:
    """Resolve a 1-based index or case-insensitive name against the model list."""
    arg = value.strip()
    if arg.isdigit():
        index = int(arg)
        if index < 1 or index > len(models):
            raise UnknownModelError(f"model index out of range: {index}")
        return models[index - 1]

    for model in models:
        if model.lower() == arg.lower():
            return model
    raise UnknownModelError(f"unknown model: {arg} (try /model to list)")


def format_models(models: list[str], current: str) -> str:
    lines = ["Available models:"]
    for i, model in enumerate(models, start=1):
        marker = "*" if model == current else " "
        lines.append(f"{marker} {i}) {model}")
    lines.append(f"Current: {current}")
    lines.append("Use /model <number|name> to switch.")
    return "\n".join(lines)


def format_config(settings: Settings) -> str:
    """Resolved configuration as JSON, API key masked."""
    llm = settings.get_llm_config()
    mcp = settings.get_mcp_config()
    display = {
        "llm": {
            "provider": llm.provider,
            "api_key": mask_secret(llm.api_key),
            "base_url": llm.base_url,
            "model": llm.model,
            "compaction_model": llm.compaction_model,
            "timeout_seconds": llm.timeout_seconds,
        },
        "mcp": {
            "project_path": mcp.project_path,
            "context": mcp.context,
            "command": mcp.command,
            "args": mcp.build_args(),
            "tool_timeout_seconds": mcp.tool_timeout_seconds,
        },
        "sessions_dir": str(settings.project_sessions_dir()),
        "context_budget_tokens": settings.context_budget_tokens,
        "auto_compact": settings.auto_compact,
        "debug": settings.debug,
    }
    if mcp.env:
        display["mcp"]["env"] = mcp.env
    return json.dumps(display, indent=2)


def format_stats(agent: Agent) -> str:
    stats = agent.stats()
    budget = agent.compactor.config.max_context_tokens
    return "\n".join([
        f"Messages: {stats.message_count}",
        f"Tool calls: {stats.tool_call_count}",
        f"Characters: {stats.char_count}",
        f"Approx tokens: {stats.approx_tokens} / {budget} ({stats.approx_tokens * 100 // max(budget, 1)}%)",
        f"Compaction threshold: {agent.compactor.config.threshold_tokens}",
    ])


def format_sessions(sessions: SessionManager) -> str:
    records = sessions.list_sessions()
    if not records:
        return "No sessions found."
    lines = ["Sessions:"]
    for record in records:
        marker = "*" if record.name == sessions.name else " "
        updated = record.updated_at.strftime("%d %b %y %H:%M %Z") if record.updated_at else "never"
        lines.append(f"{marker} {record.name} (updated {updated})")
    return "\n".join(lines)


def format_session_info(sessions: SessionManager) -> str:
    record = sessions.record
    if record is None:
        return "No active session."
    updated = record.updated_at.strftime("%d %b %y %H:%M %Z") if record.updated_at else "never"
    lines = [
        f"Session: {record.name}",
        f"Model: {record.model}",
        f"Updated: {updated}",
        f"Messages: {len(record.messages)}",
    ]
    if record.archive_file:
        lines.append(f"Archive: {sessions.archive_path()}")
    if record.summary_file:
        lines.append(f"Summary: {sessions.summary_path()}")
    return "\n".join(lines)


async def compact_session(agent: Agent, sessions: SessionManager) -> str:
    result = await agent.compact(sessions)
    sessions.save_from_agent(agent)
    return (
        f"Context compacted ({result.original_message_count} -> "
        f"{result.compacted_message_count} messages)."
    )


def handle_session_command(args: list[str], agent: Agent, sessions: SessionManager) -> str:
    if not args or args[0] == "list":
        return format_sessions(sessions)

    action = args[0]
    if action in ("new", "switch"):
        if len(args) < 2:
            return f"usage: /session {action} <name>"
        sessions.switch(args[1], agent)
        sessions.save_from_agent(agent)
        return f"Switched to session {sessions.name}."
    if action == "delete":
        if len(args) < 2:
            return "usage: /session delete <name>"
        sessions.delete(args[1])
        return f"Deleted session {args[1]}."
    if action == "info":
        return format_session_info(sessions)
    return "unknown session command (use list/new/switch/delete/info)"


def add_context_file(agent: Agent, path_arg: str) -> str:
    path = Path(path_arg).expanduser()
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        return f"cannot read {path}: {e}"
    if not agent.add_context(str(path), content):
        return f"{path} is empty; nothing added."
    return f"Added context from {path}."


async def handle_command(
    line: str,
    agent: Agent,
    sessions: SessionManager,
    settings: Settings,
) -> tuple[bool, str]:
    """Run a slash command.

    Returns:
        (exit requested, text to print)
    """
    cmd, args = parse_command(line)

    if cmd in ("exit", "quit"):
        return True, ""
    if cmd == "help":
        return False, HELP_TEXT
    if cmd in ("model", "models"):
        arg = " ".join(args).strip()
        if cmd == "models" or not arg or arg.lower() == "list":
            return False, format_models(settings.available_models, agent.model)
        model = resolve_model(arg, settings.available_models)
        agent.set_model(model)
        sessions.save_from_agent(agent)
        return False, f"Model set to {model}"
    if cmd == "config":
        return False, format_config(settings)
    if cmd == "reset":
        agent.reset()
        sessions.save_from_agent(agent)
        return False, "Conversation reset."
    if cmd == "stats":
        return False, format_stats(agent)
    if cmd == "compact":
        return False, await compact_session(agent, sessions)
    if cmd == "context":
        if not args:
            return False, "usage: /context <path>"
        return False, add_context_file(agent, " ".join(args))
    if cmd == "session":
        return False, handle_session_command(args, agent, sessions)
    return False, f"unknown command: /{cmd} (try /help)"


async def run_turn(agent: Agent, sessions: SessionManager, ui: ConsoleUI, text: str) -> str:
    """Run one turn with Ctrl-C wired to the turn's cancel event, then save and maybe compact."""
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
        installed = True
    except (NotImplementedError, RuntimeError):
        installed = False

    try:
        reply = await agent.run_turn(text, cancel_event=cancel_event)
    finally:
        ui.done()
        if installed:
            loop.remove_signal_handler(signal.SIGINT)

    try:
        sessions.save_from_agent(agent)
        if agent.should_compact():
            logger.info("Context threshold reached, compacting", approx_tokens=agent.stats().approx_tokens)
            try:
                print(await compact_session(agent, sessions), file=sys.stderr)
            except NotEnoughHistoryError as e:
                logger.debug("Auto-compaction skipped", reason=str(e))
    except AgentError as e:
        # The reply is still delivered when persisting it fails
        logger.error("Post-turn session update failed", error=str(e))
        print(f"Error: {e}", file=sys.stderr)

    return reply


async def read_line(prompt: str) -> str:
    """Read one line of stdin on a daemon thread so Ctrl-C at the prompt can exit."""
    loop = asyncio.get_running_loop()
    future: asyncio.Future[str] = loop.create_future()

    def deliver(value: str | None, error: Exception | None) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(value)

    def worker() -> None:
        try:
            line = input(prompt)
        except Exception as e:
            error, line = e, None
        else:
            error = None
        try:
            loop.call_soon_threadsafe(deliver, line, error)
        except RuntimeError:
            pass  # loop already closed

    threading.Thread(target=worker, name="mcpilot-stdin", daemon=True).start()
    return await future


async def repl(agent: Agent, sessions: SessionManager, settings: Settings, ui: ConsoleUI) -> None:
    print(f"mcpilot {__version__} - session {sessions.name}, model {agent.model}. Type /help for commands.")
    while True:
        try:
            line = (await read_line("> ")).strip()
        except EOFError:
            print()
            return

        if not line:
            continue
        if line in ("exit", "quit"):
            return

        try:
            if line.startswith("/"):
                should_exit, output = await handle_command(line, agent, sessions, settings)
                if output:
                    print(output)
                if should_exit:
                    return
                continue

            print(await run_turn(agent, sessions, ui, line))
        except AgentError as e:
            print(f"Error: {e}", file=sys.stderr)


async def run(settings: Settings, prompt: str) -> int:
    ui = ConsoleUI()
    agent = Agent.from_settings(settings, events=ui.events())
    try:
        await agent.initialize()

        sessions = SessionManager(SessionStore(settings.project_sessions_dir()))
        sessions.load_or_create(DEFAULT_SESSION_NAME, agent)
        agent.register_tool(create_archive_search_tool(sessions))

        if prompt:
            print(await run_turn(agent, sessions, ui, prompt))
        else:
            await repl(agent, sessions, settings, ui)
    except AgentError as e:
        ui.done()
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await agent.close()
    return 0


def main() -> None:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="mcpilot",
        description="mcpilot - a terminal coding agent driving an MCP tool server",
    )
    parser.add_argument("prompt", nargs="*", help="Run a single prompt and exit")
    parser.add_argument("--config", action="store_true", help="Print resolved configuration and exit")
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    args = parser.parse_args()

    if args.version:
        print(__version__)
        return

    settings = get_settings()
    configure_logging(settings)

    if args.config:
        print(format_config(settings))
        return

    try:
        settings.validate_for_run()
    except AgentError as e:
        print(e, file=sys.stderr)
        sys.exit(1)

    try:
        code = asyncio.run(run(settings, " ".join(args.prompt).strip()))
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
