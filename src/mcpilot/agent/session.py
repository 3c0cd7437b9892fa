"""
Session persistence for conversations.

Each session is one pretty-printed JSON file in the project's session
directory, plus an append-only archive of compacted transcripts and a
summary file that each compaction overwrites.
"""

import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, Field, ValidationError

from ..errors import (
    ActiveSessionError,
    InvalidSessionNameError,
    SessionNotFoundError,
    SessionStoreError,
)
from ..llm.base import LLMMessage, ToolCall

if TYPE_CHECKING:
    from .core import Agent

logger = structlog.get_logger()

DEFAULT_SESSION_NAME = "default"

_UNSAFE_CHARS = re.compile(r"[^a-z0-9._-]")


def sanitize_session_name(name: str) -> str:
    """Lowercase, filesystem-safe slug; empty results fall back to "default".

    Distinct names can collapse to the same slug ("My Project!" and
    "my project") and then share one session file.
    """
    slug = _UNSAFE_CHARS.sub("", name.strip().lower().replace(" ", "-"))
    return slug or DEFAULT_SESSION_NAME


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StoredToolCall(BaseModel):
    """Minimal data needed to rebuild a tool call."""

    id: str
    name: str
    arguments: str = ""


class StoredMessage(BaseModel):
    """Serializable form of a conversation message."""

    role: str
    content: str = ""
    tool_calls: list[StoredToolCall] | None = None
    tool_call_id: str | None = None
    name: str | None = None

    @classmethod
    def from_message(cls, message: LLMMessage) -> "StoredMessage":
        return cls(
            role=message.role,
            content=message.content,
            tool_calls=[
                StoredToolCall(id=tc.id, name=tc.name, arguments=tc.arguments)
                for tc in message.tool_calls
            ] or None,
            tool_call_id=message.tool_call_id,
            name=message.name,
        )

    def to_message(self) -> LLMMessage:
        return LLMMessage(
            role=self.role,  # type: ignore[arg-type]
            content=self.content,
            tool_calls=[
                ToolCall(id=tc.id, name=tc.name, arguments=tc.arguments)
                for tc in self.tool_calls or []
            ],
            tool_call_id=self.tool_call_id,
            name=self.name,
        )


class SessionRecord(BaseModel):
    """A persisted conversation. ``messages`` excludes the system prompt."""

    name: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
    model: str = ""
    system_prompt: str = ""
    messages: list[StoredMessage] = Field(default_factory=list)
    archive_file: str | None = None
    summary_file: str | None = None

    def set_messages(self, messages: list[LLMMessage]) -> None:
        """Store a conversation, skipping the leading system prompt."""
        if messages and messages[0].role == "system":
            messages = messages[1:]
        self.messages = [StoredMessage.from_message(m) for m in messages]

    def to_messages(self) -> list[LLMMessage]:
        """Rebuild the conversation with ``system_prompt`` at index 0."""
        return [LLMMessage(role="system", content=self.system_prompt)] + [
            m.to_message() for m in self.messages
        ]


class SessionStore:
    """Directory-backed session files, one ``<slug>.json`` per session.

    The store does not guard the active session; that is the caller's job.
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory).expanduser()
        self.directory.mkdir(parents=True, exist_ok=True)

    def path(self, name: str) -> Path:
        return self.directory / f"{sanitize_session_name(name)}.json"

    def load(self, name: str) -> SessionRecord | None:
        """Read a session; ``None`` if it does not exist."""
        path = self.path(name)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise SessionStoreError(f"cannot read session file {path}: {e}") from e
        try:
            return SessionRecord.model_validate_json(raw)
        except ValidationError as e:
            raise SessionStoreError(f"cannot parse session file {path}: {e}") from e

    def save(self, record: SessionRecord) -> None:
        """Write a session, stamping ``created_at`` once and ``updated_at`` always."""
        if not record.name:
            raise InvalidSessionNameError("session name is required")
        now = _utcnow()
        if record.created_at is None:
            record.created_at = now
        record.updated_at = now

        path = self.path(record.name)
        try:
            path.write_text(record.model_dump_json(indent=2, exclude_none=True), encoding="utf-8")
            os.chmod(path, 0o600)
        except OSError as e:
            raise SessionStoreError(f"cannot write session file {path}: {e}") from e
        logger.debug("Session saved", session=record.name, messages=len(record.messages))

    def delete(self, name: str) -> None:
        try:
            self.path(name).unlink()
        except FileNotFoundError as e:
            raise SessionNotFoundError(f"session not found: {sanitize_session_name(name)}") from e
        logger.info("Session deleted", session=sanitize_session_name(name))

    def list(self) -> list[SessionRecord]:
        """All readable sessions, most recently updated first."""
        records = []
        for path in self.directory.glob("*.json"):
            if not path.is_file():
                continue
            try:
                records.append(SessionRecord.model_validate_json(path.read_text(encoding="utf-8")))
            except (OSError, UnicodeDecodeError, ValidationError) as e:
                logger.warning("Skipping unreadable session file", path=str(path), error=str(e))
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        records.sort(key=lambda r: r.updated_at or epoch, reverse=True)
        return records


class SessionManager:
    """Tracks the active session and moves conversations in and out of the store."""

    def __init__(self, store: SessionStore):
        self.store = store
        self.record: SessionRecord | None = None
        self.name = ""

    @property
    def base_dir(self) -> Path:
        return self.store.directory

    def load_or_create(self, name: str, agent: "Agent") -> SessionRecord:
        """Make ``name`` the active session, creating it if needed, and load it into the agent."""
        session_name = sanitize_session_name(name)
        record = self.store.load(session_name)
        if record is None:
            record = SessionRecord(
                name=session_name,
                model=agent.model,
                system_prompt=agent.system_prompt,
                archive_file=f"{session_name}_archive.txt",
                summary_file=f"{session_name}_summary.md",
            )
            self.store.save(record)
            logger.info("Created new session", session=session_name)

        self.name = session_name
        self.record = record

        if record.model and record.model != agent.model:
            agent.set_model(record.model)

        # The live system prompt wins over the stored one
        agent.replace_messages(
            [LLMMessage(role="system", content=agent.system_prompt)] + record.to_messages()[1:]
        )
        logger.info("Session loaded", session=session_name, messages=len(record.messages))
        return record

    def switch(self, name: str, agent: "Agent") -> SessionRecord:
        if not name.strip():
            raise InvalidSessionNameError("session name required")
        session_name = sanitize_session_name(name)
        if session_name == self.name and self.record is not None:
            return self.record
        return self.load_or_create(session_name, agent)

    def delete(self, name: str) -> None:
        if not name.strip():
            raise InvalidSessionNameError("session name required")
        session_name = sanitize_session_name(name)
        if session_name == self.name:
            raise ActiveSessionError("cannot delete active session")
        self.store.delete(session_name)

    def save_from_agent(self, agent: "Agent") -> None:
        """Snapshot the agent's conversation into the active session and save it."""
        if self.record is None:
            return
        self.record.model = agent.model
        self.record.system_prompt = agent.system_prompt
        self.record.set_messages(agent.messages())
        self.store.save(self.record)

    def list_sessions(self) -> list[SessionRecord]:
        return self.store.list()

    def archive_path(self) -> str:
        if self.record is None or not self.record.archive_file:
            return ""
        return str(self.base_dir / self.record.archive_file)

    def summary_path(self) -> str:
        if self.record is None or not self.record.summary_file:
            return ""
        return str(self.base_dir / self.record.summary_file)

    def append_archive(self, content: str) -> None:
        """Append a compacted transcript under a timestamped header."""
        path = self.archive_path()
        if not content or not path:
            return
        header = f"\n---\nCompaction at {datetime.now().astimezone().isoformat(timespec='seconds')}\n---\n"
        try:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8") as f:
                f.write(header + content + "\n")
            os.chmod(path, 0o600)
        except OSError as e:
            raise SessionStoreError(f"cannot write archive {path}: {e}") from e

    def write_summary(self, content: str) -> None:
        path = self.summary_path()
        if not path:
            return
        try:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
            Path(path).write_text(content, encoding="utf-8")
            os.chmod(path, 0o600)
        except OSError as e:
            raise SessionStoreError(f"cannot write summary {path}: {e}") from e

    def search_archive(self, query: str, max_results: int = 10) -> str:
        """Case-insensitive substring search over the archive, one ``line_no: line`` per hit."""
        path = self.archive_path()
        if not path:
            return "No archive file for this session."

        if not Path(path).exists():
            return "No archive content yet."

        query_lower = query.lower()
        if not query_lower:
            return "Query is empty."
        if max_results <= 0:
            max_results = 10

        matches = []
        with open(path, encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.rstrip("\n")
                if query_lower in line.lower():
                    matches.append(f"{line_no}: {line}")
                    if len(matches) >= max_results:
                        break

        if not matches:
            return "No matches found in session archive."
        return "\n".join(matches)
