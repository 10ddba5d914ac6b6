"""Conversation memory owned by one task execution."""

from typing import Literal

from pydantic import BaseModel, Field

MessageRole = Literal["user", "assistant", "system"]


class MemoryEntry(BaseModel):
    role: MessageRole
    content: str


class MemoryConfig(BaseModel):
    """Declarative memory shape, as written in the task file."""

    context: list[str] = Field(default_factory=list)
    history: list[MemoryEntry] = Field(default_factory=list)


def merge_memory_configs(inherited: MemoryConfig | None, own: MemoryConfig | None) -> MemoryConfig:
    """Concatenate inherited context/history ahead of a task's own declared memory."""
    inherited = inherited or MemoryConfig()
    own = own or MemoryConfig()
    return MemoryConfig(
        context=[*inherited.context, *own.context],
        history=[e.model_copy() for e in (*inherited.history, *own.history)],
    )


class Memory:
    """Ordered system context plus ordered message history. Append-only during a run."""

    def __init__(self, config: MemoryConfig | None = None) -> None:
        config = config or MemoryConfig()
        self._context: list[str] = list(config.context)
        self._history: list[MemoryEntry] = [e.model_copy() for e in config.history]

    def get_context(self) -> tuple[str, ...]:
        return tuple(self._context)

    def get_history(self) -> tuple[MemoryEntry, ...]:
        return tuple(self._history)

    def append(self, entry: MemoryEntry) -> None:
        self._history.append(entry)

    def append_user(self, content: str) -> None:
        self.append(MemoryEntry(role="user", content=content))

    def append_assistant(self, content: str) -> None:
        self.append(MemoryEntry(role="assistant", content=content))

    def get_last_entry(self) -> MemoryEntry | None:
        return self._history[-1] if self._history else None

    def has_user_message(self) -> bool:
        return any(e.role == "user" for e in self._history)

    def ends_with_user_message(self) -> bool:
        last = self.get_last_entry()
        return last is not None and last.role == "user"

    def to_config(self) -> MemoryConfig:
        """Snapshot back to the declarative shape (used for inheritance into sub-tasks)."""
        return MemoryConfig(
            context=list(self._context),
            history=[e.model_copy() for e in self._history],
        )

    def to_messages(self) -> list[dict[str, str]]:
        """Render as chat messages: context as leading system messages, then history."""
        messages = [{"role": "system", "content": c} for c in self._context]
        messages.extend({"role": e.role, "content": e.content} for e in self._history)
        return messages

    def clear(self) -> None:
        """Drop history; context is kept."""
        self._history = []
