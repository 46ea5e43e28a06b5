"""Conversation messages and the append-only transcript."""

import json
from dataclasses import dataclass, field
from typing import Any, Iterator


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    arguments: str  # raw JSON text as produced by the model


@dataclass(frozen=True)
class ToolOutcome:
    """Result of a tool invocation, carried as data.

    ``payload`` is the tool-specific success value, or a dict with an
    ``error`` key when ``ok`` is False.
    """

    ok: bool
    payload: Any

    @classmethod
    def success(cls, payload: Any) -> "ToolOutcome":
        return cls(True, payload)

    @classmethod
    def failure(cls, message: str, **context: Any) -> "ToolOutcome":
        return cls(False, {"error": message, **context})

    @property
    def error(self) -> str | None:
        if self.ok:
            return None
        return self.payload.get("error")

    def to_json(self) -> str:
        return json.dumps(self.payload, ensure_ascii=False)


@dataclass(frozen=True)
class UserMessage:
    text: str

    def to_wire(self) -> dict:
        return {"role": "user", "content": self.text}


@dataclass(frozen=True)
class AssistantMessage:
    text: str
    tool_calls: tuple[ToolCall, ...] = ()

    def to_wire(self) -> dict:
        # Null content is only valid alongside tool_calls.
        content = self.text or (None if self.tool_calls else "")
        msg: dict = {"role": "assistant", "content": content}
        if self.tool_calls:
            msg["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.name, "arguments": tc.arguments},
                }
                for tc in self.tool_calls
            ]
        return msg


@dataclass(frozen=True)
class ToolResultMessage:
    tool_call_id: str
    tool_name: str
    outcome: ToolOutcome

    def to_wire(self) -> dict:
        return {
            "role": "tool",
            "tool_call_id": self.tool_call_id,
            "content": self.outcome.to_json(),
        }


Message = UserMessage | AssistantMessage | ToolResultMessage


@dataclass
class Transcript:
    """Ordered conversation history for one process lifetime.

    Messages are only ever appended; the system prompt is not stored here
    and is prepended by ``to_wire``.
    """

    messages: list[Message] = field(default_factory=list)

    def append(self, message: Message) -> None:
        self.messages.append(message)

    def __len__(self) -> int:
        return len(self.messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.messages)

    def __getitem__(self, index):
        return self.messages[index]

    def to_wire(self, system_prompt: str | None = None) -> list[dict]:
        wire = []
        if system_prompt:
            wire.append({"role": "system", "content": system_prompt})
        wire.extend(m.to_wire() for m in self.messages)
        return wire

    def char_count(self) -> int:
        return len(json.dumps(self.to_wire(), ensure_ascii=False))
