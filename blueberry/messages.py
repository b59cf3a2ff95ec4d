"""Chat message model shared by the loader, writer, and LLM client."""

from dataclasses import dataclass, field
from enum import Enum


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass
class Message:
    """One conversation turn unit.

    ``extra`` carries any provider-specific fields (tool_calls, tool_call_id,
    name, ...). They are not interpreted here but must survive a save/load cycle.
    """

    role: Role
    content: str = ""
    extra: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"role": self.role.value, "content": self.content, **self.extra}


def system_message(text: str) -> Message:
    return Message(Role.SYSTEM, text)


def to_llm_messages(messages: list[Message]) -> list[dict]:
    """Convert to the chat-completions dict shape expected by LiteLLM."""
    return [m.to_dict() for m in messages]


def from_llm_message(msg) -> Message:
    """Build a Message from a LiteLLM response message object."""
    extra = {}
    tool_calls = getattr(msg, "tool_calls", None)
    if tool_calls:
        extra["tool_calls"] = [
            tc.model_dump() if hasattr(tc, "model_dump") else tc for tc in tool_calls
        ]
    return Message(Role.ASSISTANT, getattr(msg, "content", None) or "", extra)
