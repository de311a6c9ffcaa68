"""
Models for one user turn: streamed model output, tool-call bookkeeping and
the transcript entries a turn produces.
"""
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal
from uuid import uuid4

from pydantic import Field

from .common import BasePydanticModel


class TurnState(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    TOOLS_REQUESTED = "tools_requested"
    TOOLS_EXECUTING = "tools_executing"
    FINISHED = "finished"
    ABORTED = "aborted"  # finished by the user; partial output is kept
    ERRORED = "errored"


TERMINAL_STATES = frozenset({TurnState.FINISHED, TurnState.ABORTED, TurnState.ERRORED})


# Stream parts produced by a model round.

@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolCallPart:
    call_id: str
    tool_name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FinishPart:
    reason: str = "stop"


@dataclass(frozen=True)
class ErrorPart:
    error: Exception | str


StreamPart = TextDelta | ToolCallPart | FinishPart | ErrorPart


class ToolCallRecord(BasePydanticModel):
    """Correlates a model-issued call id with the tool it named."""
    call_id: str
    tool_name: str
    args: dict[str, Any] = Field(default_factory=dict)


def _entry_id() -> str:
    return uuid4().hex


class AssistantEntry(BasePydanticModel):
    id: str = Field(default_factory=_entry_id)
    role: Literal["assistant"] = "assistant"
    content: str = ""
    is_generating: bool = True
    is_error: bool = False
    is_tool_error: bool = False
    stopped: bool = False


class ToolResultEntry(BasePydanticModel):
    id: str = Field(default_factory=_entry_id)
    role: Literal["tool"] = "tool"
    tool_call_id: str
    tool_name: str
    args: dict[str, Any] = Field(default_factory=dict)
    result: Any = None
    is_error: bool = False

    @property
    def content(self) -> str:
        """The JSON-ish text shown for this entry in the transcript."""
        return json.dumps({"tool_name": self.tool_name, "args": self.args, "result": self.result}, default=str)


TurnEntry = AssistantEntry | ToolResultEntry


class TurnResult(BasePydanticModel):
    state: TurnState
    entries: list[AssistantEntry | ToolResultEntry] = Field(default_factory=list)
    messages: list[dict[str, Any]] = Field(default_factory=list)
    error: str | None = None
    steps: int = 0
    finish_reason: str | None = None

    @property
    def text(self) -> str:
        return "".join(e.content for e in self.entries if isinstance(e, AssistantEntry))
