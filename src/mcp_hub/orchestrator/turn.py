"""
Multi-round tool-calling turn loop.

A turn streams a model round, executes any tool calls it asked for, feeds
the results back and streams again, until the model finishes without tool
calls, the step budget is spent, the user aborts, or the model errors.
"""
import asyncio
import json
from collections.abc import Awaitable, Mapping, Sequence
from typing import Any

import structlog

from ..config import OrchestratorConfig
from ..manager.bridge import ToolBridge, ToolDefinition
from ..manager.tools import EnabledTools
from ..mcp_client.exceptions import MCPClientError
from ..models.conversation import (
    TERMINAL_STATES,
    AssistantEntry,
    ErrorPart,
    FinishPart,
    TextDelta,
    ToolCallPart,
    ToolCallRecord,
    ToolResultEntry,
    TurnResult,
    TurnState,
)
from ..models.mcp import BridgedTool
from ..utils.events import EventHook
from .model import ModelError, ModelStreamer

logger = structlog.get_logger(__name__)

TOOLS_UNSUPPORTED_MARKER = "does not support tools"
TOOLS_UNSUPPORTED_HINT = (
    "You can disable tools for this conversation in the MCP sidebar, "
    "or switch to a model that supports tools."
)
MAX_STEPS_REASON = "max-steps"


class _TurnAborted(Exception):
    pass


async def _next_part(stream: Any) -> Any:
    try:
        return await stream.__anext__()
    except StopAsyncIteration:
        return None


class ConversationTurn:
    """One user turn. Create through ``TurnOrchestrator.create_turn`` and ``await turn.run()``."""

    def __init__(
        self,
        model: ModelStreamer,
        bridge: ToolBridge | None,
        config: OrchestratorConfig,
        history: Sequence[Mapping[str, Any]],
        user_content: str,
        enabled_tools: EnabledTools | None = None,
    ):
        self.model = model
        self.bridge = bridge
        self.config = config
        self.enabled_tools = enabled_tools or {}
        self.messages: list[dict[str, Any]] = [dict(m) for m in history]
        self.messages.append({"role": "user", "content": user_content})
        self.entries: list[AssistantEntry | ToolResultEntry] = []
        self.state = TurnState.IDLE
        self.steps = 0
        self.on_update: EventHook[AssistantEntry | ToolResultEntry] = EventHook("turn-update")
        self.on_state_change: EventHook[TurnState] = EventHook("turn-state")
        self._abort_event = asyncio.Event()
        self._assistant: AssistantEntry | None = None
        self._round_text: list[str] = []
        self.logger = logger.bind(component="ConversationTurn")

    @property
    def is_done(self) -> bool:
        return self.state in TERMINAL_STATES

    def abort(self) -> None:
        """Stops the turn. Partial text is kept and the turn ends as aborted, never errored."""
        if self.is_done:
            return
        self.logger.info("Abort requested.", state=self.state.value)
        self._abort_event.set()

    async def run(self) -> TurnResult:
        if self.state is not TurnState.IDLE:
            raise RuntimeError("A turn can only be run once")
        try:
            tools = await self._race(self._resolve_tools())
            tool_set = self.bridge.build_tool_set(tools) if self.bridge and tools else {}
            finish_reason = await self._run_rounds(tools, tool_set)
        except _TurnAborted:
            return self._finish_aborted()
        except Exception as e:
            return self._finish_errored(e)
        return self._finish(finish_reason)

    async def _resolve_tools(self) -> list[BridgedTool]:
        if self.bridge is None or not self.enabled_tools:
            return []
        return await self.bridge.active_tools_for(self.enabled_tools)

    async def _run_rounds(self, tools: list[BridgedTool], tool_set: dict[str, ToolDefinition]) -> str:
        for step in range(1, self.config.max_tool_steps + 1):
            self.steps = step
            self._set_state(TurnState.GENERATING)
            text, calls, reason = await self._stream_round(tools)
            if not calls:
                if text:
                    self.messages.append({"role": "assistant", "content": text})
                return reason or "stop"

            self.messages.append({
                "role": "assistant",
                "content": text,
                "tool_calls": [{"id": c.call_id, "name": c.tool_name, "arguments": c.args} for c in calls],
            })
            # Text of later rounds goes into a new entry after this round's tool results.
            self._close_assistant_entry()
            self._set_state(TurnState.TOOLS_REQUESTED)
            self._set_state(TurnState.TOOLS_EXECUTING)
            for call in calls:
                await self._execute_tool_call(call, tool_set)

        self.logger.warning("Tool step budget exhausted.", max_tool_steps=self.config.max_tool_steps)
        return MAX_STEPS_REASON

    async def _stream_round(self, tools: list[BridgedTool]) -> tuple[str, list[ToolCallRecord], str | None]:
        self._round_text = []
        calls: list[ToolCallRecord] = []
        reason: str | None = None
        stream = self.model.stream(list(self.messages), tools, system=self.config.system_prompt)
        try:
            while True:
                part = await self._race(_next_part(stream))
                if part is None:
                    break
                if isinstance(part, TextDelta):
                    if part.text:
                        self._round_text.append(part.text)
                        self._append_text(part.text)
                elif isinstance(part, ToolCallPart):
                    calls.append(ToolCallRecord(call_id=part.call_id, tool_name=part.tool_name, args=part.args))
                elif isinstance(part, FinishPart):
                    reason = part.reason
                elif isinstance(part, ErrorPart):
                    if isinstance(part.error, Exception):
                        raise part.error
                    raise ModelError(str(part.error))
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
        text = "".join(self._round_text)
        self._round_text = []
        return text, calls, reason

    async def _execute_tool_call(self, call: ToolCallRecord, tool_set: dict[str, ToolDefinition]) -> None:
        log = self.logger.bind(tool_name=call.tool_name, call_id=call.call_id)
        definition = tool_set.get(call.tool_name)
        is_error = False
        if definition is None:
            log.warning("Model called a tool that is not available.")
            result: Any = f"Tool '{call.tool_name}' is not available"
            is_error = True
        else:
            try:
                result = await self._race(definition.execute(call.args))
            except _TurnAborted:
                raise
            except MCPClientError as e:
                log.warning("Tool call failed.", error=str(e), error_type=type(e).__name__)
                result, is_error = str(e), True
            except Exception as e:
                log.exception("Unexpected error from tool call.")
                result, is_error = str(e) or type(e).__name__, True

        entry = ToolResultEntry(tool_call_id=call.call_id, tool_name=call.tool_name, args=call.args, result=result, is_error=is_error)
        self.entries.append(entry)
        self.on_update.emit(entry)
        self.messages.append({
            "role": "tool",
            "tool_call_id": call.call_id,
            "name": call.tool_name,
            "content": result if isinstance(result, str) else json.dumps(result, default=str),
        })

    async def _race(self, awaitable: Awaitable[Any]) -> Any:
        """Awaits ``awaitable`` unless the turn is aborted first, in which case it is cancelled."""
        task = asyncio.ensure_future(awaitable)
        abort_wait = asyncio.ensure_future(self._abort_event.wait())
        try:
            await asyncio.wait({task, abort_wait}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            abort_wait.cancel()
            raise
        abort_wait.cancel()
        if task.done():
            return task.result()
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            self.logger.debug("Abandoned operation failed after abort.", error=str(e))
        raise _TurnAborted()

    def _append_text(self, text: str) -> None:
        if self._assistant is None:
            self._assistant = AssistantEntry()
            self.entries.append(self._assistant)
        self._assistant.content += text
        self.on_update.emit(self._assistant)

    def _close_assistant_entry(self) -> None:
        if self._assistant is None:
            return
        self._assistant.is_generating = False
        self.on_update.emit(self._assistant)
        self._assistant = None

    def _set_state(self, state: TurnState) -> None:
        if self.state is state:
            return
        self.state = state
        self.on_state_change.emit(state)

    def _result(self, error: str | None = None, finish_reason: str | None = None) -> TurnResult:
        return TurnResult(
            state=self.state,
            entries=list(self.entries),
            messages=list(self.messages),
            error=error,
            steps=self.steps,
            finish_reason=finish_reason,
        )

    def _finish(self, reason: str) -> TurnResult:
        if self._assistant is not None:
            self._assistant.is_generating = False
            self.on_update.emit(self._assistant)
        self._set_state(TurnState.FINISHED)
        self.logger.info("Turn finished.", steps=self.steps, finish_reason=reason, entries=len(self.entries))
        return self._result(finish_reason=reason)

    def _finish_aborted(self) -> TurnResult:
        partial = "".join(self._round_text)
        if partial:
            self.messages.append({"role": "assistant", "content": partial})
        if self._assistant is not None:
            self._assistant.is_generating = False
            self._assistant.stopped = True
            self.on_update.emit(self._assistant)
        self._set_state(TurnState.ABORTED)
        self.logger.info("Turn aborted.", steps=self.steps)
        return self._result(finish_reason="aborted")

    def _finish_errored(self, error: Exception) -> TurnResult:
        message = str(error) or "An error occurred"
        self.logger.error("Turn failed.", error=message, error_type=type(error).__name__)
        if TOOLS_UNSUPPORTED_MARKER in message:
            if self._assistant is None:
                self._assistant = AssistantEntry()
                self.entries.append(self._assistant)
            self._assistant.content = f"{message}\n\n{TOOLS_UNSUPPORTED_HINT}"
            self._assistant.is_error = True
            self._assistant.is_tool_error = True
            self._assistant.is_generating = False
            self.on_update.emit(self._assistant)
        elif self._assistant is not None:
            self.entries.remove(self._assistant)
            self._assistant = None
        self._set_state(TurnState.ERRORED)
        return self._result(error=message)


class TurnOrchestrator:
    """Creates turns bound to one model and one tool bridge."""

    def __init__(self, model: ModelStreamer, bridge: ToolBridge | None = None, config: OrchestratorConfig | None = None):
        self.model = model
        self.bridge = bridge
        self.config = config or OrchestratorConfig()

    def create_turn(
        self,
        history: Sequence[Mapping[str, Any]],
        user_content: str,
        enabled_tools: EnabledTools | None = None,
    ) -> ConversationTurn:
        return ConversationTurn(self.model, self.bridge, self.config, history, user_content, enabled_tools)

    async def run_turn(
        self,
        history: Sequence[Mapping[str, Any]],
        user_content: str,
        enabled_tools: EnabledTools | None = None,
    ) -> TurnResult:
        return await self.create_turn(history, user_content, enabled_tools).run()
