"""
The narrow interface the turn loop needs from a language model.
"""
from collections.abc import AsyncIterator, Sequence
from typing import Any, Protocol, runtime_checkable

from ..models.conversation import StreamPart
from ..models.mcp import BridgedTool


@runtime_checkable
class ModelStreamer(Protocol):
    """Streams one model round.

    Each call to ``stream`` is one round: text deltas and tool calls as
    they are produced, then a finish part. Errors may be raised from the
    iterator or yielded as an ``ErrorPart``. The iterator should support
    ``aclose()`` so an aborted turn can stop the underlying request.
    """

    def stream(
        self,
        messages: Sequence[dict[str, Any]],
        tools: Sequence[BridgedTool],
        *,
        system: str | None = None,
    ) -> AsyncIterator[StreamPart]:
        ...


class ModelError(Exception):
    """Raised when the model reports an error in its stream."""
