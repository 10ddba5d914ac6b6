"""Model backend access: client, retrying transport, stream reconstruction."""

from tony.llm.cancellation import CancellationSignal
from tony.llm.messages import AssistantMessage, ToolCall
from tony.llm.stream import StreamAccumulator, StreamResult
from tony.llm.transport import RetryingTransport

__all__ = [
    "AssistantMessage",
    "CancellationSignal",
    "RetryingTransport",
    "StreamAccumulator",
    "StreamResult",
    "ToolCall",
]
