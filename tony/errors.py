"""Exception types shared across the engine."""


class TonyError(Exception):
    """Base class for engine errors."""


class MissingApiKeyError(TonyError):
    """No API key configured for the model backend."""


class RequestAborted(TonyError):
    """Request aborted because the run-wide cancellation signal tripped. Never retried."""


class StreamDefectError(TonyError):
    """Response stream ended prematurely while it was being consumed."""


class InstructionsError(TonyError):
    """Task file missing, unreadable or invalid."""


class TaskNotFoundError(TonyError):
    """Requested task id is not declared in the task file."""


class McpError(TonyError):
    """Remote tool provider failure."""


class McpTimeoutError(McpError):
    """Remote tool provider operation exceeded its time budget."""


class McpUnsupportedTransportError(McpError):
    """Provider config names a transport the engine cannot drive."""
