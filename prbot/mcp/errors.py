"""Error types raised by the tool-server client."""

from typing import Any, Dict, Optional


class ToolClientError(Exception):
    """Base class for tool-server client errors."""


class SpawnError(ToolClientError):
    """The tool-server process could not be started. Fatal for the session."""

    def __init__(self, command: list[str], cause: BaseException) -> None:
        self.command = list(command)
        self.cause = cause
        super().__init__(f"failed to spawn tool server {command[0] if command else '?'}: {cause}")


class TransportError(ToolClientError):
    """The pipes to the tool server failed or the process went away."""


class StreamTooLongError(TransportError):
    """Unterminated output exceeded the configured line limit."""

    def __init__(self, limit: int, buffered: int) -> None:
        self.limit = limit
        self.buffered = buffered
        super().__init__(
            f"unterminated line of {buffered} bytes exceeds limit of {limit} bytes"
        )


class SessionClosedError(ToolClientError):
    """The session is stopped and accepts no further calls."""


class CallTimeoutError(ToolClientError, TimeoutError):
    """No response arrived for a call within its budget."""

    def __init__(self, method: str, call_id: Any, timeout: float) -> None:
        self.method = method
        self.call_id = call_id
        self.timeout = timeout
        super().__init__(f"call {call_id} ({method}) timed out after {timeout:g}s")


class ProtocolError(ToolClientError):
    """The response envelope carried an explicit error."""

    def __init__(self, payload: Any, call_id: Any = None) -> None:
        self.payload = payload
        self.call_id = call_id
        if isinstance(payload, dict):
            self.code: Optional[int] = payload.get("code")
            self.message = str(payload.get("message") or "")
            self.data = payload.get("data")
        else:
            self.code = None
            self.message = str(payload)
            self.data = None
        label = f"error {self.code}" if self.code is not None else "error"
        super().__init__(f"tool server returned {label} for call {call_id}: {self.message}")


class DecodeError(ToolClientError):
    """A line could not be parsed as a response envelope.

    Never leaves the correlator; such lines are logged and skipped.
    """


class StaleResponseWarning(Warning):
    """A response arrived for an id with no pending call."""


class ToolInvocationError(ToolClientError):
    """A tool call failed. Carries enough context for a caller-side fallback."""

    def __init__(
        self,
        tool_name: str,
        arguments: Optional[Dict[str, Any]],
        cause: BaseException,
    ) -> None:
        self.tool_name = tool_name
        self.arguments = dict(arguments or {})
        self.cause = cause
        super().__init__(f"tool {tool_name} failed: {cause}")

    @property
    def timed_out(self) -> bool:
        return isinstance(self.cause, CallTimeoutError)

    @property
    def kind(self) -> str:
        if isinstance(self.cause, CallTimeoutError):
            return "timeout"
        if isinstance(self.cause, ProtocolError):
            return "protocol"
        if isinstance(self.cause, SessionClosedError):
            return "closed"
        return "transport"
