"""Single-call interface to a subprocess-hosted tool server."""

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from prbot.core.config import (
    GITHUB_TOKEN,
    MCP_CALL_STYLE,
    MCP_CALL_TIMEOUT_SEC,
    MCP_MAX_LINE_BYTES,
    MCP_SERVER_COMMAND,
    MCP_STARTUP_GRACE_SEC,
    MCP_STOP_TIMEOUT_SEC,
    MCP_TOKEN_ENV,
)
from prbot.mcp.correlator import RequestCorrelator
from prbot.mcp.errors import (
    CallTimeoutError,
    ProtocolError,
    SessionClosedError,
    SpawnError,
    ToolInvocationError,
    TransportError,
)
from prbot.mcp.framing import LineFramer
from prbot.mcp.supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)

CALL_STYLES = ("direct", "tools/call")
MCP_PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "prbot", "version": "0.1.0"}


class SessionState(str, Enum):
    NOT_STARTED = "not_started"
    STARTING = "starting"
    READY = "ready"
    STOPPING = "stopping"
    STOPPED = "stopped"


def decode_tool_result(result: Any) -> Any:
    """Unwrap a tool result, decoding a JSON payload nested as text.

    Servers sometimes return structured data stringified inside a text
    content block; one level of ``json.loads`` is attempted and the raw
    text is returned when it fails.
    """
    text: Optional[str] = None
    if isinstance(result, dict) and isinstance(result.get("content"), list):
        parts = [
            item.get("text", "")
            for item in result["content"]
            if isinstance(item, dict) and item.get("type") == "text"
        ]
        if not parts:
            return result
        text = "\n".join(parts)
    elif isinstance(result, str):
        text = result
    else:
        return result

    try:
        return json.loads(text)
    except ValueError:
        return text


class ToolClient:
    """Invoke named tools on a lazily started tool-server session.

    Use as ``async with ToolClient() as client`` so the process is torn
    down on every exit path. Once stopped, a client cannot be restarted.
    """

    def __init__(
        self,
        command: Optional[List[str]] = None,
        env: Optional[Dict[str, str]] = None,
        call_timeout: float = MCP_CALL_TIMEOUT_SEC,
        startup_grace: float = MCP_STARTUP_GRACE_SEC,
        call_style: str = MCP_CALL_STYLE,
        max_line_bytes: int = MCP_MAX_LINE_BYTES,
        stop_timeout: float = MCP_STOP_TIMEOUT_SEC,
    ) -> None:
        if call_style not in CALL_STYLES:
            raise ValueError(f"call_style must be one of: {', '.join(CALL_STYLES)}")
        self.command = list(command or MCP_SERVER_COMMAND)
        self.env = dict(env or {})
        self.call_timeout = call_timeout
        self.startup_grace = startup_grace
        self.call_style = call_style
        self.max_line_bytes = max_line_bytes
        self.stop_timeout = stop_timeout
        self.state = SessionState.NOT_STARTED
        self.server_info: Optional[Dict[str, Any]] = None
        self._supervisor: Optional[ProcessSupervisor] = None
        self._correlator: Optional[RequestCorrelator] = None
        self._start_lock = asyncio.Lock()
        self._shutdown_done = False

    @classmethod
    def for_github(cls, token: str = GITHUB_TOKEN, **kwargs: Any) -> "ToolClient":
        env = dict(kwargs.pop("env", None) or {})
        if token:
            env[MCP_TOKEN_ENV] = token
        return cls(env=env, **kwargs)

    @property
    def pending_calls(self) -> int:
        return len(self._correlator) if self._correlator else 0

    async def __aenter__(self) -> "ToolClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    async def start(self) -> None:
        async with self._start_lock:
            if self.state == SessionState.READY:
                return
            if self.state != SessionState.NOT_STARTED:
                raise SessionClosedError(f"session is {self.state.value}")

            self.state = SessionState.STARTING
            framer = LineFramer(max_line_bytes=self.max_line_bytes)
            self._supervisor = ProcessSupervisor(
                self.command,
                env=self.env,
                framer=framer,
                on_exit=self._on_process_exit,
                stop_timeout=self.stop_timeout,
            )
            self._correlator = RequestCorrelator(
                self._supervisor.write, default_timeout=self.call_timeout
            )
            framer.subscribe(self._correlator.handle_line)

            try:
                await self._supervisor.start()
                if self.startup_grace > 0:
                    await asyncio.sleep(self.startup_grace)
                if self.state != SessionState.STARTING:
                    raise SpawnError(
                        self.command,
                        TransportError(
                            f"exited during startup (exit {self._supervisor.returncode})"
                        ),
                    )
                if self.call_style == "tools/call":
                    await self._handshake()
            except BaseException:
                await self._abort_start()
                raise

            self.state = SessionState.READY
            logger.info(f"tool session ready ({self.call_style})")

    async def _abort_start(self) -> None:
        self.state = SessionState.STOPPED
        self._shutdown_done = True
        self._correlator.reject_all(SessionClosedError("session failed to start"))
        await self._supervisor.stop()

    async def _handshake(self) -> None:
        try:
            self.server_info = await self._correlator.call(
                "initialize",
                {
                    "protocolVersion": MCP_PROTOCOL_VERSION,
                    "capabilities": {},
                    "clientInfo": CLIENT_INFO,
                },
            )
            await self._correlator.notify("notifications/initialized")
        except (CallTimeoutError, ProtocolError, TransportError) as exc:
            logger.error(f"tool server handshake failed: {exc}")
            raise ToolInvocationError("initialize", {}, exc) from exc

    async def invoke(
        self,
        name: str,
        arguments: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        if self.state in (SessionState.STOPPING, SessionState.STOPPED):
            raise SessionClosedError(f"cannot invoke {name}: session is {self.state.value}")
        await self.start()

        arguments = dict(arguments or {})
        if self.call_style == "tools/call":
            method, params = "tools/call", {"name": name, "arguments": arguments}
        else:
            method, params = name, arguments

        logger.info(f"invoking tool {name}")
        try:
            result = await self._correlator.call(method, params, timeout=timeout)
        except (CallTimeoutError, ProtocolError, TransportError, SessionClosedError) as exc:
            logger.warning(f"tool {name} failed: {exc}")
            raise ToolInvocationError(name, arguments, exc) from exc

        if isinstance(result, dict) and result.get("isError"):
            cause = ProtocolError({"message": str(decode_tool_result(result))})
            raise ToolInvocationError(name, arguments, cause)
        return decode_tool_result(result)

    async def shutdown(self) -> None:
        if self._shutdown_done:
            return
        self._shutdown_done = True
        self.state = SessionState.STOPPING
        if self._correlator is not None:
            rejected = self._correlator.reject_all(SessionClosedError("session shut down"))
            if rejected:
                logger.warning(f"rejected {rejected} pending call(s) on shutdown")
        if self._supervisor is not None:
            await self._supervisor.stop()
        self.state = SessionState.STOPPED

    def _on_process_exit(self, returncode: Optional[int], error: Optional[BaseException]) -> None:
        if self.state in (SessionState.STOPPING, SessionState.STOPPED):
            return
        self.state = SessionState.STOPPED
        cause = error if isinstance(error, TransportError) else TransportError(
            f"tool server exited (exit {returncode})"
        )
        if self._correlator is not None:
            rejected = self._correlator.reject_all(cause)
            if rejected:
                logger.error(f"tool server went away with {rejected} call(s) pending")
