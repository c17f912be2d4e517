"""Per-session table of outstanding calls, matched to responses by id."""

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from prbot.core.config import MCP_CALL_TIMEOUT_SEC
from prbot.mcp.errors import (
    CallTimeoutError,
    DecodeError,
    ProtocolError,
    StaleResponseWarning,
    TransportError,
)
from prbot.schemas.rpc import CallId, JsonRpcRequest, parse_response

logger = logging.getLogger(__name__)

LineWriter = Callable[[bytes], Awaitable[None]]


@dataclass
class PendingCall:
    id: CallId
    method: str
    params: Dict[str, Any]
    future: "asyncio.Future[Any]"
    timeout: float
    issued_at: float = field(default_factory=time.monotonic)
    timer: Optional[asyncio.TimerHandle] = None

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.issued_at


class RequestCorrelator:
    """Issues calls and settles each one exactly once.

    An entry leaves the table on its response, its timeout, or
    ``reject_all``; whichever comes first wins and the others find nothing
    to settle. Responses may arrive in any order.
    """

    def __init__(
        self,
        writer: LineWriter,
        default_timeout: float = MCP_CALL_TIMEOUT_SEC,
        id_factory: Optional[Callable[[], CallId]] = None,
    ) -> None:
        self._writer = writer
        self.default_timeout = default_timeout
        counter = itertools.count(1)
        self._next_id = id_factory or (lambda: next(counter))
        self._pending: Dict[CallId, PendingCall] = {}

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def pending_ids(self) -> List[CallId]:
        return list(self._pending)

    async def issue(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> PendingCall:
        loop = asyncio.get_running_loop()
        call_id = self._next_id()
        if call_id in self._pending:
            raise ValueError(f"call id {call_id!r} is already outstanding")
        budget = self.default_timeout if timeout is None else timeout
        request = JsonRpcRequest(id=call_id, method=method, params=dict(params or {}))
        pending = PendingCall(
            id=call_id,
            method=method,
            params=request.params,
            future=loop.create_future(),
            timeout=budget,
        )
        self._pending[call_id] = pending
        pending.timer = loop.call_later(budget, self._expire, call_id)
        logger.debug(f"-> call {call_id} {method}")
        try:
            await self._writer(request.to_line())
        except Exception as exc:
            error = exc if isinstance(exc, TransportError) else TransportError(str(exc))
            self._settle(call_id, error=error)
        return pending

    async def call(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        pending = await self.issue(method, params, timeout=timeout)
        return await pending.future

    async def notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        request = JsonRpcRequest(method=method, params=dict(params or {}))
        await self._writer(request.to_line())

    def handle_line(self, line: str) -> bool:
        """Settle the call ``line`` answers. Returns False when nothing was settled."""
        try:
            response = parse_response(line)
        except DecodeError as exc:
            logger.debug(f"skipping non-response line ({exc}): {line[:200]}")
            return False

        if response.id not in self._pending:
            logger.warning(
                f"discarding stale response for id {response.id!r}",
                extra={"category": StaleResponseWarning.__name__},
            )
            return False

        if response.is_error:
            return self._settle(
                response.id,
                error=ProtocolError(response.error_payload(), call_id=response.id),
            )
        return self._settle(response.id, result=response.result)

    def reject_all(self, exc: BaseException) -> int:
        count = 0
        for call_id in list(self._pending):
            if self._settle(call_id, error=exc):
                count += 1
        return count

    def _expire(self, call_id: CallId) -> None:
        pending = self._pending.get(call_id)
        if pending is None:
            return
        logger.warning(f"call {call_id} ({pending.method}) timed out after {pending.timeout:g}s")
        self._settle(call_id, error=CallTimeoutError(pending.method, call_id, pending.timeout))

    def _settle(
        self,
        call_id: CallId,
        result: Any = None,
        error: Optional[BaseException] = None,
    ) -> bool:
        pending = self._pending.pop(call_id, None)
        if pending is None:
            return False
        if pending.timer is not None:
            pending.timer.cancel()
        if pending.future.done():
            # caller stopped waiting
            return True
        if error is not None:
            pending.future.set_exception(error)
            logger.debug(f"<- call {call_id} failed after {pending.elapsed:.2f}s: {error}")
        else:
            pending.future.set_result(result)
            logger.debug(f"<- call {call_id} ok after {pending.elapsed:.2f}s")
        return True
