"""Lifecycle of the tool-server child process."""

import asyncio
import logging
import os
from typing import Callable, Dict, List, Optional

from prbot.core.config import MCP_STOP_TIMEOUT_SEC
from prbot.mcp.errors import SpawnError, TransportError
from prbot.mcp.framing import LineFramer, pump_stream

logger = logging.getLogger(__name__)


async def read_stream_lines(stream: asyncio.StreamReader, prefix: str) -> None:
    while True:
        try:
            line = await stream.readline()
        except ValueError:
            logger.warning(f"{prefix}<overlong diagnostic line dropped>")
            continue
        if not line:
            break
        text = line.decode(errors="replace").rstrip()
        if text:
            logger.warning(f"{prefix}{text}")


class ProcessSupervisor:
    """Owns one child process: spawn, pipe I/O, and guaranteed teardown.

    stdout is framed into lines for ``on_line``; stderr is only logged.
    ``on_exit`` fires once when stdout closes or its pump fails.
    """

    def __init__(
        self,
        command: List[str],
        env: Optional[Dict[str, str]] = None,
        on_line: Optional[Callable[[str], None]] = None,
        on_exit: Optional[Callable[[Optional[int], Optional[BaseException]], None]] = None,
        framer: Optional[LineFramer] = None,
        stop_timeout: float = MCP_STOP_TIMEOUT_SEC,
    ) -> None:
        if not command:
            raise ValueError("command must not be empty")
        self.command = list(command)
        self.env_overrides = dict(env or {})
        self.framer = framer or LineFramer()
        if on_line is not None:
            self.framer.subscribe(on_line)
        self._on_exit = on_exit
        self.stop_timeout = stop_timeout
        self.process: Optional[asyncio.subprocess.Process] = None
        self._stdout_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._write_lock = asyncio.Lock()
        self._exit_reported = False
        self._stopped = False

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode if self.process else None

    @property
    def running(self) -> bool:
        return (
            self.process is not None
            and self.process.returncode is None
            and not self._stopped
        )

    async def start(self) -> None:
        if self.process is not None:
            raise RuntimeError("process already started")
        env = os.environ.copy()
        env.update(self.env_overrides)
        if self.env_overrides:
            logger.info(f"tool server env overrides: {', '.join(sorted(self.env_overrides))}")
        try:
            self.process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as exc:
            logger.error(f"failed to spawn {self.command[0]}: {exc}")
            raise SpawnError(self.command, exc) from exc

        logger.info(f"tool server started pid={self.process.pid}: {self.command[0]}")
        self._stdout_task = asyncio.create_task(self._pump_stdout())
        self._stderr_task = asyncio.create_task(
            read_stream_lines(self.process.stderr, "tool server: ")
        )

    async def write(self, data: bytes) -> None:
        if not self.running or self.process.stdin is None:
            raise TransportError("tool server is not running")
        async with self._write_lock:
            try:
                self.process.stdin.write(data)
                await self.process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as exc:
                raise TransportError(f"tool server pipe closed: {exc}") from exc

    async def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        process = self.process
        if process is None:
            return

        if process.stdin and not process.stdin.is_closing():
            process.stdin.close()
        if process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(process.wait(), timeout=self.stop_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"tool server pid={process.pid} ignored terminate, killing")
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()

        tasks = [t for t in (self._stdout_task, self._stderr_task) if t is not None]
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"tool server pid={process.pid} stopped (exit {process.returncode})")

    async def _pump_stdout(self) -> None:
        error: Optional[BaseException] = None
        try:
            await pump_stream(self.process.stdout, self.framer)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error(f"tool server stdout failed: {exc}")
            error = exc
        self._report_exit(error)

    def _report_exit(self, error: Optional[BaseException]) -> None:
        if self._exit_reported:
            return
        self._exit_reported = True
        if not self._stopped:
            logger.warning(f"tool server stdout closed (exit {self.returncode})")
        if self._on_exit is not None:
            self._on_exit(self.returncode, error)
