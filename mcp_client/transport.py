"""
Transport layer for MCP tool communication.

Currently implements:
  - StdioTransport: JSON-RPC over stdin/stdout pipes of a subprocess

A transport only moves framed lines. It knows nothing about request ids
or pending calls; ProcessConnection does the correlation on top.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from abc import ABC, abstractmethod
from typing import Callable, Optional

from mcp_client.config import ServerDescriptor
from mcp_client.errors import DisconnectedError, SpawnError
from mcp_client.protocol import LineBuffer

logger = logging.getLogger(__name__)

LineHandler = Callable[[bytes], None]
ExitHandler = Callable[[Optional[int]], None]

READ_CHUNK_SIZE = 64 * 1024


class Transport(ABC):
    """Abstract line transport for MCP communication."""

    @abstractmethod
    async def start(self, on_line: LineHandler, on_exit: ExitHandler) -> None:
        """
        Start the transport (e.g., launch subprocess).

        ``on_line`` receives every complete inbound line; ``on_exit`` is
        called once when the peer goes away, with its exit code if known.
        """
        ...

    @abstractmethod
    async def send(self, data: bytes) -> None:
        """Write one framed line. Concurrent sends never interleave."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the transport (e.g., terminate subprocess)."""
        ...

    @abstractmethod
    def is_alive(self) -> bool:
        """Check if the transport is active."""
        ...


class StdioTransport(Transport):
    """
    JSON-RPC over stdin/stdout pipes to a subprocess.

    This is MCP's native local transport. The tool server runs as
    a child process. We write JSON-RPC requests to its stdin and
    read responses from its stdout. One line = one message.
    Anything on stderr is logged as diagnostics and never parsed.
    """

    def __init__(self, descriptor: ServerDescriptor, shutdown_grace: float = 5.0):
        self.descriptor = descriptor
        self.shutdown_grace = shutdown_grace
        self._process: asyncio.subprocess.Process | None = None
        self._write_lock = asyncio.Lock()
        self._stdout_task: asyncio.Task | None = None
        self._stderr_task: asyncio.Task | None = None
        self._on_exit: ExitHandler | None = None
        self._exit_reported = False

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process else None

    async def start(self, on_line: LineHandler, on_exit: ExitHandler) -> None:
        """Launch the tool server subprocess and start its readers."""
        if self.is_alive():
            logger.warning(f"Transport for {self.name} already running, stopping first")
            await self.stop()

        env = {**os.environ, **self.descriptor.env}
        cwd = self.descriptor.cwd or None
        logger.info(f"Starting stdio transport: {' '.join(self.descriptor.command_line)}")

        try:
            self._process = await asyncio.create_subprocess_exec(
                self.descriptor.command,
                *self.descriptor.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                cwd=cwd,
            )
        except (OSError, ValueError) as e:
            raise SpawnError(self.name, str(e)) from e

        self._on_exit = on_exit
        self._exit_reported = False
        self._stdout_task = asyncio.create_task(
            self._read_stdout(self._process, on_line), name=f"{self.name}-stdout"
        )
        self._stderr_task = asyncio.create_task(
            self._read_stderr(self._process), name=f"{self.name}-stderr"
        )
        logger.debug(f"{self.name} started with pid {self._process.pid}")

    async def send(self, data: bytes) -> None:
        """Write one line to the subprocess stdin under the write lock."""
        process = self._process
        if process is None or process.stdin is None or process.returncode is not None:
            raise DisconnectedError(self.name, "transport not running")

        async with self._write_lock:
            try:
                process.stdin.write(data)
                await process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                raise DisconnectedError(self.name, f"write failed: {e}") from e

    async def stop(self) -> None:
        """Terminate the tool server subprocess, killing it after the grace period."""
        process = self._process
        if process is None:
            return

        # Suppress the exit callback: this shutdown was requested.
        self._exit_reported = True

        if process.stdin is not None and not process.stdin.is_closing():
            with contextlib.suppress(Exception):
                process.stdin.close()

        if process.returncode is None:
            try:
                process.terminate()
                await asyncio.wait_for(process.wait(), timeout=self.shutdown_grace)
            except asyncio.TimeoutError:
                logger.warning(
                    f"{self.name} did not exit within {self.shutdown_grace:g}s, killing"
                )
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()
            except ProcessLookupError:
                pass

        for task in (self._stdout_task, self._stderr_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        self._stdout_task = None
        self._stderr_task = None
        self._process = None
        logger.info(f"Stdio transport for {self.name} stopped (exit code {process.returncode})")

    def is_alive(self) -> bool:
        """Check if the subprocess is running."""
        return self._process is not None and self._process.returncode is None

    async def _read_stdout(self, process: asyncio.subprocess.Process, on_line: LineHandler) -> None:
        buffer = LineBuffer()
        assert process.stdout is not None
        try:
            while True:
                chunk = await process.stdout.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                for line in buffer.feed(chunk):
                    on_line(line)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{self.name} stdout reader failed: {e}")

        if buffer.pending.strip():
            logger.warning(f"{self.name} closed stdout with a partial line: {buffer.pending[:200]!r}")

        returncode = await process.wait()
        self._report_exit(returncode)

    async def _read_stderr(self, process: asyncio.subprocess.Process) -> None:
        assert process.stderr is not None
        try:
            async for raw in process.stderr:
                message = raw.decode("utf-8", errors="replace").rstrip()
                if message:
                    logger.info(f"[{self.name}:stderr] {message}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug(f"{self.name} stderr reader stopped: {e}")

    def _report_exit(self, returncode: int | None) -> None:
        if self._exit_reported:
            return
        self._exit_reported = True
        logger.warning(f"{self.name} process exited unexpectedly (code={returncode})")
        if self._on_exit is not None:
            self._on_exit(returncode)
