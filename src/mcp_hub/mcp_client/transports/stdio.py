"""
MCP transport over a child process's stdin/stdout, one JSON message per line.
"""
import asyncio
import codecs
import collections
import json
import os
import shlex
import signal
from collections.abc import Mapping, Sequence
from typing import Any

import structlog

from ..exceptions import MCPConnectionError
from .base import Transport

logger = structlog.get_logger(__name__)

_READ_CHUNK_SIZE = 64 * 1024
_STDERR_TAIL_LINES = 20


def build_command_line(command: str, args: Sequence[str] = ()) -> str:
    """Joins a command and its arguments into one ``sh -c`` string.

    The command is used verbatim (it may itself be a shell snippet such as
    ``npx -y``); every argument is quoted.
    """
    return " ".join([command, *(shlex.quote(arg) for arg in args)])


class LineFramer:
    """Turns an arbitrarily chunked byte stream into newline-delimited JSON objects.

    Bytes are decoded incrementally so multi-byte characters may straddle
    chunk boundaries. The trailing fragment after the last newline stays
    buffered until more data arrives. Blank lines are skipped; lines that are
    not a JSON object are logged and dropped.
    """

    def __init__(self, name: str = ""):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.logger = logger.bind(framer=name)

    def feed(self, chunk: bytes | str) -> list[dict[str, Any]]:
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split("\n")

        messages: list[dict[str, Any]] = []
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                message = json.loads(line)
            except json.JSONDecodeError as e:
                self.logger.warning("Dropping malformed JSON line.", error=str(e), line=line[:200])
                continue
            if not isinstance(message, dict):
                self.logger.warning("Dropping non-object JSON line.", line=line[:200])
                continue
            messages.append(message)
        return messages

    @property
    def buffered(self) -> str:
        return self._buffer

    def clear(self) -> None:
        self._buffer = ""
        self._decoder.reset()


class StdioTransport(Transport):
    """Runs the server as ``sh -c "<command> <args>"`` in its own process group."""

    kind = "stdio"

    def __init__(
        self,
        name: str,
        command: str,
        args: Sequence[str] = (),
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
        terminate_timeout_seconds: float = 5.0,
    ):
        super().__init__(name)
        self.command = command
        self.args = list(args)
        self.env = dict(env or {})
        self.cwd = cwd
        self.terminate_timeout_seconds = terminate_timeout_seconds
        self.command_line = build_command_line(command, self.args)
        self._process: asyncio.subprocess.Process | None = None
        self._framer = LineFramer(name)
        self._stderr_tail: collections.deque[str] = collections.deque(maxlen=_STDERR_TAIL_LINES)
        self._stdout_task: asyncio.Task | None = None
        self._stderr_task: asyncio.Task | None = None
        self._closing = False

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    async def start(self) -> None:
        if self._started:
            return
        self.logger.info("Spawning stdio server.", command_line=self.command_line, cwd=self.cwd)
        try:
            self._process = await asyncio.create_subprocess_exec(
                "sh", "-c", self.command_line,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
                env={**os.environ, **self.env},
                start_new_session=True,
            )
        except OSError as e:
            self.logger.error("Failed to spawn stdio server.", error=str(e))
            raise MCPConnectionError(f"Failed to spawn '{self.command_line}': {e}") from e

        self._started = True
        self._stdout_task = asyncio.create_task(self._read_stdout(), name=f"mcp-stdio-out-{self.name}")
        self._stderr_task = asyncio.create_task(self._read_stderr(), name=f"mcp-stdio-err-{self.name}")
        self.logger.debug("Stdio server spawned.", pid=self._process.pid)

    async def send(self, message: dict[str, Any]) -> None:
        if self._process is None or self._process.stdin is None or self._closed:
            raise MCPConnectionError(f"Connection closed: stdio server '{self.name}' is not running")
        data = (json.dumps(message) + "\n").encode("utf-8")
        try:
            self._process.stdin.write(data)
            await self._process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise MCPConnectionError(f"Connection closed while writing to stdio server '{self.name}': {e}") from e

    async def close(self) -> None:
        if self._closed and self._process is None:
            return
        self._closing = True
        process = self._process
        if process is not None and process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()
        if process is not None and process.returncode is None:
            self._kill(process)
            try:
                await asyncio.wait_for(process.wait(), timeout=self.terminate_timeout_seconds)
            except asyncio.TimeoutError:
                self.logger.warning("Stdio server did not exit after kill.", pid=process.pid)

        for task in (self._stdout_task, self._stderr_task):
            if task is not None and not task.done():
                task.cancel()
        await asyncio.gather(*(t for t in (self._stdout_task, self._stderr_task) if t is not None), return_exceptions=True)
        self._stdout_task = self._stderr_task = None
        self._process = None
        self._framer.clear()
        self._signal_close("Transport closed")

    def _kill(self, process: asyncio.subprocess.Process) -> None:
        try:
            os.killpg(os.getpgid(process.pid), signal.SIGKILL)
        except ProcessLookupError:
            pass
        except OSError as e:
            self.logger.debug("Process group kill failed, killing process.", error=str(e))
            try:
                process.kill()
            except ProcessLookupError:
                pass

    async def _read_stdout(self) -> None:
        process = self._process
        if process is None or process.stdout is None:
            return
        stdout = process.stdout
        while True:
            chunk = await stdout.read(_READ_CHUNK_SIZE)
            if not chunk:
                break
            for message in self._framer.feed(chunk):
                self._dispatch(message)

        returncode = await process.wait()
        if self._closing:
            return
        # Let stderr drain so the exit reason carries the server's last words.
        if self._stderr_task is not None:
            try:
                await asyncio.wait_for(asyncio.shield(self._stderr_task), timeout=0.5)
            except asyncio.TimeoutError:
                pass
        reason = f"Process exited with code {returncode}"
        if self._stderr_tail:
            reason = f"{reason}: {' | '.join(self._stderr_tail)}"
        self.logger.warning("Stdio server exited.", returncode=returncode)
        self._signal_close(reason)

    async def _read_stderr(self) -> None:
        process = self._process
        if process is None or process.stderr is None:
            return
        async for raw_line in process.stderr:
            line = raw_line.decode("utf-8", errors="replace").rstrip()
            if line:
                self._stderr_tail.append(line)
                self.logger.info("Server stderr.", line=line)
