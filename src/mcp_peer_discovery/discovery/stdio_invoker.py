"""Drive a newline-delimited JSON conversation with a spawned MCP peer.

The peer is started through the shell with all three standard streams piped.
It signals readiness with ``{"type": "initialized"}``; we then write exactly
one ``{"method", "params"}`` request and wait for any message carrying a
``content`` list, which is the response. Non-JSON lines are ignored.

Two phase timers govern the conversation (handshake, then response) and a
hard ceiling bounds the whole exchange. Whatever the outcome, the child and
any processes it started are killed before :meth:`StdioInvoker.request`
returns.
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import json
import os
import shlex
import signal
from dataclasses import dataclass
from enum import Enum
from typing import Any

import psutil
import structlog

from ..errors import PeerProcessError, ProtocolTimeout, TransportError
from ..models.schemas import ServiceDescriptor
from .sources import INTERPRETER_RE

logger = structlog.get_logger(__name__)

STDIO_PREFIX = "stdio://"
NPM_PREFIX = "npm:"

_READ_CHUNK = 64 * 1024
_HARD_CEILING_GRACE = 5.0
_STDERR_DRAIN_TIMEOUT = 1.0


@dataclass
class StdioEndpoint:
    """Launch command and working directory for a stdio peer."""

    command: str
    cwd: str | None = None

    @classmethod
    def from_descriptor(cls, service: ServiceDescriptor) -> "StdioEndpoint":
        endpoint = service.endpoint.strip()
        if endpoint.startswith(STDIO_PREFIX):
            target = endpoint[len(STDIO_PREFIX):].strip()
        else:
            target = endpoint or service.name

        if target.startswith(NPM_PREFIX):
            return cls(command=f"npx {target[len(NPM_PREFIX):]}")
        return cls(command=target, cwd=cls._working_directory(target))

    @staticmethod
    def _working_directory(command: str) -> str | None:
        """Directory of the launched program, if it exists.

        Behind an interpreter (``node``, ``python3`` ...) the program is the
        first non-flag argument; otherwise it is the executable itself.
        """
        try:
            tokens = shlex.split(command)
        except ValueError:
            tokens = command.split()
        if not tokens:
            return None

        program = tokens[0]
        if INTERPRETER_RE.match(os.path.basename(program)):
            program = ""
            for arg in tokens[1:]:
                if arg == "-m":
                    return None
                if not arg.startswith("-"):
                    program = arg
                    break

        if os.sep not in program:
            return None
        directory = os.path.dirname(os.path.abspath(program))
        return directory if os.path.isdir(directory) else None


class _Phase(Enum):
    SPAWNED = "spawned"
    AWAITING_HANDSHAKE = "awaiting_handshake"
    REQUEST_SENT = "request_sent"
    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"
    CRASHED = "crashed"


def _is_handshake(message: Any) -> bool:
    return isinstance(message, dict) and message.get("type") == "initialized"


def _is_response(message: Any) -> bool:
    return isinstance(message, dict) and isinstance(message.get("content"), list)


class _Conversation:
    """State for a single request against one child process."""

    def __init__(
        self,
        proc: asyncio.subprocess.Process,
        request: dict[str, Any],
        handshake_timeout: float,
        response_timeout: float,
    ):
        self.proc = proc
        self.request = request
        self.handshake_timeout = handshake_timeout
        self.response_timeout = response_timeout
        self.phase = _Phase.SPAWNED
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._stdout: list[str] = []
        self._stderr: list[str] = []
        self._stderr_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self) -> dict[str, Any]:
        loop = asyncio.get_running_loop()
        self._stderr_task = asyncio.ensure_future(self._drain_stderr())
        self.phase = _Phase.AWAITING_HANDSHAKE
        deadline = loop.time() + self.handshake_timeout

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise self._timed_out()
            try:
                chunk = await asyncio.wait_for(
                    self.proc.stdout.read(_READ_CHUNK), timeout=remaining
                )
            except asyncio.TimeoutError:
                raise self._timed_out() from None
            if not chunk:
                break

            for message in self._feed(self._decoder.decode(chunk)):
                if _is_response(message):
                    self.phase = _Phase.RESOLVED
                    return message
                if _is_handshake(message) and self.phase is _Phase.AWAITING_HANDSHAKE:
                    await self._send_request()
                    deadline = loop.time() + self.response_timeout

        # stdout closed: the last line may lack a newline
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        message = _parse_line(tail)
        if _is_response(message):
            self.phase = _Phase.RESOLVED
            return message

        try:
            returncode = await asyncio.wait_for(
                self.proc.wait(), timeout=max(deadline - loop.time(), 0)
            )
        except asyncio.TimeoutError:
            raise self._timed_out() from None

        if returncode != 0:
            self.phase = _Phase.CRASHED
            raise PeerProcessError(returncode, await self._collected_stderr(), self.stdout)

        self.phase = _Phase.RESOLVED
        logger.info("Peer exited without a response", returncode=returncode)
        return {"content": []}

    # ------------------------------------------------------------------
    # Stream handling
    # ------------------------------------------------------------------

    def _feed(self, text: str) -> list[Any]:
        """Append *text* and return the parsed complete lines, skipping noise."""
        self._stdout.append(text)
        self._buffer += text
        *lines, self._buffer = self._buffer.split("\n")
        messages = []
        for line in lines:
            message = _parse_line(line)
            if message is not None:
                messages.append(message)
        return messages

    async def _send_request(self) -> None:
        self.phase = _Phase.REQUEST_SENT
        payload = json.dumps(self.request) + "\n"
        logger.debug("Sending request to peer", method=self.request.get("method"))
        try:
            self.proc.stdin.write(payload.encode("utf-8"))
            await self.proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            # the exit is picked up by the read loop
            logger.warning("Peer closed stdin before request", error=str(e))

    async def _drain_stderr(self) -> None:
        while True:
            chunk = await self.proc.stderr.read(_READ_CHUNK)
            if not chunk:
                return
            self._stderr.append(chunk.decode("utf-8", errors="replace"))

    async def _collected_stderr(self) -> str:
        if self._stderr_task is not None and not self._stderr_task.done():
            await asyncio.wait({self._stderr_task}, timeout=_STDERR_DRAIN_TIMEOUT)
        return "".join(self._stderr)

    @property
    def stdout(self) -> str:
        return "".join(self._stdout)

    def _timed_out(self) -> ProtocolTimeout:
        if self.phase is _Phase.AWAITING_HANDSHAKE:
            phase, limit = "handshake", self.handshake_timeout
        else:
            phase, limit = "response", self.response_timeout
        self.phase = _Phase.TIMED_OUT
        return ProtocolTimeout(
            f"Timeout waiting for {phase} after {limit:g}s", phase=phase
        )

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def close(self) -> None:
        if self._stderr_task is not None and not self._stderr_task.done():
            self._stderr_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._stderr_task
        await terminate_process(self.proc)


def _parse_line(line: str) -> Any:
    line = line.strip()
    if not line:
        return None
    try:
        return json.loads(line)
    except ValueError:
        return None


async def terminate_process(proc: asyncio.subprocess.Process) -> None:
    """Kill *proc*, its process group and its descendants, then reap it.

    Runs even when the shell already exited: a backgrounded peer keeps the
    group alive after its parent is gone.
    """
    if proc.stdin is not None and not proc.stdin.is_closing():
        proc.stdin.close()

    if proc.returncode is None:
        try:
            children = psutil.Process(proc.pid).children(recursive=True)
        except psutil.Error:
            children = []
        for child in children:
            with contextlib.suppress(psutil.Error):
                child.kill()

    if hasattr(os, "killpg"):
        # the peer was started as leader of its own session
        with contextlib.suppress(ProcessLookupError, PermissionError):
            os.killpg(proc.pid, signal.SIGKILL)

    if proc.returncode is None:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
    await proc.wait()
    logger.debug("Peer process terminated", pid=proc.pid)


class StdioInvoker:
    """Spawns a peer per request and speaks the line protocol with it."""

    def __init__(
        self,
        handshake_timeout: float = 5.0,
        response_timeout: float = 5.0,
        hard_timeout: float | None = None,
    ):
        self.handshake_timeout = handshake_timeout
        self.response_timeout = response_timeout
        self.hard_timeout = hard_timeout

    async def list_tools(self, command: str, cwd: str | None = None) -> list[Any]:
        message = await self.request(command, "list_tools", {}, cwd=cwd)
        return list(message["content"])

    async def call_tool(
        self,
        command: str,
        tool_name: str,
        arguments: dict[str, Any],
        *,
        cwd: str | None = None,
        response_timeout: float | None = None,
    ) -> dict[str, Any]:
        return await self.request(
            command,
            "call_tool",
            {"name": tool_name, "arguments": arguments},
            cwd=cwd,
            response_timeout=response_timeout,
        )

    async def request(
        self,
        command: str,
        method: str,
        params: dict[str, Any],
        *,
        cwd: str | None = None,
        response_timeout: float | None = None,
    ) -> dict[str, Any]:
        """Run one request/response exchange and return the response message."""
        response_timeout = response_timeout or self.response_timeout
        hard_timeout = self.hard_timeout or (
            self.handshake_timeout + response_timeout + _HARD_CEILING_GRACE
        )

        logger.info("Spawning stdio peer", command=command, method=method, cwd=cwd)
        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                start_new_session=True,
            )
        except OSError as e:
            raise TransportError(f"Failed to spawn '{command}': {e}")

        conversation = _Conversation(
            proc,
            {"method": method, "params": params},
            self.handshake_timeout,
            response_timeout,
        )
        try:
            return await asyncio.wait_for(conversation.run(), timeout=hard_timeout)
        except asyncio.TimeoutError:
            raise ProtocolTimeout(
                f"Peer exceeded hard limit of {hard_timeout:g}s", phase="overall"
            ) from None
        finally:
            await conversation.close()
            logger.debug("Stdio exchange finished", phase=conversation.phase.value)
