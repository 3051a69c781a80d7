"""Starts and stops the Node bridge (`bridge/server.mjs`) as a child process."""

import asyncio
import contextlib
import json
import logging
import os
import shutil
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from transports.xmtp_bridge import BridgeError

log = logging.getLogger(__name__)

BRIDGE_SCRIPT = Path(__file__).resolve().parent.parent / "bridge" / "server.mjs"
READY_TIMEOUT_S = 60.0
STOP_TIMEOUT_S = 2.0


def default_bridge_command() -> List[str]:
    node = shutil.which("node")
    if not node:
        raise BridgeError("node is not installed; set XMTP_BRIDGE_URL or install Node.js >= 20")
    if not BRIDGE_SCRIPT.exists():
        raise BridgeError(f"bridge script not found at {BRIDGE_SCRIPT}")
    return [node, str(BRIDGE_SCRIPT)]


def _tail_append(lines: List[str], line: str, *, limit: int = 40) -> None:
    lines.append(line)
    if len(lines) > limit:
        del lines[: len(lines) - limit]


class BridgeProcess:
    """Owns one bridge child process.

    ``start()`` waits for the JSON ready line on stdout (``{"ready": true,
    "port": ...}``) and returns the bridge base URL.
    """

    def __init__(
        self,
        command: Sequence[str],
        *,
        env: Optional[Dict[str, str]] = None,
        ready_timeout: float = READY_TIMEOUT_S,
    ):
        self.command = list(command)
        self.env = env
        self.ready_timeout = ready_timeout
        self.base_url: Optional[str] = None
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._drain_tasks: List[asyncio.Task] = []
        self._stderr_tail: List[str] = []

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    async def start(self) -> str:
        if self._proc is not None:
            raise BridgeError("bridge process already started")
        env = dict(os.environ)
        if self.env:
            env.update(self.env)
        self._proc = await asyncio.create_subprocess_exec(
            *self.command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )
        self._drain_tasks.append(asyncio.create_task(self._drain_stderr()))
        try:
            ready = await asyncio.wait_for(self._wait_ready(), self.ready_timeout)
        except asyncio.TimeoutError:
            await self.close()
            raise BridgeError(f"bridge did not become ready within {self.ready_timeout:g}s")
        except BridgeError:
            await self.close()
            raise
        host = ready.get("host") or "127.0.0.1"
        self.base_url = f"http://{host}:{int(ready['port'])}"
        self._drain_tasks.append(asyncio.create_task(self._drain_stdout()))
        log.info("XMTP bridge listening on %s (pid %s)", self.base_url, self._proc.pid)
        return self.base_url

    async def _wait_ready(self) -> dict:
        assert self._proc is not None and self._proc.stdout is not None
        while True:
            chunk = await self._proc.stdout.readline()
            if not chunk:
                rc = await self._proc.wait()
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(asyncio.shield(self._drain_tasks[0]), 1.0)
                detail = "\n".join(self._stderr_tail[-6:]).strip() or f"exit={rc}"
                raise BridgeError(f"bridge exited before it was ready: {detail}")
            line = chunk.decode("utf-8", errors="replace").strip()
            try:
                payload = json.loads(line)
            except ValueError:
                log.debug("bridge: %s", line)
                continue
            if isinstance(payload, dict) and payload.get("ready") and payload.get("port"):
                return payload

    async def _drain_stdout(self) -> None:
        if self._proc is None or self._proc.stdout is None:
            return
        while True:
            chunk = await self._proc.stdout.readline()
            if not chunk:
                break
            line = chunk.decode("utf-8", errors="replace").strip()
            if line:
                log.debug("bridge: %s", line)

    async def _drain_stderr(self) -> None:
        if self._proc is None or self._proc.stderr is None:
            return
        while True:
            chunk = await self._proc.stderr.readline()
            if not chunk:
                break
            line = chunk.decode("utf-8", errors="replace").strip()
            if line:
                _tail_append(self._stderr_tail, line)
                log.warning("bridge: %s", line)

    async def close(self) -> None:
        if self._proc is None:
            return
        proc = self._proc
        self._proc = None
        if proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                proc.terminate()
            try:
                await asyncio.wait_for(proc.wait(), timeout=STOP_TIMEOUT_S)
            except asyncio.TimeoutError:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()
        for task in self._drain_tasks:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._drain_tasks = []
