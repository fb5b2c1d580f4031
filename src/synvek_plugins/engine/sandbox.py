# src/synvek_plugins/engine/sandbox.py
"""
Host-side sandbox: one guest interpreter per plugin instance.

This module implements the "Host" side of the Host/Guest split:
- Spawns the guest module in a child interpreter with a scratch working dir
  and an allowlisted environment (no host secrets)
- Writes length-prefixed frames to the guest's stdin
- Reads frames from the guest's stdout on a single reader task (FIFO)
- Relays guest stderr into the host log at DEBUG
- Manages subprocess lifecycle (graceful close, then kill)

The host never inspects guest memory. Everything it knows about a plugin
arrives as a frame.
"""

import os
import sys
import json
import base64
import shutil
import asyncio
import logging
import tempfile
from pathlib import Path
from typing import Callable, Dict, Optional, Protocol, Union

from synvek_plugins.config import SandboxConfig
from synvek_plugins.engine.restrictions import guest_limits_payload
from synvek_plugins.errors import FrameTooLarge, MalformedEnvelope, SandboxLoadFailure
from synvek_plugins.protocol import pack_frame, read_frame
from synvek_plugins.registry import ScriptContent, SiteContent

logger = logging.getLogger(__name__)
guest_logger = logging.getLogger("synvek_plugins.guest")

GUEST_MODULE = "synvek_plugins.engine.guest"

# Root that holds the synvek_plugins package, so `-m` works without an install.
_PACKAGE_ROOT = Path(__file__).resolve().parent.parent.parent

# Host variables a guest may see. Everything else (API keys, tokens) stays on the host.
INHERITED_ENV = ("PATH", "SYSTEMROOT", "LANG", "LC_ALL", "LD_LIBRARY_PATH")


def guest_environment(guest_vars: Dict[str, str]) -> Dict[str, str]:
    """Environment for a guest: the allowlisted host variables plus guest_vars."""
    env = {name: os.environ[name] for name in INHERITED_ENV if name in os.environ}
    python_path = [str(_PACKAGE_ROOT)]
    if os.environ.get("PYTHONPATH"):
        python_path.append(os.environ["PYTHONPATH"])
    env["PYTHONPATH"] = os.pathsep.join(python_path)
    env["PYTHONUNBUFFERED"] = "1"
    env.update(guest_vars)
    return env


FrameCallback = Callable[[bytes], None]
ExitCallback = Callable[[Optional[int], Optional[str]], None]


class Sandbox(Protocol):
    """Opaque isolation handle owned by exactly one plugin instance."""

    async def start(self) -> None: ...

    def post(self, body: bytes) -> bool: ...

    async def close(self) -> None: ...


SandboxFactory = Callable[..., Sandbox]


class SubprocessSandbox:
    """
    Runs plugin content in a child Python interpreter.

    Usage:
        sandbox = SubprocessSandbox(content, "translation", config, on_frame, on_exit)
        await sandbox.start()
        sandbox.post(encode_envelope(msg_init_context(ctx)))
        await sandbox.close()

    on_frame(body) is called for every frame in arrival order. on_exit(code,
    reason) is called once if the guest goes away without close() being
    called first.
    """

    def __init__(
        self,
        content: Union[ScriptContent, SiteContent, str],
        plugin_id: str,
        config: SandboxConfig,
        on_frame: FrameCallback,
        on_exit: Optional[ExitCallback] = None,
        module: str = GUEST_MODULE,
    ):
        self.plugin_id = plugin_id
        self.config = config
        self.module = module
        self._on_frame = on_frame
        self._on_exit = on_exit

        if isinstance(content, SiteContent):
            self._kind, self._payload = "site", content.url
        elif isinstance(content, ScriptContent):
            self._kind, self._payload = "script", content.source
        else:
            self._kind, self._payload = "script", content

        self._process: Optional[asyncio.subprocess.Process] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._working_dir: Optional[str] = None
        self._closing = False
        self._exit_reason: Optional[str] = None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def start(self) -> None:
        """
        Spawn the guest.

        Raises:
            SandboxLoadFailure: the interpreter could not be started
        """
        self._working_dir = tempfile.mkdtemp(prefix="synvek_guest_")
        python = self.config.python_executable or sys.executable

        content_b64 = base64.b64encode(self._payload.encode("utf-8")).decode("ascii")
        limits = guest_limits_payload(self.config, Path(self._working_dir))

        env = guest_environment({
            "SYNVEK_GUEST_CONTENT": content_b64,
            "SYNVEK_GUEST_KIND": self._kind,
            "SYNVEK_GUEST_LIMITS": json.dumps(limits),
            "SYNVEK_PLUGIN_ID": self.plugin_id,
            "SYNVEK_MAX_FRAME_BYTES": str(self.config.max_frame_bytes),
        })

        try:
            self._process = await asyncio.create_subprocess_exec(
                python, "-m", self.module,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                cwd=self._working_dir,
            )
        except OSError as e:
            self._remove_working_dir()
            raise SandboxLoadFailure(f"Failed to start guest for {self.plugin_id}: {e}") from e

        logger.info(f"Spawned guest for {self.plugin_id} (pid={self._process.pid}) with {python}")

        self._reader_task = asyncio.create_task(self._read_loop())
        self._stderr_task = asyncio.create_task(self._pump_stderr())

    def post(self, body: bytes) -> bool:
        """Queue one frame for the guest. False if the guest is gone."""
        if not self.running or self._closing:
            return False
        stdin = self._process.stdin
        if stdin is None or stdin.is_closing():
            return False
        try:
            stdin.write(pack_frame(body))
        except (ConnectionError, RuntimeError) as e:
            logger.debug(f"Write to guest {self.plugin_id} failed: {e}")
            return False
        return True

    async def _read_loop(self):
        process = self._process
        try:
            while True:
                body = await read_frame(process.stdout, self.config.max_frame_bytes)
                if body is None:
                    break
                try:
                    self._on_frame(body)
                except Exception:
                    logger.exception(f"Frame handler failed for guest {self.plugin_id}")
        except FrameTooLarge as e:
            logger.warning(f"Killing guest {self.plugin_id}: {e}")
            self._exit_reason = str(e)
            self.kill()
        except MalformedEnvelope as e:
            logger.warning(f"Guest {self.plugin_id} stream broken: {e}")
            self._exit_reason = str(e)
            self.kill()

        returncode = await process.wait()
        logger.info(f"Guest {self.plugin_id} exited with code {returncode}")
        if not self._closing and self._on_exit is not None:
            self._on_exit(returncode, self._exit_reason)

    async def _pump_stderr(self):
        stream = self._process.stderr
        while True:
            try:
                line = await stream.readline()
            except ValueError:  # line longer than the stream limit
                line = await stream.read(64 * 1024)
            if not line:
                return
            guest_logger.debug(f"[{self.plugin_id}] {line.decode('utf-8', errors='replace').rstrip()}")

    def kill(self):
        if self.running:
            try:
                self._process.kill()
            except ProcessLookupError:
                pass

    async def close(self) -> None:
        """Close stdin, give the guest a grace period, then kill it."""
        if self._closing:
            return
        self._closing = True

        if self._process is not None:
            if self._process.stdin is not None and not self._process.stdin.is_closing():
                self._process.stdin.close()
            try:
                await asyncio.wait_for(self._process.wait(), timeout=self.config.shutdown_timeout_seconds)
            except asyncio.TimeoutError:
                self.kill()
                await self._process.wait()
                logger.warning(f"Force-killed guest {self.plugin_id} (shutdown timeout)")

        for task in (self._reader_task, self._stderr_task):
            if task is not None and not task.done():
                task.cancel()
        for task in (self._reader_task, self._stderr_task):
            if task is not None:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._remove_working_dir()

    def _remove_working_dir(self):
        if self._working_dir:
            shutil.rmtree(self._working_dir, ignore_errors=True)
            self._working_dir = None


def subprocess_sandbox_factory(config: SandboxConfig) -> SandboxFactory:
    """Factory the runner calls once per activation."""

    def create(content, plugin_id: str, on_frame: FrameCallback, on_exit: ExitCallback) -> SubprocessSandbox:
        return SubprocessSandbox(content, plugin_id, config, on_frame, on_exit)

    return create
