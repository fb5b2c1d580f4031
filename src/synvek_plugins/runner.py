# src/synvek_plugins/runner.py
"""
Sandbox Host (Plugin Runner).

Owns the lifecycle of the single live plugin instance on a host surface:

    Loading --PLUGIN_READY--> Ready        (INIT_CONTEXT sent once)
    Loading|Ready --PLUGIN_ERROR--> Error
    any --activate()/deactivate()/close()--> Terminated

Terminated is absorbing. Every activation creates a fresh instance; an old
instance is never revived, and anything it still sends is dropped by the
bridge because it is no longer attached.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Callable, List, Optional

from synvek_plugins.bridge import MessageBridge
from synvek_plugins.config import SandboxConfig
from synvek_plugins.context import HostContext, HostEvent, WorkspaceContext
from synvek_plugins.engine.sandbox import Sandbox, SandboxFactory, subprocess_sandbox_factory
from synvek_plugins.errors import PluginReportedError, PluginRuntimeError, SandboxLoadFailure
from synvek_plugins.protocol import (
    MessageType,
    msg_init_context,
    msg_language_changed,
    msg_theme_changed,
)
from synvek_plugins.registry import PluginDefinition

logger = logging.getLogger(__name__)


class PluginState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"
    TERMINATED = "terminated"


_TRANSITIONS = {
    PluginState.LOADING: {PluginState.READY, PluginState.ERROR, PluginState.TERMINATED},
    PluginState.READY: {PluginState.ERROR, PluginState.TERMINATED},
    PluginState.ERROR: {PluginState.TERMINATED},
    PluginState.TERMINATED: set(),
}

LIVE_STATES = frozenset({PluginState.LOADING, PluginState.READY})


@dataclass
class PluginInstance:
    definition: PluginDefinition
    instance_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: PluginState = PluginState.LOADING
    context: Optional[HostContext] = None  # last HostContext sent
    error: Optional[str] = None
    init_sent: bool = False
    pending_language: Optional[str] = None  # changed while Loading, flushed after INIT_CONTEXT
    sandbox: Optional[Sandbox] = None

    def advance(self, target: PluginState) -> bool:
        if target not in _TRANSITIONS[self.state]:
            return False
        self.state = target
        return True


@dataclass(frozen=True)
class ErrorBanner:
    """Dismissible error shown for one instance."""

    instance_id: str
    plugin_name: str
    message: str


class PluginHandle:
    """Returned by activate(); talks to exactly one instance for its lifetime."""

    def __init__(self, runner: "PluginRunner", instance: PluginInstance):
        self._runner = runner
        self._instance = instance

    @property
    def instance_id(self) -> str:
        return self._instance.instance_id

    @property
    def definition(self) -> PluginDefinition:
        return self._instance.definition

    @property
    def state(self) -> PluginState:
        return self._instance.state

    @property
    def error(self) -> Optional[str]:
        return self._instance.error

    @property
    def active(self) -> bool:
        return self._runner.is_current(self.instance_id) and self.state in LIVE_STATES

    def send(self, envelope) -> bool:
        return self._runner.send_to(self.instance_id, envelope)

    async def deactivate(self) -> None:
        if self._runner.is_current(self.instance_id):
            await self._runner.deactivate()

    def __repr__(self):
        return f"PluginHandle({self.definition.id!r}, {self.instance_id}, {self.state.value})"


TerminationListener = Callable[[str], None]


class PluginRunner:
    """
    Usage:
        runner = PluginRunner(bridge, workspace, sandbox_config=settings.sandbox)
        handle = await runner.activate(registry.get("translation"))
        ...
        await runner.close()
    """

    def __init__(
        self,
        bridge: MessageBridge,
        workspace: WorkspaceContext,
        sandbox_factory: Optional[SandboxFactory] = None,
        sandbox_config: Optional[SandboxConfig] = None,
    ):
        self.bridge = bridge
        self.workspace = workspace
        self.sandbox_config = sandbox_config or SandboxConfig()
        self._sandbox_factory = sandbox_factory or subprocess_sandbox_factory(self.sandbox_config)

        self._current: Optional[PluginInstance] = None
        self._opened: List[str] = []
        self._banner: Optional[ErrorBanner] = None
        self._ready_timer: Optional[asyncio.TimerHandle] = None
        self._termination_listeners: List[TerminationListener] = []
        self._background: set = set()
        self._lock = asyncio.Lock()
        self._closed = False

        bridge.on(MessageType.PLUGIN_READY, self._on_ready)
        bridge.on(MessageType.PLUGIN_ERROR, self._on_plugin_error)
        self._unsubscribe = [
            workspace.events.subscribe(HostEvent.THEME_CHANGED, self._on_theme_changed),
            workspace.events.subscribe(HostEvent.LANGUAGE_CHANGED, self._on_language_changed),
        ]

    # --- Queries ---

    @property
    def current(self) -> Optional[PluginInstance]:
        return self._current

    @property
    def state(self) -> Optional[PluginState]:
        return self._current.state if self._current else None

    @property
    def opened(self) -> List[str]:
        """Recently opened definition ids, most recent first."""
        return list(self._opened)

    @property
    def error_banner(self) -> Optional[ErrorBanner]:
        return self._banner

    def dismiss_error(self) -> None:
        self._banner = None

    def is_current(self, instance_id: str) -> bool:
        return self._current is not None and self._current.instance_id == instance_id

    def add_termination_listener(self, listener: TerminationListener) -> None:
        self._termination_listeners.append(listener)

    # --- Lifecycle ---

    async def activate(self, definition: PluginDefinition) -> PluginHandle:
        """
        Tear down whatever is live and start `definition` in a fresh sandbox.

        A sandbox that fails to start leaves the new instance in Error; it is
        still returned so the caller can read the error.
        """
        if definition.is_tool:
            raise ValueError(f"Tool plugin {definition.id} runs through the tool executor, not the runner")
        if self._closed:
            raise RuntimeError("PluginRunner is closed")

        async with self._lock:
            await self._teardown()

            instance = PluginInstance(definition=definition)
            self._current = instance
            self._remember(definition.id)

            sandbox = self._sandbox_factory(
                definition.content,
                definition.id,
                partial(self._on_frame, instance.instance_id),
                partial(self._on_exit, instance.instance_id),
            )
            instance.sandbox = sandbox
            self.bridge.attach(instance.instance_id, sandbox.post)
            logger.info(f"Activating plugin {definition.id} (instance {instance.instance_id})")

            try:
                await sandbox.start()
            except SandboxLoadFailure as e:
                self._fail(instance, e)
                return PluginHandle(self, instance)

            loop = asyncio.get_running_loop()
            self._ready_timer = loop.call_later(
                self.sandbox_config.ready_timeout_seconds,
                self._on_ready_timeout,
                instance.instance_id,
            )
            return PluginHandle(self, instance)

    async def deactivate(self) -> None:
        """Terminate the live instance. Idempotent."""
        async with self._lock:
            await self._teardown()

    async def close(self) -> None:
        """Host view disposed: terminate and stop listening for host events."""
        await self.deactivate()
        if self._closed:
            return
        self._closed = True
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self.bridge.off(MessageType.PLUGIN_READY, self._on_ready)
        self.bridge.off(MessageType.PLUGIN_ERROR, self._on_plugin_error)
        for task in list(self._background):
            await task

    async def _teardown(self):
        instance = self._current
        if instance is None:
            return
        self._current = None
        self._cancel_ready_timer()
        instance.advance(PluginState.TERMINATED)
        self.bridge.detach(instance.instance_id)
        if self._banner is not None and self._banner.instance_id == instance.instance_id:
            self._banner = None

        if instance.sandbox is not None:
            try:
                await instance.sandbox.close()
            except Exception:
                logger.exception(f"Error closing sandbox for {instance.definition.id}")

        logger.info(f"Terminated plugin {instance.definition.id} (instance {instance.instance_id})")
        for listener in list(self._termination_listeners):
            try:
                listener(instance.instance_id)
            except Exception:
                logger.exception("Termination listener failed")

    def _remember(self, definition_id: str):
        if definition_id in self._opened:
            self._opened.remove(definition_id)
        self._opened.insert(0, definition_id)

    # --- Outbound ---

    def send(self, envelope) -> bool:
        """Forward to the live instance; False if nothing is Loading/Ready."""
        if self._current is None:
            return False
        return self.send_to(self._current.instance_id, envelope)

    def send_to(self, instance_id: str, envelope) -> bool:
        instance = self._current
        if instance is None or instance.instance_id != instance_id or instance.state not in LIVE_STATES:
            return False
        return self.bridge.post(envelope)

    # --- Inbound ---

    def _on_frame(self, instance_id: str, body: bytes):
        self.bridge.receive(instance_id, body)

    def _lookup(self, instance_id: str) -> Optional[PluginInstance]:
        if self.is_current(instance_id):
            return self._current
        return None

    def _on_ready(self, instance_id: str, envelope):
        instance = self._lookup(instance_id)
        if instance is None:
            return
        if not instance.advance(PluginState.READY):
            logger.debug(f"Ignoring PLUGIN_READY from {instance.definition.id} in state {instance.state.value}")
            return
        self._cancel_ready_timer()
        logger.info(f"Plugin {instance.definition.id} is ready")

        if not instance.init_sent:
            context = self.workspace.host_context
            instance.init_sent = True
            instance.context = context
            self.bridge.post(msg_init_context(context))

        # HostContext carries no language, so a change made while Loading is replayed here.
        if instance.pending_language is not None:
            language, instance.pending_language = instance.pending_language, None
            self.bridge.post(msg_language_changed(language))

    def _on_plugin_error(self, instance_id: str, envelope):
        instance = self._lookup(instance_id)
        if instance is None:
            return
        self._fail(instance, PluginReportedError(envelope.payload.error))

    def _on_exit(self, instance_id: str, returncode: Optional[int], reason: Optional[str]):
        instance = self._lookup(instance_id)
        if instance is None:
            return
        detail = f" ({reason})" if reason else ""
        if instance.state == PluginState.LOADING:
            self._fail(instance, SandboxLoadFailure(
                f"Plugin {instance.definition.name} exited before it was ready (code {returncode}){detail}"
            ))
        elif instance.state == PluginState.READY:
            self._fail(instance, SandboxLoadFailure(
                f"Plugin {instance.definition.name} exited unexpectedly (code {returncode}){detail}"
            ))

    def _on_ready_timeout(self, instance_id: str):
        self._ready_timer = None
        instance = self._lookup(instance_id)
        if instance is None or instance.state != PluginState.LOADING:
            return
        self._fail(instance, SandboxLoadFailure(
            f"Plugin {instance.definition.name} did not become ready within "
            f"{self.sandbox_config.ready_timeout_seconds}s"
        ))
        if instance.sandbox is not None:
            task = asyncio.ensure_future(instance.sandbox.close())
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    def _fail(self, instance: PluginInstance, error: PluginRuntimeError):
        if not instance.advance(PluginState.ERROR):
            return
        self._cancel_ready_timer()
        instance.error = str(error)
        self._banner = ErrorBanner(instance.instance_id, instance.definition.name, instance.error)
        logger.error(f"Plugin {instance.definition.id} failed: {type(error).__name__}: {error}")

    def _cancel_ready_timer(self):
        if self._ready_timer is not None:
            self._ready_timer.cancel()
            self._ready_timer = None

    # --- Host events ---

    def _on_theme_changed(self, context: HostContext):
        instance = self._current
        if instance is None or instance.state != PluginState.READY:
            return
        instance.context = context
        self.bridge.post(msg_theme_changed(context.theme))

    def _on_language_changed(self, language: str):
        instance = self._current
        if instance is None:
            return
        if instance.state == PluginState.LOADING:
            instance.pending_language = language
        elif instance.state == PluginState.READY:
            self.bridge.post(msg_language_changed(language))
