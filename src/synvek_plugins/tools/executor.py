# src/synvek_plugins/tools/executor.py
"""
Out-of-process tool execution.

ToolExecutor runs one operation per fresh guest process (no session state
survives between calls). ToolPluginService is the host-facing surface: it
knows which tool plugins exist, which ones settings enable, and refuses to
run the rest.
"""
import asyncio
import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from synvek_plugins.config import SandboxConfig, ToolsConfig
from synvek_plugins.context import HostEvent, WorkspaceContext
from synvek_plugins.engine.sandbox import SubprocessSandbox
from synvek_plugins.errors import (
    PluginNotPermitted,
    SandboxLoadFailure,
    ToolExecutionError,
    UnknownOperation,
)
from synvek_plugins.protocol import ToolCall, ToolReply
from synvek_plugins.registry import PluginDefinition, PluginRegistry, PluginType, ScriptContent
from synvek_plugins.tools.plugin import OPERATION_KEY, SCHEMA_OPERATION
from synvek_plugins.tools.schema import ToolSchema, ToolSchemaList

logger = logging.getLogger(__name__)

SHIM_MODULE = "synvek_plugins.tools.shim"


class ToolExecutor:
    """
    Usage:
        executor = ToolExecutor(settings.sandbox, settings.tools)
        result = await executor.execute(definition, {"operation": "add", "a": 2, "b": 5})
    """

    def __init__(
        self,
        sandbox_config: Optional[SandboxConfig] = None,
        tools_config: Optional[ToolsConfig] = None,
    ):
        self.sandbox_config = sandbox_config or SandboxConfig()
        self.tools_config = tools_config or ToolsConfig()

    async def execute(self, definition: PluginDefinition, data: Mapping[str, Any]) -> Any:
        """
        Run one operation of a tool plugin in a fresh guest.

        Raises:
            UnknownOperation: the plugin does not declare the operation
            ToolExecutionError: the guest failed, timed out, or the call panicked
        """
        if not definition.is_tool or not isinstance(definition.content, ScriptContent):
            raise ValueError(f"{definition.id} is not a script tool plugin")

        loop = asyncio.get_running_loop()
        reply_future: asyncio.Future = loop.create_future()

        def on_frame(body: bytes):
            if not reply_future.done():
                reply_future.set_result(body)

        def on_exit(returncode: Optional[int], reason: Optional[str]):
            if not reply_future.done():
                detail = f": {reason}" if reason else ""
                reply_future.set_exception(ToolExecutionError(
                    f"Plugin {definition.name} exited without a result (code {returncode}){detail}"
                ))

        sandbox = SubprocessSandbox(
            definition.content,
            definition.id,
            self.sandbox_config,
            on_frame,
            on_exit,
            module=SHIM_MODULE,
        )
        call = ToolCall(id=uuid.uuid4().hex, data=dict(data))
        timeout = self.tools_config.execution_timeout_seconds

        try:
            try:
                await sandbox.start()
            except SandboxLoadFailure as e:
                raise ToolExecutionError(str(e)) from e

            sandbox.post(call.model_dump_json().encode("utf-8"))
            try:
                body = await asyncio.wait_for(reply_future, timeout=timeout)
            except asyncio.TimeoutError:
                sandbox.kill()
                raise ToolExecutionError(f"Plugin {definition.name} execution timeout") from None
        finally:
            await sandbox.close()

        try:
            reply = ToolReply.model_validate_json(body)
        except ValidationError as e:
            raise ToolExecutionError(f"Plugin {definition.name} sent an invalid reply") from e
        if reply.id != call.id:
            raise ToolExecutionError(f"Plugin {definition.name} answered an unknown call {reply.id}")

        if reply.type == "panic":
            if reply.code == UnknownOperation.__name__:
                raise UnknownOperation(data.get(OPERATION_KEY))
            raise ToolExecutionError(reply.error or f"Plugin {definition.name} failed")
        return reply.data


class ToolPluginService:
    """
    Host-facing tool surface.

    Enabled plugins come from the settings collaborator's
    activatedToolPlugins (matched by id or by name). Schemas are cached per
    plugin and dropped whenever that list changes.
    """

    def __init__(
        self,
        registry: PluginRegistry,
        workspace: WorkspaceContext,
        executor: Optional[ToolExecutor] = None,
    ):
        self.registry = registry
        self.workspace = workspace
        self.executor = executor or ToolExecutor()
        self._schema_cache: Dict[str, List[ToolSchema]] = {}
        self._unsubscribe = workspace.events.subscribe(HostEvent.TOOL_PLUGINS_CHANGED, self._on_tool_plugins_changed)

    def available(self) -> List[PluginDefinition]:
        return self.registry.of_type(PluginType.TOOL)

    def activated(self) -> List[PluginDefinition]:
        enabled = set(self.workspace.settings.activated_tool_plugins)
        return [d for d in self.available() if d.id in enabled or d.name in enabled]

    def is_activated(self, plugin_id: str) -> bool:
        return any(d.id == plugin_id for d in self.activated())

    def _tool_definition(self, plugin_id: str) -> PluginDefinition:
        definition = self.registry.get(plugin_id)
        if not definition.is_tool:
            raise ValueError(f"{plugin_id} is not a tool plugin")
        return definition

    async def describe(self, plugin_id: str) -> List[ToolSchema]:
        """Ask the plugin for its tool schemas (side-effect free)."""
        if plugin_id in self._schema_cache:
            return self._schema_cache[plugin_id]
        definition = self._tool_definition(plugin_id)
        raw = await self.executor.execute(definition, {OPERATION_KEY: SCHEMA_OPERATION})
        try:
            schemas = ToolSchemaList.model_validate_json(raw).tool_schemas
        except (ValidationError, TypeError) as e:
            raise ToolExecutionError(f"Plugin {definition.name} returned an invalid schema") from e
        self._schema_cache[plugin_id] = schemas
        return schemas

    async def describe_all(self) -> Dict[str, List[ToolSchema]]:
        """Schemas of every activated plugin; broken plugins are logged and skipped."""
        described = {}
        for definition in self.activated():
            try:
                described[definition.id] = await self.describe(definition.id)
            except (ToolExecutionError, UnknownOperation) as e:
                logger.error(f"Failed to load tool schemas for {definition.name}: {e}")
        return described

    async def invoke(self, plugin_id: str, operation: str, **arguments: Any) -> Any:
        """
        Raises:
            PluginNotFound: unknown id
            PluginNotPermitted: plugin is not activated in settings
        """
        definition = self._tool_definition(plugin_id)
        if not self.is_activated(plugin_id):
            raise PluginNotPermitted(f"Tool plugin '{plugin_id}' is not activated")
        logger.info(f"Invoking {definition.name}.{operation}")
        return await self.executor.execute(definition, {OPERATION_KEY: operation, **arguments})

    def _on_tool_plugins_changed(self, _settings):
        self._schema_cache.clear()

    def close(self) -> None:
        self._unsubscribe()
