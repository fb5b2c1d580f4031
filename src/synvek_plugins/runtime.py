# src/synvek_plugins/runtime.py
"""
Plugin runtime wiring for one host surface.

    async with PluginRuntime.from_settings() as runtime:
        handle = await runtime.activate("translation")
        ...

Builds the bridge, runner, service adapter and tool service around a shared
WorkspaceContext, and checks that every plugin-to-host message type has a
handler before anything is activated.
"""
import logging
from pathlib import Path
from typing import Optional

from synvek_plugins.bridge import MessageBridge
from synvek_plugins.catalog import build_default_registry
from synvek_plugins.config import AppSettings, settings
from synvek_plugins.context import RuntimeSettings, StaticSettingsProvider, WorkspaceContext
from synvek_plugins.engine.sandbox import SandboxFactory
from synvek_plugins.protocol import PLUGIN_TO_HOST
from synvek_plugins.registry import PluginRegistry
from synvek_plugins.runner import PluginHandle, PluginRunner
from synvek_plugins.services import AgentServerClient, HostServiceAdapter, HostServices
from synvek_plugins.tools.executor import ToolExecutor, ToolPluginService

logger = logging.getLogger(__name__)


class PluginRuntime:
    def __init__(
        self,
        registry: PluginRegistry,
        workspace: WorkspaceContext,
        services: HostServices,
        app_settings: Optional[AppSettings] = None,
        sandbox_factory: Optional[SandboxFactory] = None,
    ):
        self.settings = app_settings or settings
        self.registry = registry
        self.workspace = workspace
        self.services = services

        self.bridge = MessageBridge()
        self.runner = PluginRunner(
            self.bridge,
            workspace,
            sandbox_factory=sandbox_factory,
            sandbox_config=self.settings.sandbox,
        )
        self.adapter = HostServiceAdapter(self.runner, services, workspace, self.settings.services)
        self.adapter.register(self.bridge)
        self.bridge.require_routes(PLUGIN_TO_HOST)

        self.tools = ToolPluginService(
            registry,
            workspace,
            ToolExecutor(self.settings.sandbox, self.settings.tools),
        )
        self._owns_services = False

    @classmethod
    def from_settings(
        cls,
        app_settings: Optional[AppSettings] = None,
        workspace: Optional[WorkspaceContext] = None,
    ) -> "PluginRuntime":
        """Runtime backed by the agent server and the built-in catalog."""
        app_settings = app_settings or settings
        plugin_dir = app_settings.tools.plugin_dir
        registry = build_default_registry(Path(plugin_dir) if plugin_dir else None)

        if workspace is None:
            runtime_settings = RuntimeSettings(activated_tool_plugins=tuple(app_settings.tools.activated_plugins))
            workspace = WorkspaceContext(settings_provider=StaticSettingsProvider(runtime_settings))

        runtime = cls(registry, workspace, AgentServerClient(app_settings.services), app_settings)
        runtime._owns_services = True
        logger.info(f"Plugin runtime ready with {len(registry)} plugin(s)")
        return runtime

    async def activate(self, plugin_id: str) -> PluginHandle:
        return await self.runner.activate(self.registry.get(plugin_id))

    async def deactivate(self) -> None:
        await self.runner.deactivate()

    async def close(self) -> None:
        await self.runner.close()
        await self.adapter.join()
        self.tools.close()
        if self._owns_services:
            await self.services.aclose()

    async def __aenter__(self) -> "PluginRuntime":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
