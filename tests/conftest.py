"""
Pytest fixtures and configuration for synvek_plugins tests.
"""
import asyncio
import json
from typing import Any, List, Optional

import pytest

from synvek_plugins.bridge import MessageBridge
from synvek_plugins.catalog import build_default_registry
from synvek_plugins.config import SandboxConfig
from synvek_plugins.context import HostContext, RuntimeSettings, StaticSettingsProvider, UserInfo, WorkspaceContext
from synvek_plugins.errors import SandboxLoadFailure
from synvek_plugins.registry import (
    InlineSvgIcon,
    PluginCategory,
    PluginDefinition,
    PluginType,
    ScriptContent,
)
from synvek_plugins.runner import PluginRunner


class FakeSandbox:
    """In-memory Sandbox: records what the host posts and lets tests play the guest."""

    def __init__(self, content, plugin_id, on_frame, on_exit, fail_start=False):
        self.content = content
        self.plugin_id = plugin_id
        self._on_frame = on_frame
        self._on_exit = on_exit
        self.fail_start = fail_start
        self.started = False
        self.closed = False
        self.posted: List[dict] = []

    async def start(self):
        if self.fail_start:
            raise SandboxLoadFailure(f"Failed to start guest for {self.plugin_id}")
        self.started = True

    def post(self, body: bytes) -> bool:
        if self.closed:
            return False
        self.posted.append(json.loads(body))
        return True

    async def close(self):
        self.closed = True

    # --- guest side ---

    def emit(self, envelope: Any):
        body = envelope if isinstance(envelope, bytes) else json.dumps(envelope).encode("utf-8")
        self._on_frame(body)

    def ready(self):
        self.emit({"type": "PLUGIN_READY"})

    def exit(self, returncode: int = 1, reason: Optional[str] = None):
        self._on_exit(returncode, reason)

    def posted_types(self) -> List[str]:
        return [envelope["type"] for envelope in self.posted]


class FakeSandboxFactory:
    def __init__(self):
        self.created: List[FakeSandbox] = []
        self.fail_start = False

    def __call__(self, content, plugin_id, on_frame, on_exit):
        sandbox = FakeSandbox(content, plugin_id, on_frame, on_exit, fail_start=self.fail_start)
        self.created.append(sandbox)
        return sandbox

    @property
    def last(self) -> FakeSandbox:
        return self.created[-1]


class FakeServices:
    """HostServices double. Set `error` or `delay` to change behaviour."""

    def __init__(self):
        self.calls: List[tuple] = []
        self.error: Optional[Exception] = None
        self.delay = 0.0

    async def _answer(self, name, result, **kwargs):
        self.calls.append((name, kwargs))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return result

    async def generate_speech(self, text, model_name, speed=None, format=None):
        return await self._answer("speech", "data:audio/wav;base64,AAAA", text=text, model_name=model_name)

    async def chat_completion(self, user_prompts, model_name, system_prompts=None, temperature=None, top_n=None):
        return await self._answer(
            "chat",
            f"translated: {user_prompts[0].text}",
            model_name=model_name,
            system_prompts=system_prompts,
            temperature=temperature,
            top_n=top_n,
        )

    async def generate_image(self, text, model_name, count=None, width=None, height=None, **extra):
        return await self._answer("image", "iVBORw0KGgo=", text=text, model_name=model_name, **extra)


def make_app_definition(plugin_id: str = "test-app", source: str = "bridge.ready()\n") -> PluginDefinition:
    return PluginDefinition(
        id=plugin_id,
        name=plugin_id.replace("-", " ").title(),
        type=PluginType.APP,
        category=PluginCategory.TOOL,
        icon=InlineSvgIcon(markup="<svg/>"),
        content=ScriptContent(source=source),
        vendor="Tests",
    )


@pytest.fixture
def workspace():
    provider = StaticSettingsProvider(
        RuntimeSettings(
            activated_tool_plugins=("math-function-tools",),
            default_application_model="default-model",
        )
    )
    return WorkspaceContext(
        settings_provider=provider,
        host_context=HostContext(theme="light", user=UserInfo(name="tester")),
    )


@pytest.fixture
def sandbox_factory():
    return FakeSandboxFactory()


@pytest.fixture
def bridge():
    return MessageBridge()


@pytest.fixture
def runner(bridge, workspace, sandbox_factory):
    return PluginRunner(
        bridge,
        workspace,
        sandbox_factory=sandbox_factory,
        sandbox_config=SandboxConfig(ready_timeout_seconds=0.2),
    )


@pytest.fixture
def services():
    return FakeServices()


@pytest.fixture
def registry():
    return build_default_registry()


@pytest.fixture
def app_definition():
    return make_app_definition()


@pytest.fixture
def fast_sandbox_config():
    """Real-subprocess config with short timeouts for isolation tests."""
    return SandboxConfig(ready_timeout_seconds=10.0, shutdown_timeout_seconds=2.0)


