# tests/test_tool_executor.py
"""
Tests for out-of-process tool execution and the host-facing tool service.

ToolExecutor tests spawn real guest interpreters (python -m
synvek_plugins.tools.shim); ToolPluginService tests use a recording
executor so they stay in-process.
"""
import asyncio

import pytest

from synvek_plugins.config import ToolsConfig
from synvek_plugins.context import HostEvent
from synvek_plugins.errors import PluginNotFound, PluginNotPermitted, ToolExecutionError, UnknownOperation
from synvek_plugins.registry import InlineSvgIcon, PluginCategory, PluginDefinition, PluginType, ScriptContent
from synvek_plugins.tools.executor import ToolExecutor, ToolPluginService

SANDBOX_CHECKS = '''
class SandboxChecks(ToolPlugin):
    @tool("connect", "open a socket")
    def connect(self):
        import socket
        socket.create_connection(("127.0.0.1", 9))

    @tool("spawn", "start a process")
    def spawn(self):
        import subprocess
        subprocess.run(["echo", "hi"])

    @tool("read_outside", "read a file outside the working dir")
    def read_outside(self):
        with open("/etc/hostname") as f:
            return f.read()

    @tool("scratch", "write and read a scratch file")
    def scratch(self):
        with open("scratch.txt", "w") as f:
            f.write("ok")
        with open("scratch.txt") as f:
            return f.read()

    @tool("boom", "always fails")
    def boom(self):
        raise ValueError("boom")

    @tool("spin", "never returns")
    def spin(self):
        while True:
            pass

    @tool("unserializable", "returns something that is not JSON")
    def unserializable(self):
        return {1, 2, 3}


plugin = SandboxChecks()
'''


def tool_definition(source: str, plugin_id: str = "sandbox-checks") -> PluginDefinition:
    return PluginDefinition(
        id=plugin_id,
        name=plugin_id.title(),
        type=PluginType.TOOL,
        category=PluginCategory.TOOL,
        icon=InlineSvgIcon(markup="<svg/>"),
        content=ScriptContent(source=source),
        vendor="Tests",
    )


@pytest.fixture
def executor(fast_sandbox_config):
    return ToolExecutor(fast_sandbox_config, ToolsConfig(execution_timeout_seconds=10.0))


def execute(executor, definition, **data):
    return asyncio.run(executor.execute(definition, data))


class TestToolExecutor:
    """One fresh guest per call."""

    def test_add(self, executor, registry):
        """The built-in math plugin runs out of process."""
        assert execute(executor, registry.get("math-function-tools"), operation="add", a=2, b=5) == 7

    def test_schema_operation(self, executor, registry):
        raw = execute(executor, registry.get("math-function-tools"), operation="schema")
        assert '"toolSchemas"' in raw
        assert '"multiply"' in raw

    def test_unknown_operation(self, executor, registry):
        with pytest.raises(UnknownOperation) as exc_info:
            execute(executor, registry.get("math-function-tools"), operation="divide", a=1, b=2)
        assert exc_info.value.operation == "divide"

    def test_invalid_arguments(self, executor, registry):
        with pytest.raises(ToolExecutionError, match="Invalid arguments"):
            execute(executor, registry.get("math-function-tools"), operation="add", a="two", b=5)

    def test_handler_exception_becomes_tool_error(self, executor):
        with pytest.raises(ToolExecutionError, match="boom"):
            execute(executor, tool_definition(SANDBOX_CHECKS), operation="boom")

    def test_non_json_result_is_an_error(self, executor):
        with pytest.raises(ToolExecutionError, match="not JSON serializable"):
            execute(executor, tool_definition(SANDBOX_CHECKS), operation="unserializable")

    def test_timeout_kills_the_guest(self, fast_sandbox_config):
        executor = ToolExecutor(fast_sandbox_config, ToolsConfig(execution_timeout_seconds=1.0))
        with pytest.raises(ToolExecutionError, match="Plugin Sandbox-Checks execution timeout"):
            execute(executor, tool_definition(SANDBOX_CHECKS), operation="spin")

    def test_plugin_without_binding_fails(self, executor):
        with pytest.raises(ToolExecutionError, match="top-level 'plugin'"):
            execute(executor, tool_definition("x = 1\n"), operation="anything")

    def test_crashing_guest_reports_exit(self, executor):
        source = "import os\nos._exit(3)\n"
        with pytest.raises(ToolExecutionError, match="exited without a result"):
            execute(executor, tool_definition(source), operation="anything")

    def test_refuses_non_tool_definitions(self, executor, registry):
        with pytest.raises(ValueError):
            execute(executor, registry.get("translation"), operation="add")


class TestGuestRestrictions:
    """Limits applied inside the guest before plugin code runs."""

    @pytest.mark.parametrize("operation,message", [
        ("connect", "Network access is disabled"),
        ("spawn", "Subprocess creation is disabled"),
        ("read_outside", "File system access is restricted"),
    ])
    def test_blocked(self, executor, operation, message):
        with pytest.raises(ToolExecutionError, match=message):
            execute(executor, tool_definition(SANDBOX_CHECKS), operation=operation)

    def test_working_dir_is_writable(self, executor):
        assert execute(executor, tool_definition(SANDBOX_CHECKS), operation="scratch") == "ok"

    def test_network_can_be_allowed(self, fast_sandbox_config):
        config = fast_sandbox_config.model_copy(update={"allow_network": True})
        executor = ToolExecutor(config, ToolsConfig(execution_timeout_seconds=10.0))
        # Port 9 (discard) is normally closed: the error is now a real connection error.
        with pytest.raises(ToolExecutionError) as exc_info:
            execute(executor, tool_definition(SANDBOX_CHECKS), operation="connect")
        assert "Network access is disabled" not in str(exc_info.value)


class RecordingExecutor:
    def __init__(self, result=None, error=None):
        self.calls = []
        self.result = result
        self.error = error

    async def execute(self, definition, data):
        self.calls.append((definition.id, dict(data)))
        if self.error is not None:
            raise self.error
        return self.result


SCHEMA_JSON = '{"toolSchemas": [{"name": "add", "description": "add two numbers", "schema": []}]}'


class TestToolPluginService:
    """Activation gating, schema cache and invocation."""

    def test_available_and_activated(self, registry, workspace):
        service = ToolPluginService(registry, workspace, RecordingExecutor())
        assert [d.id for d in service.available()] == ["math-function-tools"]
        assert [d.id for d in service.activated()] == ["math-function-tools"]
        assert service.is_activated("math-function-tools")

    def test_activation_matches_by_name(self, registry, workspace):
        workspace.set_activated_tool_plugins(["MathFunctionTools"])
        service = ToolPluginService(registry, workspace, RecordingExecutor())
        assert service.is_activated("math-function-tools")

    def test_invoke_passes_operation_and_arguments(self, registry, workspace):
        executor = RecordingExecutor(result=7)
        service = ToolPluginService(registry, workspace, executor)
        assert asyncio.run(service.invoke("math-function-tools", "add", a=2, b=5)) == 7
        assert executor.calls == [("math-function-tools", {"operation": "add", "a": 2, "b": 5})]

    def test_invoke_refuses_deactivated_plugin(self, registry, workspace):
        workspace.set_activated_tool_plugins([])
        executor = RecordingExecutor(result=7)
        service = ToolPluginService(registry, workspace, executor)
        with pytest.raises(PluginNotPermitted, match="not activated"):
            asyncio.run(service.invoke("math-function-tools", "add", a=2, b=5))
        assert executor.calls == []

    def test_invoke_unknown_and_non_tool_plugins(self, registry, workspace):
        service = ToolPluginService(registry, workspace, RecordingExecutor())
        with pytest.raises(PluginNotFound):
            asyncio.run(service.invoke("missing", "add"))
        with pytest.raises(ValueError):
            asyncio.run(service.invoke("translation", "add"))

    def test_describe_is_cached_until_settings_change(self, registry, workspace):
        executor = RecordingExecutor(result=SCHEMA_JSON)
        service = ToolPluginService(registry, workspace, executor)

        first = asyncio.run(service.describe("math-function-tools"))
        second = asyncio.run(service.describe("math-function-tools"))
        assert [s.name for s in first] == ["add"]
        assert second is first
        assert executor.calls == [("math-function-tools", {"operation": "schema"})]

        workspace.set_activated_tool_plugins(["math-function-tools"])
        asyncio.run(service.describe("math-function-tools"))
        assert len(executor.calls) == 2

    def test_describe_rejects_invalid_schema(self, registry, workspace):
        service = ToolPluginService(registry, workspace, RecordingExecutor(result="[]"))
        with pytest.raises(ToolExecutionError, match="invalid schema"):
            asyncio.run(service.describe("math-function-tools"))

    def test_describe_all_skips_broken_plugins(self, registry, workspace, caplog):
        service = ToolPluginService(registry, workspace, RecordingExecutor(error=ToolExecutionError("crashed")))
        assert asyncio.run(service.describe_all()) == {}
        assert "crashed" in caplog.text

    def test_close_unsubscribes(self, registry, workspace):
        service = ToolPluginService(registry, workspace, RecordingExecutor())
        assert workspace.events.listener_count(HostEvent.TOOL_PLUGINS_CHANGED) == 1
        service.close()
        assert workspace.events.listener_count(HostEvent.TOOL_PLUGINS_CHANGED) == 0

    def test_describe_through_a_real_guest(self, registry, workspace, fast_sandbox_config):
        service = ToolPluginService(registry, workspace, ToolExecutor(fast_sandbox_config))
        schemas = asyncio.run(service.describe("math-function-tools"))
        assert [s.name for s in schemas] == ["multiply", "add"]
        assert [p.name for p in schemas[1].parameters] == ["a", "b"]
