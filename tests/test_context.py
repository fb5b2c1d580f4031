# tests/test_context.py
"""
Tests for WorkspaceContext, HostEvents and RuntimeSettings.
"""
import pytest
from pydantic import ValidationError

from synvek_plugins.context import (
    HostContext,
    HostEvent,
    HostEvents,
    RuntimeSettings,
    StaticSettingsProvider,
    UserInfo,
    WorkspaceContext,
)


class TestHostEvents:
    """subscribe / unsubscribe / emit"""

    def test_emit_reaches_subscribers_in_order(self):
        events = HostEvents()
        seen = []
        events.subscribe(HostEvent.LANGUAGE_CHANGED, lambda v: seen.append(("a", v)))
        events.subscribe(HostEvent.LANGUAGE_CHANGED, lambda v: seen.append(("b", v)))
        events.emit(HostEvent.LANGUAGE_CHANGED, "de-DE")
        assert seen == [("a", "de-DE"), ("b", "de-DE")]

    def test_unsubscribe_handle(self):
        events = HostEvents()
        seen = []
        unsubscribe = events.subscribe(HostEvent.THEME_CHANGED, seen.append)
        unsubscribe()
        unsubscribe()
        events.emit(HostEvent.THEME_CHANGED, "dark")
        assert seen == []
        assert events.listener_count(HostEvent.THEME_CHANGED) == 0

    def test_failing_listener_does_not_stop_others(self, caplog):
        events = HostEvents()
        seen = []

        def broken(value):
            raise RuntimeError("listener bug")

        events.subscribe(HostEvent.TOOL_PLUGINS_CHANGED, broken)
        events.subscribe(HostEvent.TOOL_PLUGINS_CHANGED, seen.append)
        events.emit(HostEvent.TOOL_PLUGINS_CHANGED, "x")
        assert seen == ["x"]
        assert "listener bug" in caplog.text


class TestWorkspaceContext:
    """The host-owned state the runtime reads."""

    @pytest.fixture
    def context(self):
        return WorkspaceContext(
            settings_provider=StaticSettingsProvider(RuntimeSettings(language="en-US")),
            host_context=HostContext(theme="light", user=UserInfo(name="ada")),
        )

    def test_set_theme_swaps_snapshot_and_emits(self, context):
        seen = []
        context.events.subscribe(HostEvent.THEME_CHANGED, seen.append)
        before = context.host_context

        context.set_theme("dark")
        context.set_theme("dark")

        assert before.theme == "light"
        assert context.host_context.theme == "dark"
        assert context.host_context.user.name == "ada"
        assert seen == [context.host_context]

    def test_set_language(self, context):
        seen = []
        context.events.subscribe(HostEvent.LANGUAGE_CHANGED, seen.append)
        context.set_language("ja-JP")
        context.set_language("ja-JP")
        assert context.language == "ja-JP"
        assert seen == ["ja-JP"]

    def test_set_activated_tool_plugins(self, context):
        seen = []
        context.events.subscribe(HostEvent.TOOL_PLUGINS_CHANGED, seen.append)
        context.set_activated_tool_plugins(["a", "b"])
        assert context.settings.activated_tool_plugins == ("a", "b")
        assert seen[0].activated_tool_plugins == ("a", "b")

    def test_snapshots_are_immutable(self, context):
        with pytest.raises(ValidationError):
            context.host_context.theme = "dark"

    def test_capture_uses_current_user(self):
        snapshot = HostContext.capture(theme="dark")
        assert snapshot.theme == "dark"
        assert snapshot.user.name


class TestRuntimeSettings:
    """Settings are read by their application names too."""

    def test_aliases(self):
        settings = RuntimeSettings.model_validate({
            "activatedToolPlugins": ["MathFunctionTools"],
            "activatedMCPServices": ["fs"],
            "defaultApplicationModel": "qwen3",
        })
        assert settings.activated_tool_plugins == ("MathFunctionTools",)
        assert settings.activated_mcp_services == ("fs",)
        assert settings.default_application_model == "qwen3"

    def test_theme_is_closed(self):
        with pytest.raises(ValidationError):
            HostContext(theme="sepia", user=UserInfo(name="x"))
