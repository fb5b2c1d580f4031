# src/synvek_plugins/context.py
"""
Host-side state that the runtime reads but never writes.

The surrounding application (settings panels, theme switcher) is the single
writer of WorkspaceContext. It swaps in new HostContext snapshots and emits
typed events; the runner and tool service subscribe to them.
"""
import getpass
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Literal, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

Theme = Literal["light", "dark"]


class UserInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str


class HostContext(BaseModel):
    """Capability/state snapshot pushed into a plugin with INIT_CONTEXT."""

    model_config = ConfigDict(frozen=True)

    theme: Theme = "light"
    user: UserInfo

    @classmethod
    def capture(cls, theme: Theme = "light") -> "HostContext":
        """Build a snapshot for the user running the host process."""
        try:
            user_name = getpass.getuser()
        except Exception:
            user_name = "unknown"
        return cls(theme=theme, user=UserInfo(name=user_name))

    def with_theme(self, theme: Theme) -> "HostContext":
        return self.model_copy(update={"theme": theme})


class RuntimeSettings(BaseModel):
    """
    The slice of application settings the runtime consumes.
    Plugin lists gate what may be activated; the runtime never edits them.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    activated_tool_plugins: tuple[str, ...] = Field(default=(), alias="activatedToolPlugins")
    activated_mcp_services: tuple[str, ...] = Field(default=(), alias="activatedMCPServices")
    language: str = "en-US"
    default_application_model: Optional[str] = Field(default=None, alias="defaultApplicationModel")


class SettingsProvider(Protocol):
    def get_settings(self) -> RuntimeSettings: ...

    def update_settings(self, settings: RuntimeSettings) -> None: ...


class StaticSettingsProvider:
    """In-memory SettingsProvider used by the CLI and tests."""

    def __init__(self, settings: Optional[RuntimeSettings] = None):
        self._settings = settings or RuntimeSettings()

    def get_settings(self) -> RuntimeSettings:
        return self._settings

    def update_settings(self, settings: RuntimeSettings) -> None:
        self._settings = settings


class HostEvent(str, Enum):
    THEME_CHANGED = "theme_changed"  # value: HostContext
    LANGUAGE_CHANGED = "language_changed"  # value: str
    TOOL_PLUGINS_CHANGED = "tool_plugins_changed"  # value: RuntimeSettings
    ACTIVATED_PLUGIN_CHANGED = "activated_plugin_changed"  # value: PluginDefinition | None


EventCallback = Callable[[Any], None]


class HostEvents:
    """Per-kind callback lists with explicit register/unregister."""

    def __init__(self):
        self._listeners: Dict[HostEvent, List[EventCallback]] = {kind: [] for kind in HostEvent}

    def subscribe(self, kind: HostEvent, callback: EventCallback) -> Callable[[], None]:
        listeners = self._listeners[kind]
        if callback not in listeners:
            listeners.append(callback)
        return lambda: self.unsubscribe(kind, callback)

    def unsubscribe(self, kind: HostEvent, callback: EventCallback) -> None:
        listeners = self._listeners[kind]
        if callback in listeners:
            listeners.remove(callback)

    def emit(self, kind: HostEvent, value: Any = None) -> None:
        # Copy: callbacks may unsubscribe while we iterate.
        for callback in list(self._listeners[kind]):
            try:
                callback(value)
            except Exception:
                logger.exception(f"Listener for {kind.value} failed")

    def listener_count(self, kind: HostEvent) -> int:
        return len(self._listeners[kind])


@dataclass
class WorkspaceContext:
    """
    Explicit replacement for a global workspace singleton.
    Passed by reference to the runner, adapter and tool service.
    """

    settings_provider: SettingsProvider = field(default_factory=StaticSettingsProvider)
    host_context: HostContext = field(default_factory=HostContext.capture)
    events: HostEvents = field(default_factory=HostEvents)

    @property
    def settings(self) -> RuntimeSettings:
        return self.settings_provider.get_settings()

    @property
    def language(self) -> str:
        return self.settings.language

    def set_theme(self, theme: Theme) -> None:
        if theme == self.host_context.theme:
            return
        self.host_context = self.host_context.with_theme(theme)
        self.events.emit(HostEvent.THEME_CHANGED, self.host_context)

    def set_language(self, language: str) -> None:
        current = self.settings
        if language == current.language:
            return
        self.settings_provider.update_settings(current.model_copy(update={"language": language}))
        self.events.emit(HostEvent.LANGUAGE_CHANGED, language)

    def set_activated_tool_plugins(self, plugin_ids) -> None:
        updated = self.settings.model_copy(update={"activated_tool_plugins": tuple(plugin_ids)})
        self.settings_provider.update_settings(updated)
        self.events.emit(HostEvent.TOOL_PLUGINS_CHANGED, updated)
