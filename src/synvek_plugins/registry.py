# src/synvek_plugins/registry.py
"""
Plugin Definition Registry.

Immutable catalog of installable plugins. Built-in definitions come from
synvek_plugins.catalog; third-party ones are discovered from a directory of
`<name>/plugin.json` manifests and must pass the gatekeeper first.
"""
import json
import logging
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Callable, Iterable, Iterator, List, Optional, Union, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from synvek_plugins.errors import PluginNotFound, PluginValidationError
from synvek_plugins.security.gatekeeper import validate_manifest, validate_plugin_source

logger = logging.getLogger(__name__)

MANIFEST_NAME = "plugin.json"


class PluginType(str, Enum):
    AGENT = "agent"
    APP = "app"
    WORKER = "worker"
    TOOL = "tool"
    SITE = "site"


class PluginCategory(str, Enum):
    TOOL = "tool"
    CHAT = "chat"
    DEVELOPMENT = "development"
    FINANCE = "finance"
    LIFE = "life"


class InlineSvgIcon(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["inline-svg"] = "inline-svg"
    markup: str


class ComponentIcon(BaseModel):
    """An icon drawn by host UI code; render(width, height) returns markup."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["component"] = "component"
    render: Callable[..., Any]


PluginIcon = Annotated[Union[InlineSvgIcon, ComponentIcon], Field(discriminator="kind")]


class ScriptContent(BaseModel):
    """Guest-script bundle executed inside the sandbox."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["script"] = "script"
    source: str


class SiteContent(BaseModel):
    """Reference to a remote site rendered by the host's web view."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["site"] = "site"
    url: str


PluginContent = Annotated[Union[ScriptContent, SiteContent], Field(discriminator="kind")]


class PluginDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    type: PluginType
    category: PluginCategory
    icon: PluginIcon
    content: PluginContent
    vendor: str
    version: str = "1.0.0"
    permissions: tuple[str, ...] = ()

    @property
    def is_tool(self) -> bool:
        return self.type == PluginType.TOOL


class PluginRegistry:
    def __init__(self, definitions: Iterable[PluginDefinition] = ()):
        self._definitions: dict[str, PluginDefinition] = {}
        for definition in definitions:
            if definition.id in self._definitions:
                raise ValueError(f"Duplicate plugin id: {definition.id}")
            self._definitions[definition.id] = definition

    def list(self) -> List[PluginDefinition]:
        return list(self._definitions.values())

    def get(self, plugin_id: str) -> PluginDefinition:
        try:
            return self._definitions[plugin_id]
        except KeyError:
            raise PluginNotFound(plugin_id) from None

    def find(self, plugin_id: str) -> Optional[PluginDefinition]:
        return self._definitions.get(plugin_id)

    def of_type(self, *types: PluginType) -> List[PluginDefinition]:
        return [d for d in self._definitions.values() if d.type in types]

    def __contains__(self, plugin_id: object) -> bool:
        return plugin_id in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)

    def __iter__(self) -> Iterator[PluginDefinition]:
        return iter(self.list())


_DEFAULT_ICON = (
    '<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 24 24">'
    '<rect x="3" y="3" width="18" height="18" rx="4" fill="currentColor"/></svg>'
)


def load_manifest_plugin(plugin_path: Path) -> PluginDefinition:
    """
    Build a PluginDefinition from `<plugin_path>/plugin.json`.

    Raises:
        PluginValidationError: manifest or source rejected by the gatekeeper
    """
    manifest: dict[str, Any] = json.loads((plugin_path / MANIFEST_NAME).read_text(encoding="utf-8"))

    result = validate_manifest(manifest)
    if not result.is_safe:
        raise PluginValidationError(f"Invalid manifest: {result.error_message}")

    plugin_type = PluginType(manifest.get("type", PluginType.TOOL.value))
    if plugin_type == PluginType.SITE:
        if not manifest.get("url"):
            raise PluginValidationError("Site plugins must declare a 'url'")
        content: Union[ScriptContent, SiteContent] = SiteContent(url=manifest["url"])
    else:
        source = (plugin_path / manifest["entry"]).read_text(encoding="utf-8")
        kind = "tool" if plugin_type == PluginType.TOOL else "app"
        check = validate_plugin_source(source, kind=kind)
        if not check.is_safe:
            raise PluginValidationError(f"Unsafe plugin source: {check.error_message}")
        content = ScriptContent(source=source)

    icon_markup = manifest.get("icon") or _DEFAULT_ICON
    return PluginDefinition(
        id=manifest.get("id") or manifest["name"],
        name=manifest["name"],
        description=manifest.get("description", ""),
        type=plugin_type,
        category=PluginCategory(manifest.get("category", PluginCategory.TOOL.value)),
        icon=InlineSvgIcon(markup=icon_markup),
        content=content,
        vendor=manifest.get("author") or manifest.get("vendor") or "unknown",
        version=manifest["version"],
        permissions=tuple(manifest.get("permissions") or ()),
    )


def discover_plugins(plugin_dir: Path) -> list[PluginDefinition]:
    """
    Load every valid plugin under plugin_dir. Invalid plugins are logged and
    skipped; one bad plugin never prevents the others from loading.
    """
    plugin_dir = Path(plugin_dir)
    if not plugin_dir.is_dir():
        logger.warning(f"Plugin directory not found: {plugin_dir}")
        return []

    definitions = []
    for entry in sorted(plugin_dir.iterdir()):
        if not entry.is_dir() or not (entry / MANIFEST_NAME).is_file():
            continue
        try:
            definition = load_manifest_plugin(entry)
        except (OSError, ValueError, KeyError, ValidationError, PluginValidationError) as e:
            logger.error(f"Failed to load plugin {entry.name}: {e}")
            continue
        if definition.id in {d.id for d in definitions}:
            logger.error(f"Skipping plugin {entry.name}: duplicate id {definition.id}")
            continue
        logger.info(f"Loaded plugin: {definition.name} ({definition.type.value})")
        definitions.append(definition)
    return definitions
