# src/synvek_plugins/catalog/__init__.py
"""
Built-in plugin catalog.

Guest-script sources live next to this module (apps/*.py, math_tools.py)
and are shipped to guests as text; the host never imports the app scripts.
"""
import logging
from importlib import resources
from pathlib import Path
from typing import List, Optional

from synvek_plugins.registry import (
    ComponentIcon,
    InlineSvgIcon,
    PluginCategory,
    PluginDefinition,
    PluginRegistry,
    PluginType,
    ScriptContent,
    SiteContent,
    discover_plugins,
)

logger = logging.getLogger(__name__)

VENDOR = "Synvek"

_SPEECH_ICON = (
    '<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 24 24" fill="none" stroke="currentColor" '
    'stroke-width="2"><path d="M12 1a3 3 0 0 0-3 3v8a3 3 0 0 0 6 0V4a3 3 0 0 0-3-3z"/>'
    '<path d="M19 10v2a7 7 0 0 1-14 0v-2"/><line x1="12" y1="19" x2="12" y2="23"/></svg>'
)
_TRANSLATION_ICON = (
    '<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 24 24" fill="none" stroke="currentColor" '
    'stroke-width="2"><path d="M5 8l6 6"/><path d="M4 14l6-6 2-3"/><path d="M2 5h12"/>'
    '<path d="M7 2h1"/><path d="M22 22l-5-10-5 10"/><path d="M14 18h6"/></svg>'
)
_MATH_ICON = (
    '<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 24 24" fill="none" stroke="currentColor" '
    'stroke-width="2"><line x1="12" y1="5" x2="12" y2="19"/><line x1="5" y1="12" x2="19" y2="12"/></svg>'
)


def _yiyan_icon(width: int = 64, height: int = 64) -> str:
    return (
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{width}" height="{height}" viewBox="0 0 24 24">'
        '<circle cx="12" cy="12" r="10" fill="#2932e1"/>'
        '<text x="12" y="16" font-size="10" text-anchor="middle" fill="#fff">YY</text></svg>'
    )


def read_source(name: str) -> str:
    """Text of a bundled guest script, e.g. 'apps/translation.py'."""
    return resources.files(__name__).joinpath(name).read_text(encoding="utf-8")


def builtin_definitions() -> List[PluginDefinition]:
    return [
        PluginDefinition(
            id="speech-generation",
            name="Speech Generation",
            description="Speech Generation",
            type=PluginType.APP,
            category=PluginCategory.TOOL,
            icon=InlineSvgIcon(markup=_SPEECH_ICON),
            content=ScriptContent(source=read_source("apps/speech_generation.py")),
            vendor=VENDOR,
        ),
        PluginDefinition(
            id="translation",
            name="Translation",
            description="Translation",
            type=PluginType.APP,
            category=PluginCategory.TOOL,
            icon=InlineSvgIcon(markup=_TRANSLATION_ICON),
            content=ScriptContent(source=read_source("apps/translation.py")),
            vendor=VENDOR,
        ),
        PluginDefinition(
            id="yiyan",
            name="Yiyan",
            description="Yiyan",
            type=PluginType.SITE,
            category=PluginCategory.TOOL,
            icon=ComponentIcon(render=_yiyan_icon),
            content=SiteContent(url="https://yiyan.baidu.com"),
            vendor=VENDOR,
        ),
        PluginDefinition(
            id="math-function-tools",
            name="MathFunctionTools",
            description="Math functions for chat models",
            type=PluginType.TOOL,
            category=PluginCategory.TOOL,
            icon=InlineSvgIcon(markup=_MATH_ICON),
            content=ScriptContent(source=read_source("math_tools.py")),
            vendor=VENDOR,
        ),
    ]


def build_default_registry(plugin_dir: Optional[Path] = None) -> PluginRegistry:
    """Built-ins first, then any valid third-party plugins from plugin_dir."""
    definitions = builtin_definitions()
    if plugin_dir is not None:
        builtin_ids = {d.id for d in definitions}
        for definition in discover_plugins(Path(plugin_dir)):
            if definition.id in builtin_ids:
                logger.error(f"Skipping plugin {definition.id}: id is reserved by a built-in plugin")
                continue
            definitions.append(definition)
    return PluginRegistry(definitions)
