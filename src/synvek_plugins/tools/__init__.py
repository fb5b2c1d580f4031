# src/synvek_plugins/tools/__init__.py
"""
Tool plugin SDK.

Plugin authors import from here:

    from synvek_plugins.tools import ToolPlugin, tool, param

Tool guests import this package too, so the host-side executor lives in
synvek_plugins.tools.executor and is not re-exported.
"""

from synvek_plugins.tools.plugin import SCHEMA_OPERATION, ToolPlugin, param, tool
from synvek_plugins.tools.schema import (
    ToolParameterSchema,
    ToolSchema,
    ToolSchemaList,
    build_arguments_model,
)

__all__ = [
    "ToolPlugin",
    "tool",
    "param",
    "SCHEMA_OPERATION",
    "ToolParameterSchema",
    "ToolSchema",
    "ToolSchemaList",
    "build_arguments_model",
]
