# src/synvek_plugins/security/__init__.py
"""
Static gatekeeping for third-party plugins.
"""

from synvek_plugins.security.gatekeeper import (
    ALLOWED_PERMISSIONS,
    BANNED_BUILTINS,
    BANNED_IMPORTS,
    ValidationResult,
    is_safe_path,
    validate_manifest,
    validate_plugin_source,
)

__all__ = [
    "ALLOWED_PERMISSIONS",
    "BANNED_BUILTINS",
    "BANNED_IMPORTS",
    "ValidationResult",
    "is_safe_path",
    "validate_manifest",
    "validate_plugin_source",
]
