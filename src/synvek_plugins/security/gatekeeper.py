# src/synvek_plugins/security/gatekeeper.py
"""
Plugin Security Gatekeeper - manifest checks and AST-based source validation.

Third-party plugins discovered on disk must pass these checks before they
are added to the registry. The sandbox still treats accepted plugins as
untrusted; this is an early, cheap rejection of obviously hostile code.
"""

import ast
import re
from typing import Any, Literal, Mapping, Optional
from dataclasses import dataclass, field


# Modules that plugin code MUST NOT import
BANNED_IMPORTS = {
    "os",
    "sys",
    "subprocess",
    "importlib",
    "shutil",
    "socket",
    "requests",
    "httpx",
    "urllib",
    "http",
    "ftplib",
    "smtplib",
    "pickle",
    "shelve",
    "marshal",
    "ctypes",
    "multiprocessing",
    "threading",
    "builtins",
}

# Dangerous built-in functions
BANNED_BUILTINS = {
    "eval",
    "exec",
    "compile",
    "__import__",
    "open",  # File I/O goes through host services
    "globals",
    "breakpoint",
}

# Permissions a manifest may request
ALLOWED_PERMISSIONS = {"net", "read", "write", "env", "run"}

_VERSION_PATTERN = re.compile(r"^\d+\.\d+\.\d+$")
_UNSAFE_PATH_PATTERNS = (
    re.compile(r"\.\./"),
    re.compile(r"\.\.\\"),
    re.compile(r"^/"),
    re.compile(r"^[a-zA-Z]:\\"),
)


@dataclass
class ValidationResult:
    """Result of a gatekeeper check."""

    is_safe: bool
    error_message: Optional[str] = None
    violations: list[str] = field(default_factory=list)

    @classmethod
    def from_violations(cls, violations: list[str]) -> "ValidationResult":
        if violations:
            return cls(is_safe=False, error_message="; ".join(violations), violations=violations)
        return cls(is_safe=True)


def is_safe_path(path: str) -> bool:
    """Reject traversal and absolute entry paths."""
    return not any(pattern.search(path) for pattern in _UNSAFE_PATH_PATTERNS)


def validate_manifest(manifest: Mapping[str, Any]) -> ValidationResult:
    """
    Validate a plugin.json manifest.

    Checks:
    1. name and version are present, version is x.y.z
    2. entry is present (except for site plugins) and is a safe relative path
    3. requested permissions are all known
    """
    violations = []

    if not manifest.get("name"):
        violations.append("Missing name")

    version = manifest.get("version")
    if not version:
        violations.append("Missing version")
    elif not _VERSION_PATTERN.match(str(version)):
        violations.append(f"Invalid version: {version}")

    entry = manifest.get("entry")
    if manifest.get("type") != "site":
        if not entry:
            violations.append("Missing entry")
        elif not is_safe_path(str(entry)):
            violations.append(f"Unsafe entry path: {entry}")

    for permission in manifest.get("permissions") or ():
        if permission not in ALLOWED_PERMISSIONS:
            violations.append(f"Unknown permission: {permission}")

    return ValidationResult.from_violations(violations)


def validate_plugin_source(source_code: str, kind: Literal["app", "tool"] = "tool") -> ValidationResult:
    """
    Validate plugin source code using AST-based static analysis.

    Checks:
    1. Code is syntactically valid Python
    2. No banned imports (os, subprocess, etc.)
    3. No banned built-in calls (eval, exec, open, etc.)
    4. Dunder attribute access is limited to names the runtime itself uses
    5. Tool plugins bind a top-level `plugin`; apps reference `bridge`

    Args:
        source_code: Python source code to validate
        kind: "tool" for tool plugins, "app" for guest-script mini apps

    Returns:
        ValidationResult with safety status and error details
    """
    violations = []

    try:
        tree = ast.parse(source_code)
    except SyntaxError as e:
        return ValidationResult(
            is_safe=False, error_message=f"Syntax error: {e}", violations=["SYNTAX_ERROR"]
        )

    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                if alias.name.split(".")[0] in BANNED_IMPORTS:
                    violations.append(f"Banned import: {alias.name}")

        elif isinstance(node, ast.ImportFrom):
            if node.module and node.module.split(".")[0] in BANNED_IMPORTS:
                violations.append(f"Banned import: from {node.module}")

        elif isinstance(node, ast.Call):
            if isinstance(node.func, ast.Name) and node.func.id in BANNED_BUILTINS:
                violations.append(f"Banned built-in: {node.func.id}()")

        elif isinstance(node, ast.Attribute):
            if node.attr.startswith("__") and node.attr not in ("__init__", "__name__"):
                violations.append(f"Banned attribute access: {node.attr}")

    if kind == "tool":
        if not _binds_name(tree, "plugin"):
            violations.append("Tool plugin must define a top-level 'plugin' object")
    elif not any(isinstance(node, ast.Name) and node.id == "bridge" for node in ast.walk(tree)):
        violations.append("App plugin must use the 'bridge' global")

    return ValidationResult.from_violations(violations)


def _binds_name(tree: ast.Module, name: str) -> bool:
    for node in tree.body:
        if isinstance(node, ast.Assign):
            if any(isinstance(target, ast.Name) and target.id == name for target in node.targets):
                return True
        elif isinstance(node, ast.AnnAssign):
            if isinstance(node.target, ast.Name) and node.target.id == name:
                return True
    return False
