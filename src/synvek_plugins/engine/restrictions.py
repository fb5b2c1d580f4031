# src/synvek_plugins/engine/restrictions.py
"""
In-process restrictions applied by guest interpreters before plugin code runs.

These run inside the child process only. They are best-effort hardening on
top of process isolation: resource limits via `resource` (POSIX), and
monkeypatched socket / subprocess / open entry points.
"""
import builtins
import contextlib
import os
from pathlib import Path
from typing import Any, Mapping

try:
    import resource
except ImportError:  # Windows: no rlimits
    resource = None


def guest_limits_payload(config, working_dir: Path) -> dict[str, Any]:
    """Serialize a SandboxConfig into the JSON the guest reads from its env."""
    return {
        "working_dir": str(working_dir),
        "cpu_time_seconds": config.cpu_time_seconds,
        "memory_bytes": config.memory_bytes,
        "max_open_files": config.max_open_files,
        "allow_network": config.allow_network,
        "allow_subprocesses": config.allow_subprocesses,
    }


def apply_limits(limits: Mapping[str, Any]) -> None:
    working_dir = Path(str(limits.get("working_dir") or ".")).resolve()
    working_dir.mkdir(parents=True, exist_ok=True)
    os.chdir(working_dir)

    if resource is not None:
        cpu_time = int(limits.get("cpu_time_seconds") or 0)
        if cpu_time > 0:
            _set_limit("RLIMIT_CPU", cpu_time)

        memory_bytes = int(limits.get("memory_bytes") or 0)
        if memory_bytes > 0:
            _set_limit("RLIMIT_AS", memory_bytes)

        max_open_files = int(limits.get("max_open_files") or 0)
        if max_open_files > 0:
            _set_limit("RLIMIT_NOFILE", max_open_files)

    if not limits.get("allow_network", False):
        disable_network()

    if not limits.get("allow_subprocesses", False):
        disable_subprocess_creation()

    restrict_file_access(working_dir)


def _set_limit(name: str, value: int) -> None:
    res_value = getattr(resource, name, None)
    if res_value is None:
        return
    with contextlib.suppress(ValueError, OSError):
        soft, hard = resource.getrlimit(res_value)
        if hard != resource.RLIM_INFINITY:
            value = min(value, hard)
        resource.setrlimit(res_value, (value, hard if hard != resource.RLIM_INFINITY else value))


def disable_network() -> None:
    import socket

    def _raise_network_error(*_args: Any, **_kwargs: Any) -> Any:
        raise PermissionError("Network access is disabled in sandbox")

    socket.socket = _raise_network_error  # type: ignore[assignment]
    socket.create_connection = _raise_network_error  # type: ignore[assignment]
    socket.create_server = _raise_network_error  # type: ignore[assignment]


def disable_subprocess_creation() -> None:
    import subprocess

    def _blocked(*_args: Any, **_kwargs: Any):
        raise PermissionError("Subprocess creation is disabled in sandbox")

    subprocess.Popen = _blocked  # type: ignore[assignment]
    os.system = _blocked  # type: ignore[assignment]
    for name in ("fork", "forkpty", "execv", "execve", "spawnv", "spawnve"):
        if hasattr(os, name):
            setattr(os, name, _blocked)


def restrict_file_access(working_dir: Path) -> None:
    allowed_root = working_dir.resolve()
    original_open = builtins.open

    def _guarded_open(file: Any, *args: Any, **kwargs: Any):
        if isinstance(file, int):  # file descriptor
            return original_open(file, *args, **kwargs)
        path = Path(file)
        if not path.is_absolute():
            path = (Path.cwd() / path).resolve()
        else:
            path = path.resolve()
        if not _is_within(path, allowed_root):
            raise PermissionError("File system access is restricted inside sandbox")
        return original_open(path, *args, **kwargs)

    builtins.open = _guarded_open  # type: ignore[assignment]


def _is_within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
        return True
    except ValueError:
        return False
