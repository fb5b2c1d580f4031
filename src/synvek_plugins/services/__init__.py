# src/synvek_plugins/services/__init__.py
"""
Host-side services that answer plugin requests.

- HostServiceAdapter: REQUEST_* -> backend call -> RESPONSE_*
- AgentServerClient: httpx client for the local agent server
"""

from synvek_plugins.services.adapter import DEFAULT_MODEL_NOT_FOUND, HostServiceAdapter, HostServices
from synvek_plugins.services.agent_client import AgentServerClient

__all__ = [
    "HostServiceAdapter",
    "HostServices",
    "DEFAULT_MODEL_NOT_FOUND",
    "AgentServerClient",
]
