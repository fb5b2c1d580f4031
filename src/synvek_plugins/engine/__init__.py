# src/synvek_plugins/engine/__init__.py
"""
Synvek Plugin Engine Module.

- SubprocessSandbox: host side of a guest interpreter (engine.sandbox)
- GuestBridge: plugin side, run with `python -m synvek_plugins.engine.guest`
- apply_limits: restrictions applied inside the guest (engine.restrictions)

Guest processes import this package, so nothing host-only is imported here.
"""
