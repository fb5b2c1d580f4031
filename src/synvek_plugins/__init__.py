# src/synvek_plugins/__init__.py
"""
Synvek plugin runtime.

Loads mini-app and tool plugins, runs each in its own guest interpreter, and
talks to it only through typed messages.
"""

__version__ = "0.3.0"
