# src/synvek_plugins/errors.py
"""
Error taxonomy for the plugin runtime.

None of these may escape into the host event loop uncaught: the runner,
bridge and service adapter convert them into instance state, dropped
envelopes or `success: false` responses.
"""


class PluginRuntimeError(Exception):
    """Base class for every error raised by the plugin runtime."""
    pass


class PluginNotFound(PluginRuntimeError):
    """Raised when a plugin id is not in the registry."""

    def __init__(self, plugin_id: str):
        self.plugin_id = plugin_id
        super().__init__(f"Plugin '{plugin_id}' not found")


class PluginNotPermitted(PluginRuntimeError):
    """Raised when settings do not enable the requested plugin."""
    pass


class PluginValidationError(PluginRuntimeError):
    """Raised when a manifest or plugin source fails the gatekeeper."""
    pass


class SandboxLoadFailure(PluginRuntimeError):
    """The isolated execution context failed to start or to report readiness."""
    pass


class PluginReportedError(PluginRuntimeError):
    """The plugin itself sent PLUGIN_ERROR."""
    pass


class ServiceFailure(PluginRuntimeError):
    """A host-side backend call failed while answering a plugin request."""
    pass


class UnknownOperation(PluginRuntimeError):
    """A tool plugin received an operation name it does not declare."""

    def __init__(self, operation):
        self.operation = operation
        super().__init__(f"Unknown operation: {operation}")


class ToolExecutionError(PluginRuntimeError):
    """A tool operation failed, timed out, or received invalid arguments."""
    pass


class MalformedEnvelope(PluginRuntimeError):
    """An inbound value is not a recognised protocol message."""
    pass


class FrameTooLarge(MalformedEnvelope):
    """A frame header announced more bytes than the configured limit."""
    pass
