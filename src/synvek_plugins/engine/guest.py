#!/usr/bin/env python3
# src/synvek_plugins/engine/guest.py
"""
Mini-app guest process.

Runs inside a child interpreter started by SubprocessSandbox and plays the
plugin side of the Host/Guest split:

- Reads the plugin bundle from the environment (base64)
- Applies sandbox restrictions before any plugin code runs
- Executes the bundle with a `bridge` global bound to this process's pipes
- Dispatches inbound envelopes to the handlers the plugin registered

Communication Protocol (stdin/stdout, see synvek_plugins.protocol):
    [LENGTH:4][UTF-8 JSON envelope]

stdout is reserved for frames; anything the plugin prints goes to stderr,
which the host relays into its own log.

Usage:
    SYNVEK_GUEST_CONTENT=<base64> \
    SYNVEK_GUEST_KIND=script \
    SYNVEK_GUEST_LIMITS='{"working_dir": "/tmp/x"}' \
    SYNVEK_PLUGIN_ID=translation \
    python -m synvek_plugins.engine.guest
"""

import os
import sys
import json
import uuid
import base64
import logging
import traceback
from typing import Any, BinaryIO, Callable, Optional

from synvek_plugins.engine.restrictions import apply_limits
from synvek_plugins.errors import MalformedEnvelope
from synvek_plugins.protocol import DEFAULT_MAX_FRAME_BYTES, MessageType, pack_frame, read_frame_sync

# Configure logging to stderr (keeps stdout for frames)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [GUEST] %(levelname)s: %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

ENV_CONTENT = "SYNVEK_GUEST_CONTENT"
ENV_KIND = "SYNVEK_GUEST_KIND"
ENV_LIMITS = "SYNVEK_GUEST_LIMITS"
ENV_PLUGIN_ID = "SYNVEK_PLUGIN_ID"
ENV_MAX_FRAME = "SYNVEK_MAX_FRAME_BYTES"

Handler = Callable[[dict], Any]


class GuestBridge:
    """
    The plugin author's view of the host.

    Handlers receive the raw envelope dict: {"type", "payload", "requestId"?}.
    """

    def __init__(self, output: BinaryIO, plugin_id: str = ""):
        self._output = output
        self.plugin_id = plugin_id
        self._handlers: dict[str, list[Handler]] = {}

    def on(self, message_type: str, handler: Handler) -> None:
        self._handlers.setdefault(str(message_type), []).append(handler)

    def post(self, message_type: str, payload: Any = None, request_id: Optional[str] = None) -> None:
        envelope: dict[str, Any] = {"type": str(message_type), "payload": payload}
        if request_id is not None:
            envelope["requestId"] = request_id
        self._output.write(pack_frame(json.dumps(envelope).encode("utf-8")))
        self._output.flush()

    def request(self, message_type: str, payload: Any) -> str:
        """Post a REQUEST_* envelope; the reply carries the returned id."""
        request_id = uuid.uuid4().hex
        self.post(message_type, payload, request_id=request_id)
        return request_id

    def ready(self) -> None:
        self.post(MessageType.PLUGIN_READY.value)

    def fail(self, error: Any) -> None:
        self.post(MessageType.PLUGIN_ERROR.value, {"error": str(error)})

    def log(self, *args: Any) -> None:
        logger.info(" ".join(str(a) for a in args))

    def dispatch(self, envelope: dict) -> None:
        for handler in list(self._handlers.get(envelope.get("type"), ())):
            try:
                handler(envelope)
            except Exception as e:
                logger.error(f"Handler for {envelope.get('type')} failed: {e}")
                logger.debug(traceback.format_exc())
                self.fail(f"{type(e).__name__}: {e}")


def load_plugin(source_code: str, bridge: GuestBridge) -> dict:
    """Execute the bundle in a fresh namespace with `bridge` bound."""
    plugin_namespace = {
        "__name__": "__synvek_plugin__",
        "__file__": "<plugin>",
        "__builtins__": __builtins__,
        "bridge": bridge,
    }
    exec(compile(source_code, f"<plugin:{bridge.plugin_id}>", "exec"), plugin_namespace)
    return plugin_namespace


def serve(bridge: GuestBridge, stream: BinaryIO, max_bytes: int) -> None:
    """Dispatch inbound frames until the host closes stdin."""
    while True:
        try:
            body = read_frame_sync(stream, max_bytes)
        except MalformedEnvelope as e:
            logger.error(f"Inbound stream corrupted: {e}")
            return
        if body is None:
            logger.info("Host closed channel")
            return
        try:
            envelope = json.loads(body.decode("utf-8"))
        except (ValueError, RecursionError) as e:
            logger.warning(f"Dropping undecodable frame: {e}")
            continue
        if isinstance(envelope, dict):
            bridge.dispatch(envelope)


def main():
    """Main entry point for the mini-app guest."""
    content_b64 = os.environ.get(ENV_CONTENT)
    kind = os.environ.get(ENV_KIND, "script")
    plugin_id = os.environ.get(ENV_PLUGIN_ID, "")
    max_bytes = int(os.environ.get(ENV_MAX_FRAME, DEFAULT_MAX_FRAME_BYTES))

    if content_b64 is None:
        logger.error(f"Missing required environment variable: {ENV_CONTENT}")
        sys.exit(1)

    # Keep the binary pipes, then point print() at stderr.
    inbound = sys.stdin.buffer
    outbound = sys.stdout.buffer
    sys.stdout = sys.stderr

    bridge = GuestBridge(outbound, plugin_id)

    try:
        content = base64.b64decode(content_b64).decode("utf-8")
        limits = json.loads(os.environ.get(ENV_LIMITS) or "{}")
        apply_limits(limits)
    except Exception as e:
        logger.error(f"Guest setup failed: {e}")
        bridge.fail(f"Guest setup failed: {e}")
        sys.exit(1)

    if kind == "site":
        # Remote site: nothing to execute, the host's web view renders the url.
        logger.info(f"Site plugin {plugin_id}: {content}")
        bridge.ready()
    else:
        try:
            load_plugin(content, bridge)
        except Exception as e:
            logger.error(f"Plugin {plugin_id} failed to load: {e}")
            logger.debug(traceback.format_exc())
            bridge.fail(f"{type(e).__name__}: {e}")

    serve(bridge, inbound, max_bytes)


if __name__ == "__main__":
    main()
