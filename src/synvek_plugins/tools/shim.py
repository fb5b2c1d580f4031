#!/usr/bin/env python3
# src/synvek_plugins/tools/shim.py
"""
Tool plugin guest process.

Executes exactly one ToolCall and exits:
1. Read the plugin source from the environment (base64)
2. Apply sandbox restrictions
3. Exec the source; it must bind a top-level `plugin` (a ToolPlugin)
4. Read one {id, type: "execute", data} frame from stdin
5. Write one {id, type: "execution_result" | "panic", ...} frame to stdout

Usage:
    SYNVEK_GUEST_CONTENT=<base64> \
    SYNVEK_GUEST_LIMITS='{"working_dir": "/tmp/x"}' \
    SYNVEK_PLUGIN_ID=math-function-tools \
    python -m synvek_plugins.tools.shim
"""

import os
import sys
import json
import base64
import asyncio
import logging
import traceback

from synvek_plugins.engine.guest import ENV_CONTENT, ENV_LIMITS, ENV_MAX_FRAME, ENV_PLUGIN_ID
from synvek_plugins.engine.restrictions import apply_limits
from synvek_plugins.errors import MalformedEnvelope
from synvek_plugins.protocol import DEFAULT_MAX_FRAME_BYTES, ToolCall, ToolReply, pack_frame, read_frame_sync
from synvek_plugins.tools.plugin import ToolPlugin, param, tool

# Configure logging to stderr (keeps stdout for frames)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [GUEST] %(levelname)s: %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)


def load_tool_plugin(source_code: str, plugin_id: str) -> ToolPlugin:
    plugin_namespace = {
        "__name__": "__synvek_tool__",
        "__file__": "<tool>",
        "__builtins__": __builtins__,
        "ToolPlugin": ToolPlugin,
        "tool": tool,
        "param": param,
    }
    exec(compile(source_code, f"<tool:{plugin_id}>", "exec"), plugin_namespace)

    plugin = plugin_namespace.get("plugin")
    if not isinstance(plugin, ToolPlugin):
        raise ValueError("Tool plugin must bind a top-level 'plugin' ToolPlugin instance")
    return plugin


def _write(stream, reply: ToolReply):
    stream.write(pack_frame(reply.model_dump_json(exclude_none=True).encode("utf-8")))
    stream.flush()


def main():
    """Main entry point for the tool shim."""
    content_b64 = os.environ.get(ENV_CONTENT)
    plugin_id = os.environ.get(ENV_PLUGIN_ID, "")
    max_bytes = int(os.environ.get(ENV_MAX_FRAME, DEFAULT_MAX_FRAME_BYTES))

    if content_b64 is None:
        logger.error(f"Missing required environment variable: {ENV_CONTENT}")
        sys.exit(1)

    inbound = sys.stdin.buffer
    outbound = sys.stdout.buffer
    sys.stdout = sys.stderr

    # The loop needs its self-pipe socket before network access is removed.
    loop = asyncio.new_event_loop()

    try:
        body = read_frame_sync(inbound, max_bytes)
    except MalformedEnvelope as e:
        logger.error(f"Inbound stream corrupted: {e}")
        sys.exit(1)
    if body is None:
        logger.info("Host closed channel before sending a call")
        return

    try:
        call = ToolCall.model_validate_json(body)
    except ValueError as e:
        logger.error(f"Invalid tool call: {e}")
        sys.exit(1)

    try:
        source = base64.b64decode(content_b64).decode("utf-8")
        apply_limits(json.loads(os.environ.get(ENV_LIMITS) or "{}"))
        plugin = load_tool_plugin(source, plugin_id)
        result = loop.run_until_complete(plugin.execute(call.data))
        json.dumps(result)  # results must cross the pipe as JSON
        reply = ToolReply(id=call.id, type="execution_result", data=result)
    except Exception as e:
        logger.error(f"Tool {plugin_id} failed: {type(e).__name__}: {e}")
        logger.debug(traceback.format_exc())
        reply = ToolReply(id=call.id, type="panic", error=str(e), code=type(e).__name__)
    finally:
        loop.close()

    _write(outbound, reply)


if __name__ == "__main__":
    main()
