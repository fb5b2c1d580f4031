# src/synvek_plugins/bridge.py
"""
Message Bridge.

Typed, asynchronous channel between the host and the one attached plugin
instance. Outbound envelopes are serialized and handed to the sandbox;
inbound frames are decoded, validated against the closed envelope union,
direction-checked, and dispatched to handlers registered per type.

A frame that fails any check is dropped and logged at DEBUG. Nothing a
plugin sends can raise into the host.
"""
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from synvek_plugins.errors import MalformedEnvelope
from synvek_plugins.protocol import (
    PLUGIN_TO_HOST,
    MessageType,
    decode_envelope,
    encode_envelope,
    parse_envelope,
)

logger = logging.getLogger(__name__)

Channel = Callable[[bytes], bool]
EnvelopeHandler = Callable[[str, Any], None]


class MessageBridge:
    def __init__(self):
        self._instance_id: Optional[str] = None
        self._channel: Optional[Channel] = None
        self._handlers: Dict[MessageType, List[EnvelopeHandler]] = {}

    @property
    def attached_instance(self) -> Optional[str]:
        return self._instance_id

    def attach(self, instance_id: str, channel: Channel) -> None:
        """Bind the bridge to a new instance. Replaces any previous binding."""
        if self._instance_id is not None and self._instance_id != instance_id:
            logger.debug(f"Bridge re-attached from {self._instance_id} to {instance_id}")
        self._instance_id = instance_id
        self._channel = channel

    def detach(self, instance_id: Optional[str] = None) -> None:
        """Unbind. With an instance_id, only unbinds if that instance is attached."""
        if instance_id is not None and instance_id != self._instance_id:
            return
        self._instance_id = None
        self._channel = None

    def on(self, message_type: MessageType, handler: EnvelopeHandler) -> None:
        handlers = self._handlers.setdefault(MessageType(message_type), [])
        if handler not in handlers:
            handlers.append(handler)

    def off(self, message_type: MessageType, handler: EnvelopeHandler) -> None:
        handlers = self._handlers.get(MessageType(message_type), [])
        if handler in handlers:
            handlers.remove(handler)

    def require_routes(self, message_types: Iterable[MessageType]) -> None:
        """
        Fail fast if an inbound type has no handler.

        Raises:
            LookupError: listing every unrouted type
        """
        missing = sorted(t.value for t in message_types if not self._handlers.get(MessageType(t)))
        if missing:
            raise LookupError(f"No handler registered for: {', '.join(missing)}")

    def post(self, envelope) -> bool:
        """Serialize and send to the attached instance. No channel: no-op, False."""
        if self._channel is None:
            logger.debug(f"Dropping outbound {envelope.type}: no plugin attached")
            return False
        return self._channel(encode_envelope(envelope))

    def receive(self, instance_id: str, raw: Union[bytes, dict]) -> bool:
        """
        Handle one inbound frame from instance_id.

        Returns:
            True if the envelope was dispatched, False if it was dropped.
        """
        if instance_id != self._instance_id:
            logger.debug(f"Dropping frame from stale instance {instance_id}")
            return False

        try:
            envelope = decode_envelope(raw) if isinstance(raw, (bytes, bytearray)) else parse_envelope(raw)
        except MalformedEnvelope as e:
            logger.debug(f"Dropping malformed frame from {instance_id}: {e}")
            return False

        message_type = envelope.message_type
        if message_type not in PLUGIN_TO_HOST:
            logger.debug(f"Dropping {message_type.value} from {instance_id}: not a plugin-to-host type")
            return False

        handlers = self._handlers.get(message_type, [])
        if not handlers:
            logger.debug(f"No handler for {message_type.value}")
            return False

        for handler in list(handlers):
            try:
                handler(instance_id, envelope)
            except Exception:
                logger.exception(f"Handler for {message_type.value} failed")
        return True
