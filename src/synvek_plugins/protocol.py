# src/synvek_plugins/protocol.py
"""
Plugin Message Protocol.

Wire format for Host <-> Guest communication over the guest's stdin/stdout:

    [LENGTH:4][UTF-8 JSON]

LENGTH is a big-endian unsigned int. The JSON document is one envelope:

    {"type": "<MessageType>", "payload": {...}, "requestId": "<optional>"}

The set of types is closed. Anything else arriving from a guest is a
MalformedEnvelope and is dropped by the bridge.

Tool guests use the same framing with ToolCall / ToolReply documents.
"""

import json
import struct
import asyncio
from enum import Enum
from typing import Any, Annotated, BinaryIO, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from synvek_plugins.context import HostContext, Theme
from synvek_plugins.errors import FrameTooLarge, MalformedEnvelope

HEADER_FORMAT = "!I"
HEADER_SIZE = 4
DEFAULT_MAX_FRAME_BYTES = 16 * 1024 * 1024


class MessageType(str, Enum):
    # Lifecycle
    PLUGIN_READY = "PLUGIN_READY"  # plugin -> host
    PLUGIN_ERROR = "PLUGIN_ERROR"  # plugin -> host
    INIT_CONTEXT = "INIT_CONTEXT"  # host -> plugin

    # Broadcasts (no reply)
    THEME_CHANGED = "THEME_CHANGED"
    LANGUAGE_CHANGED = "LANGUAGE_CHANGED"

    # Speech
    SPEECH_GENERATION_REQUEST = "SPEECH_GENERATION_REQUEST"
    REQUEST_TTS = "REQUEST_TTS"
    SPEECH_GENERATION_RESPONSE = "SPEECH_GENERATION_RESPONSE"
    TTS_RESULT = "TTS_RESULT"

    # Chat completion
    REQUEST_CHAT_COMPLETION = "REQUEST_CHAT_COMPLETION"
    CHAT_COMPLETION_REQUEST = "CHAT_COMPLETION_REQUEST"
    RESPONSE_CHAT_COMPLETION = "RESPONSE_CHAT_COMPLETION"
    CHAT_COMPLETION_RESPONSE = "CHAT_COMPLETION_RESPONSE"

    # Image generation
    REQUEST_IMAGE_GENERATION = "REQUEST_IMAGE_GENERATION"
    IMAGE_GENERATION_REQUEST = "IMAGE_GENERATION_REQUEST"
    RESPONSE_IMAGE_GENERATION = "RESPONSE_IMAGE_GENERATION"
    IMAGE_GENERATION_RESPONSE = "IMAGE_GENERATION_RESPONSE"


# Each request type answers with exactly one paired response type.
RESPONSE_FOR = {
    MessageType.SPEECH_GENERATION_REQUEST: MessageType.SPEECH_GENERATION_RESPONSE,
    MessageType.REQUEST_TTS: MessageType.TTS_RESULT,
    MessageType.REQUEST_CHAT_COMPLETION: MessageType.RESPONSE_CHAT_COMPLETION,
    MessageType.CHAT_COMPLETION_REQUEST: MessageType.CHAT_COMPLETION_RESPONSE,
    MessageType.REQUEST_IMAGE_GENERATION: MessageType.RESPONSE_IMAGE_GENERATION,
    MessageType.IMAGE_GENERATION_REQUEST: MessageType.IMAGE_GENERATION_RESPONSE,
}

REQUEST_TYPES = frozenset(RESPONSE_FOR)
RESPONSE_TYPES = frozenset(RESPONSE_FOR.values())
BROADCAST_TYPES = frozenset({MessageType.THEME_CHANGED, MessageType.LANGUAGE_CHANGED})

PLUGIN_TO_HOST = frozenset({MessageType.PLUGIN_READY, MessageType.PLUGIN_ERROR}) | REQUEST_TYPES
HOST_TO_PLUGIN = frozenset({MessageType.INIT_CONTEXT}) | BROADCAST_TYPES | RESPONSE_TYPES


# --- Payload Models ---


class PluginErrorPayload(BaseModel):
    error: str


class ThemeChangedPayload(BaseModel):
    theme: Theme


class LanguageChangedPayload(BaseModel):
    language: str


class SpeechGenerationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    model_name: Optional[str] = Field(default=None, alias="modelName")  # None = host default
    text: str
    format: Optional[str] = None  # "wav" | "pcm"
    speed: Optional[float] = None


class ChatMessage(BaseModel):
    type: Literal["text", "image_url", "audio_url"] = "text"
    text: str


class ChatCompletionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    model_name: Optional[str] = Field(default=None, alias="modelName")
    system_prompts: list[ChatMessage] = Field(default_factory=list)
    user_prompts: list[ChatMessage]
    temperature: float = 0.8
    top_n: float = Field(default=0.8, alias="topN")


class ImageGenerationRequest(BaseModel):
    """Model-specific: unknown keys are kept and forwarded."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    model_name: Optional[str] = Field(default=None, alias="modelName")
    text: str
    format: Optional[str] = None  # "png" | "jpg"
    count: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None


class PluginResponse(BaseModel):
    """Shape of every RESPONSE_* payload."""

    success: bool
    data: Optional[Any] = None  # audio data url, completion text, image base64
    code: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls, data: Any) -> "PluginResponse":
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, message: str, code: Optional[str] = None) -> "PluginResponse":
        return cls(success=False, data=None, code=code, message=message)


# --- Envelopes ---


class _Envelope(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @property
    def message_type(self) -> MessageType:
        return MessageType(self.type)


class _Correlated(_Envelope):
    request_id: Optional[str] = Field(default=None, alias="requestId")


class PluginReady(_Envelope):
    type: Literal["PLUGIN_READY"] = "PLUGIN_READY"
    payload: Optional[dict[str, Any]] = None


class PluginError(_Envelope):
    type: Literal["PLUGIN_ERROR"] = "PLUGIN_ERROR"
    payload: PluginErrorPayload


class InitContext(_Envelope):
    type: Literal["INIT_CONTEXT"] = "INIT_CONTEXT"
    payload: HostContext


class ThemeChanged(_Envelope):
    type: Literal["THEME_CHANGED"] = "THEME_CHANGED"
    payload: ThemeChangedPayload


class LanguageChanged(_Envelope):
    type: Literal["LANGUAGE_CHANGED"] = "LANGUAGE_CHANGED"
    payload: LanguageChangedPayload


class SpeechRequest(_Correlated):
    type: Literal["SPEECH_GENERATION_REQUEST", "REQUEST_TTS"]
    payload: SpeechGenerationRequest


class SpeechResponse(_Correlated):
    type: Literal["SPEECH_GENERATION_RESPONSE", "TTS_RESULT"]
    payload: PluginResponse


class ChatRequest(_Correlated):
    type: Literal["REQUEST_CHAT_COMPLETION", "CHAT_COMPLETION_REQUEST"]
    payload: ChatCompletionRequest


class ChatResponse(_Correlated):
    type: Literal["RESPONSE_CHAT_COMPLETION", "CHAT_COMPLETION_RESPONSE"]
    payload: PluginResponse


class ImageRequest(_Correlated):
    type: Literal["REQUEST_IMAGE_GENERATION", "IMAGE_GENERATION_REQUEST"]
    payload: ImageGenerationRequest


class ImageResponse(_Correlated):
    type: Literal["RESPONSE_IMAGE_GENERATION", "IMAGE_GENERATION_RESPONSE"]
    payload: PluginResponse


Envelope = Annotated[
    Union[
        PluginReady,
        PluginError,
        InitContext,
        ThemeChanged,
        LanguageChanged,
        SpeechRequest,
        SpeechResponse,
        ChatRequest,
        ChatResponse,
        ImageRequest,
        ImageResponse,
    ],
    Field(discriminator="type"),
]

_ENVELOPE_ADAPTER: TypeAdapter = TypeAdapter(Envelope)

_RESPONSE_CLASSES = {
    MessageType.SPEECH_GENERATION_RESPONSE: SpeechResponse,
    MessageType.TTS_RESULT: SpeechResponse,
    MessageType.RESPONSE_CHAT_COMPLETION: ChatResponse,
    MessageType.CHAT_COMPLETION_RESPONSE: ChatResponse,
    MessageType.RESPONSE_IMAGE_GENERATION: ImageResponse,
    MessageType.IMAGE_GENERATION_RESPONSE: ImageResponse,
}


def parse_envelope(raw: Any) -> Envelope:
    """
    Validate a decoded JSON value as an envelope.

    Raises:
        MalformedEnvelope: if raw is not an object with a known `type`, or the
            payload does not match that type.
    """
    if not isinstance(raw, dict) or "type" not in raw:
        raise MalformedEnvelope("Envelope must be an object with a 'type' key")

    type_name = raw["type"]
    try:
        MessageType(type_name)
    except ValueError:
        raise MalformedEnvelope(f"Unknown message type: {type_name!r}")

    try:
        return _ENVELOPE_ADAPTER.validate_python(raw)
    except ValidationError as e:
        raise MalformedEnvelope(f"Invalid {type_name} payload: {e.error_count()} error(s)") from e


def decode_envelope(data: bytes) -> Envelope:
    """Decode one frame body. Raises MalformedEnvelope on bad JSON or shape."""
    # ValueError covers bad JSON, bad UTF-8 and over-long integer literals;
    # RecursionError covers pathologically nested arrays and objects.
    try:
        raw = json.loads(data.decode("utf-8"))
    except (ValueError, RecursionError) as e:
        raise MalformedEnvelope(f"Failed to decode JSON payload: {type(e).__name__}") from e
    return parse_envelope(raw)


def encode_envelope(envelope: _Envelope) -> bytes:
    return envelope.model_dump_json(by_alias=True).encode("utf-8")


# --- Message Builders ---


def msg_plugin_ready() -> PluginReady:
    return PluginReady()


def msg_plugin_error(error: str) -> PluginError:
    return PluginError(payload=PluginErrorPayload(error=error))


def msg_init_context(context: HostContext) -> InitContext:
    return InitContext(payload=context)


def msg_theme_changed(theme: Theme) -> ThemeChanged:
    return ThemeChanged(payload=ThemeChangedPayload(theme=theme))


def msg_language_changed(language: str) -> LanguageChanged:
    return LanguageChanged(payload=LanguageChangedPayload(language=language))


def msg_response(
    request_type: MessageType,
    response: PluginResponse,
    request_id: Optional[str] = None,
) -> _Correlated:
    """Build the RESPONSE_* envelope paired with request_type."""
    response_type = RESPONSE_FOR[MessageType(request_type)]
    envelope_cls = _RESPONSE_CLASSES[response_type]
    return envelope_cls(type=response_type.value, payload=response, request_id=request_id)


# --- Tool guest documents ---


class ToolCall(BaseModel):
    """Host -> tool guest: run one operation."""

    id: str
    type: Literal["execute"] = "execute"
    data: dict[str, Any]


class ToolReply(BaseModel):
    """Tool guest -> host: the result of one ToolCall."""

    id: str
    type: Literal["execution_result", "panic"]
    data: Optional[Any] = None
    error: Optional[str] = None
    code: Optional[str] = None  # exception class name on panic


# --- Framing ---


def pack_frame(body: bytes) -> bytes:
    return struct.pack(HEADER_FORMAT, len(body)) + body


def _frame_length(header: bytes, max_bytes: int) -> int:
    length = struct.unpack(HEADER_FORMAT, header)[0]
    if length > max_bytes:
        raise FrameTooLarge(f"Frame of {length} bytes exceeds limit of {max_bytes}")
    return length


async def read_frame(
    reader: asyncio.StreamReader,
    max_bytes: int = DEFAULT_MAX_FRAME_BYTES,
) -> Optional[bytes]:
    """
    Read one frame body from an asyncio stream.

    Returns:
        The body, or None on a clean EOF before the header.

    Raises:
        FrameTooLarge: header announces more than max_bytes
        MalformedEnvelope: stream closed mid-frame
    """
    try:
        header = await reader.readexactly(HEADER_SIZE)
    except asyncio.IncompleteReadError as e:
        if not e.partial:
            return None
        raise MalformedEnvelope("Connection closed mid-header") from e

    length = _frame_length(header, max_bytes)
    try:
        return await reader.readexactly(length)
    except asyncio.IncompleteReadError as e:
        raise MalformedEnvelope("Connection closed mid-message") from e


def read_frame_sync(stream: BinaryIO, max_bytes: int = DEFAULT_MAX_FRAME_BYTES) -> Optional[bytes]:
    """Blocking counterpart of read_frame, used inside guest processes."""
    header = _read_exact(stream, HEADER_SIZE)
    if not header:
        return None
    length = _frame_length(header, max_bytes)
    body = _read_exact(stream, length)
    if len(body) < length:
        raise MalformedEnvelope("Connection closed mid-message")
    return body


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    data = bytearray()
    while len(data) < size:
        chunk = stream.read(size - len(data))
        if not chunk:
            if len(data) == 0:
                return b""
            raise MalformedEnvelope("Connection closed mid-message")
        data.extend(chunk)
    return bytes(data)
