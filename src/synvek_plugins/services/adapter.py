# src/synvek_plugins/services/adapter.py
"""
Host Service Adapter.

Answers plugin-originated REQUEST_* envelopes by calling real backends on
the host loop (never inside the sandbox). Each request runs as its own task
and produces exactly one paired RESPONSE_* envelope, delivered only to the
instance that asked, and only while that instance is still current.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Set

from synvek_plugins.bridge import MessageBridge
from synvek_plugins.config import ServicesConfig
from synvek_plugins.context import WorkspaceContext
from synvek_plugins.errors import ServiceFailure
from synvek_plugins.protocol import (
    REQUEST_TYPES,
    ChatCompletionRequest,
    ChatMessage,
    ImageGenerationRequest,
    MessageType,
    PluginResponse,
    SpeechGenerationRequest,
    msg_response,
)
from synvek_plugins.runner import PluginRunner

logger = logging.getLogger(__name__)

DEFAULT_MODEL_NOT_FOUND = "Default model not found"


class HostServices(Protocol):
    """Backend calls the adapter needs; AgentServerClient implements these."""

    async def generate_speech(
        self, text: str, model_name: str, speed: Optional[float] = None, format: Optional[str] = None
    ) -> Any: ...

    async def chat_completion(
        self,
        user_prompts: list[ChatMessage],
        model_name: str,
        system_prompts: Optional[list[ChatMessage]] = None,
        temperature: Optional[float] = None,
        top_n: Optional[float] = None,
    ) -> Any: ...

    async def generate_image(
        self,
        text: str,
        model_name: str,
        count: Optional[int] = None,
        width: Optional[int] = None,
        height: Optional[int] = None,
        **extra: Any,
    ) -> Any: ...


ServiceCall = Callable[[Any], Awaitable[Any]]


class HostServiceAdapter:
    def __init__(
        self,
        runner: PluginRunner,
        services: HostServices,
        workspace: WorkspaceContext,
        config: Optional[ServicesConfig] = None,
    ):
        self.runner = runner
        self.services = services
        self.workspace = workspace
        self.config = config or ServicesConfig()
        self._tasks: Dict[str, Set[asyncio.Task]] = {}

        self.routes: Dict[MessageType, ServiceCall] = {
            MessageType.SPEECH_GENERATION_REQUEST: self._generate_speech,
            MessageType.REQUEST_TTS: self._generate_speech,
            MessageType.REQUEST_CHAT_COMPLETION: self._chat_completion,
            MessageType.CHAT_COMPLETION_REQUEST: self._chat_completion,
            MessageType.REQUEST_IMAGE_GENERATION: self._generate_image,
            MessageType.IMAGE_GENERATION_REQUEST: self._generate_image,
        }
        missing = REQUEST_TYPES - set(self.routes)
        if missing:
            raise LookupError(f"No service route for: {sorted(t.value for t in missing)}")

        runner.add_termination_listener(self.cancel_instance)

    def register(self, bridge: MessageBridge) -> None:
        for message_type in self.routes:
            bridge.on(message_type, self.handle_request)

    # --- Dispatch ---

    def handle_request(self, instance_id: str, envelope) -> asyncio.Task:
        """Bridge handler: start one task per request."""
        message_type = envelope.message_type
        logger.info(f"Plugin request {message_type.value} from instance {instance_id}")
        task = asyncio.ensure_future(self._serve(instance_id, envelope))
        tasks = self._tasks.setdefault(instance_id, set())
        tasks.add(task)
        task.add_done_callback(lambda t: self._forget(instance_id, t))
        return task

    def _forget(self, instance_id: str, task: asyncio.Task):
        tasks = self._tasks.get(instance_id)
        if tasks is None:
            return
        tasks.discard(task)
        if not tasks:
            del self._tasks[instance_id]

    async def _serve(self, instance_id: str, envelope):
        message_type = envelope.message_type
        call = self.routes[message_type]
        timeout = self.config.request_timeout_seconds
        try:
            data = await asyncio.wait_for(call(envelope.payload), timeout=timeout)
            response = PluginResponse.ok(data)
        except ServiceFailure as e:
            logger.warning(f"{message_type.value} failed: {e}")
            response = PluginResponse.failure(str(e))
        except asyncio.TimeoutError:
            logger.warning(f"{message_type.value} timed out after {timeout}s")
            response = PluginResponse.failure(f"Request timed out after {timeout}s", code="TIMEOUT")
        except Exception as e:
            logger.exception(f"Unexpected error while serving {message_type.value}")
            response = PluginResponse.failure(f"System error: {e}")

        self._deliver(instance_id, msg_response(message_type, response, envelope.request_id))

    def _deliver(self, instance_id: str, reply) -> bool:
        if not self.runner.is_current(instance_id):
            logger.debug(f"Dropping {reply.type} for stale instance {instance_id}")
            return False
        return self.runner.send_to(instance_id, reply)

    def cancel_instance(self, instance_id: str) -> None:
        """Termination listener: abandon everything in flight for the instance."""
        tasks = self._tasks.pop(instance_id, set())
        for task in tasks:
            task.cancel()
        if tasks:
            logger.debug(f"Cancelled {len(tasks)} pending request(s) for {instance_id}")

    def pending(self, instance_id: Optional[str] = None) -> int:
        if instance_id is not None:
            return len(self._tasks.get(instance_id, ()))
        return sum(len(tasks) for tasks in self._tasks.values())

    async def join(self) -> None:
        """Wait for all in-flight requests (cancelled ones included) to settle."""
        tasks = [t for tasks in self._tasks.values() for t in tasks]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # --- Backend calls ---

    def _resolve_model(self, requested: Optional[str]) -> str:
        model = requested or self.workspace.settings.default_application_model or self.config.default_model
        if not model:
            raise ServiceFailure(DEFAULT_MODEL_NOT_FOUND)
        return model

    async def _generate_speech(self, payload: SpeechGenerationRequest) -> Any:
        model = self._resolve_model(payload.model_name)
        return await self.services.generate_speech(
            payload.text,
            model,
            speed=payload.speed,
            format=payload.format,
        )

    async def _chat_completion(self, payload: ChatCompletionRequest) -> Any:
        model = self._resolve_model(payload.model_name)
        return await self.services.chat_completion(
            payload.user_prompts,
            model,
            system_prompts=payload.system_prompts,
            temperature=payload.temperature,
            top_n=payload.top_n,
        )

    async def _generate_image(self, payload: ImageGenerationRequest) -> Any:
        model = self._resolve_model(payload.model_name)
        extra = dict(payload.model_extra or {})
        if payload.format:
            extra["format"] = payload.format
        return await self.services.generate_image(
            payload.text,
            model,
            count=payload.count,
            width=payload.width,
            height=payload.height,
            **extra,
        )
