# src/synvek_plugins/services/agent_client.py
"""
HTTP client for the local agent server that backs plugin requests.

Endpoints (all POST, JSON):
    /speech  {userMessage, modelName, speed, format}       -> {success, message, data: "data:audio/..."}
    /image   {userMessage, modelName, count, width, height} -> {success, message, data: "<base64 png>"}
    /chat    {userMessage, systemMessage, modelName, streaming: false, ...}
             -> {content, sourceType, success}
"""
import json
import logging
from typing import Any, Optional

import httpx

from synvek_plugins.config import ServicesConfig
from synvek_plugins.errors import ServiceFailure
from synvek_plugins.protocol import ChatMessage

logger = logging.getLogger(__name__)


class AgentServerClient:
    """
    Usage:
        async with AgentServerClient(settings.services) as client:
            audio = await client.generate_speech("Hello", "kokoro")
    """

    def __init__(
        self,
        config: Optional[ServicesConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or ServicesConfig()
        self._client = httpx.AsyncClient(
            base_url=self.config.agent_server_url,
            timeout=self.config.request_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "AgentServerClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def generate_speech(
        self,
        text: str,
        model_name: str,
        speed: Optional[float] = None,
        format: Optional[str] = None,
    ) -> str:
        """Returns an audio data url."""
        payload = {
            "userMessage": text,
            "modelName": model_name,
            "speed": speed if speed is not None else self.config.speech_speed,
            "format": format or self.config.speech_format,
        }
        return await self._call("/speech", payload)

    async def generate_image(
        self,
        text: str,
        model_name: str,
        count: Optional[int] = None,
        width: Optional[int] = None,
        height: Optional[int] = None,
        **extra: Any,
    ) -> Any:
        """Returns the base64 image data produced by the model."""
        payload = {
            "userMessage": text,
            "modelName": model_name,
            "count": count or self.config.image_count,
            "width": width or self.config.image_width,
            "height": height or self.config.image_height,
            **extra,
        }
        return await self._call("/image", payload)

    async def chat_completion(
        self,
        user_prompts: list[ChatMessage],
        model_name: str,
        system_prompts: Optional[list[ChatMessage]] = None,
        temperature: Optional[float] = None,
        top_n: Optional[float] = None,
    ) -> str:
        """Non-streaming completion; returns the assistant text."""
        payload = {
            "userMessage": [m.model_dump() for m in user_prompts],
            "systemMessage": [m.model_dump() for m in system_prompts or []],
            "modelName": model_name,
            "streaming": False,
            "enableThinking": False,
            "enableWebSearch": False,
            "activatedToolPlugins": [],
            "activatedMCPServices": [],
        }
        if temperature is not None:
            payload["temperature"] = temperature
        if top_n is not None:
            payload["topP"] = top_n
        return await self._call("/chat", payload)

    async def _call(self, path: str, payload: dict) -> Any:
        try:
            response = await self._client.post(path, json=payload)
            response.raise_for_status()
        except httpx.RequestError as exc:
            raise ServiceFailure(
                f"Unable to reach the agent server at {self.config.agent_server_url}: {exc}"
            ) from exc
        except httpx.HTTPStatusError as exc:
            raise ServiceFailure(
                f"Agent server request {path} failed with HTTP {exc.response.status_code}: {exc.response.text}"
            ) from exc

        try:
            body = response.json()
        except json.JSONDecodeError as exc:
            raise ServiceFailure(f"Agent server returned invalid JSON for {path}") from exc

        if not isinstance(body, dict):
            raise ServiceFailure(f"Unexpected response shape from {path}")

        # /chat answers with a chunk ({content, success}); the rest use {success, message, data}.
        if not body.get("success", False):
            message = body.get("message") or body.get("content") or f"Request {path} failed"
            raise ServiceFailure(str(message))

        logger.debug(f"Agent server {path} succeeded")
        if "content" in body and "data" not in body:
            return body["content"]
        return body.get("data")
