from __future__ import annotations

import logging
from typing import Protocol, TypeVar

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .errors import (
    ConfigError,
    MalformedUpstreamResponse,
    UpstreamRejection,
    UpstreamTimeout,
    UpstreamUnreachable,
)
from .models import ChatRequest, ChatResponse, ModelsResponse

logger = logging.getLogger(__name__)

CHAT_COMPLETIONS_PATH = "/chat/completions"
MODELS_PATH = "/models"

_ResponseT = TypeVar("_ResponseT", bound=BaseModel)


class ProviderGateway(Protocol):
    async def create_chat_completion(self, request: ChatRequest) -> ChatResponse: ...

    async def list_models(self) -> ModelsResponse: ...


class LLMClient:
    """OpenAI-compatible chat client over a pooled httpx connection."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ConfigError("api_key must not be empty")
        if not base_url:
            raise ConfigError("base_url must not be empty")

        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_connections=100, max_keepalive_connections=10, keepalive_expiry=90.0),
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    async def create_chat_completion(self, request: ChatRequest) -> ChatResponse:
        response = await self._send("POST", CHAT_COMPLETIONS_PATH, json=request.to_payload())
        return self._decode(response, ChatResponse)

    async def list_models(self) -> ModelsResponse:
        response = await self._send("GET", MODELS_PATH)
        return self._decode(response, ModelsResponse)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(self, method: str, path: str, json: dict | None = None) -> httpx.Response:
        logger.debug("upstream %s %s%s", method, self.base_url, path)
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.TimeoutException as exc:
            raise UpstreamTimeout(f"{method} {path} timed out after {self.timeout}s") from exc
        except httpx.TransportError as exc:
            raise UpstreamUnreachable(f"{method} {path} failed: {exc}") from exc

        if not response.is_success:
            logger.warning("upstream %s %s returned %d", method, path, response.status_code)
            raise UpstreamRejection(response.status_code, response.text)
        return response

    @staticmethod
    def _decode(response: httpx.Response, model: type[_ResponseT]) -> _ResponseT:
        try:
            return model.model_validate_json(response.content)
        except PydanticValidationError as exc:
            raise MalformedUpstreamResponse(f"could not parse {model.__name__}: {exc}") from exc
