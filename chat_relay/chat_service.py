from __future__ import annotations

import logging

from .errors import EmptyMessage, EmptyModel, EmptyResponse, GatewayError, UpstreamFailure
from .llm_client import ProviderGateway
from .models import ChatMessage, ChatRequest, ChatResponse, ModelsResponse

logger = logging.getLogger(__name__)


class ChatService:
    """Turns a single user message into one upstream chat completion."""

    def __init__(self, gateway: ProviderGateway, default_model: str = "") -> None:
        if gateway is None:
            raise ValueError("gateway must not be None")
        self.gateway = gateway
        self.default_model = default_model

    async def handle_user_message(
        self,
        text: str,
        model_override: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ChatResponse:
        if not text:
            raise EmptyMessage()

        model = model_override or self.default_model
        if not model:
            raise EmptyModel()

        request = ChatRequest(
            model=model,
            messages=[ChatMessage(role="user", content=text)],
            temperature=temperature,
            max_tokens=max_tokens,
        )

        try:
            response = await self.gateway.create_chat_completion(request)
        except GatewayError as exc:
            raise UpstreamFailure(f"failed to get a completion for model {model}: {exc}") from exc

        if not response.choices:
            raise EmptyResponse()

        logger.debug("completion %s for model %s used %d tokens", response.id, response.model, response.usage.total_tokens)
        return response

    async def list_available_models(self) -> ModelsResponse:
        try:
            return await self.gateway.list_models()
        except GatewayError as exc:
            raise UpstreamFailure(f"failed to list models: {exc}") from exc
