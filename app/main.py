from __future__ import annotations

import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from chat_relay.chat_service import ChatService
from chat_relay.config import ConfigStore, load_config
from chat_relay.errors import ChatServiceError, ValidationError
from chat_relay.llm_client import LLMClient, ProviderGateway
from chat_relay.log import configure_logging, logger
from chat_relay.schemas import ChatReply, ChatRequestBody, ErrorReply, HealthReply, ModelsReply

API_VERSION = "1.0.0"


def _error_response(message: str, status_code: int, headers: dict[str, str] | None = None) -> JSONResponse:
    body = ErrorReply(error=message, code=status_code)
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


def create_app(config_store: ConfigStore | None = None, llm_client: ProviderGateway | None = None) -> FastAPI:
    config_store = config_store or load_config()
    provider = config_store.provider()
    server = config_store.server()
    configure_logging(server.log_level)

    if llm_client is None:
        llm_client = LLMClient(
            base_url=provider.base_url,
            api_key=provider.api_key,
            timeout=provider.timeout_seconds,
        )
    chat_service = ChatService(llm_client, default_model=provider.default_model)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("starting relay with %s", config_store.describe())
        yield
        aclose = getattr(app.state.chat_service.gateway, "aclose", None)
        if aclose is not None:
            await aclose()
        logger.info("relay stopped")

    app = FastAPI(title="Groq Chat Relay", version=API_VERSION, lifespan=lifespan)
    app.state.config_store = config_store
    app.state.chat_service = chat_service

    @app.middleware("http")
    async def request_boundary(request: Request, call_next):
        start = time.monotonic()
        client = request.client.host if request.client else "-"
        logger.info("[%s] %s %s started", request.method, request.url.path, client)
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("unhandled error while serving %s %s", request.method, request.url.path)
            response = _error_response("internal server error", 500)
        duration_ms = (time.monotonic() - start) * 1000
        logger.info(
            "[%s] %s %s completed %d in %.2fms",
            request.method,
            request.url.path,
            client,
            response.status_code,
            duration_ms,
        )
        return response

    # CORS stays outermost so boundary 500s still carry its headers
    app.add_middleware(
        CORSMiddleware,
        allow_origins=server.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
        expose_headers=["Content-Length"],
        max_age=300,
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error_response(str(exc.detail), exc.status_code, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        detail = "invalid request body"
        if errors:
            first = errors[0]
            location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            detail = f"invalid request body: {location + ': ' if location else ''}{first.get('msg', '')}"
        return _error_response(detail, 400)

    @app.exception_handler(ValidationError)
    async def validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        return _error_response(str(exc), 400)

    @app.get("/")
    async def root() -> dict:
        return {
            "name": "Groq Chat Relay",
            "version": API_VERSION,
            "description": "REST relay between a chat UI and an OpenAI-compatible LLM provider",
            "endpoints": {
                "chat": "POST /api/v1/chat",
                "models": "GET /api/v1/models",
                "health": "GET /health",
            },
        }

    @app.get("/health", response_model=HealthReply)
    async def health() -> HealthReply:
        return HealthReply(timestamp=int(time.time()), service=server.service_name)

    @app.post("/chat", response_model=ChatReply)
    @app.post("/api/v1/chat", response_model=ChatReply)
    async def chat(payload: ChatRequestBody) -> ChatReply:
        payload.validate_fields()
        try:
            response = await app.state.chat_service.handle_user_message(
                payload.message,
                payload.model,
                temperature=payload.temperature,
                max_tokens=payload.max_tokens,
            )
        except ValidationError:
            raise
        except ChatServiceError as exc:
            logger.error("chat request failed: %s", exc, exc_info=exc)
            raise HTTPException(status_code=500, detail="error processing the message") from exc
        return ChatReply.from_response(response)

    @app.get("/models", response_model=ModelsReply)
    @app.get("/api/v1/models", response_model=ModelsReply)
    async def models() -> ModelsReply:
        try:
            response = await app.state.chat_service.list_available_models()
        except ChatServiceError as exc:
            logger.error("listing models failed: %s", exc, exc_info=exc)
            raise HTTPException(status_code=500, detail="error fetching models") from exc
        return ModelsReply.from_response(response)

    return app


if __name__ == "__main__":
    store = load_config()
    uvicorn.run(create_app(store), host=store.server().host, port=store.server().port)
