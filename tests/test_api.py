import httpx
from fastapi.testclient import TestClient

from app.main import create_app
from chat_relay.config import ConfigStore
from chat_relay.llm_client import LLMClient
from chat_relay.models import ChatMessage, ChatResponse, Choice, ModelInfo, ModelsResponse, TokenUsage

DEFAULT_MODEL = "llama-3.3-70b-versatile"
UPSTREAM_SECRET = "upstream-internal-trace-0xdeadbeef"


def _config_store():
    return ConfigStore(environ={"GROQ_API_KEY": "gsk_test_key_123456", "DEFAULT_MODEL": DEFAULT_MODEL})


class FakeLLMClient:
    def __init__(self, content="hello"):
        self.content = content
        self.requests = []

    async def create_chat_completion(self, request):
        self.requests.append(request)
        return ChatResponse(
            id="chatcmpl-1",
            model=request.model,
            choices=[Choice(message=ChatMessage(role="assistant", content=self.content), finish_reason="stop")],
            usage=TokenUsage(prompt_tokens=5, completion_tokens=3, total_tokens=8),
        )

    async def list_models(self):
        return ModelsResponse(
            data=[
                ModelInfo(id="llama-3.3-70b-versatile", owned_by="Meta"),
                ModelInfo(id="gemma2-9b-it", owned_by="Google"),
            ]
        )


class ExplodingLLMClient:
    async def create_chat_completion(self, request):
        raise RuntimeError("unexpected fault")

    async def list_models(self):
        raise RuntimeError("unexpected fault")


def _upstream_client(handler):
    return LLMClient(
        base_url="https://api.test/openai/v1",
        api_key="gsk_test_key_123456",
        transport=httpx.MockTransport(handler),
    )


def test_chat_returns_first_choice_with_default_model():
    fake = FakeLLMClient()
    client = TestClient(create_app(_config_store(), fake))

    response = client.post("/chat", json={"message": "hi"})

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "message": "hello",
        "model": DEFAULT_MODEL,
        "usage": {"prompt_tokens": 5, "completion_tokens": 3, "total_tokens": 8},
    }
    assert fake.requests[0].model == DEFAULT_MODEL


def test_versioned_chat_route_forwards_options():
    fake = FakeLLMClient()
    client = TestClient(create_app(_config_store(), fake))

    response = client.post(
        "/api/v1/chat",
        json={"message": "hi", "model": "gemma2-9b-it", "temperature": 0, "max_tokens": 100},
    )

    assert response.status_code == 200
    assert response.json()["model"] == "gemma2-9b-it"
    assert fake.requests[0].temperature == 0
    assert fake.requests[0].max_tokens == 100


def test_empty_message_is_rejected_before_upstream():
    fake = FakeLLMClient()
    client = TestClient(create_app(_config_store(), fake))

    response = client.post("/chat", json={"message": ""})

    assert response.status_code == 400
    payload = response.json()
    assert payload["success"] is False
    assert payload["error"]
    assert fake.requests == []


def test_out_of_range_options_are_rejected():
    fake = FakeLLMClient()
    client = TestClient(create_app(_config_store(), fake))

    too_hot = client.post("/chat", json={"message": "hi", "temperature": 2.5})
    negative = client.post("/chat", json={"message": "hi", "max_tokens": -1})

    assert too_hot.status_code == 400
    assert "temperature" in too_hot.json()["error"]
    assert negative.status_code == 400
    assert "max_tokens" in negative.json()["error"]
    assert fake.requests == []


def test_malformed_json_is_a_bad_request():
    client = TestClient(create_app(_config_store(), FakeLLMClient()))

    response = client.post("/chat", content=b"{not json", headers={"Content-Type": "application/json"})

    assert response.status_code == 400
    assert response.json()["code"] == 400


def test_wrong_method_is_not_allowed():
    client = TestClient(create_app(_config_store(), FakeLLMClient()))

    assert client.get("/chat").status_code == 405
    assert client.post("/models").status_code == 405
    assert client.get("/api/v1/chat").json()["success"] is False


def test_models_lists_ids_as_names():
    client = TestClient(create_app(_config_store(), FakeLLMClient()))

    response = client.get("/models")

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "models": [
            {"id": "llama-3.3-70b-versatile", "name": "llama-3.3-70b-versatile", "owned_by": "Meta"},
            {"id": "gemma2-9b-it", "name": "gemma2-9b-it", "owned_by": "Google"},
        ],
    }


def test_health_reports_service():
    client = TestClient(create_app(_config_store(), FakeLLMClient()))

    response = client.get("/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "healthy"
    assert payload["service"] == "groq-api"
    assert isinstance(payload["timestamp"], int)


def test_root_describes_endpoints():
    client = TestClient(create_app(_config_store(), FakeLLMClient()))

    payload = client.get("/").json()

    assert payload["endpoints"]["chat"] == "POST /api/v1/chat"


def test_upstream_server_error_is_hidden_from_caller():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500, text=UPSTREAM_SECRET)

    client = TestClient(create_app(_config_store(), _upstream_client(handler)))

    response = client.post("/chat", json={"message": "hi"})

    assert response.status_code == 500
    assert response.json()["success"] is False
    assert response.json()["error"] == "error processing the message"
    assert UPSTREAM_SECRET not in response.text
    assert len(calls) == 1


def test_upstream_rate_limit_maps_to_internal_error():
    def handler(request):
        return httpx.Response(429, json={"error": {"message": "Rate limit reached"}})

    client = TestClient(create_app(_config_store(), _upstream_client(handler)))

    chat = client.post("/api/v1/chat", json={"message": "hi"})
    models = client.get("/api/v1/models")

    assert chat.status_code == 500
    assert models.status_code == 500
    assert "Rate limit" not in chat.text
    assert models.json()["error"] == "error fetching models"


def test_upstream_round_trip_through_real_client():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "id": "chatcmpl-9",
                "object": "chat.completion",
                "created": 1700000000,
                "model": DEFAULT_MODEL,
                "choices": [{"index": 0, "message": {"role": "assistant", "content": "hello"}, "finish_reason": "stop"}],
                "usage": {"prompt_tokens": 5, "completion_tokens": 3, "total_tokens": 8},
            },
        )

    client = TestClient(create_app(_config_store(), _upstream_client(handler)))

    response = client.post("/chat", json={"message": "hi"})

    assert response.status_code == 200
    assert response.json()["message"] == "hello"
    assert seen[0].headers["Authorization"] == "Bearer gsk_test_key_123456"


def test_unexpected_fault_becomes_generic_500():
    client = TestClient(create_app(_config_store(), ExplodingLLMClient()))

    response = client.post("/chat", json={"message": "hi"})

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "internal server error", "code": 500}
    assert "unexpected fault" not in response.text


def test_generic_500_still_carries_cors_headers():
    client = TestClient(create_app(_config_store(), ExplodingLLMClient()))

    response = client.post("/chat", json={"message": "hi"}, headers={"Origin": "http://localhost:5173"})

    assert response.status_code == 500
    assert response.json()["error"] == "internal server error"
    assert "access-control-allow-origin" in response.headers


def test_upstream_timeout_maps_to_internal_error():
    def handler(request):
        raise httpx.ReadTimeout("upstream too slow", request=request)

    client = TestClient(create_app(_config_store(), _upstream_client(handler)))

    response = client.post("/chat", json={"message": "hi"})

    assert response.status_code == 500
    assert response.json()["error"] == "error processing the message"
    assert "too slow" not in response.text


def test_unparseable_upstream_reply_maps_to_internal_error():
    def handler(request):
        return httpx.Response(200, text="<html>502 bad gateway</html>")

    client = TestClient(create_app(_config_store(), _upstream_client(handler)))

    chat = client.post("/chat", json={"message": "hi"})
    models = client.get("/models")

    assert chat.status_code == 500
    assert chat.json()["error"] == "error processing the message"
    assert "bad gateway" not in chat.text
    assert models.status_code == 500


def test_missing_default_model_is_an_internal_error(tmp_path):
    config_file = tmp_path / "relay.config.yaml"
    config_file.write_text('provider:\n  default_model: ""\n', encoding="utf-8")
    fake = FakeLLMClient()
    client = TestClient(create_app(ConfigStore(config_file, environ={"GROQ_API_KEY": "gsk_test_key_123456"}), fake))

    response = client.post("/chat", json={"message": "hi"})

    assert response.status_code == 500
    assert fake.requests == []


class ClosingLLMClient(FakeLLMClient):
    def __init__(self):
        super().__init__()
        self.closed = False

    async def aclose(self):
        self.closed = True


def test_lifespan_closes_gateway_on_shutdown():
    fake = ClosingLLMClient()

    with TestClient(create_app(_config_store(), fake)) as client:
        assert client.post("/chat", json={"message": "hi"}).status_code == 200
        assert fake.closed is False

    assert fake.closed is True
