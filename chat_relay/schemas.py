from __future__ import annotations

from pydantic import BaseModel, Field

from .errors import ValidationError
from .models import ChatResponse, ModelsResponse


class ChatRequestBody(BaseModel):
    message: str
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None

    def validate_fields(self) -> None:
        if not self.message:
            raise ValidationError("message must not be empty")
        if self.temperature is not None and not 0 <= self.temperature <= 2:
            raise ValidationError("temperature must be between 0 and 2")
        if self.max_tokens is not None and self.max_tokens < 0:
            raise ValidationError("max_tokens must be greater than or equal to 0")


class UsageInfo(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatReply(BaseModel):
    success: bool = True
    message: str
    model: str
    usage: UsageInfo

    @classmethod
    def from_response(cls, response: ChatResponse) -> ChatReply:
        return cls(
            message=response.response_content(),
            model=response.model,
            usage=UsageInfo(**response.usage.model_dump()),
        )


class ModelSummary(BaseModel):
    id: str
    name: str
    owned_by: str


class ModelsReply(BaseModel):
    success: bool = True
    models: list[ModelSummary] = Field(default_factory=list)

    @classmethod
    def from_response(cls, response: ModelsResponse) -> ModelsReply:
        # upstream has no display name, the id doubles as one
        return cls(models=[ModelSummary(id=item.id, name=item.id, owned_by=item.owned_by) for item in response.data])


class HealthReply(BaseModel):
    status: str = "healthy"
    timestamp: int
    service: str


class ErrorReply(BaseModel):
    success: bool = False
    error: str
    code: int
