from __future__ import annotations


class RelayError(Exception):
    pass


class ConfigError(RelayError, ValueError):
    pass


class ValidationError(RelayError, ValueError):
    """Client input that can never be forwarded upstream."""


class GatewayError(RelayError):
    """Base class for failures talking to the upstream provider."""


class UpstreamRejection(GatewayError):
    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"upstream returned status {status_code}: {body}")
        self.status_code = status_code
        self.body = body


class UpstreamUnreachable(GatewayError):
    pass


class UpstreamTimeout(UpstreamUnreachable):
    pass


class MalformedUpstreamResponse(GatewayError):
    pass


class ChatServiceError(RelayError):
    pass


class EmptyMessage(ChatServiceError, ValidationError):
    def __init__(self, message: str = "message must not be empty") -> None:
        super().__init__(message)


class EmptyModel(ChatServiceError):
    def __init__(self, message: str = "model must not be empty") -> None:
        super().__init__(message)


class EmptyResponse(ChatServiceError):
    def __init__(self, message: str = "upstream response contains no choices") -> None:
        super().__init__(message)


class UpstreamFailure(ChatServiceError):
    pass
