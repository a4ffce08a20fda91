from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from dotenv import dotenv_values
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from .errors import ConfigError

DEFAULT_CONFIG_PATH = "config/relay.config.yaml"
DEFAULT_DOTENV_PATH = ".env"


class ProviderSettings(BaseModel):
    api_key: str = ""
    base_url: str = "https://api.groq.com/openai/v1"
    default_model: str = "llama-3.3-70b-versatile"
    timeout_seconds: int = 30


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"
    service_name: str = "groq-api"
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])


class RelayConfig(BaseModel):
    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)


_STRING_OVERRIDES: dict[str, tuple[str, str]] = {
    "GROQ_API_KEY": ("provider", "api_key"),
    "GROQ_BASE_URL": ("provider", "base_url"),
    "DEFAULT_MODEL": ("provider", "default_model"),
    "HOST": ("server", "host"),
    "LOG_LEVEL": ("server", "log_level"),
}

_INT_OVERRIDES: dict[str, tuple[str, str]] = {
    "HTTP_TIMEOUT": ("provider", "timeout_seconds"),
    "PORT": ("server", "port"),
}


class ConfigStore:
    """YAML file settings with environment variable overrides."""

    def __init__(
        self,
        config_path: str | Path | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.config_path = Path(config_path) if config_path else None
        self.runtime_config = self._load_config(self.config_path, os.environ if environ is None else environ)
        self.validate()

    @staticmethod
    def _load_config(path: Path | None, environ: Mapping[str, str]) -> RelayConfig:
        payload: dict[str, Any] = {}
        if path is not None and path.exists():
            payload = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(payload, dict):
            raise ConfigError(f"{path}: top level must be a mapping")

        for env_name, (section, key) in _STRING_OVERRIDES.items():
            value = environ.get(env_name)
            if value:
                payload.setdefault(section, {})[key] = value

        for env_name, (section, key) in _INT_OVERRIDES.items():
            value = environ.get(env_name)
            if not value:
                continue
            try:
                payload.setdefault(section, {})[key] = int(value)
            except ValueError:
                # unparseable numbers keep the file/default value
                continue

        try:
            return RelayConfig.model_validate(payload)
        except PydanticValidationError as exc:
            raise ConfigError(f"invalid configuration: {exc}") from exc

    def validate(self) -> None:
        provider = self.runtime_config.provider
        server = self.runtime_config.server
        if not provider.api_key:
            raise ConfigError("GROQ_API_KEY is required")
        if not provider.base_url:
            raise ConfigError("GROQ_BASE_URL is required")
        if provider.timeout_seconds <= 0:
            raise ConfigError("HTTP_TIMEOUT must be greater than 0")
        if not 0 < server.port < 65536:
            raise ConfigError(f"PORT out of range: {server.port}")

    def provider(self) -> ProviderSettings:
        return self.runtime_config.provider

    def server(self) -> ServerSettings:
        return self.runtime_config.server

    def masked_api_key(self) -> str:
        return mask_api_key(self.runtime_config.provider.api_key)

    def describe(self) -> dict[str, Any]:
        provider = self.runtime_config.provider
        server = self.runtime_config.server
        return {
            "address": f"{server.host}:{server.port}",
            "base_url": provider.base_url,
            "default_model": provider.default_model,
            "timeout_seconds": provider.timeout_seconds,
            "api_key": self.masked_api_key(),
        }


def mask_api_key(key: str) -> str:
    if len(key) <= 8:
        return "***"
    return f"{key[:4]}...{key[-4:]}"


def load_config(environ: Mapping[str, str] | None = None, dotenv_path: str | Path = DEFAULT_DOTENV_PATH) -> ConfigStore:
    # .env fills in whatever the process environment leaves unset or empty
    env = {key: value for key, value in dotenv_values(dotenv_path).items() if value}
    env.update((key, value) for key, value in (os.environ if environ is None else environ).items() if value)
    return ConfigStore(env.get("RELAY_CONFIG_PATH", DEFAULT_CONFIG_PATH), environ=env)
