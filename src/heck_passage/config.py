"""Configuration loader for the proxy service.

Reads `~/.heck-passage.yaml` (or the file named by `HECK_PASSAGE_CONFIG_PATH`),
validates its structure, and resolves the service API key from the
environment when the `envKey` form is used. The few environment variables the
service has always honoured (`PORT`, `API_MASTER_KEY`, `UPSTREAM_API_BASE`,
`AI_LANGUAGE`) are applied on top by :func:`load_settings`.
"""

from __future__ import annotations

from pathlib import Path
import os
from typing import Any, Dict, Literal, Mapping

import yaml
from pydantic import BaseModel, Field, HttpUrl, ValidationError, field_validator, model_validator

from .transcoder import DEFAULT_SUGGESTION_MARKERS

CONFIG_ENV = "HECK_PASSAGE_CONFIG_PATH"

DEFAULT_HEADERS: Dict[str, str] = {
    "Origin": "https://heck.ai",
    "Referer": "https://heck.ai/",
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/142.0.0.0 Safari/537.36"
    ),
    "Content-Type": "application/json",
    "Accept": "*/*",
}

DEFAULT_MODELS: Dict[str, str] = {
    "gpt-4o-mini": "openai/gpt-4o-mini",
    "gpt-4o": "openai/chatgpt-4o-latest",
    "gpt-5-mini": "openai/gpt-5-mini",
    "deepseek-r1": "deepseek/deepseek-r1",
    "deepseek-v3": "deepseek/deepseek-chat",
    "claude-3.7-sonnet": "anthropic/claude-3.7-sonnet",
    "grok-3": "x-ai/grok-3-beta",
    "gemini-2.0-flash": "google/gemini-2.0-flash-001",
}


class ServiceAuthCfg(BaseModel):
    """Bearer key callers must present to the proxy."""

    type: Literal["apikey"] = "apikey"
    key: str | None = None
    envKey: str | None = None

    @model_validator(mode="after")
    def _resolve_key(self) -> "ServiceAuthCfg":
        if not self.key and self.envKey:
            self.key = os.getenv(self.envKey)
        if not self.key:
            raise ValueError("service auth requires a non-empty 'key' or a set 'envKey'")
        return self


class ServiceCfg(BaseModel):
    port: int = 3000
    auth: ServiceAuthCfg | None = None


class UpstreamCfg(BaseModel):
    """Where and how the upstream conversational service is reached."""

    base_url: HttpUrl = Field(default="https://api.heckai.weight-wave.com/api/ha/v1", validate_default=True)
    language: str = "English"
    headers: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_HEADERS))
    timeout: float = 600.0

    def url(self, path: str) -> str:
        return f"{str(self.base_url).rstrip('/')}/{path.lstrip('/')}"


class TranscoderCfg(BaseModel):
    markdown_breaks: bool = True
    suggestion_markers: list[str] = Field(default_factory=lambda: list(DEFAULT_SUGGESTION_MARKERS))


class RootConfig(BaseModel):
    service: ServiceCfg = Field(default_factory=ServiceCfg)
    upstream: UpstreamCfg = Field(default_factory=UpstreamCfg)
    models: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_MODELS))
    default_model: str = "gpt-4o-mini"
    transcoder: TranscoderCfg = Field(default_factory=TranscoderCfg)

    @field_validator("models")
    @classmethod
    def _not_empty(cls, v: Dict[str, str]) -> Dict[str, str]:
        if not v:
            raise ValueError("at least one model must be configured")
        return v

    @model_validator(mode="after")
    def _default_is_known(self) -> "RootConfig":
        if self.default_model not in self.models:
            raise ValueError(f"default_model '{self.default_model}' is not a configured model")
        return self

    def resolve_model(self, name: str | None) -> tuple[str, str]:
        """Return ``(reported_name, upstream_id)`` for a requested model name.

        Aliases map through the table, names that already are upstream ids pass
        through unchanged, anything else falls back to :attr:`default_model`.
        """
        if name and name in self.models:
            return name, self.models[name]
        if name and name in self.models.values():
            return name, name
        return self.default_model, self.models[self.default_model]


def default_config_path() -> Path:
    env = os.getenv(CONFIG_ENV)
    if env:
        return Path(env)
    return Path.home() / ".heck-passage.yaml"


def parse_config(raw: Mapping[str, Any]) -> RootConfig:
    """Validate an already-parsed mapping into a :class:`RootConfig`."""

    return RootConfig.model_validate(dict(raw))


def load_config(path: str | Path) -> RootConfig:
    """Parse *path* and return the validated :class:`RootConfig`."""

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(path)

    with path.open("rt", encoding="utf-8") as fp:
        data = yaml.safe_load(fp) or {}

    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a mapping at the top level")

    return parse_config(data)


def apply_env_overrides(cfg: RootConfig, environ: Mapping[str, str] | None = None) -> RootConfig:
    """Return a copy of *cfg* with the legacy environment variables applied."""

    env = os.environ if environ is None else environ
    service = cfg.service.model_copy()
    upstream = cfg.upstream.model_copy()

    if env.get("PORT"):
        try:
            service.port = int(env["PORT"])
        except ValueError as exc:
            raise ValueError(f"PORT must be an integer, got {env['PORT']!r}") from exc

    master_key = env.get("API_MASTER_KEY")
    if master_key == "1":
        service.auth = None
    elif master_key:
        service.auth = ServiceAuthCfg(key=master_key)

    if env.get("UPSTREAM_API_BASE"):
        try:
            upstream = UpstreamCfg.model_validate({**upstream.model_dump(), "base_url": env["UPSTREAM_API_BASE"]})
        except ValidationError as exc:
            raise ValueError(f"Invalid UPSTREAM_API_BASE: {exc}") from exc
    if env.get("AI_LANGUAGE"):
        upstream.language = env["AI_LANGUAGE"]

    return cfg.model_copy(update={"service": service, "upstream": upstream})


def load_settings(path: str | Path | None = None) -> RootConfig:
    """Load the config file if present, otherwise the built-in defaults, then env overrides."""

    path = Path(path) if path is not None else default_config_path()
    cfg = load_config(path) if path.exists() else RootConfig()
    return apply_env_overrides(cfg)
