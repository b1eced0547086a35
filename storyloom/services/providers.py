"""
Provider adapters.

Each supported provider speaks one wire format. An adapter knows, for its
format, the endpoint path, the auth headers, the request body shape and where
the text lives in a streamed event or a full response. ``get_adapter`` picks
the adapter for a provider id; OpenAI, Kimi (Moonshot) and user-supplied
custom endpoints all share the OpenAI-compatible adapter.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional, TypedDict

from storyloom.core.errors import ConfigurationError


DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 4096
ANTHROPIC_VERSION = "2023-06-01"


class ChatMessage(TypedDict):
    role: Literal["system", "user", "assistant"]
    content: str


@dataclass(frozen=True)
class AIConfig:
    provider: str
    api_key: str
    model: str
    base_url: Optional[str] = None


@dataclass
class GenerateOptions:
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    model: Optional[str] = None
    stream: bool = True


@dataclass(frozen=True)
class ProviderPreset:
    name: str
    base_url: str
    models: tuple[str, ...] = field(default_factory=tuple)


PROVIDER_PRESETS: Dict[str, ProviderPreset] = {
    "openai": ProviderPreset(
        name="OpenAI",
        base_url="https://api.openai.com/v1",
        models=("gpt-4", "gpt-4-turbo", "gpt-3.5-turbo", "gpt-3.5-turbo-16k"),
    ),
    "kimi": ProviderPreset(
        name="Kimi (Moonshot)",
        base_url="https://api.moonshot.cn/v1",
        models=("moonshot-v1-8k", "moonshot-v1-32k", "moonshot-v1-128k"),
    ),
    "anthropic": ProviderPreset(
        name="Anthropic (Claude)",
        base_url="https://api.anthropic.com/v1",
        models=("claude-3-opus-20240229", "claude-3-sonnet-20240229", "claude-3-haiku-20240307"),
    ),
    "custom": ProviderPreset(name="自定义 API", base_url="", models=("自定义模型",)),
}

SUPPORTED_PROVIDERS = tuple(PROVIDER_PRESETS)


class ProviderAdapter:
    """Wire format of one provider family."""

    endpoint_path: str = ""

    def endpoint_for(self, base_url: str) -> str:
        return base_url.rstrip("/") + self.endpoint_path

    def build_headers(self, api_key: str) -> Dict[str, str]:
        raise NotImplementedError

    def build_request(self, messages: list[ChatMessage], options: GenerateOptions, model: str) -> Dict[str, Any]:
        raise NotImplementedError

    def extract_fragment(self, event: Any) -> Optional[str]:
        """Text carried by one parsed stream event, or None for control events."""
        raise NotImplementedError

    def extract_text(self, body: Any) -> str:
        """Full text of a non-streaming response body."""
        raise NotImplementedError

    @staticmethod
    def _common_options(options: GenerateOptions, model: str) -> Dict[str, Any]:
        return {
            "model": options.model or model,
            "temperature": DEFAULT_TEMPERATURE if options.temperature is None else options.temperature,
            "max_tokens": options.max_tokens or DEFAULT_MAX_TOKENS,
            "stream": options.stream,
        }


class OpenAICompatibleAdapter(ProviderAdapter):
    endpoint_path = "/chat/completions"

    def build_headers(self, api_key: str) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        }

    def build_request(self, messages: list[ChatMessage], options: GenerateOptions, model: str) -> Dict[str, Any]:
        body = self._common_options(options, model)
        body["messages"] = [{"role": m["role"], "content": m["content"]} for m in messages]
        return body

    def extract_fragment(self, event: Any) -> Optional[str]:
        if not isinstance(event, dict):
            return None
        choices = event.get("choices")
        if not isinstance(choices, list) or not choices:
            return None
        first = choices[0]
        delta = first.get("delta") if isinstance(first, dict) else None
        content = delta.get("content") if isinstance(delta, dict) else None
        return content if isinstance(content, str) and content else None

    def extract_text(self, body: Any) -> str:
        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            return ""
        return content if isinstance(content, str) else ""


class AnthropicAdapter(ProviderAdapter):
    endpoint_path = "/messages"

    def build_headers(self, api_key: str) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

    def build_request(self, messages: list[ChatMessage], options: GenerateOptions, model: str) -> Dict[str, Any]:
        # system prompt is a top-level field, the first one wins
        system = next((m["content"] for m in messages if m["role"] == "system"), None)
        body = self._common_options(options, model)
        if system is not None:
            body["system"] = system
        body["messages"] = [{"role": m["role"], "content": m["content"]} for m in messages if m["role"] != "system"]
        return body

    def extract_fragment(self, event: Any) -> Optional[str]:
        if not isinstance(event, dict):
            return None
        delta = event.get("delta")
        text = delta.get("text") if isinstance(delta, dict) else None
        return text if isinstance(text, str) and text else None

    def extract_text(self, body: Any) -> str:
        try:
            text = body["content"][0]["text"]
        except (KeyError, IndexError, TypeError):
            return ""
        return text if isinstance(text, str) else ""


_OPENAI_COMPATIBLE = OpenAICompatibleAdapter()
_ANTHROPIC = AnthropicAdapter()

_ADAPTERS: Dict[str, ProviderAdapter] = {
    "openai": _OPENAI_COMPATIBLE,
    "kimi": _OPENAI_COMPATIBLE,
    "custom": _OPENAI_COMPATIBLE,
    "anthropic": _ANTHROPIC,
}


def get_adapter(provider: str) -> ProviderAdapter:
    adapter = _ADAPTERS.get(provider)
    if adapter is None:
        raise ConfigurationError(f"Unsupported provider: {provider}")
    return adapter


def resolve_base_url(config: AIConfig) -> str:
    """Explicit base URL if configured, otherwise the provider's documented default."""
    if config.base_url:
        return config.base_url.rstrip("/")
    preset = PROVIDER_PRESETS.get(config.provider)
    if preset is None:
        raise ConfigurationError(f"Unsupported provider: {config.provider}")
    if not preset.base_url:
        raise ConfigurationError(f"Provider '{config.provider}' requires a base URL")
    return preset.base_url
