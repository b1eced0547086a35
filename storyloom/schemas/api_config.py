from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


ProviderName = Literal["openai", "kimi", "anthropic", "custom"]


class ApiConfigIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    provider: ProviderName
    api_key: str = Field(min_length=1, alias="apiKey")
    base_url: Optional[str] = Field(None, alias="baseUrl")
    model: str = Field(min_length=1)

    @field_validator("api_key", "model")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("base_url")
    @classmethod
    def _http_url(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        value = value.strip().rstrip("/")
        if not (value.startswith("http://") or value.startswith("https://")):
            raise ValueError("baseUrl must start with http:// or https://")
        return value

    @model_validator(mode="after")
    def _custom_needs_base_url(self) -> "ApiConfigIn":
        if self.provider == "custom" and not self.base_url:
            raise ValueError("baseUrl is required for the custom provider")
        return self


class ApiConfigOut(BaseModel):
    provider: str
    apiKey: str
    baseUrl: str
    model: str
    isActive: bool
    hasApiKey: bool = False


class ProviderPresetOut(BaseModel):
    id: str
    name: str
    baseUrl: str
    models: list[str]
