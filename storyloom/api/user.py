from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storyloom.core.config import AIDefaults, get_ai_defaults
from storyloom.core.crypto import mask_secret
from storyloom.core.errors import ConfigurationError
from storyloom.core.db import get_db
from storyloom.deps.ai import get_ai_client_factory
from storyloom.deps.auth import get_current_user
from storyloom.models.user import User
from storyloom.schemas.api_config import ApiConfigIn, ApiConfigOut, ProviderPresetOut
from storyloom.schemas.quota import QuotaOut
from storyloom.services.ai_client import AIClientFactory
from storyloom.services.credentials import CredentialStore
from storyloom.services.providers import PROVIDER_PRESETS, GenerateOptions
from storyloom.services.quota import quota_status, refresh_reset_marker


router = APIRouter(prefix="/api/user", tags=["user"])
logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PROVIDER = "kimi"
DEFAULT_CONFIG_MODEL = "moonshot-v1-128k"
CONNECTION_TEST_PROMPT = "请回复“连接成功”。"


@router.get("/quota", response_model=QuotaOut)
def get_quota(current: User = Depends(get_current_user), db: Session = Depends(get_db)) -> QuotaOut:
    refresh_reset_marker(db, current)
    status = quota_status(db, current)
    return QuotaOut(
        dailyQuota=status.daily_quota,
        usedToday=status.used_today,
        remaining=status.remaining,
        resetAt=status.reset_at,
    )


@router.get("/api-config", response_model=ApiConfigOut)
def get_api_config(current: User = Depends(get_current_user), db: Session = Depends(get_db)) -> ApiConfigOut:
    store = CredentialStore(db)
    rec = store.get(current.id)
    if rec is None:
        preset = PROVIDER_PRESETS[DEFAULT_CONFIG_PROVIDER]
        return ApiConfigOut(
            provider=DEFAULT_CONFIG_PROVIDER,
            apiKey="",
            baseUrl=preset.base_url,
            model=DEFAULT_CONFIG_MODEL,
            isActive=False,
            hasApiKey=False,
        )
    preset = PROVIDER_PRESETS.get(rec.provider)
    try:
        masked = mask_secret(store.decrypted_key(rec))
    except ConfigurationError:
        # the settings screen must still load so the key can be saved again
        masked = ""
    return ApiConfigOut(
        provider=rec.provider,
        apiKey=masked,
        baseUrl=rec.base_url or (preset.base_url if preset else ""),
        model=rec.model,
        isActive=rec.is_active,
        hasApiKey=bool(rec.api_key_enc),
    )


@router.post("/api-config")
def save_api_config(
    payload: ApiConfigIn,
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    CredentialStore(db).save(
        current.id,
        provider=payload.provider,
        api_key=payload.api_key,
        model=payload.model,
        base_url=payload.base_url,
    )
    return {"message": "API 配置已保存"}


@router.delete("/api-config")
def delete_api_config(current: User = Depends(get_current_user), db: Session = Depends(get_db)) -> dict:
    deleted = CredentialStore(db).delete(current.id)
    logger.info("credentials.deleted user=%s existed=%s", current.id, deleted)
    return {"message": "API 配置已删除"}


@router.get("/api-config/providers", response_model=list[ProviderPresetOut])
def list_providers() -> list[ProviderPresetOut]:
    return [
        ProviderPresetOut(id=pid, name=p.name, baseUrl=p.base_url, models=list(p.models))
        for pid, p in PROVIDER_PRESETS.items()
    ]


@router.post("/api-config/test")
async def test_api_config(
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    defaults: AIDefaults = Depends(get_ai_defaults),
    client_factory: AIClientFactory = Depends(get_ai_client_factory),
) -> dict:
    """One short non-streaming completion with the caller's effective configuration."""
    config = CredentialStore(db).resolve(current.id, defaults)
    client = client_factory(config)
    sample = await client.generate(
        [{"role": "user", "content": CONNECTION_TEST_PROMPT}],
        GenerateOptions(temperature=0, max_tokens=16),
    )
    logger.info("credentials.tested user=%s provider=%s model=%s", current.id, config.provider, config.model)
    return {"ok": True, "provider": config.provider, "model": config.model, "sample": sample}
