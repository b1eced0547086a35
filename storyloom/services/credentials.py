from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from storyloom.core.config import AIDefaults
from storyloom.core.crypto import decrypt_secret, encrypt_secret
from storyloom.core.errors import ConfigurationError
from storyloom.models.api_config import UserApiConfig
from storyloom.services.providers import AIConfig, SUPPORTED_PROVIDERS


logger = logging.getLogger(__name__)

MISSING_KEY_MESSAGE = "未配置 API Key，请在设置中添加您的 AI API 配置"


class CredentialStore:
    """Per-user provider configuration with the API key encrypted at rest."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, user_id: int) -> Optional[UserApiConfig]:
        return self.db.execute(
            select(UserApiConfig).where(UserApiConfig.user_id == user_id)
        ).scalar_one_or_none()

    def save(self, user_id: int, provider: str, api_key: str, model: str, base_url: Optional[str] = None) -> UserApiConfig:
        if provider not in SUPPORTED_PROVIDERS:
            raise ConfigurationError(f"Unsupported provider: {provider}")
        enc_key = encrypt_secret(api_key)
        rec = self.get(user_id)
        if rec:
            rec.provider = provider
            rec.api_key_enc = enc_key
            rec.base_url = base_url or None
            rec.model = model
            rec.is_active = True
        else:
            rec = UserApiConfig(
                user_id=user_id,
                provider=provider,
                api_key_enc=enc_key,
                base_url=base_url or None,
                model=model,
                is_active=True,
            )
            self.db.add(rec)
        self.db.commit()
        self.db.refresh(rec)
        logger.info("credentials.saved user=%s provider=%s model=%s", user_id, provider, model)
        return rec

    def delete(self, user_id: int) -> bool:
        result = self.db.execute(delete(UserApiConfig).where(UserApiConfig.user_id == user_id))
        self.db.commit()
        return bool(result.rowcount)

    def decrypted_key(self, rec: UserApiConfig) -> str:
        try:
            return decrypt_secret(rec.api_key_enc)
        except ValueError:
            # master key changed or the row was tampered with
            logger.error("credentials.decrypt_failed user=%s", rec.user_id)
            raise ConfigurationError("已保存的 API Key 无法解密，请在设置中重新保存您的 AI API 配置")

    def resolve(self, user_id: int, defaults: AIDefaults) -> AIConfig:
        """The user's active configuration if it has a key, else the process defaults."""
        rec = self.get(user_id)
        if rec is not None and rec.is_active and rec.api_key_enc:
            api_key = self.decrypted_key(rec)
            if api_key:
                return AIConfig(provider=rec.provider, api_key=api_key, model=rec.model, base_url=rec.base_url)

        if not defaults.api_key:
            raise ConfigurationError(MISSING_KEY_MESSAGE)
        return AIConfig(
            provider=defaults.provider,
            api_key=defaults.api_key,
            model=defaults.model,
            base_url=defaults.base_url,
        )
