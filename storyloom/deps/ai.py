from __future__ import annotations

from functools import partial

from fastapi import Depends

from storyloom.core.config import AIDefaults, get_ai_defaults
from storyloom.services.ai_client import AIClientFactory, create_ai_client


def get_ai_client_factory(defaults: AIDefaults = Depends(get_ai_defaults)) -> AIClientFactory:
    return partial(create_ai_client, connect_timeout=defaults.connect_timeout_seconds)
