"""Environment-driven settings shared by all services."""

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


@dataclass(frozen=True)
class Settings:
    redis_url: str = "redis://localhost:6379/0"
    log_level: str = "INFO"
    openrouter_api_key: Optional[str] = None
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    whatsapp_access_token: Optional[str] = None
    whatsapp_phone_number_id: Optional[str] = None
    whatsapp_api_version: str = "v18.0"
    app_url: str = "http://localhost:3000"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            redis_url=os.getenv("REDIS_URL", cls.redis_url),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
            openrouter_api_key=os.getenv("OPENROUTER_API_KEY") or None,
            openrouter_base_url=os.getenv("OPENROUTER_BASE_URL", cls.openrouter_base_url),
            whatsapp_access_token=os.getenv("WHATSAPP_ACCESS_TOKEN") or None,
            whatsapp_phone_number_id=os.getenv("WHATSAPP_PHONE_NUMBER_ID") or None,
            whatsapp_api_version=os.getenv("WHATSAPP_API_VERSION", cls.whatsapp_api_version),
            app_url=os.getenv("APP_URL", cls.app_url),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
