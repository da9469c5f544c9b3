# app/config/settings.py
"""
Application configuration using pydantic-settings (pydantic v2 style).

This centralizes environment-driven configuration. Prefer reading values
from environment variables; do not rely on os.getenv inline defaults which
can silently hide missing configuration.
"""
from __future__ import annotations

import logging
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 5 * 1024 * 1024


class Settings(BaseSettings):
    """
    Application configuration loaded from environment.

    Relevant environment variables:
      - SUPABASE_URL
      - SUPABASE_SERVICE_ROLE_KEY
      - DATABASE_URL
      - RECORD_BACKEND            (supabase | sql)
      - FOOD_BUCKET / FOOD_IMAGE_PREFIX
      - PROFILE_BUCKET / PROFILE_IMAGE_PREFIX
      - MAX_UPLOAD_BYTES
      - UPLOAD_FAILURE_POLICY     (degrade | abort)
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Supabase
    supabase_url: Optional[str] = Field(default=None)
    supabase_service_role_key: Optional[str] = Field(default=None)
    database_url: Optional[str] = Field(default=None)

    # Which record store backs the food/user collections
    record_backend: Literal["supabase", "sql"] = "supabase"

    # Object storage layout
    food_bucket: str = "Foodtb_bk"
    food_image_prefix: str = "food-images"
    profile_bucket: str = "usertb_bk"
    profile_image_prefix: str = "profile-images"

    # Upload rules
    max_upload_bytes: int = MAX_UPLOAD_BYTES
    upload_failure_policy: Literal["degrade", "abort"] = "degrade"

    # Dashboard
    default_page_size: int = 10

    # Startup / health
    health_check_timeout: float = 5.0
    fail_on_db_startup: bool = False

    # --- validators / post-init checks ---
    @field_validator("supabase_url", "supabase_service_role_key", "database_url")
    @classmethod
    def maybe_strip(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None

    @field_validator("food_image_prefix", "profile_image_prefix")
    @classmethod
    def strip_slashes(cls, v: str) -> str:
        return v.strip().strip("/")

    def model_post_init(self, __context) -> None:  # pydantic v2 hooks
        """
        Light-weight validation/notice that runs after model is constructed.
        Uses logging (not print) so messages show up in server logs.
        """
        if not self.supabase_url or not self.supabase_service_role_key:
            logger.warning(
                "Supabase credentials are not configured. "
                "Set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY to enable storage and auth."
            )
        if self.record_backend == "sql" and not self.database_url:
            logger.warning(
                "RECORD_BACKEND=sql but DATABASE_URL is not set. Record operations will fail."
            )


# single exporter
settings = Settings()
