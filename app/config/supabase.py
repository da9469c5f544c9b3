# app/config/supabase.py
"""
Supabase client wrapper shared by the storage, record and auth backends.

The service-role instance (`supabase_client`) is built once at import time
from settings. The auth provider builds its own instance with the same
credentials so user sessions stay off the service-role client.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from supabase import Client, create_client

from app.config.settings import settings

logger = logging.getLogger(__name__)

# Hosted projects (https://<ref>.supabase.co) or a local `supabase start` stack
_SUPABASE_URL_RE = re.compile(
    r"^(https://[A-Za-z0-9\-]+\.supabase\.co|http://(localhost|127\.0\.0\.1):\d+)/?$"
)

# Table probed by health_check
_HEALTH_TABLE = "food_tb"


def is_supabase_url(url: Optional[str]) -> bool:
    return bool(url and _SUPABASE_URL_RE.match(url))


class SupabaseClient:
    """
    Holds one supabase-py `Client`, or None when credentials are missing or
    invalid. Construction never raises; callers check `.client` (or
    `.configured`) and the backends turn a missing client into error results.
    """

    def __init__(self, url: Optional[str] = None, key: Optional[str] = None) -> None:
        self.url = (url or settings.supabase_url or "").strip()
        self._key = key or settings.supabase_service_role_key or ""
        self._client: Optional[Client] = self._connect()

    def _connect(self) -> Optional[Client]:
        if not self.url or not self._key:
            logger.debug(
                "Supabase not configured: url=%r key_present=%s", self.url, bool(self._key)
            )
            return None
        if not is_supabase_url(self.url):
            logger.error(
                "SUPABASE_URL %r is not a Supabase project URL (https://<project>.supabase.co)",
                self.url,
            )
            return None
        try:
            client = create_client(self.url, self._key)
        except Exception as exc:
            logger.exception("Could not create Supabase client: %s", exc)
            return None
        logger.info("Supabase client ready for host=%s", self.host)
        return client

    @property
    def client(self) -> Optional[Client]:
        return self._client

    @property
    def configured(self) -> bool:
        return self._client is not None

    @property
    def host(self) -> Optional[str]:
        if not self.url:
            return None
        try:
            return urlparse(self.url).netloc or None
        except ValueError:
            return None

    def diagnostics(self) -> Dict[str, Any]:
        """Structural info only; the key is never included."""
        return {
            "credentials_present": bool(self.url and self._key),
            "client_present": self.configured,
            "host": self.host,
            "health_table": _HEALTH_TABLE,
        }

    def health_check(self) -> bool:
        """
        Blocking one-row select against the food table. main.py runs it in
        the default executor with a timeout.
        """
        if self._client is None:
            return False
        try:
            res = self._client.table(_HEALTH_TABLE).select("id").limit(1).execute()
        except Exception as exc:
            logger.warning("Supabase health check failed: %s", exc)
            return False

        status = getattr(res, "status_code", None)
        if isinstance(status, int) and status >= 400:
            logger.warning("Supabase health check got HTTP %s", status)
            return False
        return getattr(res, "data", None) is not None


supabase_client = SupabaseClient()
