# app/services/storage.py
"""
Capability interfaces for the stores the food log is built on.

Every store method returns the normalized result shape used across the
services:

    {"ok": True,  "data": ...,  "diagnostics": {...}}
    {"ok": False, "error": "...", "diagnostics": {...}}

so backends can be swapped at composition time without the callers caring
whether the data came from Supabase or from SQLAlchemy.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, Sequence
from urllib.parse import unquote, urlparse

logger = logging.getLogger(__name__)

Result = Dict[str, Any]


# -----------------------
# Result helpers
# -----------------------
def make_result(
    ok: bool,
    data: Any = None,
    error: Optional[str] = None,
    diagnostics: Optional[Dict[str, Any]] = None,
) -> Result:
    res: Result = {"ok": ok}
    if ok:
        res["data"] = data
    else:
        res["error"] = error or "unknown_error"
    res["diagnostics"] = diagnostics or {}
    return res


def parse_supabase_response(resp: Any) -> Dict[str, Any]:
    """
    Turn Supabase SDK responses (object with .data or dict) into a predictable dict.
    Returns {ok, data, status_code, raw}
    """
    if resp is None:
        return {"ok": False, "data": None, "status_code": None, "raw": None}

    if hasattr(resp, "data"):
        data = getattr(resp, "data")
        status_code = getattr(resp, "status_code", None)
        ok = data is not None
        if isinstance(status_code, int) and status_code >= 400:
            ok = False
        return {"ok": ok, "data": data, "status_code": status_code, "raw": resp}

    if isinstance(resp, dict):
        data = resp.get("data", resp.get("result", resp.get("records", None)))
        status_code = resp.get(
            "status_code", resp.get("statusCode", resp.get("status", None))
        )
        ok = data is not None
        return {"ok": ok, "data": data, "status_code": status_code, "raw": resp}

    return {"ok": False, "data": None, "status_code": None, "raw": str(resp)}


async def run_blocking(fn: Callable, *args, **kwargs) -> Any:
    """Run a blocking SDK call in a worker thread."""
    return await asyncio.to_thread(lambda: fn(*args, **kwargs))


# -----------------------
# Values
# -----------------------
@dataclass(frozen=True)
class StoredFile:
    """A user-selected file waiting to be uploaded."""

    data: bytes
    media_type: str
    size_bytes: int
    original_name: str

    @classmethod
    def from_bytes(cls, data: bytes, media_type: str, original_name: str) -> "StoredFile":
        return cls(
            data=data,
            media_type=(media_type or "").lower(),
            size_bytes=len(data),
            original_name=original_name or "",
        )


@dataclass(frozen=True)
class ResourceRef:
    """Public URL of a stored object plus the path it lives at in its bucket."""

    url: str
    path: Optional[str] = None

    def resolve_path(self, bucket: str) -> Optional[str]:
        return self.path or extract_path_from_url(self.url, bucket)


@dataclass(frozen=True)
class Identity:
    """The authenticated caller. Passed explicitly into every service call."""

    user_id: str
    email: Optional[str] = None


@dataclass(frozen=True)
class AuthSession:
    user_id: str
    access_token: Optional[str]
    email: Optional[str] = None


def extract_path_from_url(url: Optional[str], bucket: str) -> Optional[str]:
    """
    Recover the in-bucket path from a public object URL.

    Looks for the ``/{bucket}/`` segment and returns the percent-decoded
    remainder. Records written by this service keep the path alongside the
    URL; this exists for rows that only carry the URL.
    """
    if not url or not bucket:
        return None

    marker = f"/{bucket}/"
    try:
        parsed = urlparse(url)
        source = parsed.path if parsed.scheme and parsed.netloc else url
    except ValueError:
        source = url

    idx = source.find(marker)
    if idx < 0:
        return None
    path = unquote(source[idx + len(marker):])
    return path or None


# -----------------------
# Capability interfaces
# -----------------------
class ObjectStore(Protocol):
    async def upload(
        self, bucket: str, path: str, data: bytes, content_type: Optional[str] = None
    ) -> Result: ...

    async def get_public_url(self, bucket: str, path: str) -> str: ...

    async def remove(self, bucket: str, paths: Sequence[str]) -> Result: ...


class RecordStore(Protocol):
    async def insert(self, collection: str, fields: Dict[str, Any]) -> Result: ...

    async def update(
        self, collection: str, record_id: str, fields: Dict[str, Any]
    ) -> Result: ...

    async def upsert(self, collection: str, fields: Dict[str, Any]) -> Result: ...

    async def get(self, collection: str, record_id: str) -> Result: ...

    async def list(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> Result: ...

    async def delete(self, collection: str, record_id: str) -> Result: ...


class AuthProvider(Protocol):
    async def sign_up(self, email: str, password: str) -> Result: ...

    async def sign_in(self, email: str, password: str) -> Result: ...

    async def resolve(self, access_token: str) -> Result: ...


def first_row(data: Any) -> Optional[Dict[str, Any]]:
    """Single row out of a `.data` payload that may be a list or a dict."""
    if isinstance(data, list):
        return data[0] if data else None
    if isinstance(data, dict):
        return data
    return None

