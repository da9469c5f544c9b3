# app/services/backends/supabase_backend.py
"""
Supabase implementations of the object store, record store and auth provider.

- Every blocking supabase-py call runs in a worker thread.
- Responses (object with .data OR dict with "data") are normalized into the
  {"ok", "data" | "error", "diagnostics"} shape.
- SDK exceptions are logged and turned into error results; nothing here raises
  for a failed remote call.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, Sequence

from app.config.supabase import SupabaseClient
from app.services.storage import (
    Result,
    first_row,
    make_result,
    parse_supabase_response,
    run_blocking,
)

logger = logging.getLogger(__name__)


class _SupabaseBacked:
    """Shared plumbing: hold the wrapper and run SDK calls off the event loop."""

    name = "supabase"

    def __init__(self, wrapper: SupabaseClient) -> None:
        self._wrapper = wrapper
        if wrapper.client is None:
            logger.warning(
                "%s: Supabase client not available. Operations will fail.",
                type(self).__name__,
            )

    @property
    def client(self) -> Any:
        return self._wrapper.client

    async def _call_db(self, fn: Callable, *args, **kwargs) -> Result:
        """
        Run blocking DB function in a thread and normalize response.
        `fn` should invoke the supabase SDK and return its raw response.
        """
        if self.client is None:
            return make_result(False, error="no_supabase_client")
        called = getattr(fn, "__name__", str(fn))
        try:
            logger.debug("DB call: %s args=%s", called, args)
            raw = await run_blocking(fn, *args, **kwargs)
            parsed = parse_supabase_response(raw)
            diagnostics = {
                "called": called,
                "raw_preview": str(parsed.get("raw"))[:1000],
            }
            return make_result(
                parsed.get("ok", False),
                data=parsed.get("data"),
                diagnostics=diagnostics,
                error=None if parsed.get("ok") else "db_no_data",
            )
        except Exception as exc:
            logger.exception("DB call %s raised exception: %s", called, exc)
            return make_result(False, error=_error_message(exc), diagnostics={"fn": called})


def _error_message(exc: Exception) -> str:
    # postgrest/storage/auth errors carry a `.message`; fall back to str()
    message = getattr(exc, "message", None)
    return str(message) if message else str(exc)


# -----------------------
# Object store
# -----------------------
class SupabaseObjectStore(_SupabaseBacked):

    async def upload(
        self, bucket: str, path: str, data: bytes, content_type: Optional[str] = None
    ) -> Result:
        logger.info("storage upload bucket=%s path=%s bytes=%d", bucket, path, len(data))
        if self.client is None:
            return make_result(False, error="no_supabase_client")

        options: Dict[str, str] = {"cache-control": "3600", "upsert": "false"}
        if content_type:
            options["content-type"] = content_type

        def _upload(b, p, payload, opts):
            return self.client.storage.from_(b).upload(p, payload, file_options=opts)

        try:
            raw = await run_blocking(_upload, bucket, path, data, options)
        except Exception as exc:
            logger.exception("storage upload to %s/%s failed: %s", bucket, path, exc)
            return make_result(
                False, error=_error_message(exc), diagnostics={"bucket": bucket, "path": path}
            )
        return make_result(True, data={"path": path}, diagnostics={"raw_preview": str(raw)[:500]})

    async def get_public_url(self, bucket: str, path: str) -> str:
        if self.client is None:
            raise RuntimeError("Supabase client not available")
        url = self.client.storage.from_(bucket).get_public_url(path)
        # older clients returned {"publicURL": ...} / {"publicUrl": ...}
        if isinstance(url, dict):
            url = url.get("publicUrl") or url.get("publicURL") or ""
        return str(url).rstrip("?")

    async def remove(self, bucket: str, paths: Sequence[str]) -> Result:
        logger.info("storage remove bucket=%s paths=%s", bucket, list(paths))
        if self.client is None:
            return make_result(False, error="no_supabase_client")

        def _remove(b, ps):
            return self.client.storage.from_(b).remove(ps)

        try:
            raw = await run_blocking(_remove, bucket, list(paths))
        except Exception as exc:
            logger.exception("storage remove from %s failed: %s", bucket, exc)
            return make_result(False, error=_error_message(exc), diagnostics={"bucket": bucket})
        return make_result(True, data=raw, diagnostics={"removed": len(paths)})


# -----------------------
# Record store
# -----------------------
class SupabaseRecordStore(_SupabaseBacked):

    async def insert(self, collection: str, fields: Dict[str, Any]) -> Result:
        logger.info("insert into %s", collection)

        def _fn(col, row):
            return self.client.table(col).insert(row).execute()

        res = await self._call_db(_fn, collection, fields)
        return _single(res)

    async def update(self, collection: str, record_id: str, fields: Dict[str, Any]) -> Result:
        logger.info("update %s id=%s", collection, record_id)

        def _fn(col, rid, row):
            return self.client.table(col).update(row).eq("id", rid).execute()

        res = await self._call_db(_fn, collection, record_id, fields)
        if res.get("ok") and not res.get("data"):
            return make_result(False, error="not_found", diagnostics=res.get("diagnostics"))
        return _single(res)

    async def upsert(self, collection: str, fields: Dict[str, Any]) -> Result:
        logger.info("upsert into %s id=%s", collection, fields.get("id"))

        def _fn(col, row):
            return self.client.table(col).upsert(row, on_conflict="id").execute()

        res = await self._call_db(_fn, collection, fields)
        return _single(res)

    async def get(self, collection: str, record_id: str) -> Result:
        def _fn(col, rid):
            return self.client.table(col).select("*").eq("id", rid).limit(1).execute()

        res = await self._call_db(_fn, collection, record_id)
        if res.get("ok") and not first_row(res.get("data")):
            return make_result(False, error="not_found", diagnostics=res.get("diagnostics"))
        return _single(res)

    async def list(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> Result:
        def _fn(col, flt, order, desc):
            qb = self.client.table(col).select("*")
            for key, value in (flt or {}).items():
                qb = qb.eq(key, value)
            if order:
                qb = qb.order(order, desc=desc)
            return qb.execute()

        res = await self._call_db(_fn, collection, filters, order_by, descending)
        if res.get("ok") and res.get("data") is None:
            res["data"] = []
        return res

    async def delete(self, collection: str, record_id: str) -> Result:
        logger.info("delete from %s id=%s", collection, record_id)

        def _fn(col, rid):
            return self.client.table(col).delete().eq("id", rid).execute()

        res = await self._call_db(_fn, collection, record_id)
        if res.get("ok") and not res.get("data"):
            return make_result(False, error="not_found", diagnostics=res.get("diagnostics"))
        return res


def _single(res: Result) -> Result:
    if not res.get("ok"):
        return res
    row = first_row(res.get("data"))
    if row is None:
        return make_result(False, error="db_no_data", diagnostics=res.get("diagnostics"))
    return make_result(True, data=row, diagnostics=res.get("diagnostics"))


# -----------------------
# Auth provider
# -----------------------
class SupabaseAuthProvider(_SupabaseBacked):
    """
    Supabase Auth (GoTrue). Use a dedicated client instance: signing in stores
    the user session on the client, which must not leak into the service-role
    client used for table and storage access.
    """

    async def sign_up(self, email: str, password: str) -> Result:
        logger.info("auth sign_up email=%s", email)
        if self.client is None:
            return make_result(False, error="no_supabase_client")
        try:
            resp = await run_blocking(
                self.client.auth.sign_up, {"email": email, "password": password}
            )
        except Exception as exc:
            logger.warning("auth sign_up failed for %s: %s", email, exc)
            return make_result(
                False, error=_error_message(exc), diagnostics={"code": getattr(exc, "code", None)}
            )
        user = getattr(resp, "user", None)
        if user is None:
            return make_result(False, error="sign_up_returned_no_user")
        session = getattr(resp, "session", None)
        return make_result(
            True,
            data={
                "user_id": str(user.id),
                "email": getattr(user, "email", email),
                "access_token": getattr(session, "access_token", None),
            },
        )

    async def sign_in(self, email: str, password: str) -> Result:
        logger.info("auth sign_in email=%s", email)
        if self.client is None:
            return make_result(False, error="no_supabase_client")
        try:
            resp = await run_blocking(
                self.client.auth.sign_in_with_password,
                {"email": email, "password": password},
            )
        except Exception as exc:
            logger.info("auth sign_in rejected for %s: %s", email, exc)
            return make_result(False, error=_error_message(exc))
        user = getattr(resp, "user", None)
        session = getattr(resp, "session", None)
        if user is None or session is None:
            return make_result(False, error="invalid_credentials")
        return make_result(
            True,
            data={
                "user_id": str(user.id),
                "email": getattr(user, "email", email),
                "access_token": session.access_token,
            },
        )

    async def resolve(self, access_token: str) -> Result:
        if self.client is None:
            return make_result(False, error="no_supabase_client")
        try:
            resp = await run_blocking(self.client.auth.get_user, access_token)
        except Exception as exc:
            logger.debug("auth resolve failed: %s", exc)
            return make_result(False, error=_error_message(exc))
        user = getattr(resp, "user", None)
        if user is None:
            return make_result(False, error="invalid_token")
        return make_result(True, data={"user_id": str(user.id), "email": getattr(user, "email", None)})
