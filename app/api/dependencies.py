# app/api/dependencies.py
"""
FastAPI dependencies: the wired services, the caller's identity, uploads.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import Depends, Header, Request, UploadFile

from app.config.settings import settings
from app.services.backends.factory import Services, build_services
from app.services.storage import Identity, StoredFile

logger = logging.getLogger(__name__)


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        # lifespan did not run (e.g. app mounted without it); build lazily once
        services = build_services()
        request.app.state.services = services
    return services


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_identity(
    authorization: Optional[str] = Header(default=None),
    services: Services = Depends(get_services),
) -> Identity:
    return await services.users.authenticate(_bearer_token(authorization))


async def read_upload(upload: Optional[UploadFile]) -> Optional[StoredFile]:
    """
    Read an optional multipart file into a StoredFile.

    Browsers submit an empty part when no file is chosen; that counts as
    "no new file". At most max_upload_bytes + 1 bytes are read so oversized
    files are rejected without buffering them whole.
    """
    if upload is None or not upload.filename:
        return None

    limit = settings.max_upload_bytes
    data = await upload.read(limit + 1)
    await upload.close()
    if not data and not upload.size:
        return None

    size = upload.size if upload.size is not None else len(data)
    return StoredFile(
        data=data,
        media_type=(upload.content_type or "").lower(),
        size_bytes=max(size, len(data)),
        original_name=upload.filename,
    )


def ok_response(data: Any, warnings: Optional[List[str]] = None) -> Dict[str, Any]:
    return {"ok": True, "data": data, "warnings": list(warnings or [])}
