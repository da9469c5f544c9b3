# app/services/resource_linker.py
"""
Upload-then-link orchestration for records that point at a stored image.

Every place that lets a user attach a picture to a record (new meal, edited
meal, profile, registration) goes through `ResourceLinker.link`:

  1. no new file            -> persist with the existing reference
  2. validate the file      -> PayloadTooLarge / UnsupportedMediaType, no I/O
  3. existing reference     -> best-effort delete of the old object
  4. upload to {namespace}/{timestamp}.{ext}
  5. resolve the public URL
  6. persist the record with the new reference
  7. return the record, the reference and any warnings

The steps are awaited strictly in sequence. If step 6 fails after a fresh
upload, the new object is removed again (best-effort) before the failure is
raised, so a failed save does not leave an unreferenced file behind.

Upload failure handling is controlled by one policy for every caller:
  - "degrade": keep going without the new image and report a warning
  - "abort":   raise UploadFailed and leave the record untouched
"""
from __future__ import annotations

import logging
import mimetypes
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from app.config.settings import MAX_UPLOAD_BYTES
from app.exceptions import (
    PayloadTooLarge,
    RecordPersistFailed,
    UnsupportedMediaType,
    UploadFailed,
)
from app.services.storage import ObjectStore, ResourceRef, StoredFile

logger = logging.getLogger(__name__)

ALLOWED_MEDIA_TYPES = frozenset(
    {"image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"}
)

UPLOAD_POLICIES = ("degrade", "abort")

UPLOAD_WARNING = "Could not upload image. Saved without the new image."

# Extensions taken from the client-supplied file name must be a plain token
_EXTENSION_RE = re.compile(r"^[a-z0-9]{1,10}$")

# Persist callback: receives {url_field: ..., path_field: ...}, returns the stored row
PersistFn = Callable[[Dict[str, Optional[str]]], Awaitable[Dict[str, Any]]]


@dataclass(frozen=True)
class LinkTarget:
    """Where an image lives and which record fields point at it."""

    bucket: str
    namespace: str
    url_field: str
    path_field: str


@dataclass
class LinkResult:
    record: Dict[str, Any]
    ref: Optional[ResourceRef]
    warnings: List[str] = field(default_factory=list)

    @property
    def record_id(self) -> Optional[Any]:
        return self.record.get("id") if self.record else None


class _TimestampClock:
    """Millisecond timestamps that never repeat within this process."""

    def __init__(self, now: Callable[[], float] = time.time) -> None:
        self._now = now
        self._last = 0
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            value = max(int(self._now() * 1000), self._last + 1)
            self._last = value
            return value


def format_size(num_bytes: int) -> str:
    """5242880 -> "5MB", 524288 -> "512KB", anything uneven in bytes."""
    for unit, factor in (("MB", 1024 * 1024), ("KB", 1024)):
        if num_bytes >= factor and num_bytes % factor == 0:
            return f"{num_bytes // factor}{unit}"
    return f"{num_bytes} bytes"


def validate_file(candidate: StoredFile, max_bytes: int = MAX_UPLOAD_BYTES) -> None:
    """Reject oversized or non-image files before anything touches the network."""
    if candidate.size_bytes > max_bytes:
        raise PayloadTooLarge(
            f"File size must be less than {format_size(max_bytes)}",
            details={"size_bytes": candidate.size_bytes, "max_bytes": max_bytes},
        )
    if (candidate.media_type or "").lower() not in ALLOWED_MEDIA_TYPES:
        raise UnsupportedMediaType(details={"media_type": candidate.media_type})


def file_extension(candidate: StoredFile) -> str:
    name = candidate.original_name or ""
    if "." in name:
        ext = name.rsplit(".", 1)[-1].strip().lower()
        if _EXTENSION_RE.match(ext):
            return ext
    guessed = mimetypes.guess_extension(candidate.media_type or "") or ""
    # mimetypes maps image/jpeg to .jpg or .jpe depending on platform
    ext = guessed.lstrip(".").lower()
    if ext in ("jpe", "jpeg"):
        ext = "jpg"
    return ext or "bin"


class ResourceLinker:
    def __init__(
        self,
        object_store: ObjectStore,
        upload_failure_policy: str = "degrade",
        max_upload_bytes: int = MAX_UPLOAD_BYTES,
        clock: Optional[_TimestampClock] = None,
    ) -> None:
        if upload_failure_policy not in UPLOAD_POLICIES:
            raise ValueError(f"unknown upload failure policy: {upload_failure_policy!r}")
        self.object_store = object_store
        self.upload_failure_policy = upload_failure_policy
        self.max_upload_bytes = max_upload_bytes
        self._clock = clock or _TimestampClock()

    def build_path(self, namespace: str, candidate: StoredFile) -> str:
        prefix = (namespace or "").strip("/")
        name = f"{self._clock.next()}.{file_extension(candidate)}"
        return f"{prefix}/{name}" if prefix else name

    async def link(
        self,
        target: LinkTarget,
        existing: Optional[ResourceRef],
        candidate: Optional[StoredFile],
        persist: PersistFn,
    ) -> LinkResult:
        """Upload `candidate` (if any), then persist the record pointing at it."""
        if candidate is None:
            record = await self._persist(persist, target, existing)
            return LinkResult(record=record, ref=existing)

        validate_file(candidate, self.max_upload_bytes)

        old_removed = False
        if existing is not None:
            old_removed = await self._remove_old(target, existing)

        warnings: List[str] = []
        path = self.build_path(target.namespace, candidate)
        upload = await self.object_store.upload(
            target.bucket, path, candidate.data, candidate.media_type
        )

        if not upload.get("ok"):
            cause = upload.get("error")
            if self.upload_failure_policy == "abort":
                logger.error(
                    "Upload to %s/%s failed, aborting save: %s", target.bucket, path, cause
                )
                raise UploadFailed(cause, details=upload.get("diagnostics"))

            logger.warning(
                "Upload to %s/%s failed, saving without new image: %s",
                target.bucket,
                path,
                cause,
            )
            warnings.append(UPLOAD_WARNING)
            # A removed old object must not stay referenced
            fallback = None if old_removed else existing
            record = await self._persist(persist, target, fallback)
            return LinkResult(record=record, ref=fallback, warnings=warnings)

        url = await self.object_store.get_public_url(target.bucket, path)
        new_ref = ResourceRef(url=url, path=path)
        logger.info("Uploaded %s bytes to %s/%s", candidate.size_bytes, target.bucket, path)

        try:
            record = await self._persist(persist, target, new_ref)
        except RecordPersistFailed:
            await self._compensate(target, path)
            raise

        return LinkResult(record=record, ref=new_ref, warnings=warnings)

    # -----------------------
    # Internal helpers
    # -----------------------
    async def _persist(
        self, persist: PersistFn, target: LinkTarget, ref: Optional[ResourceRef]
    ) -> Dict[str, Any]:
        fields = {
            target.url_field: ref.url if ref else None,
            target.path_field: ref.resolve_path(target.bucket) if ref else None,
        }
        try:
            return await persist(fields)
        except RecordPersistFailed:
            raise
        except Exception as exc:
            logger.exception("Persisting record failed: %s", exc)
            raise RecordPersistFailed(exc) from exc

    async def _remove_old(self, target: LinkTarget, existing: ResourceRef) -> bool:
        path = existing.resolve_path(target.bucket)
        if not path:
            logger.warning(
                "Could not locate old object for %s in bucket %s; leaving it",
                existing.url,
                target.bucket,
            )
            return False
        try:
            res = await self.object_store.remove(target.bucket, [path])
        except Exception as exc:
            logger.warning("Old image removal failed for %s/%s: %s", target.bucket, path, exc)
            return False
        if not res.get("ok"):
            logger.warning(
                "Old image removal failed for %s/%s: %s",
                target.bucket,
                path,
                res.get("error"),
            )
            return False
        return True

    async def _compensate(self, target: LinkTarget, path: str) -> None:
        try:
            res = await self.object_store.remove(target.bucket, [path])
        except Exception as exc:
            logger.warning("Cleanup of %s/%s after failed save raised: %s", target.bucket, path, exc)
            return
        if not res.get("ok"):
            logger.warning(
                "Cleanup of %s/%s after failed save failed: %s",
                target.bucket,
                path,
                res.get("error"),
            )
