# app/services/user_service.py
"""
Accounts and profiles.

- Credentials are owned by the auth provider; `user_tb` only carries the
  profile (name, email, gender, avatar) keyed by the auth user id.
- Avatars go through the same ResourceLinker as meal images.
- Callers pass an explicit Identity; nothing here reads a "current user".
"""
from __future__ import annotations

import datetime
import logging
import re
from typing import Any, Dict, Optional

from app.exceptions import (
    AuthenticationFailed,
    BackendUnavailable,
    Conflict,
    RecordPersistFailed,
    ValidationFailed,
)
from app.services.resource_linker import LinkTarget, ResourceLinker, validate_file
from app.services.storage import (
    AuthProvider,
    AuthSession,
    Identity,
    RecordStore,
    ResourceRef,
    StoredFile,
)

logger = logging.getLogger(__name__)

USER_COLLECTION = "user_tb"
GENDERS = ("Male", "Female", "Other")

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

EMAIL_SIGNUPS_DISABLED = (
    "Registration is disabled: email signups are not enabled for this project. "
    "Enable the Email provider in the auth settings or use a different auth method."
)


# -----------------------
# Utility helpers
# -----------------------
def _now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def normalize_email(value: Optional[str]) -> str:
    email = (value or "").strip().lower()
    if not _EMAIL_RE.match(email):
        raise ValidationFailed("A valid email address is required", details={"email": value})
    return email


def normalize_gender(value: Optional[str]) -> str:
    cleaned = (value or "").strip().lower()
    if not cleaned:
        return "Male"
    for gender in GENDERS:
        if gender.lower() == cleaned:
            return gender
    raise ValidationFailed(f"Gender must be one of {', '.join(GENDERS)}", details={"gender": value})


def to_profile(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row.get("id"),
        "full_name": row.get("fullname") or "",
        "email": row.get("email") or "",
        "gender": row.get("gender") or "Male",
        "avatar_url": row.get("user_image_url"),
    }


def _signup_error(error: Optional[str], code: Optional[str]) -> Exception:
    text = (error or "").lower()
    if code == "email_provider_disabled" or "email provider disabled" in text:
        return BackendUnavailable(EMAIL_SIGNUPS_DISABLED)
    if "already" in text and ("registered" in text or "exists" in text):
        return Conflict("An account with this email already exists")
    return ValidationFailed(error or "Registration failed")


# -----------------------
# UserService
# -----------------------
class UserService:

    def __init__(
        self,
        record_store: RecordStore,
        auth: AuthProvider,
        linker: ResourceLinker,
        bucket: str = "usertb_bk",
        image_prefix: str = "profile-images",
    ) -> None:
        self.records = record_store
        self.auth = auth
        self.linker = linker
        self.bucket = bucket
        self.image_prefix = image_prefix

    def _target(self, namespace: str) -> LinkTarget:
        return LinkTarget(
            bucket=self.bucket,
            namespace=namespace,
            url_field="user_image_url",
            path_field="user_image_path",
        )

    async def _upsert(self, row: Dict[str, Any]) -> Dict[str, Any]:
        res = await self.records.upsert(USER_COLLECTION, row)
        if not res.get("ok"):
            raise RecordPersistFailed(res.get("error"), details=res.get("diagnostics"))
        return res["data"]

    async def _load_row(self, user_id: str) -> Optional[Dict[str, Any]]:
        res = await self.records.get(USER_COLLECTION, user_id)
        if res.get("ok") and res.get("data"):
            return res["data"]
        logger.debug("No user row for id=%s: %s", user_id, res.get("error"))
        return None

    # -----------------------
    # Sessions
    # -----------------------
    async def authenticate(self, access_token: Optional[str]) -> Identity:
        """Turn a bearer token into the caller's Identity."""
        if not access_token:
            raise AuthenticationFailed("Please login first")
        res = await self.auth.resolve(access_token)
        if not res.get("ok"):
            raise AuthenticationFailed("Session expired or invalid. Please login again.")
        data = res["data"]
        return Identity(user_id=str(data["user_id"]), email=data.get("email"))

    async def register(
        self,
        email: str,
        password: str,
        full_name: str,
        gender: Optional[str] = None,
        avatar: Optional[StoredFile] = None,
    ) -> Dict[str, Any]:
        email = normalize_email(email)
        full_name = (full_name or "").strip()
        if not full_name:
            raise ValidationFailed("Full name is required")
        if not password:
            raise ValidationFailed("Password is required")
        gender = normalize_gender(gender)
        # Reject a bad avatar before an account gets created
        if avatar is not None:
            validate_file(avatar, self.linker.max_upload_bytes)

        signup = await self.auth.sign_up(email, password)
        if not signup.get("ok"):
            code = (signup.get("diagnostics") or {}).get("code")
            logger.info("Registration rejected for %s: %s", email, signup.get("error"))
            raise _signup_error(signup.get("error"), code)

        account = signup["data"]
        user_id = str(account["user_id"])
        now = _now_iso()

        async def _create(ref_fields: Dict[str, Optional[str]]) -> Dict[str, Any]:
            return await self._upsert(
                {
                    "id": user_id,
                    "fullname": full_name,
                    "email": email,
                    "gender": gender,
                    "created_at": now,
                    **ref_fields,
                }
            )

        result = await self.linker.link(self._target(user_id), None, avatar, _create)
        logger.info("Registered user id=%s avatar=%s", user_id, bool(result.ref))
        return {
            "user": to_profile(result.record),
            "access_token": account.get("access_token"),
            "warnings": result.warnings,
        }

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        email = (email or "").strip().lower()
        if not email or not password:
            raise AuthenticationFailed()

        res = await self.auth.sign_in(email, password)
        if not res.get("ok"):
            raise AuthenticationFailed()

        data = res["data"]
        session = AuthSession(
            user_id=str(data["user_id"]),
            access_token=data.get("access_token"),
            email=data.get("email") or email,
        )
        profile = await self.get_profile(Identity(session.user_id, session.email))
        logger.info("User logged in id=%s", session.user_id)
        return {
            "user": profile,
            "access_token": session.access_token,
            "token_type": "bearer",
        }

    # -----------------------
    # Profile
    # -----------------------
    async def get_profile(self, identity: Identity) -> Dict[str, Any]:
        row = await self._load_row(identity.user_id)
        if row is None:
            # account exists with the auth provider but has no profile row yet
            row = {"id": identity.user_id, "email": identity.email}
        return to_profile(row)

    async def update_profile(
        self,
        identity: Identity,
        full_name: Optional[str] = None,
        email: Optional[str] = None,
        gender: Optional[str] = None,
        avatar: Optional[StoredFile] = None,
    ) -> Dict[str, Any]:
        changes: Dict[str, Any] = {}
        if full_name is not None:
            if not full_name.strip():
                raise ValidationFailed("Full name is required")
            changes["fullname"] = full_name.strip()
        if email is not None:
            changes["email"] = normalize_email(email)
        if gender is not None:
            changes["gender"] = normalize_gender(gender)
        if avatar is not None:
            validate_file(avatar, self.linker.max_upload_bytes)

        row = await self._load_row(identity.user_id) or {}
        existing = (
            ResourceRef(url=row["user_image_url"], path=row.get("user_image_path"))
            if row.get("user_image_url")
            else None
        )

        async def _merge(ref_fields: Dict[str, Optional[str]]) -> Dict[str, Any]:
            return await self._upsert(
                {"id": identity.user_id, **changes, **ref_fields, "update_at": _now_iso()}
            )

        result = await self.linker.link(
            self._target(self.image_prefix), existing, avatar, _merge
        )
        logger.info("Updated profile id=%s", identity.user_id)
        return {"user": to_profile(result.record), "warnings": result.warnings}
