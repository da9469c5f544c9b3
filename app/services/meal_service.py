# app/services/meal_service.py
"""
Food-log entries for one user: create, edit, list/search, delete.

Images go through the ResourceLinker so every call site shares the same
upload / replace / cleanup rules. Rows live in the `food_tb` collection of
whichever record store was chosen at composition time.
"""
from __future__ import annotations

import datetime
import logging
import math
from typing import Any, Dict, List, Optional

from app.exceptions import (
    BackendUnavailable,
    NotFound,
    RecordPersistFailed,
    ValidationFailed,
)
from app.services.resource_linker import (
    LinkResult,
    LinkTarget,
    ResourceLinker,
    validate_file,
)
from app.services.storage import (
    Identity,
    ObjectStore,
    RecordStore,
    ResourceRef,
    StoredFile,
)

logger = logging.getLogger(__name__)

FOOD_COLLECTION = "food_tb"
MEAL_CATEGORIES = ("Breakfast", "Lunch", "Dinner", "Snack")


def _now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def normalize_category(value: Optional[str]) -> str:
    cleaned = (value or "").strip().lower()
    for category in MEAL_CATEGORIES:
        if category.lower() == cleaned:
            return category
    raise ValidationFailed(
        f"Meal must be one of {', '.join(MEAL_CATEGORIES)}",
        details={"meal": value},
    )


def normalize_date(value: Any) -> str:
    if isinstance(value, datetime.datetime):
        return value.date().isoformat()
    if isinstance(value, datetime.date):
        return value.isoformat()
    try:
        return datetime.date.fromisoformat(str(value or "").strip()).isoformat()
    except ValueError:
        raise ValidationFailed("Date must be a calendar date (YYYY-MM-DD)", details={"date": value})


def normalize_name(value: Optional[str]) -> str:
    name = (value or "").strip()
    if not name:
        raise ValidationFailed("Food name is required")
    return name


def to_meal(row: Dict[str, Any]) -> Dict[str, Any]:
    """Record-store row -> public meal shape."""
    date = row.get("fooddate_at")
    return {
        "id": row.get("id"),
        "name": row.get("foodname") or "",
        "meal_category": row.get("meal") or "",
        "date": str(date)[:10] if date else None,
        "image_url": row.get("food_image_url"),
        "created_at": row.get("created_at"),
        "updated_at": row.get("update_at"),
    }


def _existing_ref(row: Dict[str, Any]) -> Optional[ResourceRef]:
    url = row.get("food_image_url")
    if not url:
        return None
    return ResourceRef(url=url, path=row.get("food_image_path"))


class MealService:

    def __init__(
        self,
        record_store: RecordStore,
        object_store: ObjectStore,
        linker: ResourceLinker,
        bucket: str = "Foodtb_bk",
        image_prefix: str = "food-images",
        default_page_size: int = 10,
    ) -> None:
        self.records = record_store
        self.objects = object_store
        self.linker = linker
        self.target = LinkTarget(
            bucket=bucket,
            namespace=image_prefix,
            url_field="food_image_url",
            path_field="food_image_path",
        )
        self.default_page_size = default_page_size

    async def _load_owned(self, identity: Identity, meal_id: str) -> Dict[str, Any]:
        res = await self.records.get(FOOD_COLLECTION, meal_id)
        row = res.get("data") if res.get("ok") else None
        if not row or str(row.get("user_id")) != str(identity.user_id):
            raise NotFound("Food item not found!", details={"id": meal_id})
        return row

    # -----------------------
    # Public API
    # -----------------------
    async def create_meal(
        self,
        identity: Identity,
        name: str,
        category: str,
        date: Any,
        image: Optional[StoredFile] = None,
    ) -> LinkResult:
        fields = {
            "user_id": identity.user_id,
            "foodname": normalize_name(name),
            "meal": normalize_category(category),
            "fooddate_at": normalize_date(date),
        }

        async def _insert(ref_fields: Dict[str, Optional[str]]) -> Dict[str, Any]:
            row = {**fields, **ref_fields, "created_at": _now_iso()}
            res = await self.records.insert(FOOD_COLLECTION, row)
            if not res.get("ok"):
                raise RecordPersistFailed(res.get("error"), details=res.get("diagnostics"))
            return res["data"]

        result = await self.linker.link(self.target, None, image, _insert)
        logger.info(
            "Created meal id=%s user=%s image=%s",
            result.record_id,
            identity.user_id,
            bool(result.ref),
        )
        result.record = to_meal(result.record)
        return result

    async def update_meal(
        self,
        identity: Identity,
        meal_id: str,
        name: Optional[str] = None,
        category: Optional[str] = None,
        date: Any = None,
        image: Optional[StoredFile] = None,
    ) -> LinkResult:
        changes: Dict[str, Any] = {}
        if name is not None:
            changes["foodname"] = normalize_name(name)
        if category is not None:
            changes["meal"] = normalize_category(category)
        if date is not None:
            changes["fooddate_at"] = normalize_date(date)
        # A bad file is rejected before the row is even read
        if image is not None:
            validate_file(image, self.linker.max_upload_bytes)

        row = await self._load_owned(identity, meal_id)

        async def _update(ref_fields: Dict[str, Optional[str]]) -> Dict[str, Any]:
            payload = {**changes, **ref_fields, "update_at": _now_iso()}
            res = await self.records.update(FOOD_COLLECTION, meal_id, payload)
            if not res.get("ok"):
                raise RecordPersistFailed(res.get("error"), details=res.get("diagnostics"))
            return res["data"]

        result = await self.linker.link(self.target, _existing_ref(row), image, _update)
        logger.info("Updated meal id=%s user=%s", meal_id, identity.user_id)
        result.record = to_meal(result.record)
        return result

    async def get_meal(self, identity: Identity, meal_id: str) -> Dict[str, Any]:
        return to_meal(await self._load_owned(identity, meal_id))

    async def list_meals(
        self,
        identity: Identity,
        search: Optional[str] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        The caller's meals, newest date first, optionally filtered by a
        case-insensitive match on name, category or date.
        """
        page_size = page_size or self.default_page_size
        if page < 1 or page_size < 1:
            raise ValidationFailed("page and page_size must be positive")

        res = await self.records.list(
            FOOD_COLLECTION,
            filters={"user_id": identity.user_id},
            order_by="fooddate_at",
            descending=True,
        )
        if not res.get("ok"):
            raise BackendUnavailable(
                f"Failed to load meals: {res.get('error')}", details=res.get("diagnostics")
            )

        meals = [to_meal(row) for row in res.get("data") or []]
        term = (search or "").strip().lower()
        if term:
            meals = [
                m
                for m in meals
                if term in m["name"].lower()
                or term in m["meal_category"].lower()
                or term in (m["date"] or "").lower()
            ]

        total = len(meals)
        total_pages = max(1, math.ceil(total / page_size))
        start = (page - 1) * page_size
        items: List[Dict[str, Any]] = meals[start:start + page_size]
        return {
            "items": items,
            "page": page,
            "page_size": page_size,
            "total": total,
            "total_pages": total_pages,
        }

    async def delete_meal(self, identity: Identity, meal_id: str) -> Dict[str, Any]:
        """Remove the image (best-effort) and then the row (authoritative)."""
        row = await self._load_owned(identity, meal_id)
        warnings: List[str] = []

        ref = _existing_ref(row)
        path = ref.resolve_path(self.target.bucket) if ref else None
        if path:
            removed = await self.objects.remove(self.target.bucket, [path])
            if not removed.get("ok"):
                logger.warning(
                    "Image removal failed for meal id=%s path=%s: %s",
                    meal_id,
                    path,
                    removed.get("error"),
                )
                warnings.append("Image could not be removed from storage.")

        res = await self.records.delete(FOOD_COLLECTION, meal_id)
        if not res.get("ok"):
            raise RecordPersistFailed(
                res.get("error"), details=res.get("diagnostics"), prefix="Failed to delete"
            )
        logger.info("Deleted meal id=%s user=%s", meal_id, identity.user_id)
        return {"id": meal_id, "warnings": warnings}
