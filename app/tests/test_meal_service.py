# app/tests/test_meal_service.py
import re

import pytest

from app.exceptions import (
    NotFound,
    PayloadTooLarge,
    RecordPersistFailed,
    UnsupportedMediaType,
    ValidationFailed,
)
from app.services.meal_service import FOOD_COLLECTION
from app.services.storage import Identity

from conftest import PUBLIC_BASE, make_file


async def _seed(record_store, **overrides):
    row = {
        "user_id": "user-1",
        "foodname": "Toast",
        "meal": "Breakfast",
        "fooddate_at": "2024-02-28",
        "food_image_url": None,
        "food_image_path": None,
    }
    row.update(overrides)
    res = await record_store.insert(FOOD_COLLECTION, row)
    record_store.calls.clear()
    return res["data"]


@pytest.mark.asyncio
async def test_create_meal_without_file(meal_service, record_store, object_store, identity):
    res = await meal_service.create_meal(identity, "Chicken Salad", "Lunch", "2024-03-01")

    assert res.record["name"] == "Chicken Salad"
    assert res.record["meal_category"] == "Lunch"
    assert res.record["date"] == "2024-03-01"
    assert res.record["image_url"] is None
    assert object_store.calls == []

    stored = record_store.tables[FOOD_COLLECTION][res.record["id"]]
    assert stored["food_image_url"] is None
    assert stored["user_id"] == "user-1"
    assert stored["created_at"]


@pytest.mark.asyncio
async def test_create_meal_with_image(meal_service, record_store, object_store, identity, jpeg):
    res = await meal_service.create_meal(identity, "Pho", "dinner", "2024-03-02", jpeg)

    assert res.record["meal_category"] == "Dinner"
    _, bucket, path = object_store.uploads[0]
    assert bucket == "Foodtb_bk"
    assert re.fullmatch(r"food-images/\d+\.jpg", path)
    stored = record_store.tables[FOOD_COLLECTION][res.record["id"]]
    assert stored["food_image_url"] == f"{PUBLIC_BASE}/Foodtb_bk/{path}"
    assert stored["food_image_path"] == path


@pytest.mark.asyncio
async def test_create_meal_pdf_rejected_before_any_store_call(
    meal_service, record_store, object_store, identity
):
    pdf = make_file(media_type="application/pdf", name="menu.pdf")
    with pytest.raises(UnsupportedMediaType):
        await meal_service.create_meal(identity, "Soup", "Lunch", "2024-03-01", pdf)
    assert object_store.calls == []
    assert record_store.writes() == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "name,category,date",
    [
        ("", "Lunch", "2024-03-01"),
        ("Soup", "Brunch", "2024-03-01"),
        ("Soup", "Lunch", "01/03/2024"),
    ],
)
async def test_create_meal_validates_fields(meal_service, record_store, identity, name, category, date):
    with pytest.raises(ValidationFailed):
        await meal_service.create_meal(identity, name, category, date)
    assert record_store.writes() == []


@pytest.mark.asyncio
async def test_create_meal_persist_failure_cleans_up_upload(
    meal_service, record_store, object_store, identity, jpeg
):
    record_store.fail_writes = "relation food_tb does not exist"
    with pytest.raises(RecordPersistFailed) as excinfo:
        await meal_service.create_meal(identity, "Pho", "Dinner", "2024-03-02", jpeg)

    assert "relation food_tb does not exist" in excinfo.value.message
    _, _, path = object_store.uploads[0]
    assert object_store.removals == [("remove", "Foodtb_bk", [path])]


@pytest.mark.asyncio
async def test_update_meal_replaces_image(meal_service, record_store, object_store, identity):
    old_url = f"{PUBLIC_BASE}/Foodtb_bk/food-images/111.jpg"
    row = await _seed(record_store, food_image_url=old_url)
    two_mib = make_file(size=2 * 1024 * 1024)

    res = await meal_service.update_meal(identity, row["id"], image=two_mib)

    assert object_store.removals == [("remove", "Foodtb_bk", ["food-images/111.jpg"])]
    _, _, new_path = object_store.uploads[0]
    assert re.fullmatch(r"food-images/\d+\.jpg", new_path)
    assert res.record["image_url"] == f"{PUBLIC_BASE}/Foodtb_bk/{new_path}"
    stored = record_store.tables[FOOD_COLLECTION][row["id"]]
    assert stored["food_image_path"] == new_path
    assert stored["update_at"]
    # untouched fields survive
    assert stored["foodname"] == "Toast"


@pytest.mark.asyncio
async def test_update_meal_metadata_only_keeps_reference(meal_service, record_store, object_store, identity):
    old_url = f"{PUBLIC_BASE}/Foodtb_bk/food-images/111.jpg"
    row = await _seed(record_store, food_image_url=old_url, food_image_path="food-images/111.jpg")

    res = await meal_service.update_meal(identity, row["id"], name="French Toast", category="Snack")

    assert object_store.calls == []
    assert res.record["name"] == "French Toast"
    assert res.record["meal_category"] == "Snack"
    assert res.record["image_url"] == old_url


@pytest.mark.asyncio
async def test_update_meal_persist_failure_leaves_row_unchanged(
    meal_service, record_store, object_store, identity, jpeg
):
    row = await _seed(record_store)
    record_store.fail_writes = "timeout"

    with pytest.raises(RecordPersistFailed):
        await meal_service.update_meal(identity, row["id"], name="Changed", image=jpeg)

    stored = record_store.tables[FOOD_COLLECTION][row["id"]]
    assert stored["foodname"] == "Toast"
    assert stored["food_image_url"] is None


@pytest.mark.asyncio
async def test_other_users_meal_is_not_found(meal_service, record_store, object_store, jpeg):
    row = await _seed(record_store)
    intruder = Identity(user_id="user-2")

    with pytest.raises(NotFound):
        await meal_service.get_meal(intruder, row["id"])
    with pytest.raises(NotFound):
        await meal_service.update_meal(intruder, row["id"], name="Mine now", image=jpeg)
    with pytest.raises(NotFound):
        await meal_service.delete_meal(intruder, row["id"])
    assert object_store.calls == []
    assert record_store.writes() == []


@pytest.mark.asyncio
async def test_update_missing_meal_is_not_found(meal_service, identity):
    with pytest.raises(NotFound):
        await meal_service.update_meal(identity, "does-not-exist", name="x")


@pytest.mark.asyncio
async def test_list_meals_orders_filters_and_paginates(meal_service, record_store, identity):
    await _seed(record_store, foodname="Oatmeal", meal="Breakfast", fooddate_at="2024-03-01")
    await _seed(record_store, foodname="Ramen", meal="Dinner", fooddate_at="2024-03-03")
    await _seed(record_store, foodname="Apple", meal="Snack", fooddate_at="2024-03-02")
    await _seed(record_store, user_id="user-2", foodname="Someone else", fooddate_at="2024-03-04")

    page = await meal_service.list_meals(identity)
    assert [m["name"] for m in page["items"]] == ["Ramen", "Apple", "Oatmeal"]
    assert page["total"] == 3
    assert page["total_pages"] == 1

    by_category = await meal_service.list_meals(identity, search="DINNER")
    assert [m["name"] for m in by_category["items"]] == ["Ramen"]

    by_date = await meal_service.list_meals(identity, search="2024-03-02")
    assert [m["name"] for m in by_date["items"]] == ["Apple"]

    second = await meal_service.list_meals(identity, page=2, page_size=2)
    assert [m["name"] for m in second["items"]] == ["Oatmeal"]
    assert second["total_pages"] == 2


@pytest.mark.asyncio
async def test_list_meals_rejects_bad_paging(meal_service, identity):
    with pytest.raises(ValidationFailed):
        await meal_service.list_meals(identity, page=0)


@pytest.mark.asyncio
async def test_delete_meal_removes_image_and_row(meal_service, record_store, object_store, identity):
    url = f"{PUBLIC_BASE}/Foodtb_bk/food-images/222.png"
    row = await _seed(record_store, food_image_url=url)

    res = await meal_service.delete_meal(identity, row["id"])

    assert res["warnings"] == []
    assert object_store.removals == [("remove", "Foodtb_bk", ["food-images/222.png"])]
    assert row["id"] not in record_store.tables[FOOD_COLLECTION]


@pytest.mark.asyncio
async def test_delete_meal_still_deletes_row_when_image_removal_fails(
    meal_service, record_store, object_store, identity
):
    url = f"{PUBLIC_BASE}/Foodtb_bk/food-images/222.png"
    row = await _seed(record_store, food_image_url=url)
    object_store.fail_remove = "object locked"

    res = await meal_service.delete_meal(identity, row["id"])

    assert len(res["warnings"]) == 1
    assert row["id"] not in record_store.tables[FOOD_COLLECTION]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "bad_file,error",
    [
        (make_file(media_type="application/pdf", name="menu.pdf"), UnsupportedMediaType),
        (make_file(size=5 * 1024 * 1024 + 1), PayloadTooLarge),
    ],
)
@pytest.mark.parametrize("existing", [True, False])
async def test_update_meal_rejects_bad_file_before_any_store_call(
    meal_service, record_store, object_store, identity, bad_file, error, existing
):
    meal_id = (await _seed(record_store))["id"] if existing else "no-such-id"

    with pytest.raises(error):
        await meal_service.update_meal(identity, meal_id, name="Changed", image=bad_file)

    assert record_store.calls == []
    assert object_store.calls == []
