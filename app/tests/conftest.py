# app/tests/conftest.py
import itertools
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

from app.services.backends.factory import Backends, build_services
from app.services.meal_service import MealService
from app.services.resource_linker import ResourceLinker
from app.services.storage import Identity, StoredFile, make_result
from app.services.user_service import UserService

PUBLIC_BASE = "https://demo.supabase.co/storage/v1/object/public"


# --- Fake object store ---
class FakeObjectStore:
    """Records every call; failures are switched on per test."""

    def __init__(self):
        self.objects: Dict[tuple, bytes] = {}
        self.calls: List[tuple] = []
        self.fail_upload: Optional[str] = None
        self.fail_remove: Optional[str] = None
        self.raise_on_remove = False

    @property
    def uploads(self):
        return [c for c in self.calls if c[0] == "upload"]

    @property
    def removals(self):
        return [c for c in self.calls if c[0] == "remove"]

    async def upload(self, bucket, path, data, content_type=None):
        self.calls.append(("upload", bucket, path))
        if self.fail_upload:
            return make_result(False, error=self.fail_upload)
        self.objects[(bucket, path)] = data
        return make_result(True, data={"path": path})

    async def get_public_url(self, bucket, path):
        return f"{PUBLIC_BASE}/{bucket}/{path}"

    async def remove(self, bucket, paths):
        self.calls.append(("remove", bucket, list(paths)))
        if self.raise_on_remove:
            raise ConnectionError("storage unreachable")
        if self.fail_remove:
            return make_result(False, error=self.fail_remove)
        for p in paths:
            self.objects.pop((bucket, p), None)
        return make_result(True, data=[{"name": p} for p in paths])


# --- Fake record store ---
class FakeRecordStore:

    def __init__(self):
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.calls: List[tuple] = []
        self.fail_writes: Optional[str] = None
        self._ids = itertools.count(1)

    def _table(self, name):
        return self.tables.setdefault(name, {})

    async def insert(self, collection, fields):
        self.calls.append(("insert", collection, dict(fields)))
        if self.fail_writes:
            return make_result(False, error=self.fail_writes)
        row = dict(fields)
        row.setdefault("id", str(next(self._ids)))
        self._table(collection)[row["id"]] = row
        return make_result(True, data=dict(row))

    async def update(self, collection, record_id, fields):
        self.calls.append(("update", collection, record_id, dict(fields)))
        if self.fail_writes:
            return make_result(False, error=self.fail_writes)
        row = self._table(collection).get(record_id)
        if row is None:
            return make_result(False, error="not_found")
        row.update(fields)
        return make_result(True, data=dict(row))

    async def upsert(self, collection, fields):
        self.calls.append(("upsert", collection, dict(fields)))
        if self.fail_writes:
            return make_result(False, error=self.fail_writes)
        table = self._table(collection)
        row = table.setdefault(fields["id"], {})
        row.update(fields)
        return make_result(True, data=dict(row))

    async def get(self, collection, record_id):
        self.calls.append(("get", collection, record_id))
        row = self._table(collection).get(record_id)
        if row is None:
            return make_result(False, error="not_found")
        return make_result(True, data=dict(row))

    async def list(self, collection, filters=None, order_by=None, descending=False):
        self.calls.append(("list", collection, dict(filters or {})))
        rows = [
            dict(r)
            for r in self._table(collection).values()
            if all(r.get(k) == v for k, v in (filters or {}).items())
        ]
        if order_by:
            rows.sort(key=lambda r: str(r.get(order_by) or ""), reverse=descending)
        return make_result(True, data=rows)

    async def delete(self, collection, record_id):
        self.calls.append(("delete", collection, record_id))
        if self.fail_writes:
            return make_result(False, error=self.fail_writes)
        row = self._table(collection).pop(record_id, None)
        if row is None:
            return make_result(False, error="not_found")
        return make_result(True, data=[row])

    def writes(self):
        return [c for c in self.calls if c[0] in ("insert", "update", "upsert", "delete")]


# --- Fake auth provider ---
class FakeAuth:

    def __init__(self):
        self.accounts: Dict[str, Dict[str, str]] = {}
        self.tokens: Dict[str, Dict[str, str]] = {}
        self.signup_error: Optional[str] = None

    async def sign_up(self, email, password):
        if self.signup_error:
            return make_result(False, error=self.signup_error)
        if email in self.accounts:
            return make_result(False, error="User already registered")
        user_id = f"user-{len(self.accounts) + 1}"
        self.accounts[email] = {"user_id": user_id, "password": password}
        token = f"token-{user_id}"
        self.tokens[token] = {"user_id": user_id, "email": email}
        return make_result(True, data={"user_id": user_id, "email": email, "access_token": token})

    async def sign_in(self, email, password):
        account = self.accounts.get(email)
        if not account or account["password"] != password:
            return make_result(False, error="Invalid login credentials")
        token = f"token-{account['user_id']}"
        self.tokens[token] = {"user_id": account["user_id"], "email": email}
        return make_result(
            True, data={"user_id": account["user_id"], "email": email, "access_token": token}
        )

    async def resolve(self, access_token):
        data = self.tokens.get(access_token)
        if not data:
            return make_result(False, error="invalid_token")
        return make_result(True, data=dict(data))


@pytest.fixture
def object_store():
    return FakeObjectStore()


@pytest.fixture
def record_store():
    return FakeRecordStore()


@pytest.fixture
def fake_auth():
    return FakeAuth()


@pytest.fixture
def linker(object_store):
    return ResourceLinker(object_store, upload_failure_policy="degrade")


@pytest.fixture
def meal_service(record_store, object_store, linker):
    return MealService(record_store, object_store, linker)


@pytest.fixture
def user_service(record_store, fake_auth, linker):
    return UserService(record_store, fake_auth, linker)


@pytest.fixture
def identity():
    return Identity(user_id="user-1", email="alice@example.com")


def make_file(
    size: int = 1024, media_type: str = "image/jpeg", name: str = "photo.jpg"
) -> StoredFile:
    return StoredFile(
        data=b"\xff" * min(size, 64),
        media_type=media_type,
        size_bytes=size,
        original_name=name,
    )


@pytest.fixture
def jpeg():
    return make_file()


# --- Wired app for HTTP tests ---
@pytest.fixture
def services(record_store, object_store, fake_auth):
    backends = Backends(
        object_store=object_store,
        record_store=record_store,
        auth=fake_auth,
        health=lambda: True,
    )
    cfg = SimpleNamespace(
        upload_failure_policy="degrade",
        max_upload_bytes=5 * 1024 * 1024,
        food_bucket="Foodtb_bk",
        food_image_prefix="food-images",
        profile_bucket="usertb_bk",
        profile_image_prefix="profile-images",
        default_page_size=10,
    )
    return build_services(cfg, backends)


@pytest.fixture
def client(services):
    from fastapi.testclient import TestClient

    import main

    previous = getattr(main.app.state, "services", None)
    main.app.state.services = services
    main.app.state.backend_healthy = True
    yield TestClient(main.app)
    main.app.state.services = previous
    main.app.state.backend_healthy = None


@pytest.fixture
def auth_headers(fake_auth):
    fake_auth.accounts["alice@example.com"] = {"user_id": "user-1", "password": "pw"}
    fake_auth.tokens["token-user-1"] = {"user_id": "user-1", "email": "alice@example.com"}
    return {"Authorization": "Bearer token-user-1"}
