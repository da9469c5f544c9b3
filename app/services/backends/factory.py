# app/services/backends/factory.py
"""
Pick the concrete stores at composition time.

RECORD_BACKEND=supabase  -> PostgREST tables, Supabase Storage, Supabase Auth
RECORD_BACKEND=sql       -> SQLAlchemy tables, Supabase Storage, Supabase Auth
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from app.config.settings import Settings, settings as default_settings
from app.config.supabase import SupabaseClient, supabase_client
from app.services.storage import AuthProvider, ObjectStore, RecordStore

logger = logging.getLogger(__name__)


@dataclass
class Backends:
    object_store: ObjectStore
    record_store: RecordStore
    auth: AuthProvider
    health: Any = None  # zero-arg callable -> bool, runs blocking

    def health_check(self) -> bool:
        return bool(self.health()) if callable(self.health) else False


def build_backends(cfg: Optional[Settings] = None) -> Backends:
    from app.services.backends.supabase_backend import (
        SupabaseAuthProvider,
        SupabaseObjectStore,
        SupabaseRecordStore,
    )

    cfg = cfg or default_settings
    object_store = SupabaseObjectStore(supabase_client)
    # Separate client so user sessions never replace the service-role session
    auth = SupabaseAuthProvider(
        SupabaseClient(cfg.supabase_url, cfg.supabase_service_role_key)
    )

    if cfg.record_backend == "sql":
        from app.config.database import DatabaseManager
        from app.services.backends.sql_backend import SqlRecordStore

        db = DatabaseManager(cfg.database_url)
        if db.available:
            try:
                db.create_tables()
            except Exception as exc:
                logger.exception("Could not create SQL tables: %s", exc)
        logger.info("Using SQL record store")
        return Backends(
            object_store=object_store,
            record_store=SqlRecordStore(db),
            auth=auth,
            health=db.health_check,
        )

    logger.info("Using Supabase record store")
    return Backends(
        object_store=object_store,
        record_store=SupabaseRecordStore(supabase_client),
        auth=auth,
        health=supabase_client.health_check,
    )


@dataclass
class Services:
    backends: Backends
    meals: Any
    users: Any


def build_services(
    cfg: Optional[Settings] = None, backends: Optional[Backends] = None
) -> Services:
    """Wire the meal and user services onto one shared ResourceLinker."""
    from app.services.meal_service import MealService
    from app.services.resource_linker import ResourceLinker
    from app.services.user_service import UserService

    cfg = cfg or default_settings
    backends = backends or build_backends(cfg)
    linker = ResourceLinker(
        backends.object_store,
        upload_failure_policy=cfg.upload_failure_policy,
        max_upload_bytes=cfg.max_upload_bytes,
    )
    meals = MealService(
        backends.record_store,
        backends.object_store,
        linker,
        bucket=cfg.food_bucket,
        image_prefix=cfg.food_image_prefix,
        default_page_size=cfg.default_page_size,
    )
    users = UserService(
        backends.record_store,
        backends.auth,
        linker,
        bucket=cfg.profile_bucket,
        image_prefix=cfg.profile_image_prefix,
    )
    return Services(backends=backends, meals=meals, users=users)
