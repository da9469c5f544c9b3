# app/services/backends/sql_backend.py
"""
SQLAlchemy record store for deployments that keep rows in their own
PostgreSQL database while images stay in Supabase Storage.
"""
from __future__ import annotations

import datetime
import logging
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.config.database import DatabaseManager
from app.models import MODELS
from app.services.storage import Result, make_result, run_blocking

logger = logging.getLogger(__name__)


def _to_column_value(column_type: Any, value: Any) -> Any:
    """Coerce ISO strings coming from the services into date/datetime columns."""
    if not isinstance(value, str):
        return value
    python_type = getattr(column_type, "python_type", None)
    try:
        if python_type is datetime.datetime:
            return datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
        if python_type is datetime.date:
            return datetime.date.fromisoformat(value[:10])
    except (NotImplementedError, ValueError):
        return value
    return value


def _row_to_dict(obj: Any) -> Dict[str, Any]:
    row: Dict[str, Any] = {}
    for column in obj.__table__.columns:
        value = getattr(obj, column.name)
        if isinstance(value, (datetime.date, datetime.datetime)):
            value = value.isoformat()
        row[column.name] = value
    return row


class SqlRecordStore:

    name = "sql"

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db
        if not db.available:
            logger.warning("SqlRecordStore: database not available. Operations will fail.")

    def _model(self, collection: str):
        model = MODELS.get(collection)
        if model is None:
            raise KeyError(f"unknown collection: {collection}")
        return model

    def _apply(self, obj: Any, fields: Dict[str, Any]) -> None:
        columns = obj.__table__.columns
        for key, value in fields.items():
            if key in columns:
                setattr(obj, key, _to_column_value(columns[key].type, value))

    async def _call_db(self, fn, *args) -> Result:
        if not self.db.available:
            return make_result(False, error="no_database")
        called = getattr(fn, "__name__", str(fn))
        try:
            data = await run_blocking(fn, *args)
        except IntegrityError as exc:
            logger.warning("DB call %s violated a constraint: %s", called, exc.orig)
            return make_result(False, error=str(exc.orig), diagnostics={"fn": called})
        except SQLAlchemyError as exc:
            logger.exception("DB call %s raised exception: %s", called, exc)
            return make_result(False, error=str(exc), diagnostics={"fn": called})
        if data is None:
            return make_result(False, error="not_found", diagnostics={"fn": called})
        return make_result(True, data=data, diagnostics={"fn": called})

    async def insert(self, collection: str, fields: Dict[str, Any]) -> Result:
        model = self._model(collection)

        def _insert():
            with self.db.session_scope() as session:
                obj = model()
                self._apply(obj, fields)
                session.add(obj)
                session.flush()
                session.refresh(obj)
                return _row_to_dict(obj)

        return await self._call_db(_insert)

    async def update(self, collection: str, record_id: str, fields: Dict[str, Any]) -> Result:
        model = self._model(collection)

        def _update():
            with self.db.session_scope() as session:
                obj = session.get(model, record_id)
                if obj is None:
                    return None
                self._apply(obj, fields)
                session.flush()
                return _row_to_dict(obj)

        return await self._call_db(_update)

    async def upsert(self, collection: str, fields: Dict[str, Any]) -> Result:
        model = self._model(collection)

        def _upsert():
            with self.db.session_scope() as session:
                obj = session.get(model, fields.get("id")) if fields.get("id") else None
                if obj is None:
                    obj = model()
                    session.add(obj)
                self._apply(obj, fields)
                session.flush()
                session.refresh(obj)
                return _row_to_dict(obj)

        return await self._call_db(_upsert)

    async def get(self, collection: str, record_id: str) -> Result:
        model = self._model(collection)

        def _get():
            with self.db.session_scope() as session:
                obj = session.get(model, record_id)
                return _row_to_dict(obj) if obj is not None else None

        return await self._call_db(_get)

    async def list(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> Result:
        model = self._model(collection)

        def _list():
            stmt = select(model)
            for key, value in (filters or {}).items():
                stmt = stmt.where(getattr(model, key) == value)
            if order_by:
                column = getattr(model, order_by)
                stmt = stmt.order_by(column.desc() if descending else column.asc())
            with self.db.session_scope() as session:
                return [_row_to_dict(obj) for obj in session.scalars(stmt)]

        return await self._call_db(_list)

    async def delete(self, collection: str, record_id: str) -> Result:
        model = self._model(collection)

        def _delete():
            with self.db.session_scope() as session:
                obj = session.get(model, record_id)
                if obj is None:
                    return None
                row = _row_to_dict(obj)
                session.delete(obj)
                return row

        return await self._call_db(_delete)
