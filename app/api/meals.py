# app/api/meals.py
"""
Food-log endpoints. Every route is scoped to the bearer token's user.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from app.api.dependencies import get_identity, get_services, ok_response, read_upload
from app.services.backends.factory import Services
from app.services.storage import Identity

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("")
async def list_meals(
    search: Optional[str] = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: Optional[int] = Query(default=None, ge=1, le=100),
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    data = await services.meals.list_meals(identity, search=search, page=page, page_size=page_size)
    return ok_response(data)


@router.post("", status_code=201)
async def create_meal(
    name: str = Form(...),
    meal: str = Form(...),
    date: str = Form(...),
    image: Optional[UploadFile] = File(default=None),
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    stored = await read_upload(image)
    result = await services.meals.create_meal(identity, name, meal, date, stored)
    return ok_response(result.record, result.warnings)


@router.get("/{meal_id}")
async def get_meal(
    meal_id: str,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    return ok_response(await services.meals.get_meal(identity, meal_id))


@router.patch("/{meal_id}")
async def update_meal(
    meal_id: str,
    name: Optional[str] = Form(default=None),
    meal: Optional[str] = Form(default=None),
    date: Optional[str] = Form(default=None),
    image: Optional[UploadFile] = File(default=None),
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    stored = await read_upload(image)
    result = await services.meals.update_meal(
        identity, meal_id, name=name, category=meal, date=date, image=stored
    )
    return ok_response(result.record, result.warnings)


@router.delete("/{meal_id}")
async def delete_meal(
    meal_id: str,
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    result = await services.meals.delete_meal(identity, meal_id)
    return ok_response({"id": result["id"]}, result["warnings"])
