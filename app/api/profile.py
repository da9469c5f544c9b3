# app/api/profile.py
"""Profile of the signed-in user."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from app.api.dependencies import get_identity, get_services, ok_response, read_upload
from app.services.backends.factory import Services
from app.services.storage import Identity

router = APIRouter()


@router.get("")
async def get_profile(
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    return ok_response(await services.users.get_profile(identity))


@router.patch("")
async def update_profile(
    full_name: Optional[str] = Form(default=None),
    email: Optional[str] = Form(default=None),
    gender: Optional[str] = Form(default=None),
    avatar: Optional[UploadFile] = File(default=None),
    identity: Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    stored = await read_upload(avatar)
    result = await services.users.update_profile(
        identity, full_name=full_name, email=email, gender=gender, avatar=stored
    )
    return ok_response(result["user"], result["warnings"])
