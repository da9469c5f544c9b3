# app/api/auth.py
"""
Registration and login.

Register is a multipart form so the optional avatar can travel with it;
login takes JSON and returns a bearer token for the other endpoints.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import BaseModel

from app.api.dependencies import get_services, ok_response, read_upload
from app.services.backends.factory import Services

logger = logging.getLogger(__name__)
router = APIRouter()


class LoginRequest(BaseModel):
    email: str
    password: str


@router.post("/register", status_code=201)
async def register(
    email: str = Form(...),
    password: str = Form(...),
    full_name: str = Form(...),
    gender: Optional[str] = Form(default="Male"),
    avatar: Optional[UploadFile] = File(default=None),
    services: Services = Depends(get_services),
):
    image = await read_upload(avatar)
    result = await services.users.register(
        email=email,
        password=password,
        full_name=full_name,
        gender=gender,
        avatar=image,
    )
    warnings = result.pop("warnings", [])
    return ok_response(result, warnings)


@router.post("/login")
async def login(body: LoginRequest, services: Services = Depends(get_services)):
    result = await services.users.login(body.email, body.password)
    return ok_response(result)
