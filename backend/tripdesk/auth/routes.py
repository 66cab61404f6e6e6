from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel

from tripdesk.auth.dependencies import ACCESS_COOKIE, REFRESH_COOKIE, get_current_user
from tripdesk.common.enums import UserStatus
from tripdesk.common.utils import extract, full_name, utcnow
from tripdesk.core.config import settings
from tripdesk.core.security import (
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    verify_password,
)
from tripdesk.db.prisma_client import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


class RefreshRequest(BaseModel):
    refreshToken: Optional[str] = None


def serialize_profile(user: Any) -> Dict[str, Any]:
    department = extract(user, "department")
    return {
        "id": extract(user, "id"),
        "email": extract(user, "email"),
        "name": full_name(user, fallback=""),
        "firstName": extract(user, "first_name"),
        "lastName": extract(user, "last_name"),
        "role": extract(user, "role"),
        "status": extract(user, "status"),
        "employeeId": extract(user, "employee_id"),
        "departmentId": extract(user, "department_id"),
        "department": extract(department, "name"),
    }


def _set_auth_cookies(response: Response, access_token: str, refresh_token: str | None = None) -> None:
    secure = settings.is_production
    response.set_cookie(
        ACCESS_COOKIE,
        access_token,
        httponly=True,
        secure=secure,
        samesite="lax",
        max_age=settings.access_token_expire_minutes * 60,
    )
    if refresh_token:
        response.set_cookie(
            REFRESH_COOKIE,
            refresh_token,
            httponly=True,
            secure=secure,
            samesite="lax",
            max_age=settings.refresh_token_expire_days * 24 * 3600,
        )


@router.post("/login")
async def login_user(
    response: Response,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db=Depends(get_db),
):
    user = await db.user.find_unique(
        where={"email": form_data.username.lower()}, include={"department": True}
    )
    if not user or not verify_password(form_data.password, extract(user, "password_hash", "")):
        logger.info("Failed login attempt for %s", form_data.username)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if extract(user, "status") != UserStatus.ACTIVE.value:
        raise HTTPException(status_code=403, detail="Account is disabled")

    user_id = extract(user, "id")
    access_token = create_access_token({"sub": user_id, "role": extract(user, "role")})
    refresh_token = create_refresh_token(user_id)
    await db.user.update(where={"id": user_id}, data={"last_login_at": utcnow()})

    _set_auth_cookies(response, access_token, refresh_token)
    return {
        "accessToken": access_token,
        "refreshToken": refresh_token,
        "tokenType": "bearer",
        "user": serialize_profile(user),
    }


@router.post("/refresh")
async def refresh_access_token(
    request: Request,
    response: Response,
    payload: RefreshRequest | None = None,
    db=Depends(get_db),
):
    token = (payload.refreshToken if payload else None) or request.cookies.get(REFRESH_COOKIE)
    if not token:
        raise HTTPException(status_code=401, detail="Refresh token missing")

    user_id = decode_refresh_token(token)
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid refresh token")

    user = await db.user.find_unique(where={"id": user_id})
    if not user or extract(user, "status") != UserStatus.ACTIVE.value:
        raise HTTPException(status_code=401, detail="Invalid refresh token")

    access_token = create_access_token({"sub": user_id, "role": extract(user, "role")})
    _set_auth_cookies(response, access_token)
    return {"accessToken": access_token, "tokenType": "bearer"}


@router.post("/logout")
async def logout_user(response: Response):
    response.delete_cookie(ACCESS_COOKIE)
    response.delete_cookie(REFRESH_COOKIE)
    return {"message": "Logged out"}


@router.get("/me")
async def read_profile(user=Depends(get_current_user)):
    return serialize_profile(user)
