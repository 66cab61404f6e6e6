# Authentication and authorization dependencies shared by every router.
# Tokens come from the Authorization header or, for the dashboard, from the
# httpOnly ``accessToken`` cookie set at login.
from typing import Any, Iterable, Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError

from tripdesk.common.enums import ADMIN_ROLES, UserStatus
from tripdesk.common.utils import extract
from tripdesk.core.security import ACCESS_TOKEN, decode_token
from tripdesk.db.prisma_client import get_db

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


def require_role(allowed_roles: Iterable[str]):
    allowed = set(allowed_roles)

    def wrapper(user):
        if extract(user, "role") not in allowed:
            raise HTTPException(status_code=403, detail="Permission denied")
        return user

    return wrapper


def is_admin(user: Any) -> bool:
    return extract(user, "role") in ADMIN_ROLES


async def get_current_user(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    db=Depends(get_db),
):
    token = token or request.cookies.get(ACCESS_COOKIE)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        payload = decode_token(token)
    except JWTError:
        raise HTTPException(status_code=401, detail="Could not validate credentials")

    user_id = payload.get("sub")
    if not user_id or payload.get("type") != ACCESS_TOKEN:
        raise HTTPException(status_code=401, detail="Invalid token")

    user = await db.user.find_unique(where={"id": user_id}, include={"department": True})
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if extract(user, "status") != UserStatus.ACTIVE.value:
        raise HTTPException(status_code=403, detail="Account is disabled")

    return user
