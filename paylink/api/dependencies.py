"""FastAPI dependencies"""

from fastapi import Header, HTTPException

from paylink.core.config import settings


def get_current_user_id(
    user_id: str | None = Header(default=None, alias=settings.USER_ID_HEADER),
) -> str:
    """Caller identity set by the upstream authentication layer"""
    if not user_id:
        raise HTTPException(status_code=401, detail=f"Missing {settings.USER_ID_HEADER} header")
    return user_id


def get_admin_id(
    admin_id: str | None = Header(default=None, alias=settings.ADMIN_ID_HEADER),
) -> str:
    if not admin_id:
        raise HTTPException(status_code=403, detail="Administrator access required")
    return admin_id
