import uuid
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import User
from ..routes.users import user_to_dict
from ..schemas.auth import LoginRequest, LoginResponse, MeResponse, RefreshRequest, TokenResponse
from ..services.permissions import ACCESS_LEVELS, effective_permissions
from .security import (
    create_access_token,
    create_refresh_token,
    decode_token,
    get_current_user,
    verify_password,
)


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login", response_model=LoginResponse)
def login(req: LoginRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(
        (User.username == req.username) | (User.email == req.username)
    ).first()
    if not user or not user.is_active or not verify_password(req.password, user.password_hash):
        logger.info("login_failed", username=req.username)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    user.last_login_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(user)
    logger.info("login_succeeded", user_id=str(user.id))
    return LoginResponse(
        token=create_access_token(user),
        refresh_token=create_refresh_token(str(user.id)),
        user=user_to_dict(user),
    )


@router.post("/refresh", response_model=TokenResponse)
def refresh(req: RefreshRequest, db: Session = Depends(get_db)):
    payload = decode_token(req.refresh_token)
    if payload.get("type") != "refresh":
        raise HTTPException(status_code=400, detail="Invalid refresh token")
    user = db.query(User).filter(User.id == _parse_sub(payload)).first()
    if user is None or not user.is_active:
        raise HTTPException(status_code=401, detail="User not active")
    return TokenResponse(
        token=create_access_token(user),
        refresh_token=create_refresh_token(str(user.id)),
    )


def _parse_sub(payload: dict) -> uuid.UUID:
    try:
        return uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid subject")


@router.get("/me", response_model=MeResponse)
def me(user: User = Depends(get_current_user)):
    level = ACCESS_LEVELS.get(user.access_level) or {}
    return MeResponse(
        id=str(user.id),
        username=user.username,
        email=user.email,
        full_name=user.full_name,
        access_level=user.access_level,
        access_level_name=level.get("name"),
        operacao=user.operacao,
        permissions=sorted(effective_permissions(user)),
    )
