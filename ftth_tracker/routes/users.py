import csv
import io
import uuid
from datetime import datetime
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.orm import Session

from ..auth.security import get_password_hash, require_permissions
from ..db import get_db
from ..models.models import User
from ..schemas.users import UserCreate, UserUpdate
from ..services.idempotency import idempotency_key, run_idempotent
from ..services.permissions import PERMISSIONS, has_permission


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])

EXPORT_COLUMNS = ["id", "full_name", "username", "email", "access_level", "operacao", "is_active", "last_login_at", "created_at"]


def user_to_dict(u: User) -> dict:
    return {
        "id": str(u.id),
        "username": u.username,
        "email": u.email,
        "full_name": u.full_name,
        "access_level": u.access_level,
        "custom_permissions": bool(u.custom_permissions),
        "permissions": list(u.permissions) if u.permissions is not None else None,
        "operacao": u.operacao,
        "is_active": u.is_active,
        "last_login_at": u.last_login_at.isoformat() if u.last_login_at else None,
        "created_at": u.created_at.isoformat() if u.created_at else None,
        "updated_at": u.updated_at.isoformat() if u.updated_at else None,
    }


def _is_admin(u: User) -> bool:
    return bool(u.is_active) and has_permission(u, PERMISSIONS.MANAGE_USERS)


def _other_admin_exists(db: Session, u: User) -> bool:
    return any(_is_admin(other) for other in db.query(User).filter(User.id != u.id).all())


def _get_user(user_id: str, db: Session) -> User:
    try:
        user_uuid = uuid.UUID(str(user_id))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid user id") from exc
    u = db.query(User).filter(User.id == user_uuid).first()
    if not u:
        raise HTTPException(status_code=404, detail="User not found")
    return u


@router.get("")
def list_users(
    q: Optional[str] = None,
    db: Session = Depends(get_db),
    _=Depends(require_permissions(PERMISSIONS.MANAGE_USERS)),
):
    query = db.query(User)
    if q:
        like = f"%{q}%"
        query = query.filter(
            (User.username.ilike(like)) | (User.email.ilike(like)) | (User.full_name.ilike(like))
        )
    return [user_to_dict(u) for u in query.order_by(User.created_at.desc()).all()]


@router.get("/count")
def count_users(db: Session = Depends(get_db), _=Depends(require_permissions(PERMISSIONS.MANAGE_USERS))):
    return {"count": db.query(User).count()}


@router.get("/export")
def export_users(
    format: str = "csv",
    db: Session = Depends(get_db),
    _=Depends(require_permissions(PERMISSIONS.MANAGE_USERS)),
):
    rows = [user_to_dict(u) for u in db.query(User).order_by(User.created_at.desc()).all()]
    if format == "json":
        return rows
    if format != "csv":
        raise HTTPException(status_code=400, detail="Unsupported export format")
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=EXPORT_COLUMNS, extrasaction="ignore")
    writer.writeheader()
    writer.writerows(rows)
    buf.seek(0)
    return StreamingResponse(
        iter([buf.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="usuarios.csv"'},
    )


@router.get("/{user_id}")
def get_user(user_id: str, db: Session = Depends(get_db), _=Depends(require_permissions(PERMISSIONS.MANAGE_USERS))):
    return user_to_dict(_get_user(user_id, db))


@router.post("", status_code=201)
def create_user(
    payload: UserCreate,
    db: Session = Depends(get_db),
    key: Optional[str] = Depends(idempotency_key),
    me: User = Depends(require_permissions(PERMISSIONS.MANAGE_USERS)),
):
    def _create():
        exists = db.query(User.id).filter(
            (User.username == payload.username) | (User.email == payload.email)
        ).first()
        if exists:
            raise HTTPException(status_code=409, detail="Username or email already exists")
        u = User(
            username=payload.username,
            email=payload.email,
            full_name=payload.full_name,
            password_hash=get_password_hash(payload.password),
            access_level=payload.access_level,
            custom_permissions=payload.custom_permissions,
            permissions=payload.permissions,
            operacao=payload.operacao,
            is_active=payload.is_active,
        )
        db.add(u)
        db.flush()
        logger.info("user_created", user_id=str(u.id), access_level=u.access_level, actor_id=str(me.id))
        return 201, user_to_dict(u)

    status_code, body = run_idempotent(db, key, entity="user", operation_type="create", actor=me, action=_create)
    return JSONResponse(status_code=status_code, content=body)


@router.put("/{user_id}")
def update_user(
    user_id: str,
    payload: UserUpdate,
    db: Session = Depends(get_db),
    key: Optional[str] = Depends(idempotency_key),
    me: User = Depends(require_permissions(PERMISSIONS.MANAGE_USERS)),
):
    def _update():
        u = _get_user(user_id, db)
        data = payload.model_dump(exclude_unset=True)
        was_admin = _is_admin(u)
        for required in ("email", "full_name", "access_level", "is_active"):
            if required in data and data[required] is None:
                raise HTTPException(status_code=422, detail=f"{required} cannot be null")
        password = data.pop("password", None)
        if "email" in data and data["email"] != u.email:
            taken = db.query(User.id).filter(User.email == data["email"], User.id != u.id).first()
            if taken:
                raise HTTPException(status_code=409, detail="Email already exists")
        for field, value in data.items():
            setattr(u, field, value)
        if password:
            u.password_hash = get_password_hash(password)
        if was_admin and not _is_admin(u) and not _other_admin_exists(db, u):
            raise HTTPException(status_code=400, detail="Cannot remove the last administrator")
        u.updated_at = datetime.utcnow()
        db.flush()
        logger.info("user_updated", user_id=str(u.id), fields=sorted(data), actor_id=str(me.id))
        return 200, user_to_dict(u)

    status_code, body = run_idempotent(
        db, key, entity="user", operation_type="update", actor=me, action=_update, entity_id=user_id
    )
    return JSONResponse(status_code=status_code, content=body)


@router.delete("/{user_id}")
def delete_user(
    user_id: str,
    db: Session = Depends(get_db),
    key: Optional[str] = Depends(idempotency_key),
    me: User = Depends(require_permissions(PERMISSIONS.MANAGE_USERS)),
):
    def _delete():
        u = _get_user(user_id, db)
        if u.id == me.id:
            raise HTTPException(status_code=400, detail="Cannot delete your own account")
        if _is_admin(u) and not _other_admin_exists(db, u):
            raise HTTPException(status_code=400, detail="Cannot delete the last administrator")
        db.delete(u)
        db.flush()
        logger.info("user_deleted", user_id=user_id, actor_id=str(me.id))
        return 200, {"success": True}

    status_code, body = run_idempotent(
        db, key, entity="user", operation_type="delete", actor=me, action=_delete, entity_id=user_id
    )
    return JSONResponse(status_code=status_code, content=body)
