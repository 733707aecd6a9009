"""
Legacy ``/api?action=...`` endpoint used by the FTTH import/export pages.
"""
from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import APIRouter, Body, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy import inspect, text
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..config import settings
from ..db import Base, get_db
from ..models.models import User
from ..schemas.registros import SalvarRegistrosRequest
from ..services.permissions import PERMISSIONS, has_permission
from ..services.registros import (
    contains_blocked_term,
    find_registro,
    registro_to_dict,
    save_batch,
    visible_registros,
)


logger = structlog.get_logger(__name__)

router = APIRouter(tags=["ftth"])

GET_ACTIONS = {"carregar-ftth-registros", "check-tables"}
POST_ACTIONS = {"salvar-ftth-registros", "create-ftth-tables"}


def _require(user: User, permission: str) -> None:
    if not has_permission(user, permission):
        raise HTTPException(status_code=403, detail="Forbidden")


def _bad_action(action: Optional[str]) -> JSONResponse:
    return JSONResponse(status_code=400, content={"success": False, "message": f"Unknown action: {action}"})


@router.get("/api/health")
def health(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("health_check_failed", error=str(e))
        return JSONResponse(status_code=503, content={"status": "error", "database": "disconnected", "message": str(e)})
    return {"status": "online", "database": "connected", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/api")
def action_get(
    action: Optional[str] = Query(default=None),
    limit: int = Query(default=1000, ge=1, le=5000),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    if action not in GET_ACTIONS:
        return _bad_action(action)

    if action == "carregar-ftth-registros":
        _require(me, PERMISSIONS.VIEW_TECHNICIANS)
        query = visible_registros(db, me)
        total = query.count()
        rows = query.offset(offset).limit(limit).all()
        registros = [registro_to_dict(r) for r in rows]
        registros = [r for r in registros if not contains_blocked_term(r)]
        return {
            "success": True,
            "registros": registros,
            "total": total,
            "message": f"{len(registros)} registros carregados com sucesso",
        }

    _require(me, PERMISSIONS.MANAGE_USERS)
    existing = set(inspect(db.get_bind()).get_table_names())
    return {
        "success": True,
        "tables": {name: name in existing for name in sorted(Base.metadata.tables)},
    }


@router.post("/api")
def action_post(
    action: Optional[str] = Query(default=None),
    body: Optional[dict] = Body(default=None),
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    if action not in POST_ACTIONS:
        return _bad_action(action)

    if action == "create-ftth-tables":
        _require(me, PERMISSIONS.MANAGE_USERS)
        Base.metadata.create_all(bind=db.get_bind())
        logger.info("tables_created", actor_id=str(me.id))
        return {"success": True, "tables": sorted(Base.metadata.tables)}

    _require(me, PERMISSIONS.ADD_TECHNICIAN)
    try:
        req = SalvarRegistrosRequest.model_validate(body or {})
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False))
    if req.tipo not in settings.allowed_origins:
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": f"Origem não permitida: {req.tipo}"},
        )
    needs_edit = any(find_registro(db, r.get("id")) is not None for r in req.registros)
    if needs_edit:
        _require(me, PERMISSIONS.EDIT_TECHNICIAN)
    inserted, updated, skipped, errors = save_batch(db, req.registros, origem=req.tipo, actor=me)
    db.commit()
    return {
        "success": True,
        "message": f"{inserted + updated} registros salvos com sucesso",
        "inserted": inserted,
        "updated": updated,
        "skipped": skipped,
        "errors": errors,
    }
