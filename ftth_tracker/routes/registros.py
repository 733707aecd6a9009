import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..auth.security import require_permissions
from ..db import get_db
from ..models.models import Manutencao, Registro, User
from ..schemas.registros import ManutencaoCreate, RegistroCreate, RegistroUpdate
from ..services.idempotency import idempotency_key, run_idempotent
from ..services.permissions import PERMISSIONS
from ..services.registros import (
    apply_update,
    manutencao_to_dict,
    nulled_required_field,
    operation_scope,
    registro_to_dict,
    visible_registros,
)
from ..services.statistics import calcular_estatisticas


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/registros", tags=["registros"])


def _get_registro(registro_id: str, db: Session, me: User) -> Registro:
    try:
        reg_uuid = uuid.UUID(str(registro_id))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid registro id") from exc
    registro = db.query(Registro).filter(Registro.id == reg_uuid).first()
    if not registro:
        raise HTTPException(status_code=404, detail="Registro not found")
    scope = operation_scope(me)
    if scope and registro.operacao != scope:
        # Out-of-scope rows are reported as missing
        raise HTTPException(status_code=404, detail="Registro not found")
    return registro


def _ensure_in_scope(me: User, operacao: Optional[str]) -> None:
    scope = operation_scope(me)
    if scope and operacao and operacao != scope:
        raise HTTPException(status_code=403, detail="Operation outside of your scope")


@router.get("")
def list_registros(
    cidade: Optional[str] = None,
    tecnico: Optional[str] = None,
    operacao: Optional[str] = None,
    db: Session = Depends(get_db),
    me: User = Depends(require_permissions(PERMISSIONS.VIEW_TECHNICIANS)),
):
    rows = visible_registros(db, me, cidade=cidade, tecnico=tecnico, operacao=operacao).all()
    return [registro_to_dict(r) for r in rows]


@router.get("/estatisticas")
def get_estatisticas(
    db: Session = Depends(get_db),
    me: User = Depends(require_permissions(PERMISSIONS.VIEW_STATISTICS)),
):
    scope = operation_scope(me)
    rows = visible_registros(db, me).all()
    return calcular_estatisticas(rows, operacao=scope)


@router.get("/{registro_id}")
def get_registro(
    registro_id: str,
    db: Session = Depends(get_db),
    me: User = Depends(require_permissions(PERMISSIONS.VIEW_TECHNICIANS)),
):
    return registro_to_dict(_get_registro(registro_id, db, me))


@router.post("", status_code=201)
def create_registro(
    payload: RegistroCreate,
    db: Session = Depends(get_db),
    key: Optional[str] = Depends(idempotency_key),
    me: User = Depends(require_permissions(PERMISSIONS.ADD_TECHNICIAN)),
):
    _ensure_in_scope(me, payload.operacao)

    def _create():
        registro = Registro(**payload.model_dump(), created_by=me.id)
        if not registro.operacao:
            registro.operacao = operation_scope(me)
        db.add(registro)
        db.flush()
        db.refresh(registro)
        logger.info("registro_created", registro_id=str(registro.id), operacao=registro.operacao, actor_id=str(me.id))
        return 201, registro_to_dict(registro)

    status_code, body = run_idempotent(db, key, entity="registro", operation_type="create", actor=me, action=_create)
    return JSONResponse(status_code=status_code, content=body)


@router.put("/{registro_id}")
def update_registro(
    registro_id: str,
    payload: RegistroUpdate,
    db: Session = Depends(get_db),
    key: Optional[str] = Depends(idempotency_key),
    me: User = Depends(require_permissions(PERMISSIONS.EDIT_TECHNICIAN)),
):
    _ensure_in_scope(me, payload.operacao)

    def _update():
        registro = _get_registro(registro_id, db, me)
        nulled = nulled_required_field(payload)
        if nulled:
            raise HTTPException(status_code=422, detail=f"{nulled} cannot be null")
        apply_update(registro, payload)
        db.flush()
        logger.info("registro_updated", registro_id=registro_id, actor_id=str(me.id))
        return 200, registro_to_dict(registro)

    status_code, body = run_idempotent(
        db, key, entity="registro", operation_type="update", actor=me, action=_update, entity_id=registro_id
    )
    return JSONResponse(status_code=status_code, content=body)


@router.delete("/{registro_id}")
def delete_registro(
    registro_id: str,
    db: Session = Depends(get_db),
    key: Optional[str] = Depends(idempotency_key),
    me: User = Depends(require_permissions(PERMISSIONS.DELETE_TECHNICIAN)),
):
    def _delete():
        registro = _get_registro(registro_id, db, me)
        db.delete(registro)
        db.flush()
        logger.info("registro_deleted", registro_id=registro_id, actor_id=str(me.id))
        return 200, {"success": True}

    status_code, body = run_idempotent(
        db, key, entity="registro", operation_type="delete", actor=me, action=_delete, entity_id=registro_id
    )
    return JSONResponse(status_code=status_code, content=body)


# ---------- MAINTENANCE ----------
@router.post("/{registro_id}/manutencoes", status_code=201)
def add_manutencao(
    registro_id: str,
    payload: ManutencaoCreate,
    db: Session = Depends(get_db),
    key: Optional[str] = Depends(idempotency_key),
    me: User = Depends(require_permissions(PERMISSIONS.ADD_MAINTENANCE)),
):
    def _create():
        registro = _get_registro(registro_id, db, me)
        manutencao = Manutencao(registro_id=registro.id, **payload.model_dump())
        db.add(manutencao)
        # Keep the vehicle's odometer at the highest reading seen
        if payload.km_atual is not None and (registro.km_atual is None or payload.km_atual > registro.km_atual):
            registro.km_atual = payload.km_atual
        db.flush()
        db.refresh(manutencao)
        logger.info("manutencao_added", registro_id=registro_id, manutencao_id=str(manutencao.id), actor_id=str(me.id))
        return 201, manutencao_to_dict(manutencao)

    status_code, body = run_idempotent(
        db, key, entity="manutencao", operation_type="create", actor=me, action=_create
    )
    return JSONResponse(status_code=status_code, content=body)


@router.delete("/{registro_id}/manutencoes/{manutencao_id}")
def delete_manutencao(
    registro_id: str,
    manutencao_id: str,
    db: Session = Depends(get_db),
    me: User = Depends(require_permissions(PERMISSIONS.DELETE_MAINTENANCE)),
):
    registro = _get_registro(registro_id, db, me)
    try:
        m_uuid = uuid.UUID(str(manutencao_id))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid manutencao id") from exc
    manutencao = db.query(Manutencao).filter(
        Manutencao.id == m_uuid, Manutencao.registro_id == registro.id
    ).first()
    if not manutencao:
        raise HTTPException(status_code=404, detail="Manutencao not found")
    db.delete(manutencao)
    db.commit()
    return {"success": True}
