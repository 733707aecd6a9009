"""
Registro persistence helpers shared by the REST routes and the legacy
``/api?action=...`` dispatcher.
"""
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog
from pydantic import ValidationError
from sqlalchemy.orm import Query, Session

from ..config import settings
from ..models.models import Manutencao, Registro, User
from ..schemas.registros import RegistroCreate, RegistroUpdate
from .permissions import PERMISSIONS, has_permission


logger = structlog.get_logger(__name__)

REGISTRO_FIELDS = ("cidade", "tecnico", "auxiliar", "placa", "modelo", "operacao", "km_atual", "status", "observacoes")


def manutencao_to_dict(m: Manutencao) -> Dict[str, Any]:
    return {
        "id": str(m.id),
        "registro_id": str(m.registro_id),
        "tipo": m.tipo,
        "data": m.data.isoformat() if m.data else None,
        "km_atual": m.km_atual,
        "valor": float(m.valor) if m.valor is not None else None,
        "observacoes": m.observacoes,
        "created_at": m.created_at.isoformat() if m.created_at else None,
    }


def registro_to_dict(r: Registro, with_manutencoes: bool = True) -> Dict[str, Any]:
    payload = {
        "id": str(r.id),
        "cidade": r.cidade,
        "tecnico": r.tecnico,
        "auxiliar": r.auxiliar or "",
        "placa": r.placa or "",
        "modelo": r.modelo or "",
        "operacao": r.operacao,
        "km_atual": r.km_atual,
        "status": r.status,
        "observacoes": r.observacoes,
        "origem": r.origem,
        "created_by": str(r.created_by) if r.created_by else None,
        "created_at": r.created_at.isoformat() if r.created_at else None,
        "updated_at": r.updated_at.isoformat() if r.updated_at else None,
    }
    if with_manutencoes:
        payload["manutencoes"] = [manutencao_to_dict(m) for m in r.manutencoes]
    return payload


def operation_scope(user: User) -> Optional[str]:
    """Operation tag the user is confined to, or None when it may see every operation."""
    if has_permission(user, PERMISSIONS.VIEW_BY_OPERATION):
        return None
    return user.operacao or None


def visible_registros(
    db: Session,
    user: User,
    *,
    cidade: Optional[str] = None,
    tecnico: Optional[str] = None,
    operacao: Optional[str] = None,
) -> Query:
    query = db.query(Registro)
    scope = operation_scope(user)
    if scope:
        query = query.filter(Registro.operacao == scope)
    if cidade:
        query = query.filter(Registro.cidade.ilike(f"%{cidade}%"))
    if tecnico:
        query = query.filter(Registro.tecnico.ilike(f"%{tecnico}%"))
    if operacao:
        query = query.filter(Registro.operacao == operacao)
    return query.order_by(Registro.created_at.desc())


def contains_blocked_term(record: Dict[str, Any], terms: Optional[Iterable[str]] = None) -> bool:
    terms = list(settings.blocked_record_terms if terms is None else terms)
    if not terms:
        return False
    return any(
        isinstance(value, str) and any(term in value for term in terms)
        for value in record.values()
    )


REQUIRED_FIELDS = ("cidade", "tecnico")


def nulled_required_field(data: RegistroUpdate) -> Optional[str]:
    """First NOT NULL column the update explicitly sets to null."""
    for field in REQUIRED_FIELDS:
        if field in data.model_fields_set and getattr(data, field) is None:
            return field
    return None


def find_registro(db: Session, raw_id: Any) -> Optional[Registro]:
    if not raw_id:
        return None
    try:
        reg_uuid = uuid.UUID(str(raw_id))
    except ValueError:
        return None
    return db.query(Registro).filter(Registro.id == reg_uuid).first()


def apply_update(registro: Registro, data: RegistroUpdate) -> None:
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(registro, field, value)
    registro.updated_at = datetime.utcnow()


def save_batch(
    db: Session,
    records: List[Dict[str, Any]],
    *,
    origem: str,
    actor: User,
) -> Tuple[int, int, int, List[str]]:
    """
    Insert or update a batch of raw records.

    Records carrying a known ``id`` update that row; anything else is inserted.
    Records with a blocked term, or that fail validation, are skipped.

    Returns (inserted, updated, skipped, errors).
    """
    inserted = updated = skipped = 0
    errors: List[str] = []
    scope = operation_scope(actor)
    for idx, raw in enumerate(records):
        if contains_blocked_term(raw):
            skipped += 1
            continue
        if scope and raw.get("operacao") not in (None, scope):
            skipped += 1
            errors.append(f"registro {idx}: operacao fora do escopo do usuário")
            continue
        existing = find_registro(db, raw.get("id"))
        if existing is not None and scope and existing.operacao != scope:
            skipped += 1
            errors.append(f"registro {idx}: operacao fora do escopo do usuário")
            continue
        try:
            if existing is not None:
                changes = RegistroUpdate.model_validate(raw)
                nulled = nulled_required_field(changes)
                if nulled:
                    skipped += 1
                    errors.append(f"registro {idx}: {nulled} cannot be null")
                    continue
                apply_update(existing, changes)
                updated += 1
            else:
                data = RegistroCreate.model_validate({**raw, "origem": origem})
                registro = Registro(**data.model_dump(exclude_unset=False), created_by=actor.id)
                if scope and not registro.operacao:
                    registro.operacao = scope
                db.add(registro)
                inserted += 1
        except ValidationError as exc:
            skipped += 1
            errors.append(f"registro {idx}: {exc.errors()[0].get('msg')}")
    db.flush()
    logger.info(
        "registros_batch_saved",
        origem=origem,
        inserted=inserted,
        updated=updated,
        skipped=skipped,
        actor_id=str(actor.id),
    )
    return inserted, updated, skipped, errors
