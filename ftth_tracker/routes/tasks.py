import uuid
from datetime import datetime
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..auth.security import require_permissions
from ..db import get_db
from ..models.models import Task, User
from ..schemas.tasks import TaskCreate, TaskUpdate, as_utc
from ..services.idempotency import idempotency_key, run_idempotent
from ..services.permissions import PERMISSIONS


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return as_utc(dt).isoformat() if dt else None


def _serialize_task(task: Task) -> Dict[str, Any]:
    return {
        "id": str(task.id),
        "title": task.title,
        "description": task.description,
        "start_date": _iso(task.start_date),
        "end_date": _iso(task.end_date),
        "status": task.status,
        "priority": task.priority,
        "technician_id": str(task.technician_id) if task.technician_id else None,
        "created_by": str(task.created_by) if task.created_by else None,
        "assigned_to": str(task.assigned_to) if task.assigned_to else None,
        "operacao": task.operacao,
        "color": task.color,
        "repeat_pattern": task.repeat_pattern,
        "location": task.location,
        "attachments": task.attachments,
        "created_at": _iso(task.created_at),
        "updated_at": _iso(task.updated_at),
    }


def _get_task(task_id: str, db: Session) -> Task:
    try:
        task_uuid = uuid.UUID(str(task_id))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid task id") from exc
    task = db.query(Task).filter(Task.id == task_uuid).first()
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


@router.get("")
def list_tasks(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    status: Optional[str] = None,
    operacao: Optional[str] = None,
    db: Session = Depends(get_db),
    _=Depends(require_permissions(PERMISSIONS.VIEW_TASKS)),
):
    query = db.query(Task)
    # Overlap with [start, end]
    if start:
        query = query.filter(Task.end_date >= start)
    if end:
        query = query.filter(Task.start_date <= end)
    if status:
        query = query.filter(Task.status == status)
    if operacao:
        query = query.filter(Task.operacao == operacao)
    return [_serialize_task(t) for t in query.order_by(Task.start_date.asc()).all()]


@router.get("/{task_id}")
def get_task(task_id: str, db: Session = Depends(get_db), _=Depends(require_permissions(PERMISSIONS.VIEW_TASKS))):
    return _serialize_task(_get_task(task_id, db))


@router.post("", status_code=201)
def create_task(
    payload: TaskCreate,
    db: Session = Depends(get_db),
    key: Optional[str] = Depends(idempotency_key),
    me: User = Depends(require_permissions(PERMISSIONS.CREATE_TASKS)),
):
    def _create():
        data = payload.model_dump(exclude_none=True)
        task = Task(**data, created_by=me.id)
        db.add(task)
        db.flush()
        logger.info("task_created", task_id=str(task.id), actor_id=str(me.id))
        return 201, _serialize_task(task)

    status_code, body = run_idempotent(db, key, entity="task", operation_type="create", actor=me, action=_create)
    return JSONResponse(status_code=status_code, content=body)


@router.put("/{task_id}")
def update_task(
    task_id: str,
    payload: TaskUpdate,
    db: Session = Depends(get_db),
    key: Optional[str] = Depends(idempotency_key),
    me: User = Depends(require_permissions(PERMISSIONS.EDIT_TASKS)),
):
    def _update():
        task = _get_task(task_id, db)
        data = payload.model_dump(exclude_unset=True)
        for required in ("title", "start_date", "end_date", "status"):
            if required in data and data[required] is None:
                raise HTTPException(status_code=422, detail=f"{required} cannot be null")
        start = data.get("start_date", task.start_date)
        end = data.get("end_date", task.end_date)
        if as_utc(start) > as_utc(end):
            raise HTTPException(status_code=422, detail="start_date must not be after end_date")
        for field, value in data.items():
            setattr(task, field, value)
        task.updated_at = datetime.utcnow()
        db.flush()
        logger.info("task_updated", task_id=task_id, fields=sorted(data), actor_id=str(me.id))
        return 200, _serialize_task(task)

    status_code, body = run_idempotent(
        db, key, entity="task", operation_type="update", actor=me, action=_update, entity_id=task_id
    )
    return JSONResponse(status_code=status_code, content=body)


@router.delete("/{task_id}")
def delete_task(
    task_id: str,
    db: Session = Depends(get_db),
    key: Optional[str] = Depends(idempotency_key),
    me: User = Depends(require_permissions(PERMISSIONS.DELETE_TASKS)),
):
    def _delete():
        task = _get_task(task_id, db)
        db.delete(task)
        db.flush()
        logger.info("task_deleted", task_id=task_id, actor_id=str(me.id))
        return 200, {"success": True}

    status_code, body = run_idempotent(
        db, key, entity="task", operation_type="delete", actor=me, action=_delete, entity_id=task_id
    )
    return JSONResponse(status_code=status_code, content=body)
