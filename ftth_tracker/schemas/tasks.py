import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; treat them as UTC
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


class TaskStatus(str, Enum):
    pendente = "pendente"
    em_andamento = "em_andamento"
    concluida = "concluida"
    cancelada = "cancelada"


class TaskPriority(str, Enum):
    baixa = "baixa"
    normal = "normal"
    alta = "alta"
    urgente = "urgente"


class TaskBase(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    technician_id: Optional[uuid.UUID] = None
    assigned_to: Optional[uuid.UUID] = None
    operacao: Optional[str] = None
    color: Optional[str] = None
    repeat_pattern: Optional[Dict[str, Any]] = None
    location: Optional[Dict[str, Any]] = None
    attachments: Optional[List[Any]] = None


class TaskCreate(TaskBase):
    title: str = Field(min_length=1, max_length=200)
    start_date: datetime
    end_date: datetime

    @model_validator(mode="after")
    def check_dates(self):
        if as_utc(self.start_date) > as_utc(self.end_date):
            raise ValueError("start_date must not be after end_date")
        return self


class TaskUpdate(TaskBase):
    # Date order is checked against the stored row once merged
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
