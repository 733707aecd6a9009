import uuid
from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Forms post kmAtual; both spellings are accepted.
class ManutencaoCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tipo: str = Field(min_length=1, max_length=100)
    data: Optional[date] = None
    km_atual: Optional[int] = Field(default=None, ge=0, alias="kmAtual")
    valor: Optional[float] = Field(default=None, ge=0)
    observacoes: Optional[str] = None


class RegistroBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    auxiliar: Optional[str] = None
    placa: Optional[str] = None
    modelo: Optional[str] = None
    operacao: Optional[str] = None
    km_atual: Optional[int] = Field(default=None, ge=0, alias="kmAtual")
    status: Optional[str] = None
    observacoes: Optional[str] = None

    @field_validator("placa")
    @classmethod
    def normalize_plate(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return "".join(v.split()).upper() or None


class RegistroCreate(RegistroBase):
    cidade: str = Field(min_length=1, max_length=120)
    tecnico: str = Field(min_length=1, max_length=255)
    origem: str = "manual"


class RegistroUpdate(RegistroBase):
    cidade: Optional[str] = Field(default=None, min_length=1, max_length=120)
    tecnico: Optional[str] = Field(default=None, min_length=1, max_length=255)


class SalvarRegistrosRequest(BaseModel):
    registros: List[Dict[str, Any]]
    tipo: str = "manual"
    usuario: Optional[uuid.UUID] = None
