import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Integer,
    Numeric,
    JSON,
    Text,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    access_level: Mapped[str] = mapped_column(String(50), nullable=False, default="USER")  # ADMIN|TECH_MANAGER|MAINTENANCE_MANAGER|USER|VIEWER
    custom_permissions: Mapped[bool] = mapped_column(Boolean, default=False)
    permissions: Mapped[Optional[list]] = mapped_column(JSON)  # Only consulted when custom_permissions is set
    operacao: Mapped[Optional[str]] = mapped_column(String(50), index=True)  # Operation tag scoping visibility (BJ Fibra, Megalink, ...)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class Registro(Base):
    """Technician/vehicle record tracked per operation"""
    __tablename__ = "registros"

    id: Mapped[uuid.UUID] = uuid_pk()
    cidade: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    tecnico: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    auxiliar: Mapped[Optional[str]] = mapped_column(String(255))
    placa: Mapped[Optional[str]] = mapped_column(String(20), index=True)
    modelo: Mapped[Optional[str]] = mapped_column(String(120))
    operacao: Mapped[Optional[str]] = mapped_column(String(50), index=True)
    km_atual: Mapped[Optional[int]] = mapped_column(Integer)
    status: Mapped[Optional[str]] = mapped_column(String(50), default="ativo")
    observacoes: Mapped[Optional[str]] = mapped_column(Text)
    origem: Mapped[str] = mapped_column(String(30), default="manual")  # manual|user_action|import_csv|csv_import
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    manutencoes = relationship(
        "Manutencao",
        back_populates="registro",
        cascade="all, delete-orphan",
        order_by="Manutencao.data.desc()",
    )

    __table_args__ = (
        Index("idx_registros_operacao_cidade", "operacao", "cidade"),
    )


class Manutencao(Base):
    """Maintenance history entry for a registro's vehicle"""
    __tablename__ = "manutencoes"

    id: Mapped[uuid.UUID] = uuid_pk()
    registro_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("registros.id", ondelete="CASCADE"), nullable=False, index=True
    )
    tipo: Mapped[str] = mapped_column(String(100), nullable=False)
    data: Mapped[Optional[date]] = mapped_column(Date)
    km_atual: Mapped[Optional[int]] = mapped_column(Integer)
    valor: Mapped[Optional[float]] = mapped_column(Numeric(12, 2))
    observacoes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    registro = relationship("Registro", back_populates="manutencoes")


class Task(Base):
    __tablename__ = "tasks"

    id: Mapped[uuid.UUID] = uuid_pk()
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="pendente", index=True)
    priority: Mapped[str] = mapped_column(String(20), default="normal")
    technician_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), index=True)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    assigned_to: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    operacao: Mapped[Optional[str]] = mapped_column(String(50), index=True)
    color: Mapped[Optional[str]] = mapped_column(String(50))
    repeat_pattern: Mapped[Optional[dict]] = mapped_column(JSON)
    location: Mapped[Optional[dict]] = mapped_column(JSON)
    attachments: Mapped[Optional[list]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class SyncOperation(Base):
    """Processed client operations, keyed by the client-generated operation id"""
    __tablename__ = "sync_operations"

    id: Mapped[uuid.UUID] = uuid_pk()
    operation_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    entity: Mapped[str] = mapped_column(String(50), nullable=False)
    operation_type: Mapped[str] = mapped_column(String(20), nullable=False)  # create|update|delete
    entity_id: Mapped[Optional[str]] = mapped_column(String(64))
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    status_code: Mapped[int] = mapped_column(Integer, nullable=False)
    result: Mapped[Optional[dict]] = mapped_column(JSON)  # Stored response body replayed on duplicates
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, index=True)
