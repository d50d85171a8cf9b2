"""SQLModel tables for the SQL instance store."""

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Index, String, Text
from sqlmodel import Field, SQLModel

from holohost.core.domain import InstanceStatus


class InstanceRow(SQLModel, table=True):
    """Persisted instance record."""

    __tablename__ = "instances"

    id: str = Field(primary_key=True)
    owner_id: str = Field(index=True)
    name: str = Field(max_length=50)
    security_code: str = Field(max_length=64, unique=True)
    container_id: str | None = Field(default=None, max_length=128)
    status: InstanceStatus = Field(default=InstanceStatus.STOPPED, sa_type=String)
    port: int | None = None
    credential_encrypted: str = Field(sa_column=Column(Text, nullable=False))
    config: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))

    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))

    __table_args__ = (Index("idx_instances_owner_created", "owner_id", "created_at"),)


class AuditLogRow(SQLModel, table=True):
    """Audit trail entry. instance_id is kept after the instance is gone."""

    __tablename__ = "audit_log"

    id: int | None = Field(default=None, primary_key=True)
    owner_id: str = Field(index=True)
    instance_id: str | None = Field(default=None, index=True)
    action: str = Field(max_length=64)
    details: dict | None = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
