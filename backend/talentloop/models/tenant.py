# backend/talentloop/models/tenant.py

import uuid
from datetime import datetime

from sqlalchemy import String, DateTime
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from talentloop.db.base import Base


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # company domain, or "candidates" for the shared candidate tenant
    slug: Mapped[str] = mapped_column(String(100), unique=True, index=True, nullable=False)

    # CANDIDATE | COMPANY
    type: Mapped[str] = mapped_column(String(20), nullable=False, default="COMPANY")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @staticmethod
    def normalize_slug(value: str) -> str:
        return "-".join(value.strip().lower().split())
