# backend/talentloop/models/plan.py

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, Integer, Numeric, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from talentloop.db.base import Base


class Plan(Base):
    __tablename__ = "plans"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # FREE | PRO | PREMIUM | STARTUP | BUSINESS | ENTERPRISE
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)

    price: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="BRL")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # 0 / NULL = unlimited
    max_users: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_contacts: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    has_api: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    trial_duration_hours: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # 0 = never expires
    billing_period_days: Mapped[int] = mapped_column(Integer, nullable=False, default=30)

    stripe_product_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    stripe_price_id: Mapped[Optional[str]] = mapped_column(String(100), unique=True, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def is_free(self) -> bool:
        return float(self.price or 0) == 0
