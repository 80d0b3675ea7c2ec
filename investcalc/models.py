from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class SavedCalculation(Base):
    __tablename__ = "saved_calculations"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    inputs_json: Mapped[str] = mapped_column(Text, nullable=False)
    results_json: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class AICacheEntry(Base):
    __tablename__ = "ai_cache"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)  # "<kind>:<model>:<sha256>"
    value_json: Mapped[str] = mapped_column(Text, default="{}")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
