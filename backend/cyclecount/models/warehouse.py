"""Warehouse model."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cyclecount.db.base import Base, TimestampMixin


class Warehouse(Base, TimestampMixin):
    """A physical stock-holding site."""

    __tablename__ = "warehouses"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    code: Mapped[Optional[str]] = mapped_column(String(20), unique=True, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    stock_levels: Mapped[list["StockLevel"]] = relationship("StockLevel", back_populates="warehouse")
    cycle_counts: Mapped[list["CycleCount"]] = relationship("CycleCount", back_populates="warehouse")
