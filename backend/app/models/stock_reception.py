"""
Stock reception models

A reception is one intake batch from an atelier. Items keep a snapshot of the
unit cost at reception time, decoupled from later catalog price changes.

status = "completed" means stock has been applied (per-item outcomes are
returned to the caller), not that the atelier has been paid; payment is
tracked separately by payment_status / amount_paid.
"""
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Text, Numeric,
    CheckConstraint, Index
)
from sqlalchemy.orm import relationship

from app.core.database import Base


class PaymentStatus(str, PyEnum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"


class ReceptionStatus(str, PyEnum):
    COMPLETED = "completed"


class StockReception(Base):
    __tablename__ = "stock_receptions"

    id = Column(Integer, primary_key=True, index=True)
    atelier_id = Column(Integer, ForeignKey("ateliers.id"), nullable=False, index=True)

    date = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    notes = Column(Text, nullable=True)

    total_cost = Column(Numeric(12, 2), nullable=False, default=0)
    amount_paid = Column(Numeric(12, 2), nullable=False, default=0)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    status = Column(String(20), nullable=False, default=ReceptionStatus.COMPLETED.value)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    atelier = relationship("Atelier", back_populates="receptions")
    items = relationship(
        "StockReceptionItem",
        back_populates="reception",
        cascade="all, delete-orphan",
        order_by="StockReceptionItem.position",
    )

    __table_args__ = (
        CheckConstraint(
            "payment_status IN ('pending', 'partial', 'paid')",
            name="chk_reception_payment_status"
        ),
        CheckConstraint("amount_paid >= 0", name="chk_reception_amount_paid"),
        Index("ix_stock_receptions_created_desc", created_at.desc()),
    )

    def __repr__(self):
        return f"<StockReception {self.id}: atelier={self.atelier_id} total={self.total_cost}>"


class StockReceptionItem(Base):
    __tablename__ = "stock_reception_items"

    id = Column(Integer, primary_key=True, index=True)
    reception_id = Column(
        Integer,
        ForeignKey("stock_receptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    position = Column(Integer, nullable=False, default=0)

    # Snapshot of the line at reception time
    product_name = Column(String(255), nullable=False)
    reference = Column(String(80), nullable=True, index=True)
    size = Column(String(20), nullable=True)
    barcode = Column(String(120), nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_cost = Column(Numeric(12, 2), nullable=False, default=0)
    line_cost = Column(Numeric(12, 2), nullable=False, default=0)

    reception = relationship("StockReception", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="chk_reception_item_quantity_positive"),
    )
