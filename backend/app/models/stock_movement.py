"""
Stock Movement model - append-only ledger of stock-affecting events

- type: direction of the change (in / out)
- operation_type: business category (entree, sortie, echange, retour)
- product fields are snapshots, not foreign keys, so the ledger survives
  catalog edits and unlisted goods
"""
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, Integer, String, DateTime, Text,
    CheckConstraint, Index
)

from app.core.database import Base


class MovementType(str, PyEnum):
    IN = "in"
    OUT = "out"


class OperationType(str, PyEnum):
    ENTREE = "entree"
    SORTIE = "sortie"
    ECHANGE = "echange"
    RETOUR = "retour"


# Direction implied by a category when the caller does not state one
DEFAULT_DIRECTION = {
    OperationType.ENTREE: MovementType.IN,
    OperationType.RETOUR: MovementType.IN,
    OperationType.SORTIE: MovementType.OUT,
}


class StockMovement(Base):
    """Audit trail for inventory stock changes"""
    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True, index=True)

    type = Column(String(3), nullable=False, index=True)
    operation_type = Column(String(20), nullable=True, index=True)

    # What changed (snapshot)
    barcode = Column(String(120), nullable=True)
    product_name = Column(String(255), nullable=False)
    product_reference = Column(String(80), nullable=True, index=True)
    size = Column(String(20), nullable=True)

    quantity = Column(Integer, nullable=False)
    old_stock = Column(Integer, nullable=True)
    new_stock = Column(Integer, nullable=True)

    # Reference to source
    order_number = Column(String(40), nullable=True)
    tracking_number = Column(String(80), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        index=True
    )

    __table_args__ = (
        CheckConstraint("type IN ('in', 'out')", name="chk_movement_type"),
        CheckConstraint(
            "operation_type IS NULL OR operation_type IN ('entree', 'sortie', 'echange', 'retour')",
            name="chk_movement_operation_type"
        ),
        CheckConstraint("quantity > 0", name="chk_movement_quantity_positive"),
        Index("ix_stock_movements_created_desc", created_at.desc()),
        Index("ix_stock_movements_tracking_operation", tracking_number, operation_type),
    )

    def __repr__(self):
        return f"<StockMovement {self.id}: {self.type} {self.quantity} {self.product_reference} ({self.operation_type})>"
