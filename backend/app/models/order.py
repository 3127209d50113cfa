"""
Order models

Only what the stock and notification flows need: line items reference the
product and optional size, prices are snapshotted at order time.
"""
from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, ForeignKey, DateTime, Text, Numeric, CheckConstraint
)
from sqlalchemy.orm import relationship

from app.core.database import Base


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(40), unique=True, index=True, nullable=False)
    status = Column(String(20), nullable=False, default="pending")

    customer_name = Column(String(255), nullable=False)
    customer_phone = Column(String(40), nullable=False)
    delivery_type = Column(String(20), nullable=False)  # HOME_DELIVERY, PICKUP
    delivery_address = Column(Text, nullable=True)

    subtotal = Column(Numeric(12, 2), nullable=False)
    delivery_fee = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False)

    # Policy applied when the order was placed (deferred / reserve)
    stock_policy = Column(String(20), nullable=False, default="deferred")

    notes = Column(Text, nullable=True)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        index=True
    )

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("delivery_type IN ('HOME_DELIVERY', 'PICKUP')", name="chk_order_delivery_type"),
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    size_id = Column(Integer, ForeignKey("product_sizes.id"), nullable=True)

    # Snapshot of product at time of order
    product_name = Column(String(255), nullable=False)
    size = Column(String(20), nullable=True)
    price = Column(Numeric(12, 2), nullable=False)
    quantity = Column(Integer, nullable=False)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="chk_order_item_quantity_positive"),
    )
