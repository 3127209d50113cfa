"""
Catalog models: Category, Product, ProductSize

Product.stock is the aggregate counter. For sized products it must equal the
sum of ProductSize.stock; every write through StockMutator recomputes it in
the same transaction as the size write.
"""
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Numeric, ForeignKey,
    CheckConstraint, UniqueConstraint
)
from sqlalchemy.orm import relationship

from app.core.database import Base


class ProductKind(str, PyEnum):
    """Explicit stock classification, set when the product is defined."""
    SIZED = "sized"
    ACCESSORY = "accessory"


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False)
    slug = Column(String(120), unique=True, nullable=False, index=True)

    products = relationship("Product", back_populates="category")


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    reference = Column(String(80), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True, index=True)
    kind = Column(String(20), nullable=False, default=ProductKind.SIZED.value)

    # Pricing
    cost_price = Column(Numeric(12, 2), nullable=False, default=0)
    price = Column(Numeric(12, 2), nullable=False, default=0)

    # Inventory
    stock = Column(Integer, nullable=False, default=0)

    # Soft delete: deactivated products keep their order and ledger history
    is_active = Column(Boolean, nullable=False, default=True)

    image_url = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    category = relationship("Category", back_populates="products")
    sizes = relationship(
        "ProductSize",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductSize.id",
    )

    __table_args__ = (
        CheckConstraint("stock >= 0", name="chk_product_stock_non_negative"),
        CheckConstraint("kind IN ('sized', 'accessory')", name="chk_product_kind"),
    )

    @property
    def is_accessory(self) -> bool:
        """Accessories (or products with no configured sizes) carry a single stock counter."""
        return self.kind == ProductKind.ACCESSORY.value or not self.sizes

    def __repr__(self):
        return f"<Product {self.reference}: stock={self.stock}>"


class ProductSize(Base):
    __tablename__ = "product_sizes"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(
        Integer,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    size = Column(String(20), nullable=False)
    stock = Column(Integer, nullable=False, default=0)

    product = relationship("Product", back_populates="sizes")

    __table_args__ = (
        UniqueConstraint("product_id", "size", name="uq_product_size"),
        CheckConstraint("stock >= 0", name="chk_product_size_stock_non_negative"),
    )

    def __repr__(self):
        return f"<ProductSize {self.product_id}/{self.size}: stock={self.stock}>"
