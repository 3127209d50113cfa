"""
StockMutator - single write path for product and size stock counters

Every change is one conditional UPDATE (stock = stock + delta), never a
read-modify-write, so concurrent scans and receptions cannot lose updates.
Decrements carry a "stock + delta >= 0" guard; when the guard rejects the
row the change is refused with StockError.

For sized products the aggregate Product.stock is recomputed from the sum of
its sizes with a second UPDATE issued in the same transaction. Callers own
the transaction: nothing here commits.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional, Tuple

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.exceptions import NotFoundError, StockError, ValidationError
from app.models import Product, ProductSize

logger = logging.getLogger(__name__)

SCAN_ACTIONS = {"add": 1, "remove": -1}


@dataclass
class StockTarget:
    """A resolved stock counter: a product, or one size of a product."""
    product_id: int
    reference: str
    product_name: str
    size_id: Optional[int] = None
    size: Optional[str] = None
    image_url: Optional[str] = None
    cost_price: Decimal = Decimal("0")

    @property
    def is_sized(self) -> bool:
        return self.size_id is not None


@dataclass
class StockChange:
    target: StockTarget
    delta: int
    old_stock: int
    new_stock: int
    product_stock: int


def parse_barcode(barcode: str) -> Tuple[str, Optional[str]]:
    """
    Split a scanned barcode into (reference, size).

    REFERENCE-SIZE splits on the last hyphen; a barcode without a hyphen is a
    bare reference (accessories).
    """
    barcode = barcode.strip()
    reference, sep, size = barcode.rpartition("-")
    if not sep or not reference:
        return barcode, None
    return reference, size or None


def normalize_size(label: Optional[str]) -> str:
    return (label or "").strip().lower()


def match_size(sizes: Iterable[ProductSize], label: Optional[str]) -> Optional[ProductSize]:
    """Case-insensitive, trimmed exact match. No fallback."""
    wanted = normalize_size(label)
    if not wanted:
        return None
    for size in sizes:
        if normalize_size(size.size) == wanted:
            return size
    return None


class StockMutator:
    """Resolves stock targets and applies atomic deltas to them."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_product(self, reference: str) -> Optional[Product]:
        result = await self.db.execute(
            select(Product)
            .where(Product.reference == reference)
            .options(selectinload(Product.sizes))
        )
        return result.scalar_one_or_none()

    def resolve_for_product(self, product: Product, size_label: Optional[str]) -> StockTarget:
        """
        Pick the counter to change on an already loaded product.

        Accessories (or products without sizes) use the product counter and
        ignore any size label. Sized products need a matching size.
        """
        base = dict(
            product_id=product.id,
            reference=product.reference,
            product_name=product.name,
            image_url=product.image_url,
            cost_price=product.cost_price or Decimal("0"),
        )
        if product.is_accessory:
            return StockTarget(**base)

        available = ", ".join(s.size for s in product.sizes)
        if not normalize_size(size_label):
            raise ValidationError(
                f'Product "{product.name}" requires a size. Format: {product.reference}-SIZE',
                code="SIZE_REQUIRED",
                details={"reference": product.reference, "available_sizes": available},
                message_fr=f"Le produit « {product.name} » nécessite une taille ({product.reference}-TAILLE)",
            )

        size = match_size(product.sizes, size_label)
        if size is None:
            raise NotFoundError(
                f'Size "{size_label}" not found for product "{product.name}". Available: {available}',
                code="SIZE_NOT_FOUND",
                details={"reference": product.reference, "size": size_label, "available_sizes": available},
                message_fr=f"Taille « {size_label} » introuvable pour « {product.name} ». Disponibles : {available}",
            )
        return StockTarget(size_id=size.id, size=size.size, **base)

    async def resolve(self, reference: str, size_label: Optional[str] = None) -> StockTarget:
        product = await self.get_product(reference)
        if product is None:
            raise NotFoundError(
                f'Product with reference "{reference}" not found',
                code="PRODUCT_NOT_FOUND",
                details={"reference": reference},
                message_fr=f"Produit avec la référence « {reference} » introuvable",
            )
        return self.resolve_for_product(product, size_label)

    async def resolve_barcode(self, barcode: str) -> StockTarget:
        """
        Resolve a scanned barcode.

        References may themselves contain hyphens, so an exact reference
        match on the whole barcode wins over the REFERENCE-SIZE split.
        """
        barcode = barcode.strip()
        product = await self.get_product(barcode)
        if product is not None:
            return self.resolve_for_product(product, None)

        reference, size_label = parse_barcode(barcode)
        return await self.resolve(reference, size_label)

    async def apply(self, target: StockTarget, delta: int, floor: bool = True) -> StockChange:
        """
        Apply a signed delta.

        With floor enabled (the default) a decrement that would go below
        zero raises StockError. The check constraints on the stock columns
        still reject negative values when it is disabled.
        """
        if delta == 0:
            raise ValidationError("Stock delta must not be zero", code="ZERO_DELTA")

        if target.is_sized:
            counter = ProductSize
            row_id = target.size_id
        else:
            counter = Product
            row_id = target.product_id

        stmt = (
            update(counter)
            .where(counter.id == row_id)
            .values(stock=counter.stock + delta)
            .execution_options(synchronize_session=False)
        )
        if floor and delta < 0:
            stmt = stmt.where(counter.stock + delta >= 0)

        result = await self.db.execute(stmt)
        if result.rowcount == 0:
            current = await self.db.scalar(select(counter.stock).where(counter.id == row_id))
            if current is None:
                raise NotFoundError(
                    f"Stock counter for {target.reference} disappeared",
                    code="PRODUCT_NOT_FOUND",
                    details={"reference": target.reference, "size": target.size},
                )
            if current == 0:
                message = "Cannot remove stock. Stock is already 0."
                message_fr = "Impossible de retirer : le stock est déjà à 0."
            else:
                message = f"Insufficient stock for {target.product_name}: {current} available, {-delta} requested"
                message_fr = f"Stock insuffisant pour {target.product_name} : {current} disponible(s), {-delta} demandé(s)"
            raise StockError(
                message,
                reference=target.reference,
                size=target.size,
                current_stock=current,
                requested=-delta,
                message_fr=message_fr,
            )

        new_stock = await self.db.scalar(select(counter.stock).where(counter.id == row_id))

        if target.is_sized:
            product_stock = await self.recompute_aggregate(target.product_id)
        else:
            product_stock = new_stock

        change = StockChange(
            target=target,
            delta=delta,
            old_stock=new_stock - delta,
            new_stock=new_stock,
            product_stock=product_stock,
        )
        logger.info(
            f"Stock {target.reference}"
            f"{' [' + target.size + ']' if target.size else ''}: "
            f"{change.old_stock} -> {change.new_stock} ({delta:+d}), product total {product_stock}"
        )
        return change

    async def recompute_aggregate(self, product_id: int) -> int:
        """Set Product.stock to the sum of its sizes in a single statement."""
        size_total = (
            select(func.coalesce(func.sum(ProductSize.stock), 0))
            .where(ProductSize.product_id == product_id)
            .scalar_subquery()
        )
        await self.db.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock=size_total)
            .execution_options(synchronize_session=False)
        )
        return await self.db.scalar(select(Product.stock).where(Product.id == product_id))

    async def scan(
        self,
        barcode: str,
        action: str,
        ledger=None,
        operation_type: Optional[str] = None,
        tracking_number: Optional[str] = None,
        order_number: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> StockChange:
        """
        Manual single-unit scan: add or remove exactly one unit.

        When a ledger is given the change is recorded as an in/out movement
        in the same transaction.
        """
        if not barcode or not barcode.strip():
            raise ValidationError("Barcode is required", code="BARCODE_REQUIRED",
                                  message_fr="Code-barres requis")
        delta = SCAN_ACTIONS.get(action)
        if delta is None:
            raise ValidationError(
                'Invalid action. Use "add" or "remove".',
                code="INVALID_ACTION",
                details={"action": action},
                message_fr="Action invalide. Utilisez « add » ou « remove ».",
            )
        target = await self.resolve_barcode(barcode)
        change = await self.apply(target, delta)

        if ledger is not None:
            await ledger.record(
                product_name=target.product_name,
                product_reference=target.reference,
                size=target.size,
                barcode=barcode.strip(),
                quantity=1,
                movement_type="in" if delta > 0 else "out",
                operation_type=operation_type,
                old_stock=change.old_stock,
                new_stock=change.new_stock,
                order_number=order_number,
                tracking_number=tracking_number,
                notes=notes,
            )
        return change
