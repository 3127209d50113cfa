"""
Order intake

Prices come from the catalog, never from the client. What happens to stock
is decided by ORDER_STOCK_POLICY:

- deferred: stock is left alone; it is decremented later when the parcel is
  scanned out (sortie). Orders can over-commit stock under this policy.
- reserve: each line is decremented atomically with the zero floor. One
  short line fails the whole order and the request transaction rolls back.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import settings
from app.core.exceptions import NotFoundError, ValidationError
from app.core.utils import to_money
from app.models import Order, OrderItem, Product
from app.services.movement_ledger import MovementLedger
from app.services.stock_mutator import StockMutator

logger = logging.getLogger(__name__)

DELIVERY_TYPES = ("HOME_DELIVERY", "PICKUP")
DEFAULT_DELIVERY_FEES = {
    "HOME_DELIVERY": Decimal("500.00"),
    "PICKUP": Decimal("0.00"),
}
ORDER_NUMBER_FORMAT = "ORD-{:06d}"


class OrderService:
    def __init__(
        self,
        db: AsyncSession,
        mutator: Optional[StockMutator] = None,
        ledger: Optional[MovementLedger] = None,
        stock_policy: Optional[str] = None,
    ):
        self.db = db
        self.mutator = mutator or StockMutator(db)
        self.ledger = ledger or MovementLedger(db)
        self.stock_policy = stock_policy or settings.ORDER_STOCK_POLICY

    async def next_order_number(self) -> str:
        """Sequential ORD-000001 numbers; the unique constraint settles races."""
        last = await self.db.scalar(
            select(Order.order_number).order_by(Order.id.desc()).limit(1)
        )
        sequence = 0
        if last:
            try:
                sequence = int(last.rsplit("-", 1)[-1])
            except ValueError:
                sequence = await self.db.scalar(select(Order.id).order_by(Order.id.desc()).limit(1)) or 0
        return ORDER_NUMBER_FORMAT.format(sequence + 1)

    async def get(self, order_id: int) -> Order:
        result = await self.db.execute(
            select(Order)
            .where(Order.id == order_id)
            .options(selectinload(Order.items))
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError(
                f"Order {order_id} not found",
                code="ORDER_NOT_FOUND",
                details={"order_id": order_id},
                message_fr="Commande introuvable",
            )
        return order

    async def create(
        self,
        customer_name: str,
        customer_phone: str,
        delivery_type: str,
        items: List[Dict[str, Any]],
        delivery_address: Optional[str] = None,
        delivery_fee=None,
        notes: Optional[str] = None,
    ) -> Order:
        """
        Create an order. Flushes, the caller commits.

        items: dicts with product_id, quantity and an optional size label.
        """
        if delivery_type not in DELIVERY_TYPES:
            raise ValidationError(
                f"Invalid delivery type: {delivery_type}",
                code="INVALID_DELIVERY_TYPE",
                details={"allowed": list(DELIVERY_TYPES)},
                message_fr="Type de livraison invalide",
            )
        if delivery_type == "HOME_DELIVERY" and not (delivery_address or "").strip():
            raise ValidationError(
                "Delivery address is required for home delivery",
                code="ADDRESS_REQUIRED",
                message_fr="L'adresse de livraison est obligatoire",
            )
        if not items:
            raise ValidationError(
                "An order needs at least one item",
                code="EMPTY_ORDER",
                message_fr="La commande doit contenir au moins un article",
            )

        product_ids = {item["product_id"] for item in items}
        result = await self.db.execute(
            select(Product)
            .where(Product.id.in_(product_ids), Product.is_active.is_(True))
            .options(selectinload(Product.sizes))
        )
        products = {p.id: p for p in result.scalars().all()}

        order = Order(
            order_number=await self.next_order_number(),
            status="pending",
            customer_name=customer_name.strip(),
            customer_phone=customer_phone.strip(),
            delivery_type=delivery_type,
            delivery_address=delivery_address,
            stock_policy=self.stock_policy,
            notes=notes,
        )

        subtotal = Decimal("0.00")
        reservations = []
        for item in items:
            product = products.get(item["product_id"])
            if product is None:
                raise NotFoundError(
                    f"Product {item['product_id']} not found or inactive",
                    code="PRODUCT_NOT_FOUND",
                    details={"product_id": item["product_id"]},
                    message_fr="Produit introuvable ou désactivé",
                )
            quantity = int(item.get("quantity") or 0)
            if quantity <= 0:
                raise ValidationError(
                    "Quantity must be positive",
                    code="INVALID_QUANTITY",
                    details={"product_id": product.id, "quantity": item.get("quantity")},
                    message_fr="La quantité doit être positive",
                )

            target = self.mutator.resolve_for_product(product, item.get("size"))
            price = to_money(product.price)
            subtotal += price * quantity
            order.items.append(OrderItem(
                product_id=product.id,
                size_id=target.size_id,
                product_name=product.name,
                size=target.size,
                price=price,
                quantity=quantity,
            ))
            reservations.append((target, quantity))

        if delivery_fee is None:
            fee = DEFAULT_DELIVERY_FEES[delivery_type]
        else:
            fee = to_money(delivery_fee)
            if fee < 0:
                raise ValidationError(
                    "Delivery fee cannot be negative",
                    code="INVALID_DELIVERY_FEE",
                    message_fr="Les frais de livraison ne peuvent pas être négatifs",
                )

        order.subtotal = to_money(subtotal)
        order.delivery_fee = fee
        order.total = to_money(subtotal + fee)

        self.db.add(order)
        await self.db.flush()

        if self.stock_policy == "reserve":
            for target, quantity in reservations:
                change = await self.mutator.apply(target, -quantity)
                await self.ledger.record(
                    product_name=target.product_name,
                    product_reference=target.reference,
                    size=target.size,
                    quantity=quantity,
                    movement_type="out",
                    old_stock=change.old_stock,
                    new_stock=change.new_stock,
                    order_number=order.order_number,
                    notes="Réservation commande",
                )

        logger.info(
            f"Order {order.order_number} created: {len(reservations)} line(s), "
            f"total {order.total}, stock policy {self.stock_policy}"
        )
        return order
