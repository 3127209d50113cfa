"""
Reception intake service

A reception is persisted with its cost snapshot first, then stock is applied
item by item, each in its own transaction. A line whose product or size
cannot be resolved is reported as failed and does not roll back the
reception or the other lines: the batch is partially applied on purpose and
the caller reads ReceptionOutcome to see what happened.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import settings
from app.core.exceptions import InventoryBaseError, NotFoundError, ValidationError
from app.core.utils import to_money, utcnow
from app.models import (
    Atelier, Product, StockReception, StockReceptionItem,
    PaymentStatus, ReceptionStatus, OperationType,
)
from app.services.movement_ledger import MovementLedger
from app.services.stock_mutator import StockMutator

logger = logging.getLogger(__name__)

ITEM_SUCCESS = "success"
ITEM_FAILED = "failed"
ITEM_SKIPPED = "skipped"


@dataclass
class ItemResult:
    position: int
    product_name: str
    reference: Optional[str]
    size: Optional[str]
    quantity: int
    status: str
    reason: Optional[str] = None
    old_stock: Optional[int] = None
    new_stock: Optional[int] = None


@dataclass
class ReceptionOutcome:
    """Persisted reception plus the per-line stock results, in item order."""
    reception: StockReception
    results: List[ItemResult] = field(default_factory=list)

    @property
    def applied(self) -> List[ItemResult]:
        return [r for r in self.results if r.status == ITEM_SUCCESS]

    @property
    def rejected(self) -> List[ItemResult]:
        return [r for r in self.results if r.status == ITEM_FAILED]

    @property
    def skipped(self) -> List[ItemResult]:
        return [r for r in self.results if r.status == ITEM_SKIPPED]

    @property
    def fully_applied(self) -> bool:
        return not self.rejected


def derive_payment_status(amount_paid: Decimal, total_cost: Decimal) -> str:
    if amount_paid <= 0:
        return PaymentStatus.PENDING.value
    if amount_paid < total_cost:
        return PaymentStatus.PARTIAL.value
    return PaymentStatus.PAID.value


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class ReceptionService:
    def __init__(
        self,
        db: AsyncSession,
        mutator: Optional[StockMutator] = None,
        ledger: Optional[MovementLedger] = None,
    ):
        self.db = db
        self.mutator = mutator or StockMutator(db)
        self.ledger = ledger or MovementLedger(db)

    async def get(self, reception_id: int) -> StockReception:
        result = await self.db.execute(
            select(StockReception)
            .where(StockReception.id == reception_id)
            .options(
                selectinload(StockReception.items),
                selectinload(StockReception.atelier),
            )
            .execution_options(populate_existing=True)
        )
        reception = result.scalar_one_or_none()
        if reception is None:
            raise NotFoundError(
                f"Reception {reception_id} not found",
                code="RECEPTION_NOT_FOUND",
                details={"reception_id": reception_id},
                message_fr="Réception introuvable",
            )
        return reception

    async def _cost_snapshot(self, references: List[str]) -> Dict[str, Decimal]:
        if not references:
            return {}
        result = await self.db.execute(
            select(Product.reference, Product.cost_price)
            .where(Product.reference.in_(set(references)))
        )
        return {ref: to_money(cost) for ref, cost in result.all()}

    async def create(
        self,
        atelier_id: int,
        items: List[Dict[str, Any]],
        date: Optional[datetime] = None,
        notes: Optional[str] = None,
    ) -> ReceptionOutcome:
        """
        Persist a reception and apply its stock.

        items: dicts with product_name, quantity and optional reference, size
        and barcode. Unit cost comes from the live catalog at this moment;
        lines without a known reference cost zero.
        """
        if not items:
            raise ValidationError(
                "A reception needs at least one item",
                code="EMPTY_RECEPTION",
                message_fr="La réception doit contenir au moins un article",
            )

        atelier = await self.db.get(Atelier, atelier_id)
        if atelier is None:
            raise ValidationError(
                "Facility not found",
                code="ATELIER_NOT_FOUND",
                details={"atelier_id": atelier_id},
                message_fr="Atelier introuvable",
            )

        lines = []
        for position, raw in enumerate(items):
            quantity = int(raw.get("quantity") or 0)
            if quantity <= 0:
                raise ValidationError(
                    f"Item {position + 1}: quantity must be positive",
                    code="INVALID_QUANTITY",
                    details={"position": position, "quantity": raw.get("quantity")},
                    message_fr=f"Article {position + 1} : la quantité doit être positive",
                )
            lines.append({
                "position": position,
                "product_name": (raw.get("product_name") or "").strip() or "Article",
                "reference": _clean(raw.get("reference")),
                "size": _clean(raw.get("size")),
                "barcode": _clean(raw.get("barcode")),
                "quantity": quantity,
            })

        costs = await self._cost_snapshot([l["reference"] for l in lines if l["reference"]])

        total = Decimal("0.00")
        reception = StockReception(
            atelier_id=atelier.id,
            date=date or utcnow(),
            notes=notes,
            amount_paid=Decimal("0.00"),
            payment_status=PaymentStatus.PENDING.value,
            status=ReceptionStatus.COMPLETED.value,
        )
        for line in lines:
            unit_cost = costs.get(line["reference"], Decimal("0.00")) if line["reference"] else Decimal("0.00")
            line_cost = to_money(unit_cost * line["quantity"])
            total += line_cost
            reception.items.append(StockReceptionItem(
                unit_cost=unit_cost,
                line_cost=line_cost,
                **line,
            ))
        reception.total_cost = to_money(total)

        self.db.add(reception)
        await self.db.commit()
        reception_id = reception.id
        logger.info(
            f"Reception {reception_id} saved for atelier {atelier.name}: "
            f"{len(lines)} items, total {reception.total_cost}"
        )

        results = []
        for line in lines:
            results.append(await self._apply_line(reception_id, line))

        outcome = ReceptionOutcome(reception=await self.get(reception_id), results=results)
        if outcome.rejected:
            logger.warning(
                f"Reception {reception_id} partially applied: "
                f"{len(outcome.applied)} applied, {len(outcome.rejected)} failed, "
                f"{len(outcome.skipped)} skipped"
            )
        return outcome

    async def _apply_line(self, reception_id: int, line: Dict[str, Any]) -> ItemResult:
        result = ItemResult(
            position=line["position"],
            product_name=line["product_name"],
            reference=line["reference"],
            size=line["size"],
            quantity=line["quantity"],
            status=ITEM_SKIPPED,
        )
        if not line["reference"]:
            result.reason = "No reference, stock not tracked"
            return result

        try:
            target = await self.mutator.resolve(line["reference"], line["size"])
            change = await self.mutator.apply(target, line["quantity"], floor=False)
            await self.ledger.record(
                product_name=target.product_name,
                product_reference=target.reference,
                size=target.size,
                barcode=line["barcode"],
                quantity=line["quantity"],
                operation_type=OperationType.ENTREE,
                old_stock=change.old_stock,
                new_stock=change.new_stock,
                notes=f"Réception #{reception_id}",
            )
            await self.db.commit()
        except InventoryBaseError as e:
            await self.db.rollback()
            result.status = ITEM_FAILED
            result.reason = e.message
            logger.warning(f"Reception {reception_id} item {line['position']} ({line['reference']}): {e.message}")
            return result
        except SQLAlchemyError as e:
            await self.db.rollback()
            result.status = ITEM_FAILED
            result.reason = "Database error while updating stock"
            logger.error(
                f"Reception {reception_id} item {line['position']} ({line['reference']}) failed: {e}",
                exc_info=True,
            )
            return result

        result.status = ITEM_SUCCESS
        result.size = target.size
        result.old_stock = change.old_stock
        result.new_stock = change.new_stock
        return result

    async def update_payment(
        self,
        reception_id: int,
        payment_status: Optional[str] = None,
        amount_paid=None,
        notes: Optional[str] = None,
    ) -> StockReception:
        """
        Update payment fields and notes; nothing else on a reception changes.

        When only the amount is given the status is derived from it.
        """
        reception = await self.get(reception_id)

        if payment_status is not None:
            try:
                payment_status = PaymentStatus(payment_status).value
            except ValueError:
                raise ValidationError(
                    f"Invalid payment status: {payment_status}",
                    code="INVALID_PAYMENT_STATUS",
                    details={"allowed": [s.value for s in PaymentStatus]},
                    message_fr="Statut de paiement invalide",
                )

        if amount_paid is not None:
            amount = to_money(amount_paid)
            if amount < 0:
                raise ValidationError(
                    "Amount paid cannot be negative",
                    code="INVALID_AMOUNT",
                    details={"amount_paid": str(amount_paid)},
                    message_fr="Le montant payé ne peut pas être négatif",
                )
            reception.amount_paid = amount
            if payment_status is None:
                payment_status = derive_payment_status(amount, to_money(reception.total_cost))

        if payment_status is not None:
            reception.payment_status = payment_status
        if notes is not None:
            reception.notes = notes

        await self.db.flush()
        logger.info(
            f"Reception {reception_id} payment: {reception.payment_status} "
            f"({reception.amount_paid}/{reception.total_cost})"
        )
        return await self.get(reception_id)

    async def delete(self, reception_id: int) -> None:
        """Delete a reception and its items. Stock already applied stays."""
        reception = await self.get(reception_id)
        await self.db.delete(reception)
        await self.db.flush()
        logger.info(f"Reception {reception_id} deleted (stock not reverted)")

    async def list(self, limit: Optional[int] = None) -> List[StockReception]:
        limit = min(limit or settings.RECEPTIONS_LIST_LIMIT, settings.RECEPTIONS_LIST_LIMIT)
        result = await self.db.execute(
            select(StockReception)
            .options(
                selectinload(StockReception.items),
                selectinload(StockReception.atelier),
            )
            .order_by(StockReception.created_at.desc(), StockReception.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
