"""
Order routes

Storefront checkout posts here without an account. Once the order is
committed every connected back-office session gets a new_order event.
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import StaffUser, get_notification_hub, get_order_service, require_roles
from app.core.database import get_db
from app.schemas.schemas import OrderCreate, OrderResponse
from app.services.notification_hub import NotificationHub, new_order_event
from app.services.order_service import OrderService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=OrderResponse, status_code=201)
async def create_order(
    data: OrderCreate,
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
    hub: NotificationHub = Depends(get_notification_hub),
):
    """Create an order and notify the back office"""
    order = await service.create(
        customer_name=data.customer_name,
        customer_phone=data.customer_phone,
        delivery_type=data.delivery_type,
        delivery_address=data.delivery_address,
        delivery_fee=data.delivery_fee,
        notes=data.notes,
        items=[item.model_dump() for item in data.items],
    )
    await db.commit()

    await hub.publish(new_order_event(order))
    return await service.get(order.id)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int,
    user: StaffUser = Depends(require_roles("ADMIN", "CONFIRMATRICE", "STOCK_MANAGER")),
    service: OrderService = Depends(get_order_service),
):
    """Get single order"""
    return await service.get(order_id)
