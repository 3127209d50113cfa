from app.models.product import Category, Product, ProductSize, ProductKind
from app.models.atelier import Atelier
from app.models.stock_reception import (
    StockReception,
    StockReceptionItem,
    PaymentStatus,
    ReceptionStatus,
)
from app.models.stock_movement import StockMovement, MovementType, OperationType
from app.models.order import Order, OrderItem
