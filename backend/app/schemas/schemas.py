from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Literal
from pydantic import BaseModel, Field


# ============================================================================
# SCAN SCHEMAS
# ============================================================================
class ScanRequest(BaseModel):
    barcode: str = Field(min_length=1, max_length=120)
    action: str = Field(description='"add" or "remove"')
    operation_type: Optional[str] = None
    tracking_number: Optional[str] = None
    order_number: Optional[str] = None
    notes: Optional[str] = None


class ScannedProduct(BaseModel):
    name: str
    reference: str
    size: Optional[str] = None
    old_stock: int
    new_stock: int
    product_stock: int
    image: Optional[str] = None


class ScanResponse(BaseModel):
    success: bool = True
    product: ScannedProduct
    message: str
    message_fr: str


# ============================================================================
# ATELIER SCHEMAS
# ============================================================================
class AtelierCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)


class AtelierResponse(BaseModel):
    id: int
    name: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ============================================================================
# RECEPTION SCHEMAS
# ============================================================================
class ReceptionItemCreate(BaseModel):
    product_name: str = Field(min_length=1, max_length=255)
    reference: Optional[str] = None
    size: Optional[str] = None
    barcode: Optional[str] = None
    quantity: int = Field(gt=0)


class ReceptionCreate(BaseModel):
    atelier_id: int
    date: Optional[datetime] = None
    notes: Optional[str] = None
    items: List[ReceptionItemCreate] = Field(min_length=1)


class ReceptionPaymentUpdate(BaseModel):
    payment_status: Optional[Literal["pending", "partial", "paid"]] = None
    amount_paid: Optional[Decimal] = None
    notes: Optional[str] = None


class ReceptionItemResponse(BaseModel):
    id: int
    position: int
    product_name: str
    reference: Optional[str] = None
    size: Optional[str] = None
    barcode: Optional[str] = None
    quantity: int
    unit_cost: Decimal
    line_cost: Decimal

    class Config:
        from_attributes = True


class ReceptionResponse(BaseModel):
    id: int
    atelier_id: int
    atelier: Optional[AtelierResponse] = None
    date: datetime
    notes: Optional[str] = None
    total_cost: Decimal
    amount_paid: Decimal
    payment_status: str
    status: str
    created_at: datetime
    items: List[ReceptionItemResponse] = []

    class Config:
        from_attributes = True


class ItemStockResult(BaseModel):
    position: int
    product_name: str
    reference: Optional[str] = None
    size: Optional[str] = None
    quantity: int
    status: Literal["success", "failed", "skipped"]
    reason: Optional[str] = None
    old_stock: Optional[int] = None
    new_stock: Optional[int] = None

    class Config:
        from_attributes = True


class ReceptionOutcomeResponse(BaseModel):
    reception: ReceptionResponse
    results: List[ItemStockResult]
    applied: int
    rejected: int
    skipped: int
    fully_applied: bool


# ============================================================================
# MOVEMENT SCHEMAS
# ============================================================================
class MovementCreate(BaseModel):
    type: Optional[Literal["in", "out"]] = None
    operation_type: Optional[Literal["entree", "sortie", "echange", "retour"]] = None
    product_name: str = Field(min_length=1, max_length=255)
    product_reference: Optional[str] = None
    size: Optional[str] = None
    barcode: Optional[str] = None
    quantity: int = Field(gt=0)
    old_stock: Optional[int] = None
    new_stock: Optional[int] = None
    order_number: Optional[str] = None
    tracking_number: Optional[str] = None
    notes: Optional[str] = None


class MovementResponse(BaseModel):
    id: int
    type: str
    operation_type: Optional[str] = None
    barcode: Optional[str] = None
    product_name: str
    product_reference: Optional[str] = None
    size: Optional[str] = None
    quantity: int
    old_stock: Optional[int] = None
    new_stock: Optional[int] = None
    order_number: Optional[str] = None
    tracking_number: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class TrackingValidationResponse(BaseModel):
    valid: bool
    message: str
    existing_count: int = 0


class SortieLineResponse(BaseModel):
    product_name: str
    product_reference: Optional[str] = None
    size: Optional[str] = None
    barcode: Optional[str] = None
    quantity: int
    order_number: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class SortieLookupResponse(BaseModel):
    tracking_number: str
    found: bool
    items: List[SortieLineResponse]


# ============================================================================
# ORDER SCHEMAS
# ============================================================================
class OrderItemCreate(BaseModel):
    product_id: int
    size: Optional[str] = None
    quantity: int = Field(gt=0)


class OrderCreate(BaseModel):
    customer_name: str = Field(min_length=1, max_length=255)
    customer_phone: str = Field(min_length=6, max_length=40)
    delivery_type: Literal["HOME_DELIVERY", "PICKUP"]
    delivery_address: Optional[str] = None
    delivery_fee: Optional[Decimal] = None
    notes: Optional[str] = None
    items: List[OrderItemCreate] = Field(min_length=1)


class OrderItemResponse(BaseModel):
    id: int
    product_id: int
    product_name: str
    size: Optional[str] = None
    price: Decimal
    quantity: int

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: int
    order_number: str
    status: str
    customer_name: str
    customer_phone: str
    delivery_type: str
    delivery_address: Optional[str] = None
    subtotal: Decimal
    delivery_fee: Decimal
    total: Decimal
    stock_policy: str
    notes: Optional[str] = None
    created_at: datetime
    items: List[OrderItemResponse] = []

    class Config:
        from_attributes = True


# ============================================================================
# SSE SCHEMAS
# ============================================================================
class SSEStatusResponse(BaseModel):
    connected_clients: int
    connected_users: List[str]
    relay: bool
