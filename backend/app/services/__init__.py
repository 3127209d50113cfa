# Services layer for business logic
from app.services.movement_ledger import MovementLedger, TrackingCheck
from app.services.stock_mutator import StockMutator, StockTarget, StockChange
from app.services.reception_service import ReceptionService, ReceptionOutcome, ItemResult
from app.services.order_service import OrderService
from app.services.notification_hub import NotificationHub, ClientStream
from app.services.notification_relay import RedisNotificationRelay
