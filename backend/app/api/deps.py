"""
API dependencies
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_db
from app.core.exceptions import AuthError, PermissionDeniedError
from app.core.security import decode_token
from app.services.movement_ledger import MovementLedger
from app.services.notification_hub import NotificationHub
from app.services.order_service import OrderService
from app.services.reception_service import ReceptionService
from app.services.stock_mutator import StockMutator

security = HTTPBearer(auto_error=False)


@dataclass
class StaffUser:
    """Back-office user as described by the token claims. No user table lookup."""
    id: str
    role: str


def staff_from_token(token: Optional[str]) -> StaffUser:
    if not token:
        raise AuthError("Authentication required", message_fr="Authentification requise")

    payload = decode_token(token)
    if not payload or payload.get("type", "access") != "access":
        raise AuthError(
            "Invalid or expired token",
            code="INVALID_TOKEN",
            message_fr="Jeton invalide ou expiré",
        )

    user_id = payload.get("sub") or payload.get("userId")
    if user_id is None:
        raise AuthError("Token has no subject", code="INVALID_TOKEN", message_fr="Jeton invalide")

    return StaffUser(id=str(user_id), role=str(payload.get("role") or "").upper())


def check_role(user: StaffUser, roles) -> StaffUser:
    if user.role not in {r.upper() for r in roles}:
        raise PermissionDeniedError(
            "Access denied for this role",
            details={"role": user.role},
            message_fr="Accès refusé pour ce rôle",
        )
    return user


async def get_current_staff(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> StaffUser:
    """Get current authenticated staff member"""
    return staff_from_token(credentials.credentials if credentials else None)


def require_roles(*roles: str):
    """Dependency factory: staff member whose role is one of roles."""
    async def dependency(user: StaffUser = Depends(get_current_staff)) -> StaffUser:
        return check_role(user, roles)
    return dependency


async def get_inventory_staff(user: StaffUser = Depends(get_current_staff)) -> StaffUser:
    """Require a role listed in INVENTORY_ROLES"""
    return check_role(user, settings.INVENTORY_ROLES)


def get_notification_hub(request: Request) -> NotificationHub:
    return request.app.state.notification_hub


async def get_ledger(db: AsyncSession = Depends(get_db)) -> MovementLedger:
    return MovementLedger(db)


async def get_mutator(db: AsyncSession = Depends(get_db)) -> StockMutator:
    return StockMutator(db)


async def get_reception_service(db: AsyncSession = Depends(get_db)) -> ReceptionService:
    return ReceptionService(db)


async def get_order_service(db: AsyncSession = Depends(get_db)) -> OrderService:
    return OrderService(db)
