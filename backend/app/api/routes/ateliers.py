"""
Atelier routes

The workshops stock receptions come from.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import StaffUser, get_inventory_staff
from app.core.database import get_db
from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models import Atelier, StockReception
from app.schemas.schemas import AtelierCreate, AtelierResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=List[AtelierResponse])
async def list_ateliers(
    user: StaffUser = Depends(get_inventory_staff),
    db: AsyncSession = Depends(get_db),
):
    """All ateliers, alphabetical"""
    result = await db.execute(select(Atelier).order_by(Atelier.name))
    return result.scalars().all()


@router.post("", response_model=AtelierResponse, status_code=status.HTTP_201_CREATED)
async def create_atelier(
    data: AtelierCreate,
    user: StaffUser = Depends(get_inventory_staff),
    db: AsyncSession = Depends(get_db),
):
    """Create an atelier"""
    name = data.name.strip()
    if not name:
        raise ValidationError(
            "Atelier name is required",
            code="NAME_REQUIRED",
            message_fr="Le nom de l'atelier est obligatoire",
        )

    existing = await db.scalar(select(Atelier.id).where(Atelier.name == name))
    if existing:
        raise ConflictError(
            f'Atelier "{name}" already exists',
            code="ATELIER_EXISTS",
            details={"atelier_id": existing},
            message_fr=f"L'atelier « {name} » existe déjà",
        )

    atelier = Atelier(name=name)
    db.add(atelier)
    await db.flush()
    await db.refresh(atelier)
    logger.info(f"Atelier {atelier.id} '{name}' created by user {user.id}")
    return atelier


@router.delete("/{atelier_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_atelier(
    atelier_id: int,
    user: StaffUser = Depends(get_inventory_staff),
    db: AsyncSession = Depends(get_db),
):
    """Delete an atelier that has no receptions"""
    atelier = await db.get(Atelier, atelier_id)
    if not atelier:
        raise NotFoundError(
            f"Atelier {atelier_id} not found",
            code="ATELIER_NOT_FOUND",
            message_fr="Atelier introuvable",
        )

    receptions = await db.scalar(
        select(func.count(StockReception.id)).where(StockReception.atelier_id == atelier_id)
    )
    if receptions:
        raise ConflictError(
            f"Atelier has {receptions} reception(s) and cannot be deleted",
            code="ATELIER_IN_USE",
            details={"receptions": receptions},
            message_fr=(
                f"Impossible de supprimer cet atelier : {receptions} réception(s) y sont associées"
            ),
        )

    await db.delete(atelier)
    logger.info(f"Atelier {atelier_id} deleted by user {user.id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
