"""
Commission offer API endpoints
"""
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.database import get_db
from backoffice.models.offer import Offer
from backoffice.models.user import Profile, Role
from backoffice.api.auth import require_roles
from backoffice.services.activity_logger import log_activity
from backoffice.services.commission import find_active_offer
from backoffice.services.errors import BadRequestError, NotFoundError
from backoffice.utils.helpers import page_meta, paginate
from backoffice.utils.validators import validate_percentage

router = APIRouter()

admin_only = require_roles(Role.ADMIN)


# --- Pydantic Schemas ---

class OfferCreate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    commission_percentage: Optional[float] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: bool = True


class OfferUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    commission_percentage: Optional[float] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: Optional[bool] = None


# --- Helpers ---

def _offer_to_dict(offer: Offer) -> dict:
    return {
        "id": offer.id,
        "name": offer.name,
        "description": offer.description,
        "commission_percentage": float(offer.commission_percentage),
        "start_date": offer.start_date.isoformat(),
        "end_date": offer.end_date.isoformat(),
        "is_active": offer.is_active,
        "created_by": offer.created_by,
        "created_at": offer.created_at.isoformat() if offer.created_at else None,
        "updated_at": offer.updated_at.isoformat() if offer.updated_at else None,
    }


def _check_percentage(value) -> None:
    try:
        validate_percentage(value, "commission_percentage")
    except ValueError as e:
        raise BadRequestError(str(e))


def _check_window(start: date, end: date) -> None:
    if end <= start:
        raise BadRequestError("end_date must be after start_date")


async def _get_offer(db: AsyncSession, offer_id: str) -> Offer:
    result = await db.execute(select(Offer).where(Offer.id == offer_id))
    offer = result.scalar_one_or_none()
    if offer is None:
        raise NotFoundError("Offer not found")
    return offer


# --- Endpoints ---

@router.get("/")
async def list_offers(
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_only),
):
    """status: active | upcoming | expired | inactive"""
    today = date.today()
    query = select(Offer)
    if status == "active":
        query = query.where(Offer.is_active.is_(True), Offer.start_date <= today, Offer.end_date >= today)
    elif status == "upcoming":
        query = query.where(Offer.is_active.is_(True), Offer.start_date > today)
    elif status == "expired":
        query = query.where(Offer.end_date < today)
    elif status == "inactive":
        query = query.where(Offer.is_active.is_(False))

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    offset, limit = paginate(page, limit)
    result = await db.execute(query.order_by(Offer.created_at.desc()).offset(offset).limit(limit))
    return {
        "data": [_offer_to_dict(o) for o in result.scalars().all()],
        "pagination": page_meta(total, page, limit),
    }


@router.get("/active")
async def active_offer(
    on: Optional[date] = None,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(require_roles(Role.ADMIN, Role.RESELLER)),
):
    """The offer that would apply to an invoice issued on `on` (default today)"""
    offer = await find_active_offer(db, on or date.today())
    return {"offer": _offer_to_dict(offer) if offer else None}


@router.get("/{offer_id}")
async def get_offer(
    offer_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_only),
):
    return _offer_to_dict(await _get_offer(db, offer_id))


@router.post("/", status_code=201)
async def create_offer(
    data: OfferCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_only),
):
    if not data.name or not data.name.strip():
        raise BadRequestError("name is required")
    if data.commission_percentage is None:
        raise BadRequestError("commission_percentage is required")
    _check_percentage(data.commission_percentage)
    if not data.start_date or not data.end_date:
        raise BadRequestError("start_date and end_date are required")
    _check_window(data.start_date, data.end_date)

    offer = Offer(
        name=data.name.strip(),
        description=data.description,
        commission_percentage=data.commission_percentage,
        start_date=data.start_date,
        end_date=data.end_date,
        is_active=data.is_active,
        created_by=current_user.user_id,
    )
    db.add(offer)
    await db.commit()

    response = _offer_to_dict(offer)
    await log_activity(db, current_user, offer.id, "create", "offers", {
        "name": offer.name,
        "commission_percentage": response["commission_percentage"],
    }, request)
    return response


@router.put("/{offer_id}")
async def update_offer(
    offer_id: str,
    data: OfferUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_only),
):
    offer = await _get_offer(db, offer_id)
    updates = data.model_dump(exclude_none=True)

    if "name" in updates:
        if not updates["name"].strip():
            raise BadRequestError("name cannot be empty")
        updates["name"] = updates["name"].strip()
    if "commission_percentage" in updates:
        _check_percentage(updates["commission_percentage"])
    _check_window(updates.get("start_date", offer.start_date), updates.get("end_date", offer.end_date))

    for key, value in updates.items():
        setattr(offer, key, value)
    offer.updated_at = datetime.utcnow()
    await db.commit()

    response = _offer_to_dict(offer)
    await log_activity(db, current_user, offer_id, "update", "offers", {
        k: (v.isoformat() if isinstance(v, date) else v) for k, v in updates.items()
    }, request)
    return response


@router.delete("/{offer_id}")
async def delete_offer(
    offer_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_only),
):
    offer = await _get_offer(db, offer_id)
    name = offer.name
    await db.delete(offer)
    await db.commit()
    await log_activity(db, current_user, offer_id, "delete", "offers", {"name": name}, request)
    return {"message": "Offer deleted"}
