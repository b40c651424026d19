"""
Reseller API endpoints (admin)
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.database import get_db
from backoffice.models.user import AccountStatus, Profile, Role
from backoffice.api.auth import require_roles
from backoffice.services import accounts, notifications
from backoffice.services.activity_logger import log_activity
from backoffice.services.cache_service import cache_key, cached, invalidate
from backoffice.services.email_service import EmailService, get_email_service
from backoffice.services.errors import BadRequestError, NotFoundError
from backoffice.services.settings_provider import SettingsProvider
from backoffice.utils.helpers import generate_password
from backoffice.utils.validators import validate_percentage

router = APIRouter()

admin_only = require_roles(Role.ADMIN)


# --- Pydantic Schemas ---

class ResellerCreate(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    full_name: Optional[str] = None
    nickname: Optional[str] = None
    phone: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    commission_rate: Optional[float] = None


class ResellerUpdate(BaseModel):
    full_name: Optional[str] = None
    nickname: Optional[str] = None
    phone: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None


class CommissionUpdate(BaseModel):
    # null clears the custom rate so the default applies
    commission_rate: Optional[float] = None


# --- Helpers ---

async def _get_reseller(db: AsyncSession, reseller_id: str) -> Profile:
    reseller = await accounts.get_profile(db, reseller_id, role=Role.RESELLER.value)
    if reseller is None:
        raise NotFoundError("Reseller not found")
    return reseller


def _rate(value) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(validate_percentage(value, "commission_rate"))
    except ValueError as e:
        raise BadRequestError(str(e))


# --- Endpoints ---

@router.get("/")
async def list_resellers(
    account_status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_only),
):
    key = cache_key("resellers", search, page, limit, status=account_status)
    return await cached(key, lambda: accounts.list_profiles(
        db,
        role=Role.RESELLER.value,
        account_status=account_status,
        search=search,
        page=page,
        limit=limit,
    ))


@router.get("/{reseller_id}")
async def get_reseller(
    reseller_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_only),
):
    reseller = await _get_reseller(db, reseller_id)
    response = accounts.profile_to_dict(reseller)
    response["consumer_count"] = await accounts.count_referred(db, reseller_id, Role.CONSUMER.value)
    return response


@router.post("/", status_code=201)
async def create_reseller(
    data: ResellerCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
    current_user: Profile = Depends(admin_only),
):
    """New resellers start pending when reseller approval is required"""
    if not data.email or "@" not in data.email:
        raise BadRequestError("A valid email is required")
    rate = _rate(data.commission_rate)

    reseller_settings = await SettingsProvider(db).get_reseller_settings()
    status = (
        AccountStatus.PENDING.value
        if reseller_settings.require_reseller_approval
        else AccountStatus.ACTIVE.value
    )

    password = data.password or generate_password()
    reseller = await accounts.create_account(
        db,
        email=data.email,
        password=password,
        role=Role.RESELLER.value,
        full_name=data.full_name,
        referred_by=current_user.user_id,
        account_status=status,
        nickname=data.nickname,
        phone=data.phone,
        country=data.country,
        city=data.city,
        commission_rate=rate,
        commission_updated_at=datetime.utcnow() if rate is not None else None,
    )
    response = accounts.profile_to_dict(reseller)

    notifications.dispatch(
        background_tasks, email_service.send_welcome_email,
        to_email=response["email"], full_name=response["full_name"] or "", password=password,
        role=Role.RESELLER.value,
    )
    await invalidate("resellers", "users")
    await log_activity(db, current_user, response["id"], "create", "profiles", {
        "role": Role.RESELLER.value,
        "email": response["email"],
        "account_status": status,
    }, request)
    return response


@router.put("/{reseller_id}")
async def update_reseller(
    reseller_id: str,
    data: ResellerUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_only),
):
    reseller = await _get_reseller(db, reseller_id)
    updates = data.model_dump(exclude_none=True)
    for key, value in updates.items():
        setattr(reseller, key, value)
    await db.commit()

    response = accounts.profile_to_dict(reseller)
    await invalidate("resellers", "users")
    await log_activity(db, current_user, reseller_id, "update", "profiles", updates, request)
    return response


@router.delete("/{reseller_id}")
async def delete_reseller(
    reseller_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_only),
):
    reseller = await _get_reseller(db, reseller_id)
    email = reseller.email
    await accounts.delete_account(db, reseller)
    await invalidate("resellers", "consumers", "users")
    await log_activity(db, current_user, reseller_id, "delete", "profiles", {"email": email}, request)
    return {"message": "Reseller deleted"}


@router.put("/{reseller_id}/commission")
async def update_reseller_commission(
    reseller_id: str,
    data: CommissionUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_only),
):
    """Set or clear a reseller's custom commission rate"""
    rate = _rate(data.commission_rate)
    reseller = await _get_reseller(db, reseller_id)
    previous = float(reseller.commission_rate) if reseller.commission_rate is not None else None

    reseller.commission_rate = rate
    reseller.commission_updated_at = datetime.utcnow()
    await db.commit()

    response = accounts.profile_to_dict(reseller)
    await invalidate("resellers")
    await log_activity(db, current_user, reseller_id, "update", "profiles", {
        "commission_rate": {"from": previous, "to": rate},
    }, request)
    return response


@router.get("/{reseller_id}/consumers")
async def reseller_consumers(
    reseller_id: str,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_only),
):
    await _get_reseller(db, reseller_id)
    return await accounts.list_profiles(
        db,
        role=Role.CONSUMER.value,
        referred_by=reseller_id,
        search=search,
        page=page,
        limit=limit,
    )
