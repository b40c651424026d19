"""
Application settings API endpoints - default commission and reseller policy
"""
from typing import Optional, Union

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.database import get_db
from backoffice.models.user import Profile, Role
from backoffice.api.auth import require_roles
from backoffice.services.activity_logger import log_activity
from backoffice.services.commission import HARDCODED_DEFAULT_COMMISSION
from backoffice.services.errors import BadRequestError
from backoffice.services.settings_provider import (
    ALLOW_PRICE_OVERRIDE_KEY,
    MAX_CONSUMERS_KEY,
    MIN_INVOICE_AMOUNT_KEY,
    REQUIRE_APPROVAL_KEY,
    SettingsProvider,
)
from backoffice.utils.validators import validate_non_negative, validate_percentage

router = APIRouter()

admin_only = require_roles(Role.ADMIN)


class DefaultCommissionUpdate(BaseModel):
    commission_rate: Optional[float] = None


class ResellerSettingsUpdate(BaseModel):
    max_consumers_per_reseller: Optional[Union[int, str]] = None
    min_invoice_amount: Optional[Union[float, str]] = None
    require_reseller_approval: Optional[bool] = None
    allow_reseller_price_override: Optional[bool] = None


@router.get("/default-commission")
async def get_default_commission(
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_only),
):
    rate = await SettingsProvider(db).get_default_commission()
    return {"commission_rate": float(rate) if rate is not None else None}


@router.put("/default-commission")
async def update_default_commission(
    data: DefaultCommissionUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_only),
):
    if data.commission_rate is None:
        raise BadRequestError("commission_rate is required")
    try:
        rate = validate_percentage(data.commission_rate, "commission_rate")
    except ValueError as e:
        raise BadRequestError(str(e))

    await SettingsProvider(db).set_default_commission(rate)
    await db.commit()
    await log_activity(db, current_user, None, "update", "app_settings", {
        "default_reseller_commission": float(rate),
    }, request)
    return {"commission_rate": float(rate)}


@router.get("/reseller")
async def get_reseller_settings(
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_only),
):
    settings = await SettingsProvider(db).get_reseller_settings()
    return settings.to_dict()


@router.put("/reseller")
async def update_reseller_settings(
    data: ResellerSettingsUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_only),
):
    fields = data.model_fields_set
    updates = {}
    try:
        if "max_consumers_per_reseller" in fields:
            value = validate_non_negative(data.max_consumers_per_reseller, "max_consumers_per_reseller")
            if value is not None and value != value.to_integral_value():
                raise ValueError("max_consumers_per_reseller must be a whole number")
            updates[MAX_CONSUMERS_KEY] = int(value) if value is not None else None
        if "min_invoice_amount" in fields:
            updates[MIN_INVOICE_AMOUNT_KEY] = validate_non_negative(
                data.min_invoice_amount, "min_invoice_amount"
            )
    except ValueError as e:
        raise BadRequestError(str(e))
    if data.require_reseller_approval is not None:
        updates[REQUIRE_APPROVAL_KEY] = data.require_reseller_approval
    if data.allow_reseller_price_override is not None:
        updates[ALLOW_PRICE_OVERRIDE_KEY] = data.allow_reseller_price_override

    settings = await SettingsProvider(db).update_reseller_settings(**updates)
    await db.commit()

    response = settings.to_dict()
    await log_activity(db, current_user, None, "update", "app_settings", response, request)
    return response


@router.get("/my-commission")
async def my_commission(
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(require_roles(Role.RESELLER)),
):
    """Effective commission for the calling reseller, ignoring offers"""
    if current_user.commission_rate is not None:
        return {"commission_rate": float(current_user.commission_rate), "commission_type": "custom"}

    default = await SettingsProvider(db).get_default_commission()
    if default is not None:
        return {"commission_rate": float(default), "commission_type": "default"}
    return {"commission_rate": float(HARDCODED_DEFAULT_COMMISSION), "commission_type": "default"}
