"""
Consumer API endpoints - admins see every consumer, resellers only their own
"""
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.config import get_settings
from backoffice.database import get_db
from backoffice.models.user import Profile, Role
from backoffice.api.auth import require_roles
from backoffice.services import accounts, notifications
from backoffice.services.activity_logger import log_activity
from backoffice.services.cache_service import cache_key, cached, invalidate
from backoffice.services.email_service import EmailService, get_email_service
from backoffice.services.errors import BadRequestError, ForbiddenError, NotFoundError
from backoffice.services.settings_provider import SettingsProvider
from backoffice.utils.helpers import display_name, generate_password

logger = logging.getLogger(__name__)
router = APIRouter()

admin_or_reseller = require_roles(Role.ADMIN, Role.RESELLER)


# --- Pydantic Schemas ---

class ConsumerCreate(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    full_name: Optional[str] = None
    nickname: Optional[str] = None
    phone: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    referred_by: Optional[str] = None  # admin only
    trial_expiry_date: Optional[datetime] = None
    lifetime_access: bool = False
    subscribed_products: List[str] = []


class ConsumerUpdate(BaseModel):
    full_name: Optional[str] = None
    nickname: Optional[str] = None
    phone: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    trial_expiry_date: Optional[datetime] = None
    lifetime_access: Optional[bool] = None
    subscribed_products: Optional[List[str]] = None


class AccountStatusUpdate(BaseModel):
    account_status: Optional[str] = None
    trial_expiry_date: Optional[datetime] = None


# --- Helpers ---

async def _get_consumer(db: AsyncSession, consumer_id: str, actor: Profile) -> Profile:
    consumer = await accounts.get_profile(db, consumer_id, role=Role.CONSUMER.value)
    if consumer is None:
        raise NotFoundError("Consumer not found")
    if actor.role == Role.RESELLER.value and consumer.referred_by != actor.user_id:
        raise ForbiddenError("You can only manage your own consumers")
    return consumer


def queue_trial_email(background_tasks, email_service: EmailService, profile: Profile, change) -> None:
    if not change.trial_changed or not profile.email or change.trial_expiry is None:
        return
    name = display_name(profile.full_name, profile.email)
    expiry = change.trial_expiry.date().isoformat()
    if change.extended:
        notifications.dispatch(
            background_tasks, email_service.send_trial_extension_email,
            to_email=profile.email, full_name=name, trial_expiry=expiry,
            extension_days=get_settings().TRIAL_EXTENSION_DAYS,
        )
    else:
        notifications.dispatch(
            background_tasks, email_service.send_trial_change_email,
            to_email=profile.email, full_name=name, trial_expiry=expiry, status=change.status,
        )


# --- Endpoints ---

@router.get("/")
async def list_consumers(
    account_status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_or_reseller),
):
    referrer = current_user.user_id if current_user.role == Role.RESELLER.value else None
    key = cache_key("consumers", search, page, limit, referrer=referrer, status=account_status)
    return await cached(key, lambda: accounts.list_profiles(
        db,
        role=Role.CONSUMER.value,
        referred_by=referrer,
        account_status=account_status,
        search=search,
        page=page,
        limit=limit,
    ))


@router.get("/{consumer_id}")
async def get_consumer(
    consumer_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_or_reseller),
):
    return accounts.profile_to_dict(await _get_consumer(db, consumer_id, current_user))


@router.post("/", status_code=201)
async def create_consumer(
    data: ConsumerCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
    current_user: Profile = Depends(admin_or_reseller),
):
    if not data.email or "@" not in data.email:
        raise BadRequestError("A valid email is required")

    if current_user.role == Role.RESELLER.value:
        referred_by = current_user.user_id
    else:
        referred_by = data.referred_by
        if referred_by:
            referrer = await accounts.get_profile(db, referred_by, role=Role.RESELLER.value)
            if referrer is None:
                raise BadRequestError("referred_by must be an existing reseller")

    if referred_by:
        reseller_settings = await SettingsProvider(db).get_reseller_settings()
        await accounts.check_consumer_limit(db, reseller_settings.max_consumers_per_reseller, referred_by)

    password = data.password or generate_password()
    consumer = await accounts.create_account(
        db,
        email=data.email,
        password=password,
        role=Role.CONSUMER.value,
        full_name=data.full_name,
        referred_by=referred_by,
        trial_expiry=data.trial_expiry_date or accounts.default_trial_expiry(),
        nickname=data.nickname,
        phone=data.phone,
        country=data.country,
        city=data.city,
        lifetime_access=data.lifetime_access,
    )
    response = accounts.profile_to_dict(consumer)

    notifications.dispatch(
        background_tasks, email_service.send_welcome_email,
        to_email=response["email"], full_name=response["full_name"] or "", password=password,
        role=Role.CONSUMER.value,
    )
    await invalidate("consumers", "users")
    await log_activity(db, current_user, response["id"], "create", "profiles", {
        "role": Role.CONSUMER.value,
        "email": response["email"],
        "referred_by": referred_by,
    }, request)
    # Last: a failed grant rolls the session back
    response["products_granted"] = await accounts.grant_products(db, response["id"], data.subscribed_products)
    return response


@router.put("/{consumer_id}")
async def update_consumer(
    consumer_id: str,
    data: ConsumerUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_or_reseller),
):
    consumer = await _get_consumer(db, consumer_id, current_user)
    updates = data.model_dump(exclude_unset=True)
    products = updates.pop("subscribed_products", None)

    if updates.get("lifetime_access") is not None and current_user.role != Role.ADMIN.value:
        raise ForbiddenError("Only admins can grant lifetime access")
    if "trial_expiry_date" in updates:
        value = updates.pop("trial_expiry_date")
        consumer.trial_expiry = accounts.to_naive_utc(value) if value else None

    for key, value in updates.items():
        if value is not None:
            setattr(consumer, key, value)
    await db.commit()

    response = accounts.profile_to_dict(consumer)
    await invalidate("consumers", "users")
    await log_activity(db, current_user, consumer_id, "update", "profiles", data.model_dump(
        exclude_unset=True, mode="json",
    ), request)
    if products:
        response["products_granted"] = await accounts.grant_products(db, consumer_id, products)
    return response


@router.delete("/{consumer_id}")
async def delete_consumer(
    consumer_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_or_reseller),
):
    consumer = await _get_consumer(db, consumer_id, current_user)
    email = consumer.email
    await accounts.delete_account(db, consumer)
    await invalidate("consumers", "users")
    await log_activity(db, current_user, consumer_id, "delete", "profiles", {"email": email}, request)
    return {"message": "Consumer deleted"}


@router.patch("/{consumer_id}/account-status")
async def update_account_status(
    consumer_id: str,
    data: AccountStatusUpdate,
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
    current_user: Profile = Depends(admin_or_reseller),
):
    """active | deactive | expired_subscription, with trial-expiry bookkeeping"""
    if not data.account_status:
        raise BadRequestError("account_status is required")
    if data.account_status == "pending":
        raise BadRequestError("Consumers cannot be set to pending")

    consumer = await _get_consumer(db, consumer_id, current_user)
    try:
        change = accounts.apply_account_status(consumer, data.account_status, data.trial_expiry_date)
    except ValueError as e:
        raise BadRequestError(str(e))
    await db.commit()

    response = accounts.profile_to_dict(consumer)
    queue_trial_email(background_tasks, email_service, consumer, change)
    await invalidate("consumers", "users")
    await log_activity(db, current_user, consumer_id, "update", "profiles", {
        "account_status": change.status,
        "trial_expiry": response["trial_expiry"],
    }, request)
    return {"message": f"Consumer account status updated to {change.status}", "data": response}


@router.post("/{consumer_id}/reset-password")
async def reset_consumer_password(
    consumer_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
    current_user: Profile = Depends(admin_or_reseller),
):
    consumer = await _get_consumer(db, consumer_id, current_user)
    if not consumer.email:
        raise NotFoundError("Consumer has no email on file")

    password = accounts.reset_password(consumer)
    await db.commit()

    notifications.dispatch(
        background_tasks, email_service.send_password_reset_email,
        to_email=consumer.email, full_name=display_name(consumer.full_name, consumer.email),
        new_password=password, role=Role.CONSUMER.value,
    )
    await log_activity(db, current_user, consumer_id, "update", "auth.users", {"password": "reset"}, request)
    return {"message": "Password reset successfully. The new password has been emailed.", "email": consumer.email}
