"""
User management API endpoints (admin)
"""
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
from backoffice.utils.helpers import display_name, generate_password

router = APIRouter()

admin_only = require_roles(Role.ADMIN)

ROLES = {r.value for r in Role}


# --- Pydantic Schemas ---

class UserCreate(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    full_name: Optional[str] = None
    role: str = Role.USER.value
    nickname: Optional[str] = None
    phone: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    referred_by: Optional[str] = None


class UserUpdate(BaseModel):
    full_name: Optional[str] = None
    nickname: Optional[str] = None
    phone: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    role: Optional[str] = None


class UserStatusUpdate(BaseModel):
    account_status: str


# --- Helpers ---

async def _get_user(db: AsyncSession, user_id: str) -> Profile:
    profile = await accounts.get_profile(db, user_id)
    if profile is None:
        raise NotFoundError("User not found")
    return profile


# --- Endpoints ---

@router.get("/")
async def list_users(
    role: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_only),
):
    key = cache_key("users", search, page, limit, role=role)
    return await cached(key, lambda: accounts.list_profiles(
        db, role=role, search=search, page=page, limit=limit,
    ))


@router.get("/{user_id}")
async def get_user(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_only),
):
    return accounts.profile_to_dict(await _get_user(db, user_id))


@router.post("/", status_code=201)
async def create_user(
    data: UserCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
    current_user: Profile = Depends(admin_only),
):
    """Create a user of any role; a password is generated when none is given"""
    if not data.email or "@" not in data.email:
        raise BadRequestError("A valid email is required")
    if data.role not in ROLES:
        raise BadRequestError(f"Invalid role. Must be one of: {', '.join(sorted(ROLES))}")

    password = data.password or generate_password()
    profile = await accounts.create_account(
        db,
        email=data.email,
        password=password,
        role=data.role,
        full_name=data.full_name,
        referred_by=data.referred_by,
        trial_expiry=accounts.default_trial_expiry() if data.role == Role.CONSUMER.value else None,
        nickname=data.nickname,
        phone=data.phone,
        country=data.country,
        city=data.city,
    )
    response = accounts.profile_to_dict(profile)

    notifications.dispatch(
        background_tasks, email_service.send_welcome_email,
        to_email=response["email"], full_name=response["full_name"] or "", password=password,
        role=data.role,
    )
    await invalidate("users", "consumers", "resellers")
    await log_activity(db, current_user, response["id"], "create", "profiles", {
        "role": data.role,
        "email": response["email"],
    }, request)
    return response


@router.put("/{user_id}")
async def update_user(
    user_id: str,
    data: UserUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_only),
):
    if data.role is not None and data.role not in ROLES:
        raise BadRequestError(f"Invalid role. Must be one of: {', '.join(sorted(ROLES))}")

    profile = await _get_user(db, user_id)
    updates = data.model_dump(exclude_none=True)
    for key, value in updates.items():
        setattr(profile, key, value)
    await db.commit()

    response = accounts.profile_to_dict(profile)
    await invalidate("users", "consumers", "resellers")
    await log_activity(db, current_user, user_id, "update", "profiles", updates, request)
    return response


@router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_only),
):
    if user_id == current_user.user_id:
        raise BadRequestError("You cannot delete your own account")
    profile = await _get_user(db, user_id)
    email = profile.email
    await accounts.delete_account(db, profile)
    await invalidate("users", "consumers", "resellers")
    await log_activity(db, current_user, user_id, "delete", "profiles", {"email": email}, request)
    return {"message": "User deleted"}


@router.patch("/{user_id}/account-status")
async def update_user_status(
    user_id: str,
    data: UserStatusUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_only),
):
    """Activate or deactivate an account. Also approves pending resellers."""
    allowed = {AccountStatus.ACTIVE.value, AccountStatus.DEACTIVE.value}
    if data.account_status not in allowed:
        raise BadRequestError("account_status must be 'active' or 'deactive'")

    profile = await _get_user(db, user_id)
    if profile.role == Role.ADMIN.value and data.account_status == AccountStatus.DEACTIVE.value:
        raise BadRequestError("Admin accounts cannot be deactivated")

    previous = profile.account_status
    profile.account_status = data.account_status
    await db.commit()

    response = accounts.profile_to_dict(profile)
    await invalidate("users", "consumers", "resellers")
    await log_activity(db, current_user, user_id, "update", "profiles", {
        "account_status": {"from": previous, "to": data.account_status},
    }, request)
    return response


@router.post("/{user_id}/reset-password")
async def reset_user_password(
    user_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
    current_user: Profile = Depends(admin_only),
):
    profile = await _get_user(db, user_id)
    if not profile.email:
        raise NotFoundError("User has no email on file")

    password = accounts.reset_password(profile)
    await db.commit()

    notifications.dispatch(
        background_tasks, email_service.send_password_reset_email,
        to_email=profile.email, full_name=display_name(profile.full_name, profile.email),
        new_password=password, role=profile.role,
    )
    await log_activity(db, current_user, user_id, "update", "auth.users", {"password": "reset"}, request)
    return {"message": "Password reset successfully. The new password has been emailed.", "email": profile.email}
