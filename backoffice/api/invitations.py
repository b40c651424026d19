"""
Invitation API endpoints - admin and reseller invites, public token validation and signup
"""
import logging
import secrets
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.config import get_settings
from backoffice.database import get_db
from backoffice.models.invitation import Invitation
from backoffice.models.user import AccountStatus, Profile, Role, User
from backoffice.api.auth import require_roles
from backoffice.services import accounts, notifications
from backoffice.services.activity_logger import log_activity
from backoffice.services.cache_service import invalidate
from backoffice.services.email_service import EmailService, get_email_service
from backoffice.services.errors import BadRequestError, ForbiddenError
from backoffice.services.settings_provider import SettingsProvider
from backoffice.utils.validators import INVITABLE_ROLES

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter()


# --- Pydantic Schemas ---

class InviteCreate(BaseModel):
    email: Optional[str] = None
    role: Optional[str] = None
    trial_expiry_date: Optional[datetime] = None
    subscribed_products: List[str] = []


class ResellerInviteCreate(BaseModel):
    email: Optional[str] = None


class SignupRequest(BaseModel):
    token: Optional[str] = None
    password: Optional[str] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None


# --- Helpers ---

async def _usable_invitation(db: AsyncSession, token: Optional[str]) -> Invitation:
    if not token:
        raise BadRequestError("Invitation token is required")
    result = await db.execute(select(Invitation).where(Invitation.token == token))
    invitation = result.scalar_one_or_none()
    if invitation is None:
        raise BadRequestError("Invalid invitation token")
    if invitation.used_at is not None:
        raise BadRequestError("This invitation has already been used")
    if invitation.expires_at <= datetime.utcnow():
        raise BadRequestError("This invitation has expired")
    return invitation


async def _create_invitation(
    db: AsyncSession,
    request: Request,
    background_tasks: BackgroundTasks,
    email_service: EmailService,
    inviter: Profile,
    email: str,
    role: str,
    referred_by: Optional[str],
    trial_expiry_date: Optional[datetime] = None,
    subscribed_products: Optional[List[str]] = None,
) -> dict:
    email = email.strip().lower()
    existing = await db.execute(select(User.id).where(User.email == email))
    if existing.scalar_one_or_none():
        raise BadRequestError("User with this email already exists")

    now = datetime.utcnow()
    pending = await db.execute(
        select(Invitation.id).where(
            Invitation.email == email,
            Invitation.used_at.is_(None),
            Invitation.expires_at > now,
        )
    )
    if pending.first():
        raise BadRequestError("An active invitation already exists for this email")

    invitation = Invitation(
        email=email,
        token=secrets.token_hex(32),
        role=role,
        invited_by=inviter.user_id,
        referred_by=referred_by,
        expires_at=now + timedelta(days=settings.INVITE_EXPIRE_DAYS),
        trial_expiry_date=accounts.to_naive_utc(trial_expiry_date) if trial_expiry_date else None,
        subscribed_products=subscribed_products or None,
    )
    db.add(invitation)
    await db.commit()

    notifications.dispatch(
        background_tasks, email_service.send_invite_email,
        to_email=email, role=role, token=invitation.token,
        expire_days=settings.INVITE_EXPIRE_DAYS,
    )
    await log_activity(db, inviter, invitation.id, "create", "invitations", {
        "email": email,
        "role": role,
        "referred_by": referred_by,
    }, request)
    return {
        "message": "Invitation sent successfully",
        "id": invitation.id,
        "email": email,
        "role": role,
        "expires_at": invitation.expires_at.isoformat(),
    }


# --- Endpoints ---

@router.post("/invite", status_code=201)
async def invite_user(
    data: InviteCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
    current_user: Profile = Depends(require_roles(Role.ADMIN)),
):
    if not data.email or not data.role:
        raise BadRequestError("Email and role are required")
    if data.role not in INVITABLE_ROLES:
        raise BadRequestError("Role must be user, reseller, or consumer")

    # Admin-invited resellers are referred by the admin; other roles have no referrer
    referred_by = current_user.user_id if data.role == Role.RESELLER.value else None
    return await _create_invitation(
        db, request, background_tasks, email_service, current_user,
        email=data.email,
        role=data.role,
        referred_by=referred_by,
        trial_expiry_date=data.trial_expiry_date,
        subscribed_products=data.subscribed_products,
    )


@router.post("/invite-reseller", status_code=201)
async def invite_reseller(
    data: ResellerInviteCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
    current_user: Profile = Depends(require_roles(Role.ADMIN, Role.RESELLER)),
):
    """A reseller invites another reseller, who signs up referred by them."""
    if not data.email:
        raise BadRequestError("Email is required")
    if current_user.role != Role.RESELLER.value:
        raise ForbiddenError("Only resellers can invite other resellers")
    return await _create_invitation(
        db, request, background_tasks, email_service, current_user,
        email=data.email,
        role=Role.RESELLER.value,
        referred_by=current_user.user_id,
    )


@router.get("/validate/{token}")
async def validate_invitation(token: str, db: AsyncSession = Depends(get_db)):
    invitation = await _usable_invitation(db, token)
    return {
        "valid": True,
        "email": invitation.email,
        "role": invitation.role,
        "expires_at": invitation.expires_at.isoformat(),
    }


@router.post("/signup", status_code=201)
async def signup_with_invitation(
    data: SignupRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Create the invited account. Resellers may start pending approval."""
    invitation = await _usable_invitation(db, data.token)
    if not data.password or len(data.password) < 6:
        raise BadRequestError("Password must be at least 6 characters")
    if not data.full_name or not data.full_name.strip():
        raise BadRequestError("Full name is required")

    status = AccountStatus.ACTIVE.value
    if invitation.role == Role.RESELLER.value:
        reseller_settings = await SettingsProvider(db).get_reseller_settings()
        if reseller_settings.require_reseller_approval:
            status = AccountStatus.PENDING.value

    trial_expiry = None
    if invitation.role == Role.CONSUMER.value:
        trial_expiry = invitation.trial_expiry_date or accounts.default_trial_expiry()

    invitation_id = invitation.id
    role = invitation.role
    products = list(invitation.subscribed_products or [])
    profile = await accounts.create_account(
        db,
        email=invitation.email,
        password=data.password,
        role=invitation.role,
        full_name=data.full_name.strip(),
        referred_by=invitation.referred_by,
        account_status=status,
        trial_expiry=trial_expiry,
        phone=data.phone,
        country=data.country,
        city=data.city,
    )
    invitation.used_at = datetime.utcnow()
    await db.commit()

    response = accounts.profile_to_dict(profile)
    await invalidate("users", "consumers", "resellers")
    await log_activity(db, profile, invitation_id, "update", "invitations", {
        "used_by": response["id"],
    }, request)
    logger.info(f"Invitation {invitation_id} used to create {role} account {response['id']}")

    response["products_granted"] = await accounts.grant_products(db, response["id"], products)
    return {"message": "Account created successfully", "user": response}
