"""
Account lifecycle: creation, listing, status transitions and trial bookkeeping
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backoffice.api.auth import get_password_hash
from backoffice.config import get_settings
from backoffice.models.product import Product, UserProductAccess
from backoffice.models.user import AccountStatus, Profile, Role, User
from backoffice.services.errors import BadRequestError, ForbiddenError
from backoffice.utils.helpers import generate_password, page_meta, paginate
from backoffice.utils.validators import validate_account_status

logger = logging.getLogger(__name__)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@dataclass
class StatusChange:
    status: str
    trial_expiry: Optional[datetime]
    trial_changed: bool
    extended: bool = False  # trial_expiry was derived as now + extension


def apply_account_status(
    profile: Profile,
    status: str,
    trial_expiry: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> StatusChange:
    """
    Set profile.account_status and adjust profile.trial_expiry.

    expired_subscription stamps the trial as ending now. active honours a
    supplied date, capped at MAX_TRIAL_DAYS after account creation unless
    the account has lifetime access; without one a still-running trial is
    kept and anything else gets TRIAL_EXTENSION_DAYS from now. deactive
    leaves the trial alone.
    """
    settings = get_settings()
    status = validate_account_status(status)
    if trial_expiry is not None:
        trial_expiry = to_naive_utc(trial_expiry)
    now = now or datetime.utcnow()
    previous = profile.trial_expiry
    extended = False

    if status == AccountStatus.EXPIRED_SUBSCRIPTION.value:
        profile.trial_expiry = now
    elif status == AccountStatus.ACTIVE.value:
        if trial_expiry is not None:
            if not profile.lifetime_access:
                created = profile.created_at or now
                cap = created + timedelta(days=settings.MAX_TRIAL_DAYS)
                trial_expiry = min(trial_expiry, cap)
            profile.trial_expiry = trial_expiry
        elif previous is None or previous <= now:
            profile.trial_expiry = now + timedelta(days=settings.TRIAL_EXTENSION_DAYS)
            extended = True

    profile.account_status = status
    return StatusChange(
        status=status,
        trial_expiry=profile.trial_expiry,
        trial_changed=profile.trial_expiry != previous,
        extended=extended,
    )


def default_trial_expiry(now: Optional[datetime] = None) -> datetime:
    return (now or datetime.utcnow()) + timedelta(days=get_settings().DEFAULT_TRIAL_DAYS)


def profile_to_dict(profile: Profile) -> dict:
    return {
        "id": profile.user_id,
        "user_id": profile.user_id,
        "email": profile.email,
        "full_name": profile.full_name,
        "nickname": profile.nickname,
        "role": profile.role,
        "phone": profile.phone,
        "country": profile.country,
        "city": profile.city,
        "referred_by": profile.referred_by,
        "account_status": profile.account_status,
        "trial_expiry": profile.trial_expiry.isoformat() if profile.trial_expiry else None,
        "lifetime_access": bool(profile.lifetime_access),
        "commission_rate": float(profile.commission_rate) if profile.commission_rate is not None else None,
        "commission_updated_at": (
            profile.commission_updated_at.isoformat() if profile.commission_updated_at else None
        ),
        "created_at": profile.created_at.isoformat() if profile.created_at else None,
    }


async def get_profile(db: AsyncSession, user_id: str, role: Optional[str] = None) -> Optional[Profile]:
    query = select(Profile).options(selectinload(Profile.user)).where(Profile.user_id == user_id)
    if role:
        query = query.where(Profile.role == role)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def list_profiles(
    db: AsyncSession,
    role: Optional[str] = None,
    referred_by: Optional[str] = None,
    account_status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
) -> dict:
    """Filtered, paginated profile listing as plain dicts"""
    query = select(Profile).join(User).options(selectinload(Profile.user))
    if role:
        query = query.where(Profile.role == role)
    if referred_by:
        query = query.where(Profile.referred_by == referred_by)
    if account_status and account_status != "all":
        query = query.where(Profile.account_status == account_status)
    if search:
        term = f"%{search.strip()}%"
        query = query.where(or_(
            Profile.full_name.ilike(term),
            Profile.nickname.ilike(term),
            User.email.ilike(term),
        ))

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    offset, limit = paginate(page, limit)
    result = await db.execute(query.order_by(Profile.created_at.desc()).offset(offset).limit(limit))
    return {
        "data": [profile_to_dict(p) for p in result.scalars().all()],
        "pagination": page_meta(total, page, limit),
    }


async def count_referred(db: AsyncSession, referrer_id: str, role: str) -> int:
    result = await db.execute(
        select(func.count(Profile.user_id)).where(
            Profile.referred_by == referrer_id,
            Profile.role == role,
        )
    )
    return result.scalar() or 0


async def create_account(
    db: AsyncSession,
    email: Optional[str],
    password: str,
    role: str,
    full_name: Optional[str] = None,
    referred_by: Optional[str] = None,
    account_status: str = AccountStatus.ACTIVE.value,
    trial_expiry: Optional[datetime] = None,
    **fields,
) -> Profile:
    """Create identity + profile and commit. Rejects duplicate emails."""
    email = email.strip().lower() if email else None
    if email:
        existing = await db.execute(select(User.id).where(User.email == email))
        if existing.scalar_one_or_none():
            raise BadRequestError("A user with this email already exists")

    user = User(email=email, hashed_password=get_password_hash(password))
    db.add(user)
    await db.flush()

    profile = Profile(
        user_id=user.id,
        full_name=full_name,
        role=role,
        referred_by=referred_by,
        account_status=account_status,
        trial_expiry=to_naive_utc(trial_expiry) if trial_expiry else None,
        **{k: v for k, v in fields.items() if hasattr(Profile, k) and v is not None},
    )
    profile.user = user
    db.add(profile)
    await db.commit()
    logger.info(f"Created {role} account {user.id}")
    return profile


async def grant_products(db: AsyncSession, user_id: str, product_ids) -> int:
    """Best-effort product access grants; returns how many were written"""
    if not product_ids:
        return 0
    try:
        result = await db.execute(select(Product.id).where(Product.id.in_(list(product_ids))))
        known = set(result.scalars().all())
        existing = await db.execute(
            select(UserProductAccess.product_id).where(UserProductAccess.user_id == user_id)
        )
        granted = set(existing.scalars().all())
        new_ids = [pid for pid in dict.fromkeys(product_ids) if pid in known and pid not in granted]
        db.add_all([UserProductAccess(user_id=user_id, product_id=pid) for pid in new_ids])
        await db.commit()
        return len(new_ids)
    except SQLAlchemyError:
        logger.exception(f"Failed to grant product access to {user_id}")
        await db.rollback()
        return 0


async def delete_account(db: AsyncSession, profile: Profile) -> None:
    """Remove profile, product access and identity"""
    user_id = profile.user_id
    await db.execute(delete(UserProductAccess).where(UserProductAccess.user_id == user_id))
    await db.execute(
        update(Profile).where(Profile.referred_by == user_id).values(referred_by=None)
    )
    await db.execute(delete(Profile).where(Profile.user_id == user_id))
    await db.execute(delete(User).where(User.id == user_id))
    await db.commit()
    logger.info(f"Deleted account {user_id}")


def reset_password(profile: Profile) -> str:
    """Set a freshly generated password on the identity and return it"""
    password = generate_password()
    profile.user.hashed_password = get_password_hash(password)
    return password


async def check_consumer_limit(db: AsyncSession, max_consumers: Optional[int], reseller_id: str) -> None:
    """ForbiddenError once the reseller holds max_consumers consumers"""
    if not max_consumers or max_consumers <= 0:
        return
    current = await count_referred(db, reseller_id, Role.CONSUMER.value)
    if current >= max_consumers:
        raise ForbiddenError(
            f"Maximum consumers limit reached. A reseller can only have {max_consumers} consumer(s)."
        )
