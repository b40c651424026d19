"""
Commission resolution for new invoices.

One ordered chain for both actor roles:
active offer -> reseller's own rate -> system default -> 10.00.
An admin-issued invoice uses the consumer's referring reseller; with no
referrer the commission stays unset. Lookups that fail drop to the next
step and never abort invoice creation.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.models.offer import Offer
from backoffice.models.user import Profile, Role
from backoffice.services.settings_provider import SettingsProvider

logger = logging.getLogger(__name__)

HARDCODED_DEFAULT_COMMISSION = Decimal("10.00")


@dataclass
class CommissionResult:
    percentage: Optional[Decimal] = None
    offer_id: Optional[str] = None
    calculated_at: Optional[datetime] = None


def _rate_chain(rate: Optional[Decimal], default_rate: Optional[Decimal]) -> Decimal:
    if rate is not None:
        return Decimal(rate)
    if default_rate is not None:
        return Decimal(default_rate)
    return HARDCODED_DEFAULT_COMMISSION


def choose_commission(
    offer: Optional[Offer],
    actor_role: str,
    actor_rate: Optional[Decimal],
    referrer_rate: Optional[Decimal],
    has_referrer: bool,
    default_rate: Optional[Decimal],
) -> CommissionResult:
    """Pick the commission from already-fetched inputs. No I/O."""
    if offer is not None:
        return CommissionResult(Decimal(offer.commission_percentage), offer.id)

    if actor_role == Role.RESELLER.value:
        return CommissionResult(_rate_chain(actor_rate, default_rate))

    if actor_role == Role.ADMIN.value and has_referrer:
        return CommissionResult(_rate_chain(referrer_rate, default_rate))

    return CommissionResult()


async def find_active_offer(db: AsyncSession, on_date: date) -> Optional[Offer]:
    """Newest active offer whose inclusive window covers on_date"""
    result = await db.execute(
        select(Offer)
        .where(
            Offer.is_active.is_(True),
            Offer.start_date <= on_date,
            Offer.end_date >= on_date,
        )
        .order_by(Offer.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _referrer(db: AsyncSession, referrer_id: str):
    """(role, commission_rate) of the referring account, or None"""
    result = await db.execute(
        select(Profile.role, Profile.commission_rate).where(Profile.user_id == referrer_id)
    )
    return result.first()


async def resolve_commission(
    db: AsyncSession,
    settings: SettingsProvider,
    actor: Profile,
    consumer: Profile,
    invoice_date: date,
) -> CommissionResult:
    offer = None
    try:
        offer = await find_active_offer(db, invoice_date)
    except SQLAlchemyError:
        logger.exception("Offer lookup failed, falling back to reseller commission")

    # Only a reseller referrer earns commission on admin invoices
    referrer_id = consumer.referred_by
    referrer_rate = None
    has_referrer = False
    if offer is None and actor.role == Role.ADMIN.value and referrer_id:
        try:
            referrer = await _referrer(db, referrer_id)
        except SQLAlchemyError:
            logger.exception(f"Referrer commission lookup failed for {referrer_id}")
            has_referrer = True
        else:
            if referrer is not None and referrer.role == Role.RESELLER.value:
                has_referrer = True
                referrer_rate = referrer.commission_rate

    default_rate = None
    if offer is None:
        try:
            default_rate = await settings.get_default_commission()
        except SQLAlchemyError:
            logger.exception("Default commission lookup failed")

    try:
        result = choose_commission(
            offer=offer,
            actor_role=actor.role,
            actor_rate=actor.commission_rate,
            referrer_rate=referrer_rate,
            has_referrer=has_referrer,
            default_rate=default_rate,
        )
    except (ArithmeticError, TypeError, ValueError):
        logger.exception("Commission calculation failed, leaving it unset")
        return CommissionResult()

    if result.percentage is not None:
        result.calculated_at = datetime.utcnow()
    return result
