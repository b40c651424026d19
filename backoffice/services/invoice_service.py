"""
Invoice creation, formatting and notification payloads.

create_invoice validates in a fixed order (required fields, receiver,
ownership, items, products), applies the reseller price policy, stages
totals, enforces the minimum invoice amount, snapshots commission and
writes the invoice with its items in one transaction.
"""
import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backoffice.models.invoice import Invoice, InvoiceItem, InvoiceStatus
from backoffice.models.product import Product
from backoffice.models.user import Profile, Role, new_id
from backoffice.services.commission import resolve_commission
from backoffice.services.errors import (
    BadRequestError,
    ForbiddenError,
    InternalError,
    NotFoundError,
)
from backoffice.services.pricing import MAX_AMOUNT, StagedInvoice, resolve_unit_price, stage_items
from backoffice.services.settings_provider import SettingsProvider
from backoffice.utils.helpers import display_name

logger = logging.getLogger(__name__)

# invoice_items.quantity is a 32-bit integer column
MAX_QUANTITY = 2_147_483_647


def invoice_number(invoice: Invoice) -> str:
    created = invoice.created_at or datetime.utcnow()
    return f"INV-{created.strftime('%Y%m%d')}-{str(invoice.id)[:8].upper()}"


def _as_decimal(value) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return number if number.is_finite() else None


def _valid_quantity(value) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return isinstance(value, int) and 0 < value <= MAX_QUANTITY


def _valid_tax_rate(value) -> bool:
    rate = _as_decimal(value)
    return rate is not None and 0 <= rate <= 100


def _invoice_query():
    return select(Invoice).options(
        selectinload(Invoice.items).selectinload(InvoiceItem.product),
        selectinload(Invoice.receiver).selectinload(Profile.user),
        selectinload(Invoice.sender).selectinload(Profile.user),
    )


async def get_invoice(db: AsyncSession, invoice_id: str) -> Optional[Invoice]:
    result = await db.execute(
        _invoice_query()
        .where(Invoice.id == invoice_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_invoices(
    db: AsyncSession,
    sender_id: Optional[str] = None,
    receiver_id: Optional[str] = None,
    status: Optional[str] = None,
) -> List[Invoice]:
    query = _invoice_query().order_by(Invoice.created_at.desc())
    if sender_id:
        query = query.where(Invoice.sender_id == sender_id)
    if receiver_id:
        query = query.where(Invoice.receiver_id == receiver_id)
    if status and status != "all":
        query = query.where(Invoice.status == status)
    result = await db.execute(query)
    return list(result.scalars().all())


def can_view(invoice: Invoice, actor: Profile) -> bool:
    if actor.role == Role.ADMIN.value:
        return True
    if invoice.sender_id == actor.user_id:
        return True
    return bool(invoice.receiver and invoice.receiver.referred_by == actor.user_id)


def _money(value) -> float:
    return float(value) if value is not None else 0.0


def format_invoice(invoice: Invoice) -> dict:
    """Flat representation used by every invoice endpoint"""
    receiver = invoice.receiver
    sender = invoice.sender
    total = Decimal(invoice.total_amount or 0)
    tax = Decimal(invoice.tax_total or 0)
    items = [
        {
            "id": item.id,
            "product_id": item.product_id,
            "product_name": item.product.name if item.product else None,
            "quantity": item.quantity,
            "unit_price": _money(item.unit_price),
            "tax_rate": _money(item.tax_rate),
            "total_price": _money(item.total_price),
        }
        for item in invoice.items
    ]
    return {
        "id": invoice.id,
        "invoice_number": invoice_number(invoice),
        "receiver_id": invoice.receiver_id,
        "consumer_name": receiver.full_name if receiver else None,
        "consumer_email": receiver.email if receiver else None,
        "referred_by": receiver.referred_by if receiver else None,
        "sender_id": invoice.sender_id,
        "reseller_name": sender.full_name if sender else None,
        "sender_role": sender.role if sender else None,
        "invoice_date": invoice.issue_date.isoformat(),
        "issue_date": invoice.issue_date.isoformat(),
        "due_date": invoice.due_date.isoformat(),
        "amount": float(total - tax),
        "tax": float(tax),
        "tax_total": float(tax),
        "total": float(total),
        "total_amount": float(total),
        "status": invoice.status,
        "payment_date": (
            invoice.updated_at.isoformat()
            if invoice.status == InvoiceStatus.PAID.value and invoice.updated_at
            else None
        ),
        "products": [i["product_name"] for i in items],
        "items": items,
        "reseller_commission_percentage": (
            float(invoice.reseller_commission_percentage)
            if invoice.reseller_commission_percentage is not None else None
        ),
        "applied_offer_id": invoice.applied_offer_id,
        "commission_calculated_at": (
            invoice.commission_calculated_at.isoformat()
            if invoice.commission_calculated_at else None
        ),
        "notes": invoice.notes,
        "created_at": invoice.created_at.isoformat() if invoice.created_at else None,
    }


def matches_search(row: dict, search: Optional[str]) -> bool:
    if not search:
        return True
    term = search.strip().lower()
    fields = (row["invoice_number"], row["consumer_name"], row["consumer_email"], row["reseller_name"])
    return any(term in (f or "").lower() for f in fields)


def notification_params(invoice: Invoice, actor: Profile) -> dict:
    """Keyword arguments for EmailService.send_invoice_created_email"""
    tax = Decimal(invoice.tax_total or 0)
    total = Decimal(invoice.total_amount or 0)
    receiver = invoice.receiver
    return {
        "to_email": receiver.email,
        "full_name": display_name(receiver.full_name, receiver.email),
        "invoice_number": invoice_number(invoice),
        "issue_date": invoice.issue_date.isoformat(),
        "due_date": invoice.due_date.isoformat(),
        "items": [
            {
                "name": item.product.name if item.product else "Product",
                "quantity": item.quantity,
                "price": float(item.unit_price),
                "total": float(item.total_price),
            }
            for item in invoice.items
        ],
        "subtotal": float(total - tax),
        "tax_total": float(tax),
        "total": float(total),
        "created_by_name": display_name(actor.full_name, actor.email, fallback=actor.role.capitalize()),
        "created_by_role": actor.role,
    }


def _require_fields(payload: dict) -> None:
    missing = [f for f in ("receiver_id", "issue_date", "due_date") if not payload.get(f)]
    if missing:
        raise BadRequestError(f"Missing required fields: {', '.join(missing)}")
    if not payload.get("items"):
        raise BadRequestError("At least one invoice item is required")


async def _load_receiver(db: AsyncSession, receiver_id: str, actor: Profile) -> Profile:
    result = await db.execute(
        select(Profile)
        .options(selectinload(Profile.user))
        .where(Profile.user_id == receiver_id)
    )
    receiver = result.scalar_one_or_none()
    if receiver is None:
        raise NotFoundError("Consumer not found")
    if receiver.role != Role.CONSUMER.value:
        raise BadRequestError("Invoices can only be issued to consumers")
    if actor.role == Role.RESELLER.value and receiver.referred_by != actor.user_id:
        raise ForbiddenError("You can only create invoices for your own consumers")
    return receiver


def _validate_items(items: list, invoice_tax_rate=None) -> None:
    for index, item in enumerate(items, start=1):
        if not item.get("product_id"):
            raise BadRequestError(f"Item {index}: product_id is required")
        if not _valid_quantity(item.get("quantity")):
            raise BadRequestError(f"Item {index}: quantity must be a positive integer up to {MAX_QUANTITY}")
        price = _as_decimal(item.get("unit_price"))
        if price is None or price < 0 or price > MAX_AMOUNT:
            raise BadRequestError(f"Item {index}: unit_price must be between 0 and {MAX_AMOUNT}")
        if item.get("tax_rate") is not None and not _valid_tax_rate(item.get("tax_rate")):
            raise BadRequestError(f"Item {index}: tax_rate must be between 0 and 100")
    if invoice_tax_rate is not None and not _valid_tax_rate(invoice_tax_rate):
        raise BadRequestError("tax_rate must be between 0 and 100")


async def _load_products(db: AsyncSession, items: list) -> dict:
    ids = list(dict.fromkeys(item["product_id"] for item in items))
    result = await db.execute(select(Product).where(Product.id.in_(ids)))
    products = {p.id: p for p in result.scalars().all()}
    missing = [pid for pid in ids if pid not in products]
    if missing:
        raise NotFoundError(f"Products not found: {', '.join(missing)}")
    return products


async def _insert_items(db: AsyncSession, invoice_id: str, staged: StagedInvoice) -> None:
    db.add_all([
        InvoiceItem(
            invoice_id=invoice_id,
            product_id=item.product_id,
            quantity=item.quantity,
            unit_price=item.unit_price,
            tax_rate=item.tax_rate,
            total_price=item.total_price,
        )
        for item in staged.items
    ])
    await db.flush()


async def _delete_orphan_invoice(db: AsyncSession, invoice_id: str) -> None:
    """Compensating delete for stores where the rollback did not discard the row"""
    try:
        await db.execute(delete(Invoice).where(Invoice.id == invoice_id))
        await db.commit()
    except SQLAlchemyError:
        logger.exception(f"Compensating delete failed for invoice {invoice_id}")
        await db.rollback()


async def create_invoice(db: AsyncSession, actor: Profile, payload: dict) -> Invoice:
    """
    Validate and persist a new invoice.

    payload keys: receiver_id, issue_date, due_date, tax_rate, notes and
    items [{product_id, quantity, unit_price, tax_rate}].
    Raises BadRequestError, NotFoundError, ForbiddenError or InternalError.
    """
    _require_fields(payload)
    items = payload["items"]
    issue_date: date = payload["issue_date"]

    receiver = await _load_receiver(db, payload["receiver_id"], actor)
    _validate_items(items, payload.get("tax_rate"))
    products = await _load_products(db, items)

    settings = SettingsProvider(db)
    reseller_settings = await settings.get_reseller_settings()

    priced = []
    for item in items:
        unit_price = resolve_unit_price(
            actor.role,
            reseller_settings.allow_reseller_price_override,
            products[item["product_id"]].price,
            _as_decimal(item["unit_price"]),
        )
        priced.append({
            "product_id": item["product_id"],
            "quantity": int(item["quantity"]),
            "unit_price": unit_price,
            "tax_rate": _as_decimal(item.get("tax_rate")),
        })

    staged = stage_items(priced, _as_decimal(payload.get("tax_rate")))

    minimum = reseller_settings.min_invoice_amount
    if minimum is not None and minimum > 0 and staged.total < minimum:
        raise BadRequestError(
            f"Invoice total {staged.total} is below the minimum invoice amount {minimum}"
        )

    commission = await resolve_commission(db, settings, actor, receiver, issue_date)

    invoice_id = new_id()
    receiver_id = receiver.user_id
    db.add(Invoice(
        id=invoice_id,
        sender_id=actor.user_id,
        receiver_id=receiver_id,
        issue_date=issue_date,
        due_date=payload["due_date"],
        total_amount=staged.total,
        tax_total=staged.tax_total,
        status=InvoiceStatus.UNPAID.value,
        notes=payload.get("notes"),
        reseller_commission_percentage=commission.percentage,
        applied_offer_id=commission.offer_id,
        commission_calculated_at=commission.calculated_at,
    ))

    try:
        await db.flush()
    except SQLAlchemyError:
        logger.exception("Failed to insert invoice")
        await db.rollback()
        raise InternalError("Failed to create invoice")

    try:
        await _insert_items(db, invoice_id, staged)
        await db.commit()
    except SQLAlchemyError:
        logger.exception(f"Failed to insert items for invoice {invoice_id}, rolling back")
        await db.rollback()
        await _delete_orphan_invoice(db, invoice_id)
        raise InternalError("Failed to create invoice items")

    logger.info(
        f"Invoice {invoice_id} created by {actor.role} {actor.user_id} for {receiver_id}: "
        f"total={staged.total} commission={commission.percentage}"
    )
    return await get_invoice(db, invoice_id)
