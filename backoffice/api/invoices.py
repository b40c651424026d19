"""
Invoice API endpoints - creation, listing, status and notification resend
"""
import logging
from datetime import date
from typing import Any, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backoffice.database import get_db
from backoffice.models.invoice import InvoiceStatus
from backoffice.models.product import Product, UserProductAccess
from backoffice.models.user import Profile, Role
from backoffice.api.auth import require_roles
from backoffice.services import invoice_service, notifications
from backoffice.services.activity_logger import log_activity
from backoffice.services.email_service import EmailService, get_email_service
from backoffice.services.errors import BadRequestError, ForbiddenError, NotFoundError
from backoffice.utils.helpers import page_meta, paginate

logger = logging.getLogger(__name__)
router = APIRouter()

admin_only = require_roles(Role.ADMIN)
admin_or_reseller = require_roles(Role.ADMIN, Role.RESELLER)


# --- Pydantic Schemas ---

class InvoiceItemIn(BaseModel):
    # Loosely typed so item errors are reported after receiver checks
    product_id: Optional[str] = None
    quantity: Optional[Any] = None
    unit_price: Optional[Any] = None
    tax_rate: Optional[Any] = None


class InvoiceCreate(BaseModel):
    receiver_id: Optional[str] = None
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    tax_rate: Optional[float] = None
    notes: Optional[str] = None
    items: List[InvoiceItemIn] = []


class InvoiceStatusUpdate(BaseModel):
    status: str


# --- Helpers ---

def _page(rows: list, search: Optional[str], page: int, limit: int) -> dict:
    rows = [r for r in rows if invoice_service.matches_search(r, search)]
    offset, limit = paginate(page, limit)
    return {"data": rows[offset:offset + limit], "pagination": page_meta(len(rows), page, limit)}


def _queue_notification(background_tasks, email_service, invoice, actor) -> bool:
    if not invoice.receiver or not invoice.receiver.email:
        logger.info(f"Receiver of invoice {invoice.id} has no email, skipping notification")
        return False
    notifications.dispatch(
        background_tasks,
        email_service.send_invoice_created_email,
        **invoice_service.notification_params(invoice, actor),
    )
    return True


async def _load_consumer(db: AsyncSession, consumer_id: str, actor: Profile) -> Profile:
    result = await db.execute(select(Profile).where(Profile.user_id == consumer_id))
    consumer = result.scalar_one_or_none()
    if consumer is None or consumer.role != Role.CONSUMER.value:
        raise NotFoundError("Consumer not found")
    if actor.role == Role.RESELLER.value and consumer.referred_by != actor.user_id:
        raise ForbiddenError("You can only access your own consumers")
    return consumer


# --- Endpoints ---

@router.post("/", status_code=201)
async def create_invoice(
    data: InvoiceCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
    current_user: Profile = Depends(admin_or_reseller),
):
    """Create an invoice with its items and notify the consumer"""
    payload = data.model_dump()
    payload["items"] = [item.model_dump() for item in data.items]

    invoice = await invoice_service.create_invoice(db, current_user, payload)
    response = invoice_service.format_invoice(invoice)
    _queue_notification(background_tasks, email_service, invoice, current_user)

    await log_activity(db, current_user, invoice.id, "create", "invoices", {
        "receiver_id": invoice.receiver_id,
        "total_amount": response["total"],
        "items": len(response["items"]),
    }, request)
    return response


@router.get("/")
async def list_invoices(
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_only),
):
    """All invoices (admin)"""
    invoices = await invoice_service.list_invoices(db, status=status)
    return _page([invoice_service.format_invoice(i) for i in invoices], search, page, limit)


@router.get("/my-invoices")
async def my_invoices(
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(require_roles(Role.RESELLER)),
):
    """Invoices the calling reseller has sent"""
    invoices = await invoice_service.list_invoices(db, sender_id=current_user.user_id, status=status)
    return _page([invoice_service.format_invoice(i) for i in invoices], search, page, limit)


@router.get("/consumer/{consumer_id}")
async def consumer_invoices(
    consumer_id: str,
    status: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_or_reseller),
):
    """Invoices for one consumer; resellers only see the ones they sent"""
    await _load_consumer(db, consumer_id, current_user)
    sender_id = current_user.user_id if current_user.role == Role.RESELLER.value else None
    invoices = await invoice_service.list_invoices(
        db, sender_id=sender_id, receiver_id=consumer_id, status=status
    )
    return [invoice_service.format_invoice(i) for i in invoices]


@router.get("/consumer/{consumer_id}/products")
async def consumer_products(
    consumer_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_or_reseller),
):
    """Products the consumer has access to, with catalog prices"""
    await _load_consumer(db, consumer_id, current_user)
    result = await db.execute(
        select(UserProductAccess)
        .options(selectinload(UserProductAccess.product))
        .where(UserProductAccess.user_id == consumer_id)
        .order_by(UserProductAccess.granted_at)
    )
    products: List[Product] = [a.product for a in result.scalars().all() if a.product]
    return [
        {"id": p.id, "name": p.name, "price": float(p.price), "description": p.description}
        for p in products
    ]


@router.get("/{invoice_id}")
async def get_invoice(
    invoice_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_or_reseller),
):
    invoice = await invoice_service.get_invoice(db, invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found")
    if not invoice_service.can_view(invoice, current_user):
        raise ForbiddenError("You do not have access to this invoice")
    return invoice_service.format_invoice(invoice)


@router.patch("/{invoice_id}/status")
async def update_invoice_status(
    invoice_id: str,
    data: InvoiceStatusUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_only),
):
    """Mark an invoice paid or unpaid. Totals and commission are untouched."""
    if data.status not in {s.value for s in InvoiceStatus}:
        raise BadRequestError("status must be 'paid' or 'unpaid'")

    invoice = await invoice_service.get_invoice(db, invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found")

    previous = invoice.status
    invoice.status = data.status
    await db.commit()

    response = invoice_service.format_invoice(invoice)
    await log_activity(db, current_user, invoice_id, "update", "invoices", {
        "status": {"from": previous, "to": data.status},
    }, request)
    return response


@router.post("/{invoice_id}/resend")
async def resend_invoice(
    invoice_id: str,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
    current_user: Profile = Depends(admin_only),
):
    """Send the invoice-created email again"""
    invoice = await invoice_service.get_invoice(db, invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found")
    if not invoice.receiver or not invoice.receiver.email:
        raise BadRequestError("Consumer has no email address on file")

    # Name the original issuer, not the admin resending it
    _queue_notification(background_tasks, email_service, invoice, invoice.sender or current_user)
    return {
        "message": "Invoice notification queued",
        "invoice_number": invoice_service.invoice_number(invoice),
        "email": invoice.receiver.email,
    }
