"""
Product catalog API endpoints
"""
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.database import get_db
from backoffice.models.product import Product
from backoffice.models.user import Profile, Role
from backoffice.api.auth import require_roles
from backoffice.services.activity_logger import log_activity
from backoffice.services.errors import BadRequestError, NotFoundError

router = APIRouter()

admin_only = require_roles(Role.ADMIN)


class ProductCreate(BaseModel):
    name: str
    price: float
    description: Optional[str] = None


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    price: Optional[float] = None
    description: Optional[str] = None


def _product_to_dict(p: Product) -> dict:
    return {
        "id": p.id,
        "name": p.name,
        "price": float(p.price),
        "description": p.description,
        "created_at": p.created_at.isoformat() if p.created_at else None,
    }


async def _get_product(db: AsyncSession, product_id: str) -> Product:
    result = await db.execute(select(Product).where(Product.id == product_id))
    product = result.scalar_one_or_none()
    if product is None:
        raise NotFoundError("Product not found")
    return product


@router.get("/")
async def list_products(
    search: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(require_roles(Role.ADMIN, Role.RESELLER)),
):
    query = select(Product).order_by(Product.name)
    if search:
        query = query.where(Product.name.ilike(f"%{search.strip()}%"))
    result = await db.execute(query)
    return [_product_to_dict(p) for p in result.scalars().all()]


@router.post("/", status_code=201)
async def create_product(
    data: ProductCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_only),
):
    if not data.name.strip():
        raise BadRequestError("name is required")
    if data.price < 0:
        raise BadRequestError("price must be zero or greater")

    product = Product(name=data.name.strip(), price=Decimal(str(data.price)), description=data.description)
    db.add(product)
    await db.commit()

    response = _product_to_dict(product)
    await log_activity(db, current_user, product.id, "create", "products", {
        "name": response["name"], "price": response["price"],
    }, request)
    return response


@router.put("/{product_id}")
async def update_product(
    product_id: str,
    data: ProductUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_only),
):
    if data.price is not None and data.price < 0:
        raise BadRequestError("price must be zero or greater")

    product = await _get_product(db, product_id)
    updates = data.model_dump(exclude_none=True)
    if "price" in updates:
        updates["price"] = Decimal(str(updates["price"]))
    for key, value in updates.items():
        setattr(product, key, value)
    await db.commit()

    response = _product_to_dict(product)
    await log_activity(db, current_user, product_id, "update", "products", data.model_dump(exclude_none=True), request)
    return response


@router.delete("/{product_id}")
async def delete_product(
    product_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(admin_only),
):
    product = await _get_product(db, product_id)
    name = product.name
    await db.delete(product)
    await db.commit()
    await log_activity(db, current_user, product_id, "delete", "products", {"name": name}, request)
    return {"message": "Product deleted"}
