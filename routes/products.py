from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from typing import List

from core.db import db_session, get_session_factory, with_deadline
from models.product import Product
from schemas.product import ProductOut
from services.stock import SessionFactory

router = APIRouter(prefix="/products", tags=["products"])


async def _select(session_factory: SessionFactory, stmt, operation: str) -> List[Product]:
    async def _read():
        async with db_session(session_factory) as db:
            return list((await db.execute(stmt)).scalars().all())

    return await with_deadline(_read(), operation)


@router.get("/", response_model=List[ProductOut])
async def list_products(session_factory: SessionFactory = Depends(get_session_factory)):
    stmt = select(Product).where(Product.is_active.is_(True)).order_by(Product.name)
    return await _select(session_factory, stmt, "list products")


@router.get("/{slug}", response_model=ProductOut)
async def get_product(slug: str, session_factory: SessionFactory = Depends(get_session_factory)):
    products = await _select(session_factory, select(Product).where(Product.slug == slug), f"fetch product {slug}")
    if not products:
        raise HTTPException(status_code=404, detail="Product not found")
    return products[0]
