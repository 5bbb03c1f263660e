"""Stock ledger: the only writer of `products.stock`.

Every mutation is a single conditional UPDATE, so the stored value can never
go negative and two concurrent deductions cannot both consume the same units.
"""
import logging
from typing import List, Optional

from sqlalchemy import case, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import settings
from core.db import db_session, with_deadline
from core.exceptions import PersistenceFailure, StoreTimeout
from models.product import Product
from schemas.product import StockDeduction, StockUpdateResult
from services.notifications import NotificationSink

logger = logging.getLogger(__name__)

SessionFactory = async_sessionmaker[AsyncSession]


def _store_message(exc: Exception) -> str:
    orig = getattr(exc, "orig", None)
    return str(orig or exc)


def _report(notifier: Optional[NotificationSink], message: str, kind: str) -> None:
    if notifier is not None:
        notifier.notify(message, kind)


async def _execute_update(session_factory: SessionFactory, stmt, operation: str) -> Optional[int]:
    """Run one UPDATE ... RETURNING stock in its own transaction; None when no row matched."""

    async def _run():
        async with db_session(session_factory) as db:
            result = await db.execute(stmt.execution_options(synchronize_session=False))
            return result.scalar_one_or_none()

    return await with_deadline(_run(), operation)


async def get_stock(session_factory: SessionFactory, product_id: int) -> Optional[int]:
    async def _read():
        async with db_session(session_factory) as db:
            result = await db.execute(select(Product.stock).where(Product.id == product_id))
            return result.scalar_one_or_none()

    return await with_deadline(_read(), f"read stock for product {product_id}")


async def check_stock(session_factory: SessionFactory, product_id: int, quantity: int) -> bool:
    """Whether `quantity` units are available. Unknown or unreadable products count as unavailable."""
    try:
        stock = await get_stock(session_factory, product_id)
    except (SQLAlchemyError, StoreTimeout) as exc:
        logger.error("Error checking stock for product %s: %s", product_id, _store_message(exc))
        return False
    if stock is None:
        logger.warning("Stock check for unknown product %s", product_id)
        return False
    return stock >= quantity


async def _apply_stock_update(
    session_factory: SessionFactory,
    product_id: int,
    stmt,
    operation: str,
    notifier: Optional[NotificationSink],
) -> StockUpdateResult:
    try:
        stock = await _execute_update(session_factory, stmt, f"{operation} for product {product_id}")
    except SQLAlchemyError as exc:
        error, code = _store_message(exc), PersistenceFailure.code
    except StoreTimeout as exc:
        error, code = exc.message, exc.code
    else:
        if stock is not None:
            logger.info("Stock for product %s is now %s (%s)", product_id, stock, operation)
            _report(notifier, "Stock updated successfully!", "success")
            return StockUpdateResult(product_id=product_id, success=True, stock=stock)
        error, code = "Product not found", "not_found"
    return _update_failed(product_id, error, code, notifier)


def _update_failed(product_id: int, error: str, code: str, notifier: Optional[NotificationSink]) -> StockUpdateResult:
    logger.error("Error updating stock for product %s: %s", product_id, error)
    _report(notifier, f"Failed to update stock: {error}", "error")
    return StockUpdateResult(product_id=product_id, success=False, error=error, error_code=code)


async def set_stock(
    session_factory: SessionFactory,
    product_id: int,
    new_quantity: int,
    notifier: Optional[NotificationSink] = None,
) -> StockUpdateResult:
    """Overwrite stock with `new_quantity`. Negative values are rejected, not clamped."""
    if new_quantity < 0:
        return _update_failed(product_id, "Stock cannot be negative", "invalid_quantity", notifier)
    stmt = (
        update(Product)
        .where(Product.id == product_id)
        .values(stock=new_quantity)
        .returning(Product.stock)
    )
    return await _apply_stock_update(session_factory, product_id, stmt, "set stock", notifier)


async def adjust_stock(
    session_factory: SessionFactory,
    product_id: int,
    delta: int,
    notifier: Optional[NotificationSink] = None,
) -> StockUpdateResult:
    """Add `delta` (may be negative) to stock, flooring the result at zero."""
    adjusted = Product.stock + delta
    stmt = (
        update(Product)
        .where(Product.id == product_id)
        .values(stock=case((adjusted < 0, 0), else_=adjusted))
        .returning(Product.stock)
    )
    return await _apply_stock_update(session_factory, product_id, stmt, f"adjust stock by {delta:+d}", notifier)


async def deduct_stock(session_factory: SessionFactory, product_id: int, quantity: int) -> StockDeduction:
    """Atomically remove `quantity` units, failing without a write if stock would go negative.

    Never raises: store errors and timeouts come back as an unsuccessful deduction.
    """
    if quantity <= 0:
        return StockDeduction(product_id=product_id, success=False, error="Quantity must be positive")

    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.stock >= quantity)
        .values(stock=Product.stock - quantity)
        .returning(Product.stock)
    )
    try:
        new_stock = await _execute_update(session_factory, stmt, f"deduct stock for product {product_id}")
        if new_stock is not None:
            return StockDeduction(product_id=product_id, success=True, new_stock=new_stock)
        # Nothing matched: tell an unknown product apart from a shortfall
        current = await get_stock(session_factory, product_id)
    except (SQLAlchemyError, StoreTimeout) as exc:
        error = _store_message(exc) if isinstance(exc, SQLAlchemyError) else exc.message
        logger.error("Error deducting stock for product %s: %s", product_id, error)
        return StockDeduction(product_id=product_id, success=False, error=error)

    if current is None:
        error = "Product not found"
    else:
        error = f"Insufficient stock (available {current}, requested {quantity})"
    logger.warning("Stock deduction failed for product %s: %s", product_id, error)
    return StockDeduction(product_id=product_id, success=False, error=error)


async def list_inventory(session_factory: SessionFactory) -> List[Product]:
    async def _read():
        async with db_session(session_factory) as db:
            result = await db.execute(select(Product).order_by(Product.name))
            return list(result.scalars().all())

    return await with_deadline(_read(), "list inventory")


async def low_stock_products(session_factory: SessionFactory, threshold: Optional[int] = None) -> List[Product]:
    """Products that are still sellable but at or under the low-stock threshold."""
    threshold = settings.LOW_STOCK_THRESHOLD if threshold is None else threshold

    async def _read():
        async with db_session(session_factory) as db:
            stmt = (
                select(Product)
                .where(Product.stock > 0, Product.stock <= threshold)
                .order_by(Product.stock, Product.name)
            )
            return list((await db.execute(stmt)).scalars().all())

    return await with_deadline(_read(), "list low stock products")


async def out_of_stock_products(session_factory: SessionFactory) -> List[Product]:
    async def _read():
        async with db_session(session_factory) as db:
            stmt = select(Product).where(Product.stock == 0).order_by(Product.name)
            return list((await db.execute(stmt)).scalars().all())

    return await with_deadline(_read(), "list out of stock products")
