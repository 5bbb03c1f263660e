"""Order placement.

A placement runs strictly in sequence: validate the cart, write the order
header and its line items in one transaction, then deduct stock for every
line. Once the order is written the customer always gets a success; stock
deductions that fail afterwards are reported as a warning for an admin to
reconcile.
"""
import asyncio
import logging
from collections import defaultdict
from decimal import Decimal
from typing import Dict, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.config import settings
from core.db import db_session, with_deadline
from core.exceptions import (
    EmptyCart,
    PaymentMethodNotAllowed,
    PersistenceFailure,
    StockShortfall,
    StoreTimeout,
    StorefrontError,
)
from models.order import Order, OrderStatus, PaymentMethod
from models.order_item import OrderItem
from models.product import Product
from schemas.order import CartItemIn, OrderCreate, OrderOut, OrderPlacementResult, PlacementOutcome
from services.notifications import NotificationSink
from services.order_number import generate_order_number
from services.stock import SessionFactory, check_stock, deduct_stock

logger = logging.getLogger(__name__)

_FAILURE_OUTCOMES = {
    StockShortfall: PlacementOutcome.REJECTED_FOR_STOCK,
    PersistenceFailure: PlacementOutcome.PERSIST_FAILED,
    StoreTimeout: PlacementOutcome.TIMED_OUT,
}


def _to_decimal(value: float | int | Decimal | str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _store_message(exc: SQLAlchemyError) -> str:
    return str(getattr(exc, "orig", None) or exc)


def order_totals(items: Sequence[CartItemIn]) -> Tuple[Decimal, Decimal, Decimal]:
    """Return (subtotal, shipping_cost, total) for a cart."""
    subtotal = sum((_to_decimal(item.price) * item.quantity for item in items), Decimal("0.00"))
    shipping_cost = _to_decimal(settings.SHIPPING_COST)
    return subtotal, shipping_cost, subtotal + shipping_cost


async def validate_stock(session_factory: SessionFactory, items: Sequence[CartItemIn]) -> None:
    """Check every product in the cart concurrently; raise StockShortfall naming all short lines.

    Lines for the same product are checked against their combined quantity.
    """
    wanted: Dict[int, int] = defaultdict(int)
    for item in items:
        wanted[item.product_id] += item.quantity

    product_ids = list(wanted)
    checks = await asyncio.gather(
        *(check_stock(session_factory, product_id, wanted[product_id]) for product_id in product_ids)
    )
    unavailable = {product_id for product_id, ok in zip(product_ids, checks) if not ok}
    if unavailable:
        raise StockShortfall(item.name for item in items if item.product_id in unavailable)


async def validate_payment_method(session_factory: SessionFactory, data: OrderCreate) -> None:
    """Cash on delivery is refused when the cart holds an advance-payment category."""
    if data.payment_method == PaymentMethod.BANK_TRANSFER or not settings.ADVANCE_PAYMENT_CATEGORIES:
        return

    product_ids = {item.product_id for item in data.items}

    async def _read():
        async with db_session(session_factory) as db:
            stmt = (
                select(Product.category)
                .where(Product.id.in_(product_ids), Product.category.in_(settings.ADVANCE_PAYMENT_CATEGORIES))
                .distinct()
            )
            return list((await db.execute(stmt)).scalars().all())

    try:
        restricted = await with_deadline(_read(), "read product categories")
    except SQLAlchemyError as exc:
        raise PersistenceFailure("check the payment method", _store_message(exc)) from exc
    if restricted:
        raise PaymentMethodNotAllowed(data.payment_method.value, restricted)


class _OrderNumberTaken(Exception):
    """A concurrent placement committed the same order number first."""

    def __init__(self, order_number: str):
        super().__init__(order_number)
        self.order_number = order_number


def _is_order_number_conflict(exc: IntegrityError) -> bool:
    # sqlite: "UNIQUE constraint failed: orders.order_number"
    # postgres: duplicate key ... "ix_orders_order_number"
    return "order_number" in _store_message(exc)


async def _allocate_order_number(db: AsyncSession) -> str:
    attempts = settings.ORDER_NUMBER_MAX_ATTEMPTS
    for attempt in range(1, attempts + 1):
        candidate = generate_order_number()
        taken = (await db.execute(select(Order.id).where(Order.order_number == candidate))).first()
        if taken is None:
            return candidate
        logger.warning("Order number %s already in use (attempt %s of %s)", candidate, attempt, attempts)
    raise PersistenceFailure("allocate an order number", f"no free order number after {attempts} attempts")


async def persist_order(session_factory: SessionFactory, data: OrderCreate) -> OrderOut:
    """Write the header and its line item snapshots in one transaction.

    An item failure rolls the header back with it, so no header is left
    without items. Losing an order number to a concurrent placement rolls
    back and retries with a new number.
    """
    subtotal, shipping_cost, total = order_totals(data.items)

    async def _write_once() -> OrderOut:
        try:
            async with db_session(session_factory) as db:
                order = Order(
                    order_number=await _allocate_order_number(db),
                    customer_name=data.name,
                    customer_email=data.email,
                    customer_phone=data.phone,
                    shipping_address=data.address,
                    city=data.city,
                    postal_code=data.postal_code or None,
                    order_notes=data.notes or None,
                    subtotal=subtotal,
                    shipping_cost=shipping_cost,
                    total=total,
                    status=OrderStatus.PENDING.value,
                    payment_method=data.payment_method.value,
                )
                db.add(order)
                try:
                    await db.flush()
                except IntegrityError as exc:
                    if _is_order_number_conflict(exc):
                        raise _OrderNumberTaken(order.order_number) from exc
                    raise PersistenceFailure("save order", _store_message(exc)) from exc
                except SQLAlchemyError as exc:
                    raise PersistenceFailure("save order", _store_message(exc)) from exc

                db.add_all([
                    OrderItem(
                        order_id=order.id,
                        product_id=item.product_id,
                        product_name=item.name,
                        product_image=item.image,
                        variant=item.selected_variant or None,
                        quantity=item.quantity,
                        price=_to_decimal(item.price),
                        subtotal=_to_decimal(item.price) * item.quantity,
                    )
                    for item in data.items
                ])
                try:
                    await db.flush()
                except SQLAlchemyError as exc:
                    raise PersistenceFailure("save order items", _store_message(exc)) from exc

                loaded = await db.execute(
                    select(Order)
                    .options(selectinload(Order.items))
                    .where(Order.id == order.id)
                    .execution_options(populate_existing=True)
                )
                order = loaded.scalar_one()
        except SQLAlchemyError as exc:
            # Failure while reading order numbers or committing
            raise PersistenceFailure("save order", _store_message(exc)) from exc
        return OrderOut.model_validate(order)

    async def _write() -> OrderOut:
        attempts = settings.ORDER_NUMBER_MAX_ATTEMPTS
        for attempt in range(1, attempts + 1):
            try:
                return await _write_once()
            except _OrderNumberTaken as exc:
                logger.warning(
                    "Order number %s was taken by a concurrent order (attempt %s of %s)",
                    exc.order_number, attempt, attempts,
                )
        raise PersistenceFailure("allocate an order number", f"no free order number after {attempts} attempts")

    return await with_deadline(_write(), "save order")


async def place_order(
    session_factory: SessionFactory,
    data: OrderCreate,
    notifier: NotificationSink,
) -> OrderPlacementResult:
    """Turn a cart into a persisted order, then deduct its stock.

    Fails only while validating or writing the order. Once the order is
    written the result is a success, with any failed deductions listed in
    `failed_deductions`.
    """
    items = data.items
    try:
        if not items:
            raise EmptyCart()
        logger.debug("Validating cart with %s line(s)", len(items))
        await validate_stock(session_factory, items)
        await validate_payment_method(session_factory, data)

        logger.debug("Persisting order for %s", data.email)
        order = await persist_order(session_factory, data)
    except StorefrontError as exc:
        outcome = _FAILURE_OUTCOMES.get(type(exc), PlacementOutcome.REJECTED)
        logger.error("Order placement failed (%s): %s", outcome.value, exc.message)
        notifier.notify(f"Failed to place order: {exc.message}", "error")
        return OrderPlacementResult(success=False, outcome=outcome, error=exc.message, error_code=exc.code)

    logger.debug("Deducting stock for order %s", order.order_number)
    deductions = await asyncio.gather(
        *(deduct_stock(session_factory, item.product_id, item.quantity) for item in items)
    )
    failed = [d for d in deductions if not d.success]
    if failed:
        logger.error(
            "Order %s placed but %s stock deduction(s) failed: %s",
            order.order_number,
            len(failed),
            "; ".join(f"product {d.product_id}: {d.error}" for d in failed),
        )
        notifier.notify("Order placed, but stock update may need verification", "warning")
        outcome = PlacementOutcome.PARTIALLY_COMPLETED
    else:
        logger.info("Order %s placed (total %s)", order.order_number, order.total)
        notifier.notify("Order placed successfully!", "success")
        outcome = PlacementOutcome.COMPLETED

    return OrderPlacementResult(
        success=True,
        outcome=outcome,
        order_number=order.order_number,
        failed_deductions=failed,
        order=order,
    )
