import logging
from typing import Dict, FrozenSet, List, Optional

from sqlalchemy import case, desc, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from core.config import settings
from core.db import db_session, with_deadline
from core.exceptions import IllegalStatusTransition, OrderNotFound, PersistenceFailure, StorefrontError
from models.order import Order, OrderStatus
from models.order_item import OrderItem
from schemas.order import OrderSummary, StatusUpdateResult
from services.notifications import NotificationSink
from services.stock import SessionFactory

logger = logging.getLogger(__name__)

# pending -> processing -> shipped -> delivered; cancelled from any non-terminal state
ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({
        OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.CANCELLED,
    }),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def is_allowed_transition(current: OrderStatus | str, requested: OrderStatus | str) -> bool:
    try:
        return OrderStatus(requested) in ALLOWED_TRANSITIONS[OrderStatus(current)]
    except ValueError:
        return False


def _with_items():
    return select(Order).options(selectinload(Order.items))


async def _fetch(session_factory: SessionFactory, stmt, operation: str) -> List[Order]:
    async def _read():
        async with db_session(session_factory) as db:
            return list((await db.execute(stmt)).scalars().all())

    try:
        return await with_deadline(_read(), operation)
    except SQLAlchemyError as exc:
        logger.error("Error trying to %s: %s", operation, exc)
        raise PersistenceFailure(operation, str(getattr(exc, "orig", None) or exc)) from exc


async def get_order_by_number(session_factory: SessionFactory, order_number: str) -> Optional[Order]:
    """The order with this number and its items, or None. Reading has no side effects."""
    orders = await _fetch(
        session_factory,
        _with_items().where(Order.order_number == order_number),
        f"fetch order {order_number}",
    )
    return orders[0] if orders else None


async def get_order_by_id(session_factory: SessionFactory, order_id: int) -> Optional[Order]:
    orders = await _fetch(session_factory, _with_items().where(Order.id == order_id), f"fetch order {order_id}")
    return orders[0] if orders else None


def _matches_search(term: str):
    # LIKE wildcards typed by the admin are matched literally
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    pattern = f"%{escaped}%"
    return or_(
        Order.order_number.ilike(pattern, escape="\\"),
        Order.customer_name.ilike(pattern, escape="\\"),
        Order.customer_email.ilike(pattern, escape="\\"),
    )


async def get_all_orders(
    session_factory: SessionFactory,
    status: Optional[OrderStatus] = None,
    search: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0,
) -> List[Order]:
    """Orders newest first, optionally filtered and paginated.

    `search` is a case-insensitive substring match on order number,
    customer name or customer email.
    """
    stmt = _with_items().order_by(Order.created_at.desc(), Order.id.desc())
    if status is not None:
        stmt = stmt.where(Order.status == OrderStatus(status).value)
    if search and search.strip():
        stmt = stmt.where(_matches_search(search.strip()))
    if offset:
        stmt = stmt.offset(offset)
    if limit is not None:
        stmt = stmt.limit(limit)
    return await _fetch(session_factory, stmt, "fetch orders")


async def find_orders_without_items(session_factory: SessionFactory) -> List[Order]:
    """Order headers that have no line items, for manual reconciliation."""
    stmt = (
        _with_items()
        .where(~select(OrderItem.id).where(OrderItem.order_id == Order.id).exists())
        .order_by(Order.created_at.desc())
    )
    return await _fetch(session_factory, stmt, "find orders without items")


async def summarize_orders(session_factory: SessionFactory) -> OrderSummary:
    """Sales figures over every order on record, cancelled ones included."""
    totals_stmt = select(
        func.count(Order.id),
        func.coalesce(func.sum(Order.total), 0),
        func.count(func.distinct(Order.customer_email)),
        func.coalesce(func.sum(case((Order.status == OrderStatus.CANCELLED.value, 1), else_=0)), 0),
    )
    city_revenue = func.sum(Order.total).label("revenue")
    top_city_stmt = (
        select(Order.city, city_revenue)
        .group_by(Order.city)
        .order_by(desc(city_revenue), Order.city)
        .limit(1)
    )

    async def _read():
        async with db_session(session_factory) as db:
            totals = (await db.execute(totals_stmt)).one()
            top_city = (await db.execute(top_city_stmt)).first()
            return totals, top_city

    try:
        (count, revenue, customers, cancelled), top_city = await with_deadline(_read(), "summarize orders")
    except SQLAlchemyError as exc:
        logger.error("Error trying to summarize orders: %s", exc)
        raise PersistenceFailure("summarize orders", str(getattr(exc, "orig", None) or exc)) from exc

    total_revenue = round(float(revenue), 2)
    summary = OrderSummary(
        total_revenue=total_revenue,
        order_count=count,
        average_order_value=round(total_revenue / count, 2) if count else 0,
        unique_customers=customers,
        cancelled_count=int(cancelled),
    )
    if top_city is not None:
        summary.top_city = top_city.city
        summary.top_city_revenue = round(float(top_city.revenue), 2)
        summary.top_city_share = round(summary.top_city_revenue / total_revenue * 100) if total_revenue > 0 else 0
    return summary


async def update_order_status(
    session_factory: SessionFactory,
    order_id: int,
    new_status: OrderStatus | str,
    notifier: NotificationSink,
) -> StatusUpdateResult:
    """Move an order to `new_status`. Only the status column is written.

    The write is conditional on the status read just before it, so a
    concurrent change makes this update fail instead of overwriting it.
    """
    try:
        requested = OrderStatus(new_status)
    except ValueError:
        error = f"Unknown order status: {new_status}"
        notifier.notify(f"Failed to update status: {error}", "error")
        return StatusUpdateResult(success=False, order_id=order_id, error=error, error_code="invalid_status")

    async def _apply() -> None:
        async with db_session(session_factory) as db:
            current = (await db.execute(select(Order.status).where(Order.id == order_id))).scalar_one_or_none()
            if current is None:
                raise OrderNotFound(order_id)
            if settings.ORDER_STATUS_STRICT_TRANSITIONS and not is_allowed_transition(current, requested):
                raise IllegalStatusTransition(current, requested.value)

            stmt = (
                update(Order)
                .where(Order.id == order_id, Order.status == current)
                .values(status=requested.value)
                .execution_options(synchronize_session=False)
            )
            result = await db.execute(stmt)
            if result.rowcount != 1:
                raise PersistenceFailure("update order status", "the order was changed by someone else, reload and retry")

    try:
        try:
            await with_deadline(_apply(), f"update status of order {order_id}")
        except SQLAlchemyError as exc:
            raise PersistenceFailure("update order status", str(getattr(exc, "orig", None) or exc)) from exc
    except StorefrontError as exc:
        logger.error("Error updating status of order %s: %s", order_id, exc.message)
        notifier.notify(f"Failed to update status: {exc.message}", "error")
        return StatusUpdateResult(success=False, order_id=order_id, error=exc.message, error_code=exc.code)

    logger.info("Order %s status updated to %s", order_id, requested.value)
    notifier.notify(f"Order status updated to {requested.value}", "success")
    return StatusUpdateResult(success=True, order_id=order_id, status=requested)
