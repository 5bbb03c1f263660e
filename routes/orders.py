from typing import List, Optional
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query

from core.db import get_session_factory
from core.exceptions import http_status_for
from models.order import OrderStatus
from schemas.order import OrderCreate, OrderOut, OrderPlacementOut, OrderSummary, StatusUpdateIn, StatusUpdateResult
from services.email import send_order_confirmation
from services.notifications import NotificationSink, get_notification_sink
from services.order_queries import (
    find_orders_without_items,
    get_all_orders,
    get_order_by_id,
    get_order_by_number,
    summarize_orders,
    update_order_status,
)
from services.orders import place_order
from services.stock import SessionFactory

router = APIRouter(prefix="/orders", tags=["orders"])
admin_router = APIRouter(prefix="/admin/orders", tags=["admin"])


@router.post("/", response_model=OrderPlacementOut, status_code=201)
async def create_order(
    data: OrderCreate,
    background_tasks: BackgroundTasks,
    session_factory: SessionFactory = Depends(get_session_factory),
    notifier: NotificationSink = Depends(get_notification_sink),
):
    result = await place_order(session_factory, data, notifier)
    if not result.success:
        # The cart stays with the customer; nothing was written
        raise HTTPException(status_code=http_status_for(result.error_code), detail=result.error)

    background_tasks.add_task(send_order_confirmation, result.order)
    return {"success": True, "order_number": result.order_number}


@router.get("/{order_number}", response_model=OrderOut)
async def track_order(order_number: str, session_factory: SessionFactory = Depends(get_session_factory)):
    order = await get_order_by_number(session_factory, order_number)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@admin_router.get("/", response_model=List[OrderOut])
async def list_orders(
    status: Optional[OrderStatus] = None,
    search: Optional[str] = Query(default=None, max_length=100),
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    session_factory: SessionFactory = Depends(get_session_factory),
):
    return await get_all_orders(session_factory, status=status, search=search, limit=limit, offset=offset)


@admin_router.get("/summary", response_model=OrderSummary)
async def order_summary(session_factory: SessionFactory = Depends(get_session_factory)):
    return await summarize_orders(session_factory)


@admin_router.get("/orphaned", response_model=List[OrderOut])
async def list_orders_without_items(session_factory: SessionFactory = Depends(get_session_factory)):
    return await find_orders_without_items(session_factory)


@admin_router.get("/{order_id}", response_model=OrderOut)
async def get_order(order_id: int, session_factory: SessionFactory = Depends(get_session_factory)):
    order = await get_order_by_id(session_factory, order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@admin_router.patch("/{order_id}/status", response_model=StatusUpdateResult)
async def change_order_status(
    order_id: int,
    data: StatusUpdateIn,
    session_factory: SessionFactory = Depends(get_session_factory),
    notifier: NotificationSink = Depends(get_notification_sink),
):
    result = await update_order_status(session_factory, order_id, data.status, notifier)
    if not result.success:
        raise HTTPException(status_code=http_status_for(result.error_code), detail=result.error)
    return result
