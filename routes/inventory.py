from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query

from core.db import get_session_factory
from core.exceptions import http_status_for
from schemas.product import ProductOut, StockAdjust, StockSet, StockUpdateResult
from services.notifications import NotificationSink, get_notification_sink
from services.stock import (
    SessionFactory,
    adjust_stock,
    list_inventory,
    low_stock_products,
    out_of_stock_products,
    set_stock,
)

router = APIRouter(prefix="/admin/inventory", tags=["admin"])


def _raise_for(result: StockUpdateResult) -> StockUpdateResult:
    if not result.success:
        raise HTTPException(status_code=http_status_for(result.error_code), detail=result.error)
    return result


@router.get("/", response_model=List[ProductOut])
async def inventory(session_factory: SessionFactory = Depends(get_session_factory)):
    return await list_inventory(session_factory)


@router.get("/low-stock", response_model=List[ProductOut])
async def low_stock(
    threshold: Optional[int] = Query(default=None, ge=1),
    session_factory: SessionFactory = Depends(get_session_factory),
):
    return await low_stock_products(session_factory, threshold)


@router.get("/out-of-stock", response_model=List[ProductOut])
async def out_of_stock(session_factory: SessionFactory = Depends(get_session_factory)):
    return await out_of_stock_products(session_factory)


@router.put("/{product_id}/stock", response_model=StockUpdateResult)
async def update_stock(
    product_id: int,
    data: StockSet,
    session_factory: SessionFactory = Depends(get_session_factory),
    notifier: NotificationSink = Depends(get_notification_sink),
):
    return _raise_for(await set_stock(session_factory, product_id, data.stock, notifier))


@router.post("/{product_id}/adjust", response_model=StockUpdateResult)
async def adjust(
    product_id: int,
    data: StockAdjust,
    session_factory: SessionFactory = Depends(get_session_factory),
    notifier: NotificationSink = Depends(get_notification_sink),
):
    return _raise_for(await adjust_stock(session_factory, product_id, data.delta, notifier))
