import logging
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from uuid import UUID

from app.api.deps import get_db_session
from app.models.order import OrderStatus
from app.schemas.order import OrderResponse
from app.schemas.response import SuccessResponse
from app.services.order_ledger import get_order, list_orders

router = APIRouter()
log = logging.getLogger("orders")


@router.get("/", response_model=SuccessResponse)
async def list_orders_endpoint(
    event_id: Optional[UUID] = None,
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
    session: AsyncSession = Depends(get_db_session),
):
    """Admin listing of orders, newest first, optionally by event and status."""
    orders = await list_orders(session, event_id=event_id, status=order_status)
    data = {
        "orders": [OrderResponse.from_order(o).model_dump(mode="json") for o in orders],
        "total": len(orders),
    }
    return SuccessResponse(data=data)


@router.get("/{order_id}", response_model=SuccessResponse)
async def get_order_endpoint(order_id: UUID, session: AsyncSession = Depends(get_db_session)):
    """Fetches a single order."""
    order = await get_order(session, order_id)
    if not order:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return SuccessResponse(data=OrderResponse.from_order(order).model_dump(mode="json"))
