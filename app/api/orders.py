from fastapi import APIRouter, Depends
from sqlmodel import Session

from app.api.deps import get_anonymous_id, get_current_user_id
from app.core.database import get_db
from app.schemas.orders import CreateOrderRequest, OrderResponse
from app.services import orders as order_service

router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.post("", response_model=OrderResponse, status_code=201)
def create_order(
    body: CreateOrderRequest,
    user_id: int = Depends(get_current_user_id),
    anonymous_id: str | None = Depends(get_anonymous_id),
    db: Session = Depends(get_db),
):
    order = order_service.create_from_cart(db, body.cart_id, user_id, anonymous_id)
    return order_service.order_view(db, order)


@router.get("", response_model=list[OrderResponse])
def list_orders(user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return [order_service.order_view(db, o) for o in order_service.list_orders(db, user_id)]


@router.get("/{order_id}", response_model=OrderResponse)
def get_order(order_id: int, user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return order_service.order_view(db, order_service.get_order(db, order_id, user_id))
