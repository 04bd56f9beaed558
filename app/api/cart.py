from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session

from app.api.deps import get_anonymous_id, get_current_user_id, get_optional_user_id
from app.core.database import get_db
from app.schemas.cart import AddItemRequest, CartInitRequest, CartResponse, MergeCartRequest
from app.services import cart as cart_service

router = APIRouter(prefix="/api/cart", tags=["cart"])


@router.post("/init", response_model=CartResponse)
def init_cart(
    body: CartInitRequest | None = None,
    user_id: int | None = Depends(get_optional_user_id),
    anonymous_id: str | None = Depends(get_anonymous_id),
    db: Session = Depends(get_db),
):
    """Logged-in callers get their cart; guests get one keyed by anonymous_id (generated when absent)."""
    anon = (body.anonymous_id if body and body.anonymous_id else None) or anonymous_id
    cart = cart_service.init_cart(db, user_id=user_id, anonymous_id=anon)
    return cart_service.cart_view(db, cart)


@router.get("", response_model=CartResponse)
def get_cart(
    cart_id: int = Query(...),
    user_id: int | None = Depends(get_optional_user_id),
    anonymous_id: str | None = Depends(get_anonymous_id),
    db: Session = Depends(get_db),
):
    cart = cart_service.get_cart_for(db, cart_id, user_id, anonymous_id)
    return cart_service.cart_view(db, cart)


@router.post("/items", response_model=CartResponse, status_code=201)
def add_item(
    body: AddItemRequest,
    user_id: int | None = Depends(get_optional_user_id),
    anonymous_id: str | None = Depends(get_anonymous_id),
    db: Session = Depends(get_db),
):
    cart = cart_service.get_cart_for(db, body.cart_id, user_id, anonymous_id)
    cart_service.add_item(db, cart, body.course_id, body.session_id)
    return cart_service.cart_view(db, cart)


@router.delete("/items/{item_id}")
def remove_item(
    item_id: int,
    user_id: int | None = Depends(get_optional_user_id),
    anonymous_id: str | None = Depends(get_anonymous_id),
    db: Session = Depends(get_db),
):
    cart_service.remove_item(db, item_id, user_id, anonymous_id)
    return {"ok": True}


@router.post("/merge", response_model=CartResponse)
def merge_cart(
    body: MergeCartRequest,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    anonymous_id = body.anonymous_id.strip()
    if not anonymous_id:
        raise HTTPException(status_code=400, detail="anonymous_id is required.")
    cart = cart_service.merge(db, anonymous_id, user_id)
    return cart_service.cart_view(db, cart)
