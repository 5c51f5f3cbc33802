from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import Field
from pymongo.database import Database

from database import create_document, delete_document, get_db, get_document, get_documents, serialize, update_document
from errors import Forbidden
from schemas import CamelModel, Order, OrderStatus, Role
from security import CurrentUser, get_current_user, require_roles

router = APIRouter(prefix="/orders", tags=["orders"])


class CreateOrderRequest(CamelModel):
    artwork_id: str
    seller_id: str
    buyer_id: Optional[str] = None
    amount: float = Field(..., ge=0)
    currency: Optional[str] = None
    status: OrderStatus = OrderStatus.PENDING
    session_id: Optional[str] = None
    payment_id: Optional[str] = None
    paid_at: Optional[datetime] = None


class UpdateOrderRequest(CamelModel):
    amount: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = None
    status: Optional[OrderStatus] = None
    session_id: Optional[str] = None
    payment_id: Optional[str] = None
    paid_at: Optional[datetime] = None


def _involved(user: CurrentUser, order: dict) -> bool:
    return user.is_admin or user.id in (order.get("sellerId"), order.get("buyerId"))


@router.get("")
def list_orders(user: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    """All orders for admins, otherwise the caller's sales and purchases"""
    filter_dict = {} if user.is_admin else {"$or": [{"sellerId": user.id}, {"buyerId": user.id}]}
    return serialize(get_documents(db, "order", filter_dict, sort=[("createdAt", -1)]))


@router.get("/me")
def my_orders(user: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    filter_dict = {"$or": [{"sellerId": user.id}, {"buyerId": user.id}]}
    return serialize(get_documents(db, "order", filter_dict, sort=[("createdAt", -1)]))


@router.get("/{order_id}")
def get_order(order_id: str, user: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    order = get_document(db, "order", order_id, "Order")
    if not _involved(user, order):
        raise Forbidden()
    return serialize(order)


@router.post("", status_code=201)
def create_order(
    payload: CreateOrderRequest,
    user: CurrentUser = Depends(require_roles(Role.SELLER, Role.ADMIN)),
    db: Database = Depends(get_db),
):
    if payload.seller_id != user.id and not user.is_admin:
        raise Forbidden("Sellers can only create their own orders")
    get_document(db, "artwork", payload.artwork_id, "Artwork")
    order_id = create_document(db, "order", Order(**payload.model_dump()))
    return serialize(get_document(db, "order", order_id, "Order"))


@router.put("/{order_id}")
def update_order(
    order_id: str,
    payload: UpdateOrderRequest,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    order = get_document(db, "order", order_id, "Order")
    if not (user.is_admin or order.get("sellerId") == user.id):
        raise Forbidden()
    changes = payload.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)
    return serialize(update_document(db, "order", order_id, changes, "Order"))


@router.delete("/{order_id}")
def delete_order(
    order_id: str,
    _: CurrentUser = Depends(require_roles(Role.ADMIN)),
    db: Database = Depends(get_db),
):
    delete_document(db, "order", order_id, "Order")
    return {"message": "Order deleted"}
