from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, delete_document, get_db, get_document, get_documents, serialize, update_document
from errors import Forbidden, ValidationFailed
from schemas import CamelModel, Payment, Role
from security import CurrentUser, ensure_owner_or_admin, get_current_user, require_roles

router = APIRouter(prefix="/payments", tags=["payments"])

DUPLICATE_PAYMENT = "Payment already exists for this user and artwork"


class CreatePaymentRequest(CamelModel):
    artwork_id: str
    user_id: Optional[str] = None
    amount: float = Field(..., gt=0)


class UpdatePaymentRequest(CamelModel):
    amount: float = Field(..., gt=0)


@router.get("")
def list_payments(user: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    filter_dict = {} if user.is_admin else {"userId": user.id}
    return serialize(get_documents(db, "payment", filter_dict, sort=[("createdAt", -1)]))


@router.get("/me")
def my_payments(user: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    return serialize(get_documents(db, "payment", {"userId": user.id}, sort=[("createdAt", -1)]))


@router.get("/{payment_id}")
def get_payment(payment_id: str, user: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    payment = get_document(db, "payment", payment_id, "Payment")
    ensure_owner_or_admin(user, payment["userId"])
    return serialize(payment)


@router.post("", status_code=201)
def create_payment(
    payload: CreatePaymentRequest,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    payer_id = payload.user_id or user.id
    if payer_id != user.id and not user.is_admin:
        raise Forbidden("You can only record your own payments")
    get_document(db, "artwork", payload.artwork_id, "Artwork")

    if db["payment"].find_one({"artworkId": payload.artwork_id, "userId": payer_id}):
        raise ValidationFailed(DUPLICATE_PAYMENT)
    try:
        payment_id = create_document(
            db, "payment", Payment(user_id=payer_id, artwork_id=payload.artwork_id, amount=payload.amount)
        )
    except DuplicateKeyError:
        raise ValidationFailed(DUPLICATE_PAYMENT)
    return serialize(get_document(db, "payment", payment_id, "Payment"))


@router.put("/{payment_id}")
def update_payment(
    payment_id: str,
    payload: UpdatePaymentRequest,
    _: CurrentUser = Depends(require_roles(Role.ADMIN)),
    db: Database = Depends(get_db),
):
    return serialize(update_document(db, "payment", payment_id, {"amount": payload.amount}, "Payment"))


@router.delete("/{payment_id}")
def delete_payment(
    payment_id: str,
    _: CurrentUser = Depends(require_roles(Role.ADMIN)),
    db: Database = Depends(get_db),
):
    delete_document(db, "payment", payment_id, "Payment")
    return {"message": "Payment deleted"}
