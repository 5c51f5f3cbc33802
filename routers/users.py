from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import EmailStr, Field
from pymongo.database import Database

from database import create_document, delete_document, get_db, get_document, get_documents, to_object_id, update_document
from errors import Forbidden
from routers.auth import ensure_unique_user
from schemas import CamelModel, Role, User
from security import CurrentUser, ensure_owner_or_admin, get_current_user, hash_password, public_user, require_roles

router = APIRouter(prefix="/users", tags=["users"])


class CreateUserRequest(CamelModel):
    user_name: str = Field(..., min_length=3, max_length=30)
    email: EmailStr
    password: str = Field(..., min_length=6)
    avatar_url: Optional[str] = None
    role: Role = Role.BUYER


class UpdateUserRequest(CamelModel):
    user_name: Optional[str] = Field(None, min_length=3, max_length=30)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=6)
    avatar_url: Optional[str] = None
    role: Optional[Role] = None


@router.get("")
def list_users(limit: int = 100, db: Database = Depends(get_db)):
    return [public_user(u) for u in get_documents(db, "user", {}, limit)]


@router.get("/{user_id}")
def get_user(user_id: str, db: Database = Depends(get_db)):
    return public_user(get_document(db, "user", user_id, "User"))


@router.post("", status_code=201)
def create_user(
    payload: CreateUserRequest,
    _: CurrentUser = Depends(require_roles(Role.ADMIN)),
    db: Database = Depends(get_db),
):
    email = payload.email.lower()
    ensure_unique_user(db, email, payload.user_name)
    user = User(
        user_name=payload.user_name,
        email=email,
        password=hash_password(payload.password),
        role=payload.role,
        avatar_url=payload.avatar_url,
    )
    user_id = create_document(db, "user", user)
    return public_user(get_document(db, "user", user_id, "User"))


@router.put("/{user_id}")
def update_user(
    user_id: str,
    payload: UpdateUserRequest,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    ensure_owner_or_admin(user, user_id)
    changes = payload.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)
    if "role" in changes and not user.is_admin:
        raise Forbidden("Only admins can change roles")
    if "email" in changes:
        changes["email"] = changes["email"].lower()
    if "password" in changes:
        changes["password"] = hash_password(changes["password"])

    ensure_unique_user(db, changes.get("email"), changes.get("userName"), exclude_id=to_object_id(user_id, "User"))
    return public_user(update_document(db, "user", user_id, changes, "User"))


@router.delete("/{user_id}")
def delete_user(
    user_id: str,
    _: CurrentUser = Depends(require_roles(Role.ADMIN)),
    db: Database = Depends(get_db),
):
    delete_document(db, "user", user_id, "User")
    return {"message": "User deleted"}
