import secrets
from datetime import timedelta
from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, BackgroundTasks, Depends, Response
from pydantic import EmailStr, Field, field_validator
from pymongo.database import Database

from config import settings
from database import as_utc, create_document, get_db, get_document, utcnow
from errors import Conflict, NotAuthenticated, NotFound, ValidationFailed
from logger import logger
from notifications import Notifier, get_notifier
from schemas import CamelModel, Role, User
from security import (
    CurrentUser,
    clear_auth_cookie,
    create_access_token,
    get_current_user,
    hash_password,
    public_user,
    set_auth_cookie,
    verify_password,
)

router = APIRouter(prefix="/auth", tags=["auth"])


class RegisterRequest(CamelModel):
    user_name: str = Field(..., min_length=3, max_length=30)
    email: EmailStr
    password: str = Field(..., min_length=6)
    avatar_url: Optional[str] = None
    role: Role = Role.BUYER

    @field_validator("user_name", mode="before")
    @classmethod
    def _trim(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email(cls, value):
        return value.strip().lower() if isinstance(value, str) else value


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ResendVerificationRequest(CamelModel):
    email: EmailStr


def ensure_unique_user(db: Database, email: Optional[str], user_name: Optional[str], exclude_id: Optional[ObjectId] = None):
    not_self = {"_id": {"$ne": exclude_id}} if exclude_id else {}
    if email and db["user"].find_one({"email": email, **not_self}):
        raise Conflict("Email already in use")
    if user_name and db["user"].find_one({"userName": user_name, **not_self}):
        raise Conflict("Username already in use")


def _new_verification():
    return secrets.token_urlsafe(32), utcnow() + timedelta(hours=settings.EMAIL_VERIFICATION_HOURS)


@router.post("/signup", status_code=201)
@router.post("/register", status_code=201)
def signup(
    payload: RegisterRequest,
    response: Response,
    background_tasks: BackgroundTasks,
    db: Database = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    # Admin accounts are never self-service.
    if payload.role == Role.ADMIN:
        raise ValidationFailed("Cannot register as admin")
    ensure_unique_user(db, payload.email, payload.user_name)

    token, expires = _new_verification()
    user = User(
        user_name=payload.user_name,
        email=payload.email,
        password=hash_password(payload.password),
        role=payload.role,
        avatar_url=payload.avatar_url,
        verification_token=token,
        verification_token_expires=expires,
    )
    user_id = create_document(db, "user", user)
    doc = get_document(db, "user", user_id, "User")
    logger.info("User registered: %s (%s)", payload.email, payload.role)

    background_tasks.add_task(notifier.verification, doc, token)
    set_auth_cookie(response, create_access_token(user_id, doc["role"]))
    return {"msg": "User registered", "data": public_user(doc)}


@router.post("/login")
def login(payload: LoginRequest, response: Response, db: Database = Depends(get_db)):
    doc = db["user"].find_one({"email": payload.email.lower()})
    if not doc or not verify_password(payload.password, doc.get("password")):
        logger.warning("Login failed for %s", payload.email)
        raise NotAuthenticated("Invalid credentials")

    set_auth_cookie(response, create_access_token(str(doc["_id"]), doc.get("role", Role.BUYER.value)))
    return {"msg": "User logged in", "data": public_user(doc)}


@router.post("/logout")
def logout(response: Response):
    clear_auth_cookie(response)
    return {"msg": "User logged out"}


@router.get("/me")
def me(user: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    return public_user(get_document(db, "user", user.id, "User"))


@router.get("/verify-email")
def verify_email(token: str, db: Database = Depends(get_db)):
    if not token:
        raise ValidationFailed("Token is required")
    doc = db["user"].find_one({"verificationToken": token})
    if not doc:
        raise ValidationFailed("Invalid or expired verification token")
    expires = as_utc(doc.get("verificationTokenExpires"))
    if expires is not None and expires < utcnow():
        raise ValidationFailed("Invalid or expired verification token")

    db["user"].update_one(
        {"_id": doc["_id"]},
        {
            "$set": {"isVerified": True, "updatedAt": utcnow()},
            "$unset": {"verificationToken": "", "verificationTokenExpires": ""},
        },
    )
    logger.info("Email verified for %s", doc.get("email"))
    return {"success": True, "message": "Email verified successfully"}


@router.post("/resend-verification")
def resend_verification(
    payload: ResendVerificationRequest,
    background_tasks: BackgroundTasks,
    db: Database = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    doc = db["user"].find_one({"email": payload.email.lower()})
    if not doc:
        raise NotFound("User not found")
    if doc.get("isVerified"):
        raise ValidationFailed("Email is already verified")

    token, expires = _new_verification()
    db["user"].update_one(
        {"_id": doc["_id"]},
        {"$set": {"verificationToken": token, "verificationTokenExpires": expires, "updatedAt": utcnow()}},
    )
    background_tasks.add_task(notifier.verification, doc, token)
    return {"success": True, "message": "Verification email sent"}
