"""
pytest configuration and shared fixtures.

Tests run against an in-memory mongomock database and a mailer that records
messages instead of calling Resend.
"""
import os
import sys
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

import mongomock
import pytest
from bson import ObjectId

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

# Must be set before config.settings is first imported.
os.environ.pop("DATABASE_URL", None)
os.environ.pop("DATABASE_NAME", None)
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["EMAILS_ENABLED"] = "false"
os.environ["JWT_SECRET"] = "test-secret"

from fastapi.testclient import TestClient  # noqa: E402

from database import create_document, ensure_indexes, get_db, utcnow  # noqa: E402
from errors import EmailDeliveryError  # noqa: E402
from notifications import Notifier, get_notifier  # noqa: E402
from schemas import Artwork, Auction, Role, User  # noqa: E402
from security import create_access_token, hash_password  # noqa: E402


def pytest_configure(config):
    config.addinivalue_line("markers", "api: tests that go through the HTTP layer")


# =============================================================================
# Mail
# =============================================================================


class FakeMailer:
    """Records sent messages; addresses in `failing` raise like a rejected send"""

    def __init__(self, failing: Optional[set] = None):
        self.sent: List[Dict[str, str]] = []
        self.failing = set(failing or ())

    def send(self, to: str, subject: str, html: str):
        if to in self.failing:
            raise EmailDeliveryError(to, "HTTP 500: boom")
        self.sent.append({"to": to, "subject": subject, "html": html})
        return {"id": f"msg-{len(self.sent)}"}

    def subjects_for(self, address: str) -> List[str]:
        return [m["subject"] for m in self.sent if m["to"] == address]


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def notifier(mailer) -> Notifier:
    return Notifier(mailer)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def db():
    database = mongomock.MongoClient()["artrise_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role: Role = Role.BUYER, user_name: Optional[str] = None, email: Optional[str] = None, password="secret123"):
        counter["n"] += 1
        n = counter["n"]
        user = User(
            user_name=user_name or f"user{n}",
            email=email or f"user{n}@example.com",
            password=hash_password(password),
            role=role,
            is_verified=True,
        )
        user_id = create_document(db, "user", user)
        return db["user"].find_one({"_id": ObjectId(user_id)}) | {"id": user_id}

    return _make


@pytest.fixture
def seller(make_user):
    return make_user(Role.SELLER, user_name="painter", email="painter@example.com")


@pytest.fixture
def make_auction(db, seller):
    def _make(artist: Optional[Dict[str, Any]] = None, min_increment: float = 10, ends_in=timedelta(days=3)):
        auction = Auction(
            title="Spring Collection",
            description="Fresh works",
            min_increment_default=min_increment,
            end_date=utcnow() + ends_in,
            artist_id=(artist or seller)["id"],
        )
        auction_id = create_document(db, "auction", auction)
        return db["auction"].find_one({"_id": ObjectId(auction_id)}) | {"id": auction_id}

    return _make


@pytest.fixture
def make_artwork(db):
    def _make(auction: Dict[str, Any], start_price: float = 100, ends_in=timedelta(days=1), title="Blue Horizon", **extra):
        artwork = Artwork(
            auction_id=auction["id"],
            title=title,
            description="Oil on canvas",
            price=start_price * 2,
            currency="EUR",
            images="https://img.example.com/a.jpg",
            start_price=start_price,
            end_date=utcnow() + ends_in,
            **extra,
        )
        artwork_id = create_document(db, "artwork", artwork)
        return db["artwork"].find_one({"_id": ObjectId(artwork_id)})

    return _make


# =============================================================================
# HTTP
# =============================================================================


def auth_headers(user: Dict[str, Any]) -> Dict[str, str]:
    token = create_access_token(str(user["_id"]), user.get("role", Role.BUYER.value))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(db, notifier):
    from main import app

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_notifier] = lambda: notifier
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
