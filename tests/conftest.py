# tests/conftest.py
from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

import blog
import currency
import store
from config import get_settings
from database import create_document, get_db, new_id
from events import EVENTS
from main import app
from users import USERS


@pytest.fixture(autouse=True)
def _reset_caches():
    """Module level caches outlive a test; start every test cold."""
    get_settings.cache_clear()
    store._category_cache.clear()
    blog._posts_cache.clear()
    currency._rates_cache.clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def db():
    client = mongomock.MongoClient()
    name = f"test_{new_id().replace('-', '')}"
    yield client[name]
    client.drop_database(name)


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _user(db, role="user", email=None, **extra):
    user_id = new_id()
    create_document(db, USERS, {
        "id": user_id,
        "email": email or f"{user_id[:8]}@example.com",
        "first_name": "Ana" if role == "user" else "Admin",
        "last_name": "Quispe",
        "role": role,
        "is_active": True,
        **extra,
    })
    return db[USERS].find_one({"_id": user_id}) | {"id": user_id}


@pytest.fixture
def admin(db):
    return _user(db, role="admin", email="admin@example.com")


@pytest.fixture
def user(db):
    return _user(db, email="ana@example.com")


@pytest.fixture
def other_user(db):
    return _user(db, email="luis@example.com")


@pytest.fixture
def event(db, admin):
    event_id = create_document(db, EVENTS, {
        "name": "Festival de Verano",
        "slug": "festival-de-verano",
        "currency": "USD",
        "status": "published",
        "start_date": datetime.now(timezone.utc) + timedelta(days=60),
        "zones": [
            {"id": "vip", "name": "VIP", "capacity": 100, "is_active": True},
            {"id": "general", "name": "General", "capacity": 1000, "is_active": True},
            {"id": "closed", "name": "Closed", "capacity": 10, "is_active": False},
        ],
        "sales_phases": [
            {
                "id": "presale",
                "name": "Preventa",
                "is_active": True,
                "zones_pricing": [
                    {"zone_id": "vip", "price": 100.0, "available": 100, "sold": 0},
                    {"zone_id": "general", "price": 33.35, "available": 1000, "sold": 0},
                    {"zone_id": "closed", "price": 10.0, "available": 10, "sold": 0},
                ],
            },
            {"id": "old", "name": "Early bird", "is_active": False, "zones_pricing": []},
        ],
        "sell_tickets_on_platform": True,
        "allow_offline_payments": True,
        "allow_installment_payments": True,
        "created_by": admin["id"],
    })
    return db[EVENTS].find_one({"_id": event_id}) | {"id": event_id}


@pytest.fixture
def purchase_request(event):
    def make(**overrides):
        request = {
            "event_id": event["id"],
            "phase_id": "presale",
            "zone_id": "vip",
            "quantity": 2,
            "payment_method": "offline",
            "offline_payment_method": "yape",
            "payment_proof_url": "/api/files/payment-proofs/u/1/proof.jpg",
            "payment_type": "full",
        }
        request.update(overrides)
        return request
    return make
