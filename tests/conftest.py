from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

from main import create_app
from security import create_token, session_for
from services import AuthService
from settings import Settings
from utils import slugify

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin-pass"
BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def settings():
    return Settings(
        database_name="storefront_test",
        auth_secret="test-secret",
        admin_email=ADMIN_EMAIL,
        admin_password=ADMIN_PASSWORD,
    )


@pytest.fixture
def mongo():
    return mongomock.MongoClient()


@pytest.fixture
def db(mongo, settings):
    return mongo[settings.database_name]


@pytest.fixture
def client(settings, mongo):
    app = create_app(settings, client=mongo)
    with TestClient(app) as c:
        yield c


def bearer(user, settings):
    return {"Authorization": f"Bearer {create_token(session_for(user), settings.auth_secret)}"}


@pytest.fixture
def admin_headers(client, db, settings):
    return bearer(db.user.find_one({"email": ADMIN_EMAIL}), settings)


@pytest.fixture
def user(client, db):
    return AuthService(db).register("shopper@example.com", "secret-pw", "Shopper")


@pytest.fixture
def user_headers(user, settings):
    return bearer(user, settings)


def add_product(db, name, category_id=None, collection_id=None, minutes=0, **extra):
    """Insert a product document directly, bypassing the service."""
    doc = {
        "name": name,
        "slug": slugify(name),
        "category_id": category_id,
        "collection_id": collection_id,
        "labels": [],
        "has_variations": False,
        "base_price": 10.0,
        "base_stock": 20,
        "price": 10.0,
        "price_variants": [],
        "created_at": BASE_TIME + timedelta(minutes=minutes),
        "updated_at": BASE_TIME + timedelta(minutes=minutes),
    }
    doc.update(extra)
    return str(db.product.insert_one(doc).inserted_id)


@pytest.fixture
def make_product(db):
    def _make(name, **kwargs):
        return add_product(db, name, **kwargs)
    return _make
