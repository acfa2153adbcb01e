from unittest.mock import MagicMock

import pytest
from pymongo.errors import DuplicateKeyError

from cart import CartService
from errors import NotFoundError, UnauthorizedError, ValidationError


@pytest.fixture
def product_id(make_product):
    return make_product("Prayer Mat", base_stock=50)


@pytest.fixture
def variant_product(make_product):
    variants = [
        {"id": "v-red", "price": 12.0, "stock": 3, "option_labels": ["Color: Red"]},
        {"id": "v-blue", "price": 14.0, "stock": 10, "option_labels": ["Color: Blue"]},
    ]
    return make_product("Scarf", has_variations=True, price_variants=variants, price=12.0)


def add(client, headers, **body):
    return client.post("/api/cart", json=body, headers=headers)


def test_repeated_adds_merge_into_one_line(client, user_headers, product_id):
    assert add(client, user_headers, productId=product_id, quantity=2).status_code == 200
    res = add(client, user_headers, productId=product_id, quantity=3)
    assert res.status_code == 200
    assert res.json()["quantity"] == 5

    cart = client.get("/api/cart", headers=user_headers).json()
    assert len(cart) == 1
    assert cart[0]["quantity"] == 5
    assert cart[0]["product"]["slug"] == "prayer-mat"


def test_variants_are_separate_lines(client, user_headers, variant_product):
    add(client, user_headers, productId=variant_product, priceVariantId="v-red", quantity=1)
    add(client, user_headers, productId=variant_product, priceVariantId="v-blue", quantity=2)
    add(client, user_headers, productId=variant_product, priceVariantId="v-red", quantity=1)

    cart = client.get("/api/cart", headers=user_headers).json()
    by_variant = {line["price_variant_id"]: line for line in cart}
    assert by_variant["v-red"]["quantity"] == 2
    assert by_variant["v-blue"]["quantity"] == 2
    assert by_variant["v-red"]["price_variant"]["option_labels"] == ["Color: Red"]


@pytest.mark.parametrize("quantity", [0, -1])
def test_rejects_non_positive_quantity(client, db, user_headers, product_id, quantity):
    res = add(client, user_headers, productId=product_id, quantity=quantity)
    assert res.status_code == 400
    assert db.cartline.count_documents({}) == 0


def test_rejects_missing_product_id(client, user_headers):
    assert add(client, user_headers, quantity=1).status_code == 400


def test_requires_login(client, product_id):
    assert add(client, {}, productId=product_id, quantity=1).status_code == 401
    assert client.get("/api/cart").status_code == 401


def test_unknown_product_is_not_found(client, user_headers):
    assert add(client, user_headers, productId="65a1b2c3d4e5f60718293a4b", quantity=1).status_code == 404


def test_variant_required_for_product_with_variations(client, user_headers, variant_product):
    assert add(client, user_headers, productId=variant_product, quantity=1).status_code == 400
    assert add(client, user_headers, productId=variant_product, priceVariantId="v-green", quantity=1).status_code == 404


def test_stock_is_checked(client, user_headers, variant_product):
    res = add(client, user_headers, productId=variant_product, priceVariantId="v-red", quantity=4)
    assert res.status_code == 400
    assert "available" in res.json()["detail"]


def test_patch_replaces_quantity(client, user_headers, product_id):
    line = add(client, user_headers, productId=product_id, quantity=2).json()
    res = client.patch(f"/api/cart/{line['id']}", json={"quantity": 4}, headers=user_headers)
    assert res.status_code == 200
    cart = client.get("/api/cart", headers=user_headers).json()
    assert cart[0]["quantity"] == 4


def test_patch_rejects_zero(client, user_headers, product_id):
    line = add(client, user_headers, productId=product_id, quantity=2).json()
    res = client.patch(f"/api/cart/{line['id']}", json={"quantity": 0}, headers=user_headers)
    assert res.status_code == 400


def test_patch_other_users_line_is_not_found(client, db, user_headers, admin_headers, product_id):
    line = add(client, admin_headers, productId=product_id, quantity=1).json()
    res = client.patch(f"/api/cart/{line['id']}", json={"quantity": 3}, headers=user_headers)
    assert res.status_code == 404


def test_delete_is_idempotent(client, user_headers, product_id):
    line = add(client, user_headers, productId=product_id, quantity=1).json()
    assert client.delete(f"/api/cart/{line['id']}", headers=user_headers).status_code == 200
    assert client.delete(f"/api/cart/{line['id']}", headers=user_headers).status_code == 200
    assert client.get("/api/cart", headers=user_headers).json() == []


def test_clear_cart(client, user_headers, product_id, variant_product):
    add(client, user_headers, productId=product_id, quantity=1)
    add(client, user_headers, productId=variant_product, priceVariantId="v-blue", quantity=1)
    res = client.delete("/api/cart", headers=user_headers)
    assert res.json() == {"success": True, "removed": 2}


def test_service_validates_before_touching_storage():
    db = MagicMock()
    service = CartService(db)
    with pytest.raises(ValidationError):
        service.add("user-1", "product-1", None, 0)
    with pytest.raises(UnauthorizedError):
        service.add(None, "product-1", None, 1)
    db.product.find_one.assert_not_called()
    db.cartline.find_one_and_update.assert_not_called()


def test_service_update_unknown_line(db):
    with pytest.raises(NotFoundError):
        CartService(db).update("user-1", "65a1b2c3d4e5f60718293a4b", 2)


def test_service_remove_reports_missing_line(db):
    assert CartService(db).remove("user-1", "garbage") is False


class RacingCartLines:
    """Collection wrapper that fails the first upsert the way a concurrent
    first-time add does, then replays scripted results or delegates."""

    def __init__(self, coll, *results):
        self.coll = coll
        self.results = list(results)
        self.calls = []

    def find_one_and_update(self, *args, **kwargs):
        self.calls.append(kwargs.get("upsert", False))
        if len(self.calls) == 1:
            raise DuplicateKeyError("E11000 duplicate key error collection: cartline")
        if self.results:
            return self.results.pop(0)
        return self.coll.find_one_and_update(*args, **kwargs)

    def __getattr__(self, name):
        return getattr(self.coll, name)


def test_lost_insert_race_increments_the_winning_line(db, user, product_id):
    service = CartService(db)
    user_id = str(user["_id"])
    service.add(user_id, product_id, None, 2)

    service.coll = RacingCartLines(db.cartline)
    line = service.add(user_id, product_id, None, 3)

    assert line["quantity"] == 5
    assert service.coll.calls == [True, False]
    assert db.cartline.count_documents({}) == 1


def test_lost_insert_race_recreates_a_line_removed_meanwhile(db, user, product_id):
    service = CartService(db)
    user_id = str(user["_id"])
    service.coll = RacingCartLines(db.cartline, None)

    line = service.add(user_id, product_id, None, 3)

    assert line["quantity"] == 3
    assert service.coll.calls == [True, False, True]
    assert db.cartline.count_documents({"user_id": user_id}) == 1
