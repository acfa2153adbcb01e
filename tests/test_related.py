import random

import pytest
from pymongo.errors import PyMongoError

from catalog import RelatedProductsResolver
from errors import UpstreamError, ValidationError


@pytest.fixture
def catalog(make_product):
    """Viewed product plus 3 collection mates, 3 category mates and 5 others."""
    viewed = make_product("Viewed", category_id="cat1", collection_id="col1", minutes=0)
    collection = [make_product(f"Col {i}", category_id="cat1", collection_id="col1", minutes=i) for i in range(1, 4)]
    category = [make_product(f"Cat {i}", category_id="cat1", minutes=10 + i) for i in range(1, 4)]
    others = [make_product(f"Other {i}", minutes=100 + i) for i in range(1, 6)]
    return {"viewed": viewed, "collection": collection, "category": category, "others": others}


def resolver(db, limit=8):
    return RelatedProductsResolver(db, default_limit=limit, rng=random.Random(7))


def ids(products):
    return [p["id"] for p in products]


def test_fills_by_collection_then_category_then_newest(db, catalog):
    result = ids(resolver(db).resolve(catalog["viewed"], collection_id="col1", category_id="cat1"))
    assert len(result) == 8
    # two newest "others" fill the remainder
    expected = set(catalog["collection"] + catalog["category"] + catalog["others"][-2:])
    assert set(result) == expected


def test_never_returns_viewed_product_or_duplicates(db, catalog):
    result = ids(resolver(db).resolve(catalog["viewed"], collection_id="col1", category_id="cat1", limit=20))
    assert catalog["viewed"] not in result
    assert len(result) == len(set(result))
    # whole catalog minus the viewed product
    assert len(result) == 11


def test_small_limit_is_served_from_collection_only(db, catalog):
    result = ids(resolver(db).resolve(catalog["viewed"], collection_id="col1", category_id="cat1", limit=2))
    assert len(result) == 2
    assert set(result) <= set(catalog["collection"])


@pytest.mark.parametrize("collection_id", [None, "", "none", "all"])
def test_sentinel_collection_skips_first_tier(db, catalog, collection_id):
    result = ids(resolver(db).resolve(catalog["viewed"], collection_id=collection_id, limit=2))
    # no category either, so straight to the two newest products
    assert set(result) == set(catalog["others"][-2:])


def test_category_tier_without_collection(db, catalog):
    result = ids(resolver(db).resolve(catalog["viewed"], category_id="cat1", limit=6))
    assert set(result) == set(catalog["collection"] + catalog["category"])


def test_uses_configured_default_limit(db, catalog):
    assert len(resolver(db, limit=5).resolve(catalog["viewed"])) == 5


def test_requires_product_id(db):
    with pytest.raises(ValidationError):
        resolver(db).resolve(None)
    with pytest.raises(ValidationError):
        resolver(db).resolve("nope")


def test_rejects_non_positive_limit(db, catalog):
    with pytest.raises(ValidationError):
        resolver(db).resolve(catalog["viewed"], limit=0)


class _BrokenCategoryTier:
    def __init__(self, coll):
        self.coll = coll

    def find(self, filt):
        if "category_id" in filt:
            raise PyMongoError("connection reset")
        return self.coll.find(filt)


def test_tier_failure_aborts_whole_call(db, catalog):
    r = resolver(db)
    r.coll = _BrokenCategoryTier(r.coll)
    with pytest.raises(UpstreamError) as exc:
        r.resolve(catalog["viewed"], collection_id="col1", category_id="cat1")
    assert "category" in exc.value.message


def test_related_endpoint(client, catalog):
    res = client.get(
        "/api/products",
        params={"action": "related", "productId": catalog["viewed"], "collectionId": "col1", "categoryId": "cat1"},
    )
    assert res.status_code == 200
    body = res.json()
    assert len(body) == 8
    assert catalog["viewed"] not in ids(body)


def test_related_endpoint_with_limit(client, catalog):
    res = client.get("/api/products/related", params={"productId": catalog["viewed"], "limit": 3})
    assert res.status_code == 200
    assert len(res.json()) == 3


def test_related_endpoint_requires_product_id(client):
    res = client.get("/api/products", params={"action": "related"})
    assert res.status_code == 400


def test_related_endpoint_hides_upstream_detail(client, catalog, monkeypatch):
    def boom(self, tier, filt, limit, sort=None):
        raise UpstreamError(f"{tier} tier failed: secret host 10.0.0.5")

    monkeypatch.setattr(RelatedProductsResolver, "_fetch", boom)
    res = client.get("/api/products/related", params={"productId": catalog["viewed"]})
    assert res.status_code == 500
    assert res.json() == {"detail": "Internal server error"}
