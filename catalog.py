"""
Products and the related-products resolver.
"""
import random
from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from pymongo.errors import PyMongoError

from errors import NotFoundError, UpstreamError, ValidationError
from services import CategoryService, CollectionService, EntityService, text_search
from utils import maybe_oid, oid_to_str

logger = structlog.get_logger()

# "none" and "all" are what the storefront filters send when nothing is selected
SENTINELS = {"", "none", "all", "null", "undefined"}

SORTS = {
    "newest": [("created_at", DESCENDING)],
    "oldest": [("created_at", ASCENDING)],
    "name-asc": [("name", ASCENDING)],
    "name-desc": [("name", DESCENDING)],
    "price-low": [("price", ASCENDING), ("created_at", DESCENDING)],
    "price-high": [("price", DESCENDING), ("created_at", DESCENDING)],
}


def is_sentinel(value: Optional[str]) -> bool:
    return value is None or value.strip().lower() in SENTINELS


class ProductService(EntityService):
    collection_name = "product"
    label = "Product"
    slug_source = "name"

    def _group_id(self, service_cls, key: Optional[str]) -> Optional[str]:
        """Resolve a category/collection given by id or slug to its id string.

        An unknown key is returned unchanged so the filter simply matches nothing.
        """
        if is_sentinel(key):
            return None
        try:
            return service_cls(self.db).get_by_id_or_slug(key)["id"]
        except NotFoundError:
            return key

    def _prepare(self, data, existing):
        for field, service_cls in (("category_id", CategoryService), ("collection_id", CollectionService)):
            value = data.get(field)
            if is_sentinel(value):
                data[field] = None
            elif self.db[service_cls.collection_name].count_documents({"_id": maybe_oid(value)}, limit=1) == 0:
                raise ValidationError(f"Unknown {field.replace('_id', '')}: {value}")

        variants = data.get("price_variants") or []
        if data.get("has_variations"):
            if not variants:
                raise ValidationError("A product with variations needs at least one price variant")
            for v in variants:
                v["id"] = v.get("id") or str(ObjectId())
            data["price"] = min(v["price"] for v in variants)
        else:
            if data.get("base_price") is None:
                raise ValidationError("base_price is required for a product without variations")
            data["price_variants"] = []
            data["price"] = data["base_price"]
        return data

    def _after_delete(self, doc):
        removed = self.db.cartline.delete_many({"product_id": str(doc["_id"])}).deleted_count
        if removed:
            logger.info("cart_lines_removed", product_id=str(doc["_id"]), count=removed)

    def search(
        self,
        category: Optional[str] = None,
        collection: Optional[str] = None,
        sort_by: str = "newest",
        q: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Dict[str, Any]:
        if limit > 100:
            raise ValidationError("limit must be at most 100")
        if sort_by not in SORTS:
            raise ValidationError(f"Unknown sort: {sort_by}")
        filt: Dict[str, Any] = {}
        category_id = self._group_id(CategoryService, category)
        if category_id:
            filt["category_id"] = category_id
        collection_id = self._group_id(CollectionService, collection)
        if collection_id:
            filt["collection_id"] = collection_id
        if q and q.strip():
            filt.update(text_search(["name", "description"], q))
        return self.paginate(filt, SORTS[sort_by], page, limit)

    def by_label(self, label: str, limit: int = 8) -> List[Dict[str, Any]]:
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        return self.list({"labels": label}, sort=[("created_at", DESCENDING)], limit=limit)


class RelatedProductsResolver:
    """Fills up to `limit` recommendations for a product: same collection,
    then same category, then newest, shuffled before returning."""

    def __init__(self, db: Database, default_limit: int = 8, rng: Optional[random.Random] = None):
        self.coll = db.product
        self.default_limit = default_limit
        self.rng = rng or random.Random()

    def _fetch(self, tier: str, filt: Dict[str, Any], limit: int, sort=None) -> List[Dict[str, Any]]:
        try:
            cursor = self.coll.find(filt)
            if sort:
                cursor = cursor.sort(sort)
            return list(cursor.limit(limit))
        except PyMongoError as e:
            raise UpstreamError(f"related products: {tier} tier failed: {e}") from e

    def resolve(
        self,
        product_id: Optional[str],
        collection_id: Optional[str] = None,
        category_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        if not product_id:
            raise ValidationError("productId is required")
        exclude = maybe_oid(product_id)
        if exclude is None:
            raise ValidationError("Invalid productId")
        limit = self.default_limit if limit is None else limit
        if limit < 1:
            raise ValidationError("limit must be at least 1")

        found: List[Dict[str, Any]] = []
        seen: List[ObjectId] = [exclude]

        if not is_sentinel(collection_id):
            found += self._fetch("collection", {"collection_id": collection_id, "_id": {"$nin": seen}}, limit)
            seen += [p["_id"] for p in found]

        if len(found) < limit and not is_sentinel(category_id):
            batch = self._fetch("category", {"category_id": category_id, "_id": {"$nin": seen}}, limit - len(found))
            found += batch
            seen += [p["_id"] for p in batch]

        if len(found) < limit:
            found += self._fetch(
                "recent", {"_id": {"$nin": seen}}, limit - len(found), sort=[("created_at", DESCENDING)]
            )

        self.rng.shuffle(found)
        return [oid_to_str(p) for p in found]
