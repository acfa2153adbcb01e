from typing import Any, Dict, List, Optional

import structlog
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import now
from errors import NotFoundError, UnauthorizedError, ValidationError
from utils import maybe_oid, oid_to_str

logger = structlog.get_logger()


def _check_quantity(quantity: Any) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError("Quantity must be at least 1")


class CartService:
    """Per-user cart lines, unique on (user_id, product_id, price_variant_id).

    A missing variant is stored as an explicit null and is part of the key, so
    "no variant" never merges into a line that has one.
    """

    def __init__(self, db: Database):
        self.db = db
        self.coll = db.cartline

    # ---------- helpers ----------
    def _product(self, product_id: str) -> Dict[str, Any]:
        _id = maybe_oid(product_id)
        product = self.db.product.find_one({"_id": _id}) if _id else None
        if not product:
            raise NotFoundError("Product not found")
        return product

    @staticmethod
    def _variant(product: Dict[str, Any], price_variant_id: Optional[str]) -> Optional[Dict[str, Any]]:
        if not product.get("has_variations"):
            if price_variant_id:
                raise ValidationError("This product has no price variants")
            return None
        if not price_variant_id:
            raise ValidationError("priceVariantId is required for a product with variations")
        for v in product.get("price_variants") or []:
            if v.get("id") == price_variant_id:
                return v
        raise NotFoundError("Price variant not found")

    @staticmethod
    def _check_stock(product: Dict[str, Any], variant: Optional[Dict[str, Any]], quantity: int) -> None:
        available = variant.get("stock", 0) if variant else (product.get("base_stock") or 0)
        if available < quantity:
            raise ValidationError(f"Only {available} item(s) available")

    @staticmethod
    def _present(line: Dict[str, Any], product: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        out = oid_to_str(line)
        out["product"] = None
        out["price_variant"] = None
        if product:
            out["product"] = {
                "name": product.get("name"),
                "slug": product.get("slug"),
                "featured_image": product.get("featured_image"),
            }
            for v in product.get("price_variants") or []:
                if v.get("id") == line.get("price_variant_id"):
                    out["price_variant"] = {
                        "price": v.get("price"),
                        "stock": v.get("stock"),
                        "option_labels": v.get("option_labels", []),
                    }
                    break
        return out

    def _own_line(self, user_id: str, line_id: str) -> Dict[str, Any]:
        _id = maybe_oid(line_id)
        line = self.coll.find_one({"_id": _id, "user_id": user_id}) if _id else None
        if not line:
            raise NotFoundError("Cart item not found")
        return line

    # ---------- operations ----------
    def list(self, user_id: str) -> List[Dict[str, Any]]:
        lines = list(self.coll.find({"user_id": user_id}).sort("created_at", DESCENDING))
        ids = [maybe_oid(l["product_id"]) for l in lines]
        products = {
            str(p["_id"]): p
            for p in self.db.product.find({"_id": {"$in": [i for i in ids if i]}})
        }
        return [self._present(l, products.get(l["product_id"])) for l in lines]

    def add(self, user_id: Optional[str], product_id: Optional[str], price_variant_id: Optional[str] = None, quantity: int = 1) -> Dict[str, Any]:
        _check_quantity(quantity)
        if not user_id:
            raise UnauthorizedError()
        if not product_id:
            raise ValidationError("productId is required")

        product = self._product(product_id)
        variant = self._variant(product, price_variant_id)
        self._check_stock(product, variant, quantity)

        key = {
            "user_id": user_id,
            "product_id": str(product["_id"]),
            "price_variant_id": variant["id"] if variant else None,
        }
        stamp = now()
        increment = {"$inc": {"quantity": quantity}, "$set": {"updated_at": stamp}}
        upsert = {**increment, "$setOnInsert": {"created_at": stamp}}
        try:
            line = self.coll.find_one_and_update(key, upsert, upsert=True, return_document=ReturnDocument.AFTER)
        except DuplicateKeyError:
            # lost the insert race to a concurrent add; the line exists now
            line = self.coll.find_one_and_update(key, increment, return_document=ReturnDocument.AFTER)
            if line is None:
                # the winner's line was removed before our increment landed
                line = self.coll.find_one_and_update(key, upsert, upsert=True, return_document=ReturnDocument.AFTER)
        logger.info("cart_line_merged", user_id=user_id, product_id=key["product_id"],
                    price_variant_id=key["price_variant_id"], quantity=line["quantity"])
        return self._present(line, product)

    def update(self, user_id: str, line_id: str, quantity: int) -> Dict[str, Any]:
        _check_quantity(quantity)
        line = self._own_line(user_id, line_id)
        product = self._product(line["product_id"])
        variant = self._variant(product, line.get("price_variant_id"))
        self._check_stock(product, variant, quantity)
        updated = self.coll.find_one_and_update(
            {"_id": line["_id"]},
            {"$set": {"quantity": quantity, "updated_at": now()}},
            return_document=ReturnDocument.AFTER,
        )
        return self._present(updated, product)

    def remove(self, user_id: str, line_id: str) -> bool:
        """Delete one of the user's lines. Returns False when there was nothing to delete."""
        _id = maybe_oid(line_id)
        if _id is None:
            return False
        return self.coll.delete_one({"_id": _id, "user_id": user_id}).deleted_count > 0

    def clear(self, user_id: str) -> int:
        return self.coll.delete_many({"user_id": user_id}).deleted_count
