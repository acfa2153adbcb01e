"""
Entity services: one thin CRUD wrapper per collection.

Route handlers in main.py build a service per request from the Database
handle stored on the app and call exactly one method on it.
"""
import math
import re
from typing import Any, Dict, List, Optional, Tuple, Union

import structlog
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, UpdateOne
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, get_documents, now
from errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from security import USER_ROLE, ADMIN_ROLE, hash_password, verify_password
from utils import maybe_oid, oid, oid_to_str, require_slug

logger = structlog.get_logger()

Payload = Union[BaseModel, Dict[str, Any]]


def text_search(fields: List[str], q: str) -> Dict[str, Any]:
    pattern = re.escape(q.strip())
    return {"$or": [{f: {"$regex": pattern, "$options": "i"}} for f in fields]}


class EntityService:
    collection_name = ""
    label = "Record"
    # field the slug is derived from; None for entities without a slug
    slug_source: Optional[str] = None
    default_sort: List[Tuple[str, int]] = [("created_at", DESCENDING)]

    def __init__(self, db: Database):
        self.db = db
        self.coll = db[self.collection_name]

    # ---------- reads ----------
    def list(self, filter_dict: Optional[Dict[str, Any]] = None, sort=None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        docs = get_documents(self.db, self.collection_name, filter_dict, limit, sort or self.default_sort)
        return [oid_to_str(d) for d in docs]

    def paginate(self, filter_dict: Dict[str, Any], sort, page: int, limit: int) -> Dict[str, Any]:
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be at least 1")
        total = self.coll.count_documents(filter_dict)
        cursor = self.coll.find(filter_dict).sort(sort).skip((page - 1) * limit).limit(limit)
        return {
            "items": [oid_to_str(d) for d in cursor],
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit) if total else 0,
        }

    def _find(self, id_str: str) -> Dict[str, Any]:
        _id = maybe_oid(id_str)
        doc = self.coll.find_one({"_id": _id}) if _id else None
        if not doc:
            raise NotFoundError(f"{self.label} not found")
        return doc

    def get(self, id_str: str) -> Dict[str, Any]:
        return oid_to_str(self._find(id_str))

    def _find_by_id_or_slug(self, key: str) -> Dict[str, Any]:
        doc = None
        _id = maybe_oid(key)
        if _id:
            doc = self.coll.find_one({"_id": _id})
        if doc is None and self.slug_source:
            doc = self.coll.find_one({"slug": key})
        if not doc:
            raise NotFoundError(f"{self.label} not found")
        return doc

    def get_by_id_or_slug(self, key: str) -> Dict[str, Any]:
        return oid_to_str(self._find_by_id_or_slug(key))

    # ---------- writes ----------
    def _prepare(self, data: Dict[str, Any], existing: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        return data

    def _check_dependents(self, doc: Dict[str, Any]) -> None:
        pass

    def _after_delete(self, doc: Dict[str, Any]) -> None:
        pass

    def _unique_slug(self, source: str, exclude_id=None) -> str:
        slug = require_slug(source)
        query: Dict[str, Any] = {"slug": slug}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        if self.coll.count_documents(query, limit=1):
            raise ConflictError(f'{self.label} with slug "{slug}" already exists')
        return slug

    def _resolve_slug(self, data: Dict[str, Any], existing: Optional[Dict[str, Any]]) -> str:
        requested = data.get("slug")
        if existing is None:
            return self._unique_slug(requested or data[self.slug_source])
        if requested:
            return self._unique_slug(requested, existing["_id"])
        if data.get(self.slug_source) != existing.get(self.slug_source):
            return self._unique_slug(data[self.slug_source], existing["_id"])
        return existing["slug"]

    @staticmethod
    def _to_dict(payload: Payload) -> Dict[str, Any]:
        if isinstance(payload, BaseModel):
            return payload.model_dump()
        return dict(payload)

    def create(self, payload: Payload) -> Dict[str, Any]:
        data = self._prepare(self._to_dict(payload), None)
        if self.slug_source:
            data["slug"] = self._resolve_slug(data, None)
        try:
            _id = create_document(self.db, self.collection_name, data)
        except DuplicateKeyError as e:
            raise ConflictError(f"{self.label} already exists") from e
        logger.info("entity_created", entity=self.collection_name, id=_id)
        return self.get(_id)

    def _replace(self, existing: Dict[str, Any], payload: Payload) -> Dict[str, Any]:
        data = self._prepare(self._to_dict(payload), existing)
        if self.slug_source:
            data["slug"] = self._resolve_slug(data, existing)
        data["updated_at"] = now()
        try:
            self.coll.update_one({"_id": existing["_id"]}, {"$set": data})
        except DuplicateKeyError as e:
            raise ConflictError(f"{self.label} already exists") from e
        logger.info("entity_updated", entity=self.collection_name, id=str(existing["_id"]))
        return oid_to_str(self.coll.find_one({"_id": existing["_id"]}))

    def update(self, id_str: str, payload: Payload) -> Dict[str, Any]:
        return self._replace(self._find(id_str), payload)

    def _remove(self, doc: Dict[str, Any]) -> None:
        self._check_dependents(doc)
        self.coll.delete_one({"_id": doc["_id"]})
        self._after_delete(doc)
        logger.info("entity_deleted", entity=self.collection_name, id=str(doc["_id"]))

    def delete(self, id_str: str) -> None:
        self._remove(self._find(id_str))

    def update_by_id_or_slug(self, key: str, payload: Payload) -> Dict[str, Any]:
        return self._replace(self._find_by_id_or_slug(key), payload)

    def delete_by_id_or_slug(self, key: str) -> None:
        self._remove(self._find_by_id_or_slug(key))


class _ProductGroupService(EntityService):
    """Categories and collections: named, slugged, referenced by products."""

    slug_source = "name"
    default_sort = [("name", ASCENDING)]
    reference_field = ""

    def _check_dependents(self, doc):
        count = self.db.product.count_documents({self.reference_field: str(doc["_id"])})
        if count:
            raise ConflictError(
                f"{self.label} cannot be deleted: it is used by {count} product(s)"
            )


class CategoryService(_ProductGroupService):
    collection_name = "category"
    label = "Category"
    reference_field = "category_id"


class CollectionService(_ProductGroupService):
    collection_name = "collection"
    label = "Collection"
    reference_field = "collection_id"


class ArticleService(EntityService):
    collection_name = "article"
    label = "Article"
    slug_source = "title"

    def _prepare(self, data, existing):
        if data.get("status") == "published":
            data["published_at"] = (existing or {}).get("published_at") or now()
        else:
            data["published_at"] = None
        return data

    def search(self, status: Optional[str], q: Optional[str], page: int, limit: int) -> Dict[str, Any]:
        filt: Dict[str, Any] = {}
        if status and status != "all":
            filt["status"] = status
        if q and q.strip():
            filt.update(text_search(["title", "excerpt"], q))
        return self.paginate(filt, [("created_at", DESCENDING)], page, limit)


class BannerService(EntityService):
    collection_name = "banner"
    label = "Banner"

    def list_banners(self, active_only: bool = False) -> List[Dict[str, Any]]:
        return self.list({"active": True} if active_only else {})


class FaqService(EntityService):
    collection_name = "faq"
    label = "FAQ"
    default_sort = [("order", ASCENDING), ("created_at", ASCENDING)]

    def list_faqs(self, q: Optional[str] = None) -> List[Dict[str, Any]]:
        filt = text_search(["question", "answer"], q) if q and q.strip() else {}
        return self.list(filt)

    def _prepare(self, data, existing):
        if existing is not None:
            data["order"] = existing.get("order", 0)
            return data
        last = self.coll.find_one({}, sort=[("order", DESCENDING)])
        data["order"] = (last.get("order", 0) + 1) if last else 0
        return data

    def reorder(self, positions: List[Any]) -> int:
        if not positions:
            raise ValidationError("At least one FAQ position is required")
        ops = []
        ids = set()
        for p in positions:
            item = self._to_dict(p)
            _id = oid(item.get("id"))
            ids.add(_id)
            ops.append(UpdateOne({"_id": _id}, {"$set": {"order": int(item["order"]), "updated_at": now()}}))
        found = self.coll.count_documents({"_id": {"$in": list(ids)}})
        if found != len(ids):
            raise NotFoundError("One or more FAQs not found")
        self.coll.bulk_write(ops, ordered=True)
        logger.info("faqs_reordered", count=len(ops))
        return len(ops)


class SeoSettingService(EntityService):
    collection_name = "seosetting"
    label = "SEO setting"
    default_sort = [("page_id", ASCENDING)]

    def _find(self, page_id: str) -> Dict[str, Any]:
        doc = self.coll.find_one({"page_id": page_id})
        if not doc:
            raise NotFoundError(f"{self.label} not found")
        return doc

    def create(self, payload: Payload) -> Dict[str, Any]:
        data = self._to_dict(payload)
        if self.coll.count_documents({"page_id": data["page_id"]}, limit=1):
            raise ConflictError(f'SEO setting for page "{data["page_id"]}" already exists')
        try:
            create_document(self.db, self.collection_name, data)
        except DuplicateKeyError as e:
            raise ConflictError(f'SEO setting for page "{data["page_id"]}" already exists') from e
        logger.info("entity_created", entity=self.collection_name, page_id=data["page_id"])
        return self.get(data["page_id"])


class AuthService:
    def __init__(self, db: Database):
        self.db = db

    def register(self, email: str, password: str, full_name: str, role: str = USER_ROLE) -> Dict[str, Any]:
        email = email.strip().lower()
        if self.db.user.count_documents({"email": email}, limit=1):
            raise ConflictError("Email is already registered")
        doc = {
            "email": email,
            "full_name": full_name,
            "password_hash": hash_password(password),
            "role": role,
        }
        try:
            _id = create_document(self.db, "user", doc)
        except DuplicateKeyError as e:
            raise ConflictError("Email is already registered") from e
        logger.info("user_registered", user_id=_id, role=role)
        return self.db.user.find_one({"_id": oid(_id)})

    def authenticate(self, email: str, password: str) -> Dict[str, Any]:
        user = self.db.user.find_one({"email": email.strip().lower()})
        if not user or not verify_password(password, user.get("password_hash")):
            logger.warning("login_failed", email=email)
            raise UnauthorizedError("Invalid email or password")
        return user

    def ensure_admin(self, email: str, password: str) -> None:
        email = email.strip().lower()
        if self.db.user.count_documents({"email": email}, limit=1):
            return
        self.register(email, password, "Administrator", role=ADMIN_ROLE)
        logger.info("admin_bootstrapped", email=email)
