import re
import unicodedata
from typing import Any, Dict, Optional

from bson import ObjectId

from errors import ValidationError

_APOSTROPHES = re.compile(r"['‘’`]")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    """Lowercase, strip diacritics and apostrophes, collapse everything else to single hyphens."""
    text = _APOSTROPHES.sub("", (name or "").strip())
    ascii_text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    return _NON_ALNUM.sub("-", ascii_text.lower()).strip("-")


def require_slug(name: str) -> str:
    slug = slugify(name)
    if not slug:
        raise ValidationError("Name must contain at least one letter or digit")
    return slug


def oid(id_str: str) -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    if not id_str or not ObjectId.is_valid(id_str):
        raise ValidationError("Invalid id")
    return ObjectId(id_str)


def maybe_oid(id_str: Optional[str]) -> Optional[ObjectId]:
    """Like oid() but returns None for values that cannot be ObjectIds."""
    if isinstance(id_str, ObjectId):
        return id_str
    if id_str and ObjectId.is_valid(id_str):
        return ObjectId(id_str)
    return None


def oid_to_str(doc: Dict[str, Any]) -> Dict[str, Any]:
    if not doc:
        return doc
    d = dict(doc)
    if "_id" in d and isinstance(d["_id"], ObjectId):
        d["id"] = str(d.pop("_id"))
    # convert nested ObjectIds if any
    for k, v in list(d.items()):
        if isinstance(v, ObjectId):
            d[k] = str(v)
    return d
