import pytest

from errors import ValidationError
from utils import oid, oid_to_str, require_slug, slugify


@pytest.mark.parametrize(
    "name,expected",
    [
        ("Al-Qur'an Custom!!", "al-quran-custom"),
        ("  Hello   World  ", "hello-world"),
        ("Crème Brûlée", "creme-brulee"),
        ("--Already-Slugged--", "already-slugged"),
        ("Sajadah & Tasbih (Set)", "sajadah-tasbih-set"),
        ("Kid’s Collection", "kids-collection"),
    ],
)
def test_slugify(name, expected):
    assert slugify(name) == expected


def test_require_slug_rejects_names_without_letters_or_digits():
    with pytest.raises(ValidationError):
        require_slug("!!! ???")


def test_oid_rejects_garbage():
    with pytest.raises(ValidationError):
        oid("not-an-id")


def test_oid_to_str_renames_id():
    _id = oid("65a1b2c3d4e5f60718293a4b")
    out = oid_to_str({"_id": _id, "name": "x"})
    assert out == {"id": "65a1b2c3d4e5f60718293a4b", "name": "x"}
