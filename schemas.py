"""
Database Schemas for the storefront

Each Pydantic model describes the payload accepted for a MongoDB collection.
The collection name is the lowercase of the entity name (e.g., Category ->
"category", SeoSetting -> "seosetting").

Fields accept the camelCase names the storefront client sends (productId,
imageUrl, ...) as well as their snake_case names.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ProductLabel = Literal["featured", "new"]
ArticleStatus = Literal["draft", "published"]


class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ----------------------------- Auth -----------------------------
class RegisterRequest(ApiModel):
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", description="Login email (unique)")
    password: str = Field(..., min_length=6)
    full_name: str = Field(..., min_length=1, alias="fullName")


class LoginRequest(ApiModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


# ---------------------------- Catalog ----------------------------
class Image(ApiModel):
    url: str
    alt: str = ""


class Category(ApiModel):
    name: str = Field(..., min_length=1, description="Category name")
    description: Optional[str] = Field(None, description="Short description")


class Collection(ApiModel):
    name: str = Field(..., min_length=1, description="Collection name")
    description: Optional[str] = Field(None, description="Short description")


class PriceVariant(ApiModel):
    id: Optional[str] = Field(None, description="Assigned on save when missing")
    price: float = Field(..., ge=0)
    stock: int = Field(0, ge=0)
    option_labels: List[str] = Field(default_factory=list, alias="optionLabels", description='e.g. ["Color: Red", "Size: XL"]')


class Product(ApiModel):
    name: str = Field(..., min_length=1, description="Product name")
    slug: Optional[str] = Field(None, description="Derived from name when omitted")
    description: Optional[str] = None
    category_id: Optional[str] = Field(None, alias="categoryId")
    collection_id: Optional[str] = Field(None, alias="collectionId")
    featured_image: Optional[Image] = Field(None, alias="featuredImage")
    images: List[Image] = Field(default_factory=list)
    labels: List[ProductLabel] = Field(default_factory=list)
    has_variations: bool = Field(False, alias="hasVariations")
    base_price: Optional[float] = Field(None, ge=0, alias="basePrice")
    base_stock: Optional[int] = Field(None, ge=0, alias="baseStock")
    price_variants: List[PriceVariant] = Field(default_factory=list, alias="priceVariants")


# ----------------------------- Cart -----------------------------
class CartAdd(ApiModel):
    product_id: str = Field(..., min_length=1, alias="productId")
    price_variant_id: Optional[str] = Field(None, alias="priceVariantId")
    quantity: int = Field(..., ge=1)


class CartUpdate(ApiModel):
    quantity: int = Field(..., ge=1)


# ---------------------------- Content ----------------------------
class ArticleMeta(ApiModel):
    title: str = ""
    description: str = ""
    og_image: Optional[str] = Field(None, alias="ogImage")


class Author(ApiModel):
    id: str
    name: str


class Article(ApiModel):
    title: str = Field(..., min_length=1)
    slug: Optional[str] = Field(None, description="Derived from title when omitted")
    content: str = ""
    excerpt: Optional[str] = None
    featured_image: Optional[Image] = Field(None, alias="featuredImage")
    status: ArticleStatus = "draft"
    meta: Optional[ArticleMeta] = None
    author: Optional[Author] = None


class Banner(ApiModel):
    title: str = Field(..., min_length=1)
    image_url: str = Field(..., min_length=1, alias="imageUrl")
    url: Optional[str] = None
    active: bool = True


class Faq(ApiModel):
    question: str = Field(..., min_length=1)
    answer: str = Field(..., min_length=1)


class FaqPosition(ApiModel):
    id: str
    order: int = Field(..., ge=0)


class FaqReorder(ApiModel):
    items: List[FaqPosition] = Field(..., alias="reorderedFAQs")


class SeoSettingFields(ApiModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    keywords: Optional[str] = None
    og_image: Optional[str] = Field(None, alias="ogImage")


class SeoSetting(SeoSettingFields):
    page_id: str = Field(..., min_length=1, alias="pageId")
