import os
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from cart import CartService
from catalog import ProductService, RelatedProductsResolver
from database import connect, ensure_indexes
from errors import AppError, NotFoundError, UpstreamError, ValidationError
from logs import configure_logging
from schemas import (
    Article,
    Banner,
    CartAdd,
    CartUpdate,
    Category,
    Collection,
    Faq,
    FaqReorder,
    LoginRequest,
    Product,
    RegisterRequest,
    SeoSetting,
    SeoSettingFields,
)
from security import (
    TOKEN_COOKIE,
    create_token,
    get_current_admin,
    get_current_user,
    get_optional_user,
    is_admin,
    session_for,
)
from services import (
    ArticleService,
    AuthService,
    BannerService,
    CategoryService,
    CollectionService,
    FaqService,
    SeoSettingService,
)
from settings import Settings

logger = structlog.get_logger()

router = APIRouter()

SUCCESS = {"success": True}


def get_db(request: Request) -> Database:
    return request.app.state.db


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


# -----------------------------
# Error handling
# -----------------------------

def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error(request: Request, exc: AppError):
        if isinstance(exc, UpstreamError):
            logger.error("upstream_error", path=request.url.path, error=exc.message, exc_info=exc)
            return JSONResponse(status_code=exc.status_code, content={"detail": "Internal server error"})
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        where = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
        message = f"{where}: {first.get('msg')}" if where else (first.get("msg") or "Invalid input")
        return JSONResponse(
            status_code=400,
            content={
                "detail": message,
                "errors": jsonable_encoder([{"loc": e.get("loc"), "msg": e.get("msg"), "type": e.get("type")} for e in errors]),
            },
        )

    @app.exception_handler(PyMongoError)
    async def database_error(request: Request, exc: PyMongoError):
        logger.error("database_error", path=request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# -----------------------------
# Diagnostics
# -----------------------------
@router.get("/")
def root():
    return {"message": "Storefront API"}


@router.get("/test")
def test_database(request: Request):
    db = getattr(request.app.state, "db", None)
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if db is not None:
            response["database"] = "✅ Available"
            response["database_name"] = db.name
            response["connection_status"] = "Connected"
            try:
                collections = db.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
            except PyMongoError as e:
                response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
    except PyMongoError as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"

    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    return response


# -----------------------------
# Auth
# -----------------------------
@router.post("/api/auth/register", status_code=201)
def register(req: RegisterRequest, db: Database = Depends(get_db)):
    user = AuthService(db).register(req.email, req.password, req.full_name)
    return {"success": True, "user": session_for(user)}


@router.post("/api/auth/login")
def login(req: LoginRequest, response: Response, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    user = AuthService(db).authenticate(req.email, req.password)
    session = session_for(user)
    token = create_token(session, settings.auth_secret)
    response.set_cookie(
        key=TOKEN_COOKIE,
        value=token,
        httponly=True,
        path="/",
        secure=settings.cookie_secure,
        samesite="lax",
        max_age=settings.token_max_age,
    )
    return {"success": True, "user": session, "token": token, "expires_in": settings.token_max_age}


@router.post("/api/auth/logout")
def logout(response: Response):
    response.delete_cookie(TOKEN_COOKIE, path="/")
    return SUCCESS


@router.get("/api/auth/me")
def me(user: Dict[str, Any] = Depends(get_current_user)):
    return {"user": user}


# -----------------------------
# Products
# -----------------------------
def _related(db: Database, settings: Settings, product_id, category_id, collection_id, limit):
    resolver = RelatedProductsResolver(db, default_limit=settings.related_products_limit)
    return resolver.resolve(product_id, collection_id=collection_id, category_id=category_id, limit=limit)


@router.get("/api/products")
def list_products(
    action: str = "list",
    category: Optional[str] = None,
    collection: Optional[str] = None,
    sort_by: str = Query("newest", alias="sortBy"),
    search: Optional[str] = None,
    page: int = 1,
    limit: Optional[int] = None,
    product_id: Optional[str] = Query(None, alias="productId"),
    category_id: Optional[str] = Query(None, alias="categoryId"),
    collection_id: Optional[str] = Query(None, alias="collectionId"),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    products = ProductService(db)
    if action == "list":
        return products.search(category, collection, sort_by, search, page, 10 if limit is None else limit)
    if action in ("featured", "new"):
        return products.by_label(action, 8 if limit is None else limit)
    if action == "related":
        return _related(db, settings, product_id, category_id, collection_id, limit)
    raise ValidationError(f"Unknown action: {action}")


@router.get("/api/products/related")
def related_products(
    product_id: Optional[str] = Query(None, alias="productId"),
    category_id: Optional[str] = Query(None, alias="categoryId"),
    collection_id: Optional[str] = Query(None, alias="collectionId"),
    limit: Optional[int] = None,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return _related(db, settings, product_id, category_id, collection_id, limit)


@router.get("/api/products/{key}")
def get_product(key: str, db: Database = Depends(get_db)):
    return ProductService(db).get_by_id_or_slug(key)


@router.post("/api/products", status_code=201, dependencies=[Depends(get_current_admin)])
def create_product(payload: Product, db: Database = Depends(get_db)):
    return ProductService(db).create(payload)


@router.put("/api/products/{product_id}", dependencies=[Depends(get_current_admin)])
def update_product(product_id: str, payload: Product, db: Database = Depends(get_db)):
    return ProductService(db).update(product_id, payload)


@router.delete("/api/products/{product_id}", dependencies=[Depends(get_current_admin)])
def delete_product(product_id: str, db: Database = Depends(get_db)):
    ProductService(db).delete(product_id)
    return SUCCESS


# -----------------------------
# Cart
# -----------------------------
@router.get("/api/cart")
def get_cart(user: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)):
    return CartService(db).list(user["id"])


@router.post("/api/cart")
def add_to_cart(payload: CartAdd, user: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)):
    return CartService(db).add(user["id"], payload.product_id, payload.price_variant_id, payload.quantity)


@router.delete("/api/cart")
def clear_cart(user: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"success": True, "removed": CartService(db).clear(user["id"])}


@router.patch("/api/cart/{line_id}")
def update_cart_line(line_id: str, payload: CartUpdate, user: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)):
    return CartService(db).update(user["id"], line_id, payload.quantity)


@router.delete("/api/cart/{line_id}")
def remove_cart_line(line_id: str, user: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)):
    CartService(db).remove(user["id"], line_id)
    return SUCCESS


# -----------------------------
# Categories & collections
# -----------------------------
@router.get("/api/categories")
def list_categories(db: Database = Depends(get_db)):
    return CategoryService(db).list()


@router.get("/api/categories/{key}")
def get_category(key: str, db: Database = Depends(get_db)):
    return CategoryService(db).get_by_id_or_slug(key)


@router.post("/api/categories", status_code=201, dependencies=[Depends(get_current_admin)])
def create_category(payload: Category, db: Database = Depends(get_db)):
    return CategoryService(db).create(payload)


@router.put("/api/categories/{category_id}", dependencies=[Depends(get_current_admin)])
def update_category(category_id: str, payload: Category, db: Database = Depends(get_db)):
    return CategoryService(db).update(category_id, payload)


@router.delete("/api/categories/{category_id}", dependencies=[Depends(get_current_admin)])
def delete_category(category_id: str, db: Database = Depends(get_db)):
    CategoryService(db).delete(category_id)
    return SUCCESS


@router.get("/api/collections")
def list_collections(db: Database = Depends(get_db)):
    return CollectionService(db).list()


@router.get("/api/collections/{key}")
def get_collection(key: str, db: Database = Depends(get_db)):
    return CollectionService(db).get_by_id_or_slug(key)


@router.post("/api/collections", status_code=201, dependencies=[Depends(get_current_admin)])
def create_collection(payload: Collection, db: Database = Depends(get_db)):
    return CollectionService(db).create(payload)


@router.put("/api/collections/{collection_id}", dependencies=[Depends(get_current_admin)])
def update_collection(collection_id: str, payload: Collection, db: Database = Depends(get_db)):
    return CollectionService(db).update(collection_id, payload)


@router.delete("/api/collections/{collection_id}", dependencies=[Depends(get_current_admin)])
def delete_collection(collection_id: str, db: Database = Depends(get_db)):
    CollectionService(db).delete(collection_id)
    return SUCCESS


# -----------------------------
# Articles
# -----------------------------
@router.get("/api/articles")
def list_articles(
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
    user: Optional[Dict[str, Any]] = Depends(get_optional_user),
    db: Database = Depends(get_db),
):
    if not is_admin(user):
        status = "published"
    return ArticleService(db).search(status, search, page, limit)


@router.get("/api/articles/{key}")
def get_article(key: str, user: Optional[Dict[str, Any]] = Depends(get_optional_user), db: Database = Depends(get_db)):
    article = ArticleService(db).get_by_id_or_slug(key)
    if article.get("status") != "published" and not is_admin(user):
        raise NotFoundError("Article not found")
    return article


@router.post("/api/articles", status_code=201, dependencies=[Depends(get_current_admin)])
def create_article(payload: Article, db: Database = Depends(get_db)):
    return ArticleService(db).create(payload)


@router.put("/api/articles/{key}", dependencies=[Depends(get_current_admin)])
def update_article(key: str, payload: Article, db: Database = Depends(get_db)):
    return ArticleService(db).update_by_id_or_slug(key, payload)


@router.delete("/api/articles/{key}", dependencies=[Depends(get_current_admin)])
def delete_article(key: str, db: Database = Depends(get_db)):
    ArticleService(db).delete_by_id_or_slug(key)
    return SUCCESS


# -----------------------------
# Banners
# -----------------------------
@router.get("/api/banners")
def list_banners(active: bool = False, db: Database = Depends(get_db)):
    return BannerService(db).list_banners(active_only=active)


@router.get("/api/banners/{banner_id}")
def get_banner(banner_id: str, db: Database = Depends(get_db)):
    return BannerService(db).get(banner_id)


@router.post("/api/banners", status_code=201, dependencies=[Depends(get_current_admin)])
def create_banner(payload: Banner, db: Database = Depends(get_db)):
    return BannerService(db).create(payload)


@router.put("/api/banners/{banner_id}", dependencies=[Depends(get_current_admin)])
def update_banner(banner_id: str, payload: Banner, db: Database = Depends(get_db)):
    return BannerService(db).update(banner_id, payload)


@router.delete("/api/banners/{banner_id}", dependencies=[Depends(get_current_admin)])
def delete_banner(banner_id: str, db: Database = Depends(get_db)):
    BannerService(db).delete(banner_id)
    return SUCCESS


# -----------------------------
# FAQ
# -----------------------------
@router.get("/api/faqs")
def list_faqs(search: Optional[str] = None, db: Database = Depends(get_db)):
    return FaqService(db).list_faqs(search)


@router.post("/api/faqs/reorder", dependencies=[Depends(get_current_admin)])
def reorder_faqs(payload: FaqReorder, db: Database = Depends(get_db)):
    return {"success": True, "updated": FaqService(db).reorder(payload.items)}


@router.get("/api/faqs/{faq_id}")
def get_faq(faq_id: str, db: Database = Depends(get_db)):
    return FaqService(db).get(faq_id)


@router.post("/api/faqs", status_code=201, dependencies=[Depends(get_current_admin)])
def create_faq(payload: Faq, db: Database = Depends(get_db)):
    return FaqService(db).create(payload)


@router.put("/api/faqs/{faq_id}", dependencies=[Depends(get_current_admin)])
def update_faq(faq_id: str, payload: Faq, db: Database = Depends(get_db)):
    return FaqService(db).update(faq_id, payload)


@router.delete("/api/faqs/{faq_id}", dependencies=[Depends(get_current_admin)])
def delete_faq(faq_id: str, db: Database = Depends(get_db)):
    FaqService(db).delete(faq_id)
    return SUCCESS


# -----------------------------
# SEO settings
# -----------------------------
@router.get("/api/seo")
def list_seo_settings(db: Database = Depends(get_db)):
    return SeoSettingService(db).list()


@router.get("/api/seo/{page_id}")
def get_seo_setting(page_id: str, db: Database = Depends(get_db)):
    return SeoSettingService(db).get(page_id)


@router.post("/api/seo", status_code=201, dependencies=[Depends(get_current_admin)])
def create_seo_setting(payload: SeoSetting, db: Database = Depends(get_db)):
    return SeoSettingService(db).create(payload)


@router.put("/api/seo/{page_id}", dependencies=[Depends(get_current_admin)])
def update_seo_setting(page_id: str, payload: SeoSettingFields, db: Database = Depends(get_db)):
    return SeoSettingService(db).update(page_id, payload)


@router.delete("/api/seo/{page_id}", dependencies=[Depends(get_current_admin)])
def delete_seo_setting(page_id: str, db: Database = Depends(get_db)):
    SeoSettingService(db).delete(page_id)
    return SUCCESS


# -----------------------------
# App
# -----------------------------
def create_app(settings: Optional[Settings] = None, client: Optional[MongoClient] = None) -> FastAPI:
    """Build the app. `client` lets callers supply their own MongoClient (tests pass mongomock)."""
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level, settings.log_json)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        mongo, db = connect(settings.database_url, settings.database_name, client)
        app.state.db = db
        ensure_indexes(db)
        if settings.admin_email and settings.admin_password:
            AuthService(db).ensure_admin(settings.admin_email, settings.admin_password)
        logger.info("startup", database=db.name)
        yield
        if client is None:
            mongo.close()
        logger.info("shutdown")

    app = FastAPI(title="Storefront API", lifespan=lifespan)
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
