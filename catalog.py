"""
Catalog query engine.

Translates ProductFilters into a MongoDB filter, applies sort then limit, and
assembles the single-product detail view (variants, reviews, rating and
related products).
"""
import re
import logging
from collections import defaultdict
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field
from pymongo.database import Database

from database import create_document, oid, to_public
from errors import NotFound, ValidationFailed
from reviews import average_rating, list_reviews
from schemas import Category, Product, ProductVariant

logger = logging.getLogger(__name__)

RELATED_LIMIT = 4
ALL_CATEGORIES = "all"
MATCH_NOTHING = {"_id": {"$in": []}}

SortBy = Literal["newest", "price_asc", "price_desc", "name_asc", "name_desc", "popularity"]

SORTS = {
    # no creation-order field beyond created_at; _id breaks ties in insertion order
    "newest": [("created_at", -1), ("_id", -1)],
    "price_asc": [("price", 1)],
    "price_desc": [("price", -1)],
    "name_asc": [("name", 1)],
    "name_desc": [("name", -1)],
    # no popularity signal is stored yet, so natural order is kept
    "popularity": None,
}


class ProductFilters(BaseModel):
    category: Optional[str] = None
    search: Optional[str] = None
    min_price: Optional[float] = Field(None, ge=0)
    max_price: Optional[float] = Field(None, ge=0)
    in_stock: Optional[bool] = None
    featured: Optional[bool] = None
    is_new: Optional[bool] = None
    sort_by: Optional[SortBy] = None
    limit: Optional[int] = Field(None, gt=0)


def build_query(db: Database, filters: ProductFilters) -> Dict[str, Any]:
    """AND of every filter that was supplied."""
    query: Dict[str, Any] = {}
    if filters.category and filters.category != ALL_CATEGORIES:
        category = get_category_by_slug(db, filters.category)
        if category is None:
            return dict(MATCH_NOTHING)
        query["category_id"] = category["id"]
    if filters.search:
        pattern = re.escape(filters.search.strip())
        query["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
    price_cond = {}
    if filters.min_price is not None:
        price_cond["$gte"] = filters.min_price
    if filters.max_price is not None:
        price_cond["$lte"] = filters.max_price
    if price_cond:
        query["price"] = price_cond
    if filters.in_stock is not None:
        query["in_stock"] = filters.in_stock
    if filters.featured is not None:
        query["is_featured"] = filters.featured
    if filters.is_new is not None:
        query["is_new"] = filters.is_new
    return query


def sort_spec(sort_by: Optional[str]):
    return SORTS.get(sort_by) if sort_by else None


def attach_variants(db: Database, products: List[dict]) -> List[dict]:
    """Fetch variants for all products in one query."""
    by_product = defaultdict(list)
    ids = [p["id"] for p in products]
    if ids:
        for variant in db["product_variant"].find({"product_id": {"$in": ids}}):
            by_product[variant["product_id"]].append(to_public(variant))
    for product in products:
        product["variants"] = by_product.get(product["id"], [])
    return products


def list_products(db: Database, filters: Optional[ProductFilters] = None,
                  with_variants: bool = True) -> List[dict]:
    filters = filters or ProductFilters()
    cursor = db["product"].find(build_query(db, filters))
    sort = sort_spec(filters.sort_by)
    if sort:
        cursor = cursor.sort(sort)
    if filters.limit:
        cursor = cursor.limit(filters.limit)
    products = [to_public(doc) for doc in cursor]
    if with_variants:
        attach_variants(db, products)
    return products


def get_product(db: Database, product_id: str) -> Optional[dict]:
    product_oid = oid(product_id)
    if product_oid is None:
        return None
    return to_public(db["product"].find_one({"_id": product_oid}))


def related_products(db: Database, product: dict, limit: int = RELATED_LIMIT) -> List[dict]:
    if not product.get("category_id"):
        return []
    cursor = db["product"].find({"category_id": product["category_id"], "_id": {"$ne": oid(product["id"])}})
    return [to_public(doc) for doc in cursor.limit(limit)]


def get_product_detail(db: Database, product_id: str) -> Optional[dict]:
    """Product with variants, reviews, rating and related products; None if missing."""
    product = get_product(db, product_id)
    if product is None:
        return None
    attach_variants(db, [product])
    reviews = list_reviews(db, product["id"])
    product["reviews"] = reviews
    product["review_count"] = len(reviews)
    product["average_rating"] = average_rating(r["rating"] for r in reviews)
    product["related_products"] = related_products(db, product)
    return product


# Categories

def list_categories(db: Database) -> List[dict]:
    return [to_public(doc) for doc in db["category"].find().sort("name", 1)]


def get_category_by_slug(db: Database, slug: str) -> Optional[dict]:
    return to_public(db["category"].find_one({"slug": slug}))


# Admin writes

def create_category(db: Database, category: Category) -> dict:
    if db["category"].find_one({"slug": category.slug}):
        raise ValidationFailed.single("slug", "A category with this slug already exists")
    category_id = create_document(db, "category", category)
    return to_public(db["category"].find_one({"_id": oid(category_id)}))


def create_product(db: Database, product: Product) -> dict:
    if product.category_id is not None:
        category_oid = oid(product.category_id)
        if category_oid is None or db["category"].find_one({"_id": category_oid}) is None:
            raise ValidationFailed.single("category_id", "Unknown category")
    product_id = create_document(db, "product", product)
    logger.info("Product %s created", product_id)
    return get_product(db, product_id)


def create_variant(db: Database, variant: ProductVariant) -> dict:
    if get_product(db, variant.product_id) is None:
        raise NotFound("Product not found")
    variant_id = create_document(db, "product_variant", variant)
    return to_public(db["product_variant"].find_one({"_id": oid(variant_id)}))
