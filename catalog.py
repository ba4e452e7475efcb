"""Products and categories.

`in_stock` is derived from `stock` on every write path: full saves go through
the `Product` schema, and stock adjustments recompute it from the updated
document.
"""

import json
import re
from typing import Any, Dict, List, Optional

import structlog
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError as PydanticValidationError
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database

from cache import Cache
from database import create_document, doc_to_public, get_documents, oid
from errors import Conflict, NotFound, ValidationFailed
from schemas import Category, Product, slugify, utcnow

logger = structlog.get_logger(__name__)

ALL_PRODUCTS_KEY = "all_products"

SORT_MAP = {
    "price_asc": ("price", ASCENDING),
    "price_desc": ("price", DESCENDING),
    "rating_desc": ("rating", DESCENDING),
    "newest": ("created_at", DESCENDING),
}


class Catalog:
    def __init__(self, db: Database, cache: Cache):
        self.db = db
        self.cache = cache

    def invalidate(self) -> None:
        self.cache.delete(ALL_PRODUCTS_KEY)

    # -- products ------------------------------------------------------------

    def list_products(
        self,
        q: Optional[str] = None,
        category: Optional[str] = None,
        featured: Optional[bool] = None,
        sort: Optional[str] = None,
        page: int = 1,
        limit: int = 0,
    ) -> List[Dict[str, Any]]:
        unfiltered = not (q or category or featured is not None or sort or limit)
        if unfiltered:
            cached = self.cache.get(ALL_PRODUCTS_KEY)
            if cached:
                return json.loads(cached)

        query: Dict[str, Any] = {}
        if q:
            pattern = re.escape(q)
            query["$or"] = [
                {"name": {"$regex": pattern, "$options": "i"}},
                {"description": {"$regex": pattern, "$options": "i"}},
            ]
        if category:
            query["category"] = category
        if featured is not None:
            query["featured"] = featured

        order = [SORT_MAP[sort]] if sort in SORT_MAP else None
        skip = max(0, (page - 1) * limit) if limit else 0
        items = get_documents(self.db, "product", query, limit=limit or None, sort=order, skip=skip)

        if unfiltered:
            self.cache.set(ALL_PRODUCTS_KEY, json.dumps(jsonable_encoder(items)))
        return items

    def get_product(self, product_id: str) -> Dict[str, Any]:
        doc = self.db["product"].find_one({"_id": oid(product_id, "Product")})
        if not doc:
            raise NotFound("Product not found")
        return doc_to_public(doc)

    def create_product(self, product: Product) -> Dict[str, Any]:
        pid = create_document(self.db, "product", product)
        self.invalidate()
        logger.info("Product created", product_id=pid, name=product.name)
        return self.get_product(pid)

    def update_product(self, product_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        current = self.db["product"].find_one({"_id": oid(product_id, "Product")})
        if not current:
            raise NotFound("Product not found")
        merged = {k: v for k, v in current.items() if k in Product.model_fields}
        merged.update(changes)
        try:
            product = Product(**merged)
        except PydanticValidationError as exc:
            raise ValidationFailed(errors=[
                {"field": ".".join(str(p) for p in e["loc"]), "message": e["msg"]} for e in exc.errors()
            ])
        self.db["product"].update_one(
            {"_id": current["_id"]},
            {"$set": {**product.model_dump(), "updated_at": utcnow()}},
        )
        self.invalidate()
        return self.get_product(product_id)

    def delete_product(self, product_id: str) -> None:
        res = self.db["product"].delete_one({"_id": oid(product_id, "Product")})
        if res.deleted_count == 0:
            raise NotFound("Product not found")
        self.invalidate()
        logger.info("Product deleted", product_id=product_id)

    def adjust_stock(self, product_id: str, delta: int) -> Optional[Dict[str, Any]]:
        """Add `delta` to a product's stock and refresh its `in_stock` flag."""
        doc = self.db["product"].find_one_and_update(
            {"_id": oid(product_id, "Product")},
            {"$inc": {"stock": delta}, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            logger.warning("Stock adjustment for missing product", product_id=product_id, delta=delta)
            return None
        in_stock = doc["stock"] > 0
        if doc.get("in_stock") != in_stock:
            self.db["product"].update_one({"_id": doc["_id"]}, {"$set": {"in_stock": in_stock}})
            doc["in_stock"] = in_stock
        self.invalidate()
        logger.info("Stock adjusted", product_id=product_id, delta=delta, stock=doc["stock"])
        return doc

    # -- categories ----------------------------------------------------------

    def list_categories(self, featured: Optional[bool] = None, parent: Optional[str] = None) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {}
        if featured:
            query["featured"] = True
        if parent in ("null", "none"):
            query["parent"] = None
        elif parent:
            query["parent"] = parent
        return get_documents(self.db, "category", query, sort=[("order", ASCENDING), ("name", ASCENDING)])

    def get_category(self, identifier: str) -> Dict[str, Any]:
        if re.fullmatch(r"[0-9a-fA-F]{24}", identifier):
            doc = self.db["category"].find_one({"_id": oid(identifier, "Category")})
        else:
            doc = self.db["category"].find_one({"slug": identifier.lower()})
        if not doc:
            raise NotFound("Category not found")
        return doc_to_public(doc)

    def _ensure_unique(self, category: Category, exclude=None) -> None:
        query: Dict[str, Any] = {"$or": [{"name": category.name}, {"slug": category.slug}]}
        if exclude is not None:
            query["_id"] = {"$ne": exclude}
        if self.db["category"].find_one(query):
            raise Conflict("Category with this name or slug already exists")

    def create_category(self, category: Category) -> Dict[str, Any]:
        self._ensure_unique(category)
        cid = create_document(self.db, "category", category)
        return self.get_category(cid)

    def update_category(self, category_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        current = self.db["category"].find_one({"_id": oid(category_id, "Category")})
        if not current:
            raise NotFound("Category not found")
        merged = {k: v for k, v in current.items() if k in Category.model_fields}
        if "name" in changes and "slug" not in changes:
            merged["slug"] = slugify(changes["name"])
        merged.update(changes)
        category = Category(**merged)
        self._ensure_unique(category, exclude=current["_id"])
        self.db["category"].update_one(
            {"_id": current["_id"]},
            {"$set": {**category.model_dump(), "updated_at": utcnow()}},
        )
        return self.get_category(category_id)

    def delete_category(self, category_id: str) -> None:
        res = self.db["category"].delete_one({"_id": oid(category_id, "Category")})
        if res.deleted_count == 0:
            raise NotFound("Category not found")
