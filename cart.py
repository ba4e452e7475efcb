"""Shopping cart, one document per user.

The stored `total` is recomputed from live product prices after every
mutation; callers never set it directly.
"""

from typing import Any, Dict, List

import structlog
from bson import ObjectId
from pymongo.database import Database

from auth import Principal
from database import doc_to_public, oid
from errors import InsufficientStock, NotFound
from schemas import Cart, CartItem, utcnow

logger = structlog.get_logger(__name__)


class CartService:
    def __init__(self, db: Database):
        self.db = db

    def _load(self, user_id: str, create: bool = True):
        doc = self.db["cart"].find_one({"user_id": user_id})
        if doc is None and create:
            now = utcnow()
            doc = {**Cart(user_id=user_id).model_dump(), "created_at": now, "updated_at": now}
            doc["_id"] = self.db["cart"].insert_one(doc).inserted_id
        return doc

    def _products_for(self, items: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
        ids = [ObjectId(i["product_id"]) for i in items if ObjectId.is_valid(i["product_id"])]
        if not ids:
            return {}
        return {str(p["_id"]): p for p in self.db["product"].find({"_id": {"$in": ids}})}

    def _save(self, cart: Dict[str, Any]) -> Dict[str, Any]:
        products = self._products_for(cart["items"])
        cart["total"] = round(
            sum(
                products[i["product_id"]].get("price", 0) * i["quantity"]
                for i in cart["items"]
                if i["product_id"] in products
            ),
            2,
        )
        cart["updated_at"] = utcnow()
        self.db["cart"].update_one(
            {"_id": cart["_id"]},
            {"$set": {"items": cart["items"], "total": cart["total"], "updated_at": cart["updated_at"]}},
        )
        return self._populate(cart, products)

    def _populate(self, cart: Dict[str, Any], products=None) -> Dict[str, Any]:
        if products is None:
            products = self._products_for(cart["items"])
        public = doc_to_public(cart)
        public["items"] = [
            {**item, "product": doc_to_public(products.get(item["product_id"]))}
            for item in cart["items"]
        ]
        return public

    def _check_stock(self, product: Dict[str, Any], quantity: int) -> None:
        if product.get("stock", 0) < quantity:
            raise InsufficientStock(str(product["_id"]), product.get("name", ""), product.get("stock", 0), quantity)

    def _product(self, product_id: str) -> Dict[str, Any]:
        product = self.db["product"].find_one({"_id": oid(product_id, "Product")})
        if not product:
            raise NotFound("Product not found")
        return product

    def find(self, user_id: str):
        return self._load(user_id, create=False)

    # -- operations ----------------------------------------------------------

    def get(self, principal: Principal) -> Dict[str, Any]:
        return self._populate(self._load(principal.id))

    def add_item(self, principal: Principal, product_id: str, quantity: int = 1) -> Dict[str, Any]:
        product = self._product(product_id)
        cart = self._load(principal.id)
        existing = next((i for i in cart["items"] if i["product_id"] == product_id), None)
        if existing:
            self._check_stock(product, existing["quantity"] + quantity)
            existing["quantity"] += quantity
        else:
            self._check_stock(product, quantity)
            cart["items"].append(CartItem(product_id=product_id, quantity=quantity).model_dump())
        logger.info("Cart item added", user_id=principal.id, product_id=product_id, quantity=quantity)
        return self._save(cart)

    def update_item(self, principal: Principal, item_id: str, quantity: int) -> Dict[str, Any]:
        cart = self._load(principal.id, create=False)
        if cart is None:
            raise NotFound("Cart not found")
        item = next((i for i in cart["items"] if i["id"] == item_id), None)
        if item is None:
            raise NotFound("Item not found in cart")
        self._check_stock(self._product(item["product_id"]), quantity)
        item["quantity"] = quantity
        return self._save(cart)

    def remove_item(self, principal: Principal, item_id: str) -> Dict[str, Any]:
        cart = self._load(principal.id, create=False)
        if cart is None:
            raise NotFound("Cart not found")
        cart["items"] = [i for i in cart["items"] if i["id"] != item_id]
        return self._save(cart)

    def clear(self, principal: Principal) -> Dict[str, Any]:
        cart = self._load(principal.id, create=False)
        if cart is None:
            raise NotFound("Cart not found")
        return self.empty(cart)

    def empty(self, cart: Dict[str, Any]) -> Dict[str, Any]:
        cart["items"] = []
        return self._save(cart)
