from typing import Any, Dict, List

from bson import ObjectId
from pymongo.database import Database

from auth import Principal
from database import doc_to_public, get_documents, oid
from errors import Conflict, NotFound
from schemas import Wishlist, utcnow


class WishlistService:
    def __init__(self, db: Database):
        self.db = db

    def _products(self, wishlist: Dict[str, Any]) -> List[Dict[str, Any]]:
        ids = [ObjectId(p) for p in wishlist.get("products", []) if ObjectId.is_valid(p)]
        if not ids:
            return []
        return get_documents(self.db, "product", {"_id": {"$in": ids}})

    def get(self, principal: Principal) -> List[Dict[str, Any]]:
        wishlist = self.db["wishlist"].find_one({"user_id": principal.id})
        if not wishlist:
            return []
        return self._products(wishlist)

    def add(self, principal: Principal, product_id: str) -> Dict[str, Any]:
        if not self.db["product"].find_one({"_id": oid(product_id, "Product")}):
            raise NotFound("Product not found")
        wishlist = self.db["wishlist"].find_one({"user_id": principal.id})
        if wishlist and product_id in wishlist.get("products", []):
            raise Conflict("Product already in wishlist")
        if not wishlist:
            wishlist = {**Wishlist(user_id=principal.id).model_dump(), "created_at": utcnow()}
            wishlist["_id"] = self.db["wishlist"].insert_one(wishlist).inserted_id
        wishlist["products"].append(product_id)
        self.db["wishlist"].update_one(
            {"_id": wishlist["_id"]},
            {"$set": {"products": wishlist["products"], "updated_at": utcnow()}},
        )
        return {**doc_to_public(wishlist), "products": self._products(wishlist)}

    def remove(self, principal: Principal, product_id: str) -> Dict[str, Any]:
        wishlist = self.db["wishlist"].find_one({"user_id": principal.id})
        if not wishlist:
            raise NotFound("Wishlist not found")
        wishlist["products"] = [p for p in wishlist.get("products", []) if p != product_id]
        self.db["wishlist"].update_one(
            {"_id": wishlist["_id"]},
            {"$set": {"products": wishlist["products"], "updated_at": utcnow()}},
        )
        return {**doc_to_public(wishlist), "products": self._products(wishlist)}
