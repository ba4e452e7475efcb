from typing import Any, Dict, List

from bson import ObjectId
from pymongo import DESCENDING
from pymongo.database import Database

from auth import Principal
from database import create_document, doc_to_public, get_documents, oid
from errors import Conflict, NotFound
from schemas import Review


class ReviewService:
    def __init__(self, db: Database):
        self.db = db

    def for_product(self, product_id: str) -> List[Dict[str, Any]]:
        reviews = get_documents(self.db, "review", {"product_id": product_id}, sort=[("created_at", DESCENDING)])
        user_ids = {ObjectId(r["user_id"]) for r in reviews if ObjectId.is_valid(r["user_id"])}
        names = {
            str(u["_id"]): u.get("name")
            for u in self.db["user"].find({"_id": {"$in": list(user_ids)}}, {"name": 1})
        }
        for review in reviews:
            review["user"] = {"id": review["user_id"], "name": names.get(review["user_id"])}
        return reviews

    def create(self, principal: Principal, product_id: str, rating: int, comment: str = "") -> Dict[str, Any]:
        if not self.db["product"].find_one({"_id": oid(product_id, "Product")}):
            raise NotFound("Product not found")
        if self.db["review"].find_one({"user_id": principal.id, "product_id": product_id}):
            raise Conflict("You already reviewed this product")
        review = Review(user_id=principal.id, product_id=product_id, rating=rating, comment=comment)
        rid = create_document(self.db, "review", review)
        return doc_to_public(self.db["review"].find_one({"_id": ObjectId(rid)}))
