from typing import Any, Dict, List, Optional

import structlog
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from auth import Principal
from database import create_document, doc_to_public, get_documents, oid
from errors import NotFound
from schemas import Notification, utcnow

logger = structlog.get_logger(__name__)


class Notifier:
    """Writes notification records; delivery is the client's business."""

    def __init__(self, db: Database):
        self.db = db

    def notify(self, user_id: str, title: str, message: str, type: str, data: Optional[Dict[str, Any]] = None) -> str:
        notification = Notification(user_id=user_id, title=title, message=message, type=type, data=data or {})
        nid = create_document(self.db, "notification", notification)
        logger.debug("Notification created", user_id=user_id, title=title)
        return nid

    def notify_admins(self, title: str, message: str, type: str, data: Optional[Dict[str, Any]] = None) -> int:
        count = 0
        for admin in self.db["user"].find({"role": "admin"}, {"_id": 1}):
            self.notify(str(admin["_id"]), title, message, type, data)
            count += 1
        return count

    def list_for(self, principal: Principal) -> List[Dict[str, Any]]:
        return get_documents(self.db, "notification", {"user_id": principal.id}, sort=[("created_at", DESCENDING)])

    def mark_read(self, principal: Principal, notification_id: str) -> Dict[str, Any]:
        doc = self.db["notification"].find_one_and_update(
            {"_id": oid(notification_id, "Notification"), "user_id": principal.id},
            {"$set": {"read": True, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            raise NotFound("Notification not found")
        return doc_to_public(doc)

    def mark_all_read(self, principal: Principal) -> int:
        res = self.db["notification"].update_many(
            {"user_id": principal.id, "read": False},
            {"$set": {"read": True, "updated_at": utcnow()}},
        )
        return res.modified_count
