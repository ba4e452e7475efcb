"""Checkout and the order lifecycle.

Order status:    pending -> processing -> shipped -> delivered
                 pending | processing -> cancelled
Payment status:  pending -> processing -> paid | failed
                 paid -> refunded

Checkout is not wrapped in a cross-collection transaction: two concurrent
checkouts of the same product can both pass the stock check before either
decrements it. That oversell window is accepted behaviour.
"""

import math
from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId
from pymongo import DESCENDING
from pymongo.database import Database

from auth import Principal
from cart import CartService
from catalog import Catalog
from database import create_document, doc_to_public, get_documents, oid
from errors import Forbidden, InsufficientStock, InvalidTransition, NotFound, ValidationFailed
from notifications import Notifier
from schemas import Order, OrderItem, PaymentDetails, ShippingAddress, utcnow

logger = structlog.get_logger(__name__)

STATUS_TRANSITIONS = {
    "pending": {"processing", "cancelled"},
    "processing": {"shipped", "cancelled"},
    "shipped": {"delivered"},
    "delivered": set(),
    "cancelled": set(),
}

PAYMENT_TRANSITIONS = {
    "pending": {"processing"},
    "processing": {"paid", "failed"},
    "paid": {"refunded"},
    "failed": set(),
    "refunded": set(),
}

CANCELLABLE = {"pending", "processing"}


def can_transition(table: Dict[str, set], current: str, target: str) -> bool:
    return target in table.get(current, set())


class OrderWorkflow:
    def __init__(self, db: Database, catalog: Catalog, carts: CartService, notifier: Notifier):
        self.db = db
        self.catalog = catalog
        self.carts = carts
        self.notifier = notifier

    # -- helpers -------------------------------------------------------------

    def _load(self, order_id: str) -> Dict[str, Any]:
        order = self.db["order"].find_one({"_id": oid(order_id, "Order")})
        if not order:
            raise NotFound("Order not found")
        return order

    @staticmethod
    def _authorize(principal: Principal, order: Dict[str, Any], action: str = "access") -> None:
        if order["user_id"] != principal.id and not principal.is_admin:
            raise Forbidden(f"Not authorized to {action} this order")

    def _set(self, order: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
        changes["updated_at"] = utcnow()
        self.db["order"].update_one({"_id": order["_id"]}, {"$set": changes})
        order.update(changes)
        return doc_to_public(order)

    # -- checkout ------------------------------------------------------------

    def checkout(
        self,
        principal: Principal,
        shipping_address: ShippingAddress,
        payment_method: str = "credit_card",
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        cart = self.carts.find(principal.id)
        if not cart or not cart.get("items"):
            raise ValidationFailed("Cart is empty")

        # 1. every line must be coverable by live stock before anything is written
        products = {}
        for item in cart["items"]:
            product = self.db["product"].find_one({"_id": oid(item["product_id"], "Product")})
            if not product:
                raise NotFound(f"Product {item['product_id']} not found")
            if product.get("stock", 0) < item["quantity"]:
                logger.info(
                    "Checkout rejected for stock",
                    user_id=principal.id,
                    product_id=item["product_id"],
                    available=product.get("stock", 0),
                    requested=item["quantity"],
                )
                raise InsufficientStock(str(product["_id"]), product["name"], product.get("stock", 0), item["quantity"])
            products[item["product_id"]] = product

        # 2. freeze line items
        lines: List[OrderItem] = []
        for item in cart["items"]:
            product = products[item["product_id"]]
            price = float(product["price"])
            lines.append(
                OrderItem(
                    product_id=item["product_id"],
                    name=product["name"],
                    price=price,
                    quantity=item["quantity"],
                    subtotal=round(price * item["quantity"], 2),
                )
            )

        # 3. persist
        order = Order(
            user_id=principal.id,
            products=lines,
            total_amount=round(sum(line.subtotal for line in lines), 2),
            shipping_address=shipping_address,
            payment_method=payment_method,
            notes=notes,
        )
        order_id = create_document(self.db, "order", order)

        # 4. decrement stock
        for line in lines:
            self.catalog.adjust_stock(line.product_id, -line.quantity)

        # 5. clear cart
        self.carts.empty(cart)

        # 6. notify buyer and admins
        self.notifier.notify(
            principal.id,
            "Order Placed",
            f"Your order #{order_id} has been placed successfully.",
            "order",
            {"order_id": order_id},
        )
        buyer = principal.name or principal.email
        self.notifier.notify_admins(
            "New Order",
            f"New order #{order_id} has been placed by {buyer}.",
            "order",
            {"order_id": order_id},
        )

        logger.info("Order placed", order_id=order_id, user_id=principal.id, total=order.total_amount)
        return self.get(principal, order_id)

    # -- reads ---------------------------------------------------------------

    def get(self, principal: Principal, order_id: str) -> Dict[str, Any]:
        order = self._load(order_id)
        self._authorize(principal, order)
        return doc_to_public(order)

    def status_of(self, principal: Principal, order_id: str) -> Dict[str, Any]:
        order = self._load(order_id)
        self._authorize(principal, order, "view")
        return {
            "order_id": order_id,
            "status": order["status"],
            "payment_status": order["payment_status"],
            "is_paid": order.get("is_paid", False),
            "is_delivered": order.get("is_delivered", False),
        }

    def list_for_user(self, principal: Principal, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        user_id = user_id or principal.id
        if user_id != principal.id and not principal.is_admin:
            raise Forbidden("Not authorized to view these orders")
        return get_documents(self.db, "order", {"user_id": user_id}, sort=[("created_at", DESCENDING)])

    def list_all(self, principal: Principal, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        """Every order, newest first, with the buyer's name and email attached."""
        if not principal.is_admin:
            raise Forbidden("Not authorized to view all orders")
        total = self.db["order"].count_documents({})
        orders = get_documents(
            self.db,
            "order",
            {},
            limit=limit,
            sort=[("created_at", DESCENDING)],
            skip=(page - 1) * limit,
        )
        buyer_ids = [ObjectId(o["user_id"]) for o in orders if ObjectId.is_valid(o["user_id"])]
        buyers = {
            str(u["_id"]): {"id": str(u["_id"]), "name": u.get("name"), "email": u.get("email")}
            for u in self.db["user"].find({"_id": {"$in": buyer_ids}}, {"name": 1, "email": 1})
        }
        for order in orders:
            order["user"] = buyers.get(order["user_id"])
        return {
            "orders": orders,
            "pagination": {"total": total, "page": page, "pages": math.ceil(total / limit)},
        }

    # -- transitions ---------------------------------------------------------

    def cancel(self, principal: Principal, order_id: str) -> Dict[str, Any]:
        order = self._load(order_id)
        self._authorize(principal, order, "cancel")
        return self._cancel(order)

    def _cancel(self, order: Dict[str, Any]) -> Dict[str, Any]:
        if order["status"] not in CANCELLABLE:
            raise InvalidTransition("order status", order["status"], "cancelled")

        for line in order["products"]:
            self.catalog.adjust_stock(line["product_id"], line["quantity"])
        public = self._set(order, {"status": "cancelled"})

        order_id = str(order["_id"])
        self.notifier.notify(
            order["user_id"],
            "Order Cancelled",
            f"Your order #{order_id} has been cancelled.",
            "order",
            {"order_id": order_id},
        )
        logger.info("Order cancelled", order_id=order_id)
        return public

    def update_status(self, principal: Principal, order_id: str, status: str) -> Dict[str, Any]:
        if not principal.is_admin:
            raise Forbidden("Not authorized to update order status")
        order = self._load(order_id)
        if status == "cancelled":
            return self._cancel(order)
        if not can_transition(STATUS_TRANSITIONS, order["status"], status):
            raise InvalidTransition("order status", order["status"], status)

        changes: Dict[str, Any] = {"status": status}
        if status == "delivered":
            changes["is_delivered"] = True
            changes["delivered_at"] = utcnow()
        public = self._set(order, changes)

        self.notifier.notify(
            order["user_id"],
            "Order Status Updated",
            f"Your order #{order_id} status has been updated to {status}.",
            "order_status",
            {"order_id": order_id, "status": status},
        )
        logger.info("Order status changed", order_id=order_id, status=status)
        return public

    def update_payment(
        self,
        principal: Principal,
        order_id: str,
        payment_status: str,
        transaction_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        order = self._load(order_id)
        self._authorize(principal, order, "update")
        current = order.get("payment_status", "pending")
        if not can_transition(PAYMENT_TRANSITIONS, current, payment_status):
            raise InvalidTransition("payment status", current, payment_status)

        changes: Dict[str, Any] = {"payment_status": payment_status}
        if payment_status == "paid":
            details = PaymentDetails(transaction_id=transaction_id)
            changes["is_paid"] = True
            changes["paid_at"] = details.payment_date
            changes["payment_details"] = details.model_dump()
        public = self._set(order, changes)

        self.notifier.notify(
            order["user_id"],
            "Payment Status Updated",
            f"Payment status for order #{order_id} has been updated to {payment_status}.",
            "payment",
            {"order_id": order_id, "payment_status": payment_status},
        )
        logger.info("Payment status changed", order_id=order_id, payment_status=payment_status)
        return public
