"""Admin reporting over products, orders and users.

Revenue figures always exclude cancelled orders.
"""

from datetime import timedelta
from typing import Any, Dict, List

from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database

from database import get_documents
from schemas import utcnow

PERIODS = {
    "day": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
}

NOT_CANCELLED = {"status": {"$ne": "cancelled"}}


def _since(delta: timedelta):
    # dates are stored as UTC; compare naive so both drivers agree
    return (utcnow() - delta).replace(tzinfo=None)


def _revenue(db: Database, match: Dict[str, Any]) -> float:
    rows = list(
        db["order"].aggregate([
            {"$match": match},
            {"$group": {"_id": None, "total": {"$sum": "$total_amount"}}},
        ])
    )
    return round(rows[0]["total"], 2) if rows else 0


def _recent_orders(db: Database) -> List[Dict[str, Any]]:
    return get_documents(db, "order", {}, limit=5, sort=[("created_at", DESCENDING)])


def _popular_products(db: Database) -> List[Dict[str, Any]]:
    # no sales ranking yet; best-stocked products stand in
    return get_documents(db, "product", {}, limit=5, sort=[("stock", DESCENDING)])


def monthly_sales(db: Database) -> List[Dict[str, Any]]:
    """Sales and order counts per calendar month over the last year."""
    rows = db["order"].aggregate([
        {"$match": {**NOT_CANCELLED, "created_at": {"$gte": _since(PERIODS["year"])}}},
        {
            "$group": {
                "_id": {"year": {"$year": "$created_at"}, "month": {"$month": "$created_at"}},
                "sales": {"$sum": "$total_amount"},
                "orders": {"$sum": 1},
            }
        },
        {"$sort": {"_id.year": 1, "_id.month": 1}},
    ])
    return [
        {
            "year": row["_id"]["year"],
            "month": row["_id"]["month"],
            "sales": round(row["sales"], 2),
            "orders": row["orders"],
        }
        for row in rows
    ]


def user_registrations(db: Database) -> List[Dict[str, Any]]:
    rows = db["user"].aggregate([
        {
            "$group": {
                "_id": {"year": {"$year": "$created_at"}, "month": {"$month": "$created_at"}},
                "count": {"$sum": 1},
            }
        },
        {"$sort": {"_id.year": 1, "_id.month": 1}},
    ])
    return [{"year": r["_id"]["year"], "month": r["_id"]["month"], "count": r["count"]} for r in rows]


def dashboard_stats(db: Database, low_stock_threshold: int = 5) -> Dict[str, Any]:
    return {
        "statistics": {
            "total_products": db["product"].count_documents({}),
            "total_orders": db["order"].count_documents({}),
            "total_users": db["user"].count_documents({}),
            "total_revenue": _revenue(db, NOT_CANCELLED),
        },
        "monthly_data": monthly_sales(db),
        "user_stats": user_registrations(db),
        "popular_products": _popular_products(db),
        "recent_orders": _recent_orders(db),
        "low_stock_products": get_documents(
            db,
            "product",
            {"stock": {"$lte": low_stock_threshold}},
            sort=[("stock", ASCENDING)],
        ),
    }


def dashboard_overview(db: Database, period: str = "week") -> Dict[str, Any]:
    """Orders, new users and revenue inside a trailing window; unknown periods mean a week."""
    if period not in PERIODS:
        period = "week"
    window = {"created_at": {"$gte": _since(PERIODS[period])}}
    return {
        "period": period,
        "statistics": {
            "total_products": db["product"].count_documents({}),
            "total_orders": db["order"].count_documents(window),
            "total_users": db["user"].count_documents(window),
            "total_revenue": _revenue(db, {**NOT_CANCELLED, **window}),
        },
        "recent_orders": _recent_orders(db),
        "popular_products": _popular_products(db),
        "chart_data": monthly_sales(db),
    }


def product_stats(db: Database, low_stock_below: int = 10, limit: int = 10) -> Dict[str, Any]:
    by_category = db["product"].aggregate([
        {
            "$group": {
                "_id": "$category",
                "count": {"$sum": 1},
                "total_value": {"$sum": {"$multiply": ["$price", "$stock"]}},
            }
        },
        {"$sort": {"count": -1, "_id": 1}},
    ])
    return {
        "products_by_category": [
            {"category": row["_id"], "count": row["count"], "total_value": round(row["total_value"], 2)}
            for row in by_category
        ],
        "low_stock_products": get_documents(
            db, "product", {"stock": {"$lt": low_stock_below}}, limit=limit, sort=[("stock", ASCENDING)]
        ),
        "oldest_products": get_documents(db, "product", {}, limit=limit, sort=[("created_at", ASCENDING)]),
    }


def order_stats(db: Database) -> Dict[str, Any]:
    def grouped(field: str, key: str) -> List[Dict[str, Any]]:
        rows = db["order"].aggregate([
            {"$group": {"_id": f"${field}", "count": {"$sum": 1}, "revenue": {"$sum": "$total_amount"}}},
            {"$sort": {"_id": 1}},
        ])
        return [{key: r["_id"], "count": r["count"], "revenue": round(r["revenue"], 2)} for r in rows]

    average = list(
        db["order"].aggregate([
            {"$match": NOT_CANCELLED},
            {"$group": {"_id": None, "avg": {"$avg": "$total_amount"}}},
        ])
    )
    return {
        "orders_by_status": grouped("status", "status"),
        "orders_by_payment": grouped("payment_method", "payment_method"),
        "avg_order_value": round(average[0]["avg"], 2) if average else 0,
    }
