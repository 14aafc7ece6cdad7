"""
Order store and order administration.

Orders are only created by a successful checkout (see payments.py) and only
mutated by an admin status transition. `products` holds the cart entries as they
were at checkout; reads resolve each entry against the product collection and
fall back to the stored entry when the product no longer exists.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from database import create_document, is_obj_id, serialize_doc, to_obj_id
from errors import NotFound, ValidationFailed
from schemas import ORDER_STATUS_OPTIONS, Order

logger = logging.getLogger(__name__)


def create_order(db: Database, products: List[Any], payment: Dict[str, Any], buyer_id: str) -> Dict[str, Any]:
    order = Order(products=products, payment=payment, buyer=to_obj_id(buyer_id))
    return create_document(db, "order", order)


def _entry_product_id(entry: Any) -> Optional[ObjectId]:
    if isinstance(entry, dict):
        entry = entry.get("_id") or entry.get("id")
    if is_obj_id(entry):
        return to_obj_id(entry)
    return None


def _resolve(db: Database, orders: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    product_ids = set()
    buyer_ids = set()
    for o in orders:
        for entry in o.get("products", []):
            pid = _entry_product_id(entry)
            if pid is not None:
                product_ids.add(pid)
        if o.get("buyer") is not None:
            buyer_ids.add(o["buyer"])

    products = {p["_id"]: p for p in db["product"].find({"_id": {"$in": list(product_ids)}}, {"photo": 0})}
    buyers = {u["_id"]: u for u in db["user"].find({"_id": {"$in": list(buyer_ids)}}, {"name": 1})}

    resolved = []
    for o in orders:
        items = []
        for entry in o.get("products", []):
            pid = _entry_product_id(entry)
            if pid in products:
                items.append(products[pid])
            elif isinstance(entry, dict):
                items.append({k: v for k, v in entry.items() if k != "photo"})
            else:
                items.append(entry)
        buyer = buyers.get(o.get("buyer"))
        resolved.append({
            **o,
            "products": items,
            "buyer": {"_id": buyer["_id"], "name": buyer.get("name")} if buyer else o.get("buyer"),
        })
    return [serialize_doc(o) for o in resolved]


def list_orders(db: Database, buyer_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """Orders newest first; only the buyer's own when `buyer_id` is given."""
    query: Dict[str, Any] = {}
    if buyer_id is not None:
        if not is_obj_id(buyer_id):
            return []
        query["buyer"] = to_obj_id(buyer_id)
    docs = list(db["order"].find(query).sort([("created_at", DESCENDING)]))
    return _resolve(db, docs)


def update_order_status(db: Database, order_id: str, status: Optional[str]) -> Dict[str, Any]:
    if not status:
        raise ValidationFailed("Status is required")
    if status not in ORDER_STATUS_OPTIONS:
        raise ValidationFailed("Invalid status value", allowed=list(ORDER_STATUS_OPTIONS))
    oid = to_obj_id(order_id, "Invalid order id")

    doc = db["order"].find_one_and_update(
        {"_id": oid},
        {"$set": {"status": status, "updated_at": datetime.now(timezone.utc)}},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise NotFound("Order not found")
    logger.info("Order %s moved to %s", order_id, status)
    return _resolve(db, [doc])[0]
