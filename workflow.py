"""
Purchase requests and orders.

A purchase request moves through

    pending --accept--> accepted --complete--> completed
    pending --reject--> rejected

The seller accepts or rejects, the buyer completes. Status writes are
conditional on the status that was read, so two racing transitions cannot
both land.
"""

import logging
from typing import Dict, List, Optional, Tuple

from errors import ConflictError, NotFoundError, ValidationError
from policy import authorize
from repositories import Repositories
from schemas import (
    ORDER_STATUSES,
    BuyerContact,
    Order,
    OrderCreate,
    OrderItem,
    PurchaseRequest,
    PurchaseRequestCreate,
)

logger = logging.getLogger(__name__)

NEWEST_FIRST = [("created_at", -1), ("_id", -1)]

# target status -> policy action
STATUS_ACTIONS: Dict[str, str] = {
    "accepted": "accept",
    "rejected": "reject",
    "completed": "complete",
}

TRANSITIONS: Dict[Tuple[str, str], str] = {
    ("pending", "accepted"): "accept",
    ("pending", "rejected"): "reject",
    ("accepted", "completed"): "complete",
}

PRODUCT_SUMMARY = ("name", "price", "image_url")
USER_SUMMARY = ("display_name", "email", "phone", "avatar")


def _summary(doc: Optional[dict], fields) -> Optional[dict]:
    if doc is None:
        return None
    out = {"_id": doc["_id"]}
    for f in fields:
        out[f] = doc.get(f)
    return out


# ---------- Purchase requests ----------

def create_purchase_request(repos: Repositories, buyer: dict, data: PurchaseRequestCreate) -> dict:
    product = repos.products.get(data.product_id)
    if not product:
        raise NotFoundError("Product not found")
    if product["seller_id"] == buyer["_id"]:
        raise ValidationError("You cannot make a purchase request for your own product")

    contact = data.buyer_contact or BuyerContact(email=buyer.get("email"), phone=buyer.get("phone"))
    request = PurchaseRequest(
        product_id=product["_id"],
        buyer_id=buyer["_id"],
        seller_id=product["seller_id"],
        message=data.message,
        offered_price=data.offered_price,
        buyer_contact=contact,
    )
    request_id = repos.purchase_requests.create(request)
    logger.info("Purchase request %s created by %s for product %s", request_id, buyer["_id"], product["_id"])
    return repos.purchase_requests.get(request_id)


def update_purchase_request_status(repos: Repositories, actor: dict, request_id: str, status: str) -> dict:
    action = STATUS_ACTIONS.get(status)
    if action is None:
        raise ValidationError("Invalid status. Must be accepted, rejected, or completed")

    request = repos.purchase_requests.get(request_id)
    if not request:
        raise NotFoundError("Purchase request not found")

    authorize(actor, "purchase_request", action, request)

    current = request["status"]
    if (current, status) not in TRANSITIONS:
        raise ValidationError(f"Cannot change status from {current} to {status}")

    updated = repos.purchase_requests.update(request_id, {"status": status}, expected={"status": current})
    if updated is None:
        logger.warning("Purchase request %s changed while moving %s -> %s", request_id, current, status)
        raise ConflictError("Purchase request was updated by someone else, reload and try again")

    if status == "completed":
        repos.users.increment(updated["seller_id"], {"total_sales": 1})
        repos.users.increment(updated["buyer_id"], {"total_purchases": 1})

    logger.info("Purchase request %s moved %s -> %s by %s", request_id, current, status, actor["_id"])
    return updated


def list_received_requests(repos: Repositories, seller: dict) -> List[dict]:
    requests = repos.purchase_requests.find({"seller_id": seller["_id"]}, sort=NEWEST_FIRST)
    for r in requests:
        r["product"] = _summary(repos.products.get(r["product_id"]), PRODUCT_SUMMARY)
        r["buyer"] = _summary(repos.users.get(r["buyer_id"]), USER_SUMMARY)
    return requests


def list_sent_requests(repos: Repositories, buyer: dict) -> List[dict]:
    requests = repos.purchase_requests.find({"buyer_id": buyer["_id"]}, sort=NEWEST_FIRST)
    for r in requests:
        r["product"] = _summary(repos.products.get(r["product_id"]), PRODUCT_SUMMARY)
        r["seller"] = _summary(repos.users.get(r["seller_id"]), USER_SUMMARY)
    return requests


def get_purchase_request(repos: Repositories, actor: dict, request_id: str) -> dict:
    request = repos.purchase_requests.get(request_id)
    if not request:
        raise NotFoundError("Purchase request not found")
    authorize(actor, "purchase_request", "read", request)
    request["product"] = repos.products.get(request["product_id"])
    request["buyer"] = _summary(repos.users.get(request["buyer_id"]), USER_SUMMARY)
    request["seller"] = _summary(repos.users.get(request["seller_id"]), USER_SUMMARY)
    return request


# ---------- Orders ----------

def create_order(repos: Repositories, user: dict, data: OrderCreate) -> dict:
    if not data.items:
        raise ValidationError("No order items")

    total = 0.0
    items = []
    for it in data.items:
        product = repos.products.get(it.product_id)
        if not product:
            raise NotFoundError(f"Product with ID {it.product_id} not found")
        price = float(product.get("price", 0))
        total += price * it.quantity
        items.append(OrderItem(product_id=product["_id"], quantity=it.quantity, price=price))

    order = Order(
        user_id=user["_id"],
        items=items,
        total_amount=round(total, 2),
        shipping_address=data.shipping_address,
    )
    order_id = repos.orders.create(order)
    logger.info("Order %s placed by %s, total %.2f", order_id, user["_id"], order.total_amount)
    return repos.orders.get(order_id)


def update_order_status(repos: Repositories, actor: dict, order_id: str, status: str) -> dict:
    authorize(actor, "order", "update_status")
    if status not in ORDER_STATUSES:
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(ORDER_STATUSES)}")
    updated = repos.orders.update(order_id, {"status": status})
    if updated is None:
        raise NotFoundError("Order not found")
    logger.info("Order %s set to %s by %s", order_id, status, actor["_id"])
    return updated
