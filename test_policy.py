import pytest

from errors import AuthorizationError
from policy import authorize, permits

SELLER = {"_id": "s1", "role": "user"}
BUYER = {"_id": "b1", "role": "user"}
STRANGER = {"_id": "c1", "role": "user"}
ADMIN = {"_id": "a1", "role": "admin"}

REQUEST = {"_id": "r1", "seller_id": "s1", "buyer_id": "b1", "status": "pending"}
PRODUCT = {"_id": "p1", "seller_id": "s1"}
ORDER = {"_id": "o1", "user_id": "b1"}


@pytest.mark.parametrize("action, allowed", [
    ("accept", {"s1"}),
    ("reject", {"s1"}),
    ("complete", {"b1"}),
    ("read", {"s1", "b1", "a1"}),
])
def test_purchase_request_rules(action, allowed):
    for actor in (SELLER, BUYER, STRANGER, ADMIN):
        assert permits(actor, "purchase_request", action, REQUEST) == (actor["_id"] in allowed)


def test_product_mutation_by_seller_or_admin():
    for action in ("update", "delete"):
        assert permits(SELLER, "product", action, PRODUCT)
        assert permits(ADMIN, "product", action, PRODUCT)
        assert not permits(BUYER, "product", action, PRODUCT)


def test_order_rules():
    assert permits(BUYER, "order", "read", ORDER)
    assert permits(ADMIN, "order", "read", ORDER)
    assert not permits(SELLER, "order", "read", ORDER)
    assert permits(ADMIN, "order", "list_all")
    assert not permits(BUYER, "order", "list_all")


def test_unknown_action_is_denied():
    assert not permits(ADMIN, "purchase_request", "delete", REQUEST)
    with pytest.raises(AuthorizationError) as exc:
        authorize(ADMIN, "purchase_request", "delete", REQUEST)
    assert exc.value.status_code == 403


def test_authorize_uses_rule_message():
    with pytest.raises(AuthorizationError) as exc:
        authorize(STRANGER, "purchase_request", "accept", REQUEST)
    assert exc.value.detail == "Only the seller can accept or reject the request"
    authorize(SELLER, "purchase_request", "accept", REQUEST)
