"""
Who may do what.

``RULES`` maps a (resource kind, action) pair to the relationships that
permit it. A relationship is one of:

- ``admin``: the actor has the admin role
- ``seller``: the actor is the resource's ``seller_id``
- ``buyer``: the actor is the resource's ``buyer_id``
- ``owner``: the actor is the resource's ``user_id``, or is the user itself

Anything not listed is denied.
"""

from typing import Callable, Dict, Optional, Tuple

from errors import AuthorizationError

Rule = Tuple[Tuple[str, ...], str]

RULES: Dict[Tuple[str, str], Rule] = {
    ("product", "update"): (("admin", "seller"), "Not authorized to update this product"),
    ("product", "delete"): (("admin", "seller"), "Not authorized to delete this product"),
    ("purchase_request", "read"): (("admin", "buyer", "seller"), "You do not have permission to view this purchase request"),
    ("purchase_request", "accept"): (("seller",), "Only the seller can accept or reject the request"),
    ("purchase_request", "reject"): (("seller",), "Only the seller can accept or reject the request"),
    ("purchase_request", "complete"): (("buyer",), "Only the buyer can mark the request as completed"),
    ("order", "read"): (("admin", "owner"), "Not authorized to view this order"),
    ("order", "list_all"): (("admin",), "Admin privileges required"),
    ("order", "update_status"): (("admin",), "Admin privileges required"),
    ("user", "list_all"): (("admin",), "Admin privileges required"),
    ("user", "delete"): (("admin",), "Admin privileges required"),
}


def _actor_id(actor: dict) -> str:
    return str(actor.get("_id"))


def _owner(actor: dict, resource: dict) -> bool:
    if "user_id" in resource:
        return resource["user_id"] == _actor_id(actor)
    return str(resource.get("_id")) == _actor_id(actor)


RELATIONSHIPS: Dict[str, Callable[[dict, dict], bool]] = {
    "admin": lambda actor, resource: actor.get("role") == "admin",
    "seller": lambda actor, resource: resource.get("seller_id") == _actor_id(actor),
    "buyer": lambda actor, resource: resource.get("buyer_id") == _actor_id(actor),
    "owner": _owner,
}


def permits(actor: dict, kind: str, action: str, resource: Optional[dict] = None) -> bool:
    rule = RULES.get((kind, action))
    if rule is None:
        return False
    relationships, _ = rule
    resource = resource or {}
    return any(RELATIONSHIPS[name](actor, resource) for name in relationships)


def authorize(actor: dict, kind: str, action: str, resource: Optional[dict] = None) -> None:
    """Raise AuthorizationError unless ``actor`` may perform ``action``."""
    if not permits(actor, kind, action, resource):
        rule = RULES.get((kind, action))
        raise AuthorizationError(rule[1] if rule else "Not permitted")
