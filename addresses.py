"""Address book. A user has at most one default address at any time."""
from typing import Any, Dict, List

from pymongo.database import Database

import orders
from database import create_document, find_by_id, serialize, utcnow
from errors import BusinessRuleError, NotFound
from logger import get_logger
from schemas import Address, AddressIn

logger = get_logger("addresses")


def _fields(payload: AddressIn) -> Dict[str, Any]:
    data = payload.model_dump()
    data["type"] = data.pop("address_type")
    return data


def _unset_other_defaults(db: Database, user_id: str, keep_id) -> None:
    db["address"].update_many(
        {"user_id": user_id, "is_default": True, "_id": {"$ne": keep_id}},
        {"$set": {"is_default": False, "updated_at": utcnow()}},
    )


def list_addresses(db: Database, user_id: str) -> List[Dict[str, Any]]:
    cursor = db["address"].find({"user_id": user_id}).sort([("is_default", -1), ("created_at", -1)])
    return [serialize(a) for a in cursor]


def get_address(db: Database, user_id: str, address_id: str) -> Dict[str, Any]:
    address = find_by_id(db, "address", address_id, user_id=user_id)
    if not address:
        raise NotFound("Address not found")
    return address


def create_address(db: Database, user_id: str, payload: AddressIn) -> Dict[str, Any]:
    address_id = create_document(db, "address", Address(user_id=user_id, **_fields(payload)))
    address = find_by_id(db, "address", address_id)
    if address["is_default"]:
        _unset_other_defaults(db, user_id, address["_id"])
    return serialize(address)


def update_address(db: Database, user_id: str, address_id: str, payload: AddressIn) -> Dict[str, Any]:
    address = get_address(db, user_id, address_id)
    fields = _fields(payload)
    fields["updated_at"] = utcnow()
    db["address"].update_one({"_id": address["_id"]}, {"$set": fields})
    if fields["is_default"]:
        _unset_other_defaults(db, user_id, address["_id"])
    return serialize(find_by_id(db, "address", address_id))


def delete_address(db: Database, user_id: str, address_id: str) -> None:
    address = get_address(db, user_id, address_id)
    if orders.has_active_orders(db, shipping_address_id=address_id):
        raise BusinessRuleError("Address is used by an active order and cannot be deleted")
    db["address"].delete_one({"_id": address["_id"]})
    logger.info("Address %s deleted for user_id=%s", address_id, user_id)
