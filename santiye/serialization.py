from bson import ObjectId
from datetime import datetime
from decimal import Decimal
from typing import Dict, Any
from pydantic.alias_generators import to_camel


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Serialize a store record for JSON response (ObjectId, datetime, Decimal, camelCase keys)"""
    if doc is None:
        return None
    result = {}
    for key, value in doc.items():
        if key == "_id":
            key = "id"
        result[to_camel(key)] = _serialize_value(value)
    return result


def _serialize_value(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return serialize_doc(value)
    if isinstance(value, list):
        return [_serialize_value(item) for item in value]
    return value
