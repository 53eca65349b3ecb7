from typing import Any

from bson import ObjectId
from bson.errors import InvalidId


def parse_object_id(value: Any) -> ObjectId | None:
    """
    문자열/ObjectId 를 ObjectId 로 변환한다. 형식이 잘못되면 None.
    Convert a string (or ObjectId) into an ObjectId, or None when invalid.
    """
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        return None
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None
