from datetime import datetime
from typing import Any

from bson import ObjectId


def to_jsonable(value: Any) -> Any:
    """
    Mongo 문서를 JSON 응답용으로 변환한다.

    - ObjectId → str
    - 최상위/중첩 문서의 `_id` 는 `id` 로 이름을 바꾼다
    - datetime 은 그대로 둔다 (FastAPI 가 ISO 문자열로 직렬화)

    Convert a Mongo document into a JSON-friendly structure.
    """
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value
    if isinstance(value, dict):
        out: dict[str, Any] = {}
        for key, item in value.items():
            out["id" if key == "_id" else key] = to_jsonable(item)
        return out
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    return value
