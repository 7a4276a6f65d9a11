from typing import Any, Iterable, List, Optional

from bson import ObjectId
from bson.errors import InvalidId


def to_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def id_variants(values: Iterable[str]) -> List[Any]:
    # Foreign collections may key documents by ObjectId or by plain string
    out: List[Any] = []
    for value in values:
        out.append(value)
        oid = to_object_id(value)
        if oid is not None:
            out.append(oid)
    return out


def is_field_safe(value: Optional[str]) -> bool:
    # user ids become keys in dotted update paths such as unread_counters.<id>
    return bool(value) and "." not in value and "$" not in value and "\x00" not in value
