from __future__ import annotations

import math
from typing import Any

from fastapi.encoders import jsonable_encoder


def ok(data: Any = None) -> dict:
    return {"success": True, "data": jsonable_encoder(data)}


def paginated(data: list, *, page: int, limit: int, total: int) -> dict:
    return {
        "success": True,
        "data": jsonable_encoder(data),
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": math.ceil(total / limit) if limit else 0,
        },
    }


def error(message: str, details: Any = None) -> dict:
    body = {"success": False, "error": message}
    if details is not None:
        body["details"] = jsonable_encoder(details)
    return body
