from typing import Any

from pydantic import BaseModel, ConfigDict


class PaginationMeta(BaseModel):
    total: int
    limit: int
    offset: int
    count: int
    has_next: bool

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "total": 42,
                "limit": 10,
                "offset": 0,
                "count": 10,
                "has_next": True,
            }
        }
    )


class ErrorOut(BaseModel):
    error: str
    code: str
    request_id: str
    path: str
    details: list[dict[str, Any]] | None = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "Insufficient stock: available 2.000, requested 10.000",
                "code": "insufficient_stock",
                "request_id": "8d8f2b00-6c79-4a45-8ff4-b0a5f2bc4bc2",
                "path": "/inventory/adjust",
                "details": [{"available": "2.000", "requested": "10.000"}],
            }
        }
    )
