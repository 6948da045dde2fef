from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from restaurant_admin.core.config import settings

LocalizedText = dict[str, str]


def _normalize_localized(value: LocalizedText | None, *, field: str, required: bool) -> LocalizedText | None:
    if value is None:
        return None
    cleaned: LocalizedText = {}
    for tag, text in value.items():
        tag_clean = str(tag).strip().lower()
        if len(tag_clean) != 2 or not tag_clean.isalpha():
            raise ValueError(f"{field} keys must be two-letter language tags")
        cleaned[tag_clean] = (text or "").strip()
    if required:
        missing = [tag for tag in settings.required_languages if not cleaned.get(tag)]
        if missing:
            raise ValueError(f"{field} must include non-empty text for: {', '.join(missing)}")
    return cleaned


class CategoryCreate(BaseModel):
    name: LocalizedText
    sort_order: int = 0
    is_active: bool = True

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: LocalizedText) -> LocalizedText:
        return _normalize_localized(value, field="name", required=True)


class CategoryOut(BaseModel):
    id: int
    name: LocalizedText
    sort_order: int
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class ProductCreate(BaseModel):
    name: LocalizedText
    description: LocalizedText | None = None
    price: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    sku: str | None = Field(default=None, max_length=100)
    category_id: int | None = None
    image_url: str | None = Field(default=None, max_length=500)
    is_active: bool = True

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: LocalizedText) -> LocalizedText:
        return _normalize_localized(value, field="name", required=True)

    @field_validator("description")
    @classmethod
    def validate_description(cls, value: LocalizedText | None) -> LocalizedText | None:
        return _normalize_localized(value, field="description", required=False)

    @field_validator("sku", "image_url")
    @classmethod
    def blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": {"th": "ข้าวผัดกุ้ง", "en": "Shrimp Fried Rice"},
                "description": {"th": "ข้าวผัดกุ้งสด", "en": "Fried rice with fresh shrimp"},
                "price": 89.0,
                "sku": "FR-SHRIMP",
                "category_id": 1,
                "is_active": True,
            }
        }
    )


class ProductUpdate(BaseModel):
    name: LocalizedText | None = None
    description: LocalizedText | None = None
    price: Decimal | None = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    sku: str | None = Field(default=None, max_length=100)
    category_id: int | None = None
    image_url: str | None = Field(default=None, max_length=500)
    is_active: bool | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: LocalizedText | None) -> LocalizedText | None:
        return _normalize_localized(value, field="name", required=True)

    @field_validator("description")
    @classmethod
    def validate_description(cls, value: LocalizedText | None) -> LocalizedText | None:
        return _normalize_localized(value, field="description", required=False)


class ProductOut(BaseModel):
    id: int
    name: LocalizedText
    description: LocalizedText | None = None
    price: float
    sku: str | None = None
    category_id: int | None = None
    image_url: str | None = None
    is_active: bool
    created_at: datetime
    updated_at: datetime
