"""
utils.py — Validation Schemas, Response Envelope & Pagination
Cattle Breed Recognition API
"""

import math
from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from app.models.user_model import UserRole


# ── Pydantic Schemas ──────────────────────────────────────────────────────────
class CamelModel(BaseModel):
    """Snake-case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    def dump(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class UserOut(CamelModel):
    id: int
    email: str
    name: Optional[str] = None
    role: UserRole
    profile_image: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserBrief(CamelModel):
    id: int
    email: str
    name: Optional[str] = None
    role: UserRole


class UserListItem(CamelModel):
    id: int
    email: str
    name: Optional[str] = None
    role: UserRole
    is_active: bool
    created_at: Optional[datetime] = None
    prediction_count: int = 0


class AuthResult(UserBrief):
    is_new_user: bool


class RoleChange(CamelModel):
    id: int
    email: str
    role: UserRole


class ProfileUpdate(CamelModel):
    name: Optional[str] = Field(default=None, max_length=200)
    profile_image: Optional[str] = Field(default=None, max_length=500)


class RoleUpdate(CamelModel):
    role: UserRole

    @field_validator("role", mode="before")
    @classmethod
    def normalise_role(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class PredictionOut(CamelModel):
    id: int
    user_id: int
    breed_name: str
    confidence: float
    processing_time: Optional[float] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="extra_metadata")
    created_at: Optional[datetime] = None


class PredictionWithUser(PredictionOut):
    user: UserBrief


class PredictionBrief(CamelModel):
    id: int
    breed_name: str
    confidence: float
    created_at: Optional[datetime] = None


class BreedPredictionOut(CamelModel):
    id: int
    breed_name: str
    confidence: float
    processing_time: float
    additional_info: Optional[Dict[str, Any]] = None
    timestamp: Optional[datetime] = None


# ── Envelope ──────────────────────────────────────────────────────────────────
def envelope(
    data: Any = None,
    message: Optional[str] = None,
    pagination: Optional[dict] = None,
) -> dict:
    body: Dict[str, Any] = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    if pagination is not None:
        body["pagination"] = pagination
    return body


# ── Pagination Helper ─────────────────────────────────────────────────────────
def page_offset(page: int, limit: int) -> int:
    return (page - 1) * limit


def paginate(page: int, limit: int, total: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if limit else 0,
    }
