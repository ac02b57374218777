# signdesk/fields/schemas.py

"""
Pydantic schemas for the fields module
"""

from datetime import datetime
from typing import Optional
from enum import Enum as PyEnum

from pydantic import BaseModel, ConfigDict, Field


class FieldType(str, PyEnum):
    """Kinds of fillable elements."""
    SIGNATURE = "signature"
    INITIALS = "initials"
    DATE = "date"
    TEXT = "text"
    CHECKBOX = "checkbox"
    PHONE = "phone"


class FieldCreate(BaseModel):
    """Schema for placing a field on the document."""
    signer_id: int
    type: FieldType
    label: Optional[str] = Field(None, max_length=255)
    page: int = Field(..., ge=1)
    x: float = Field(..., ge=0)
    y: float = Field(..., ge=0)
    width: float = Field(..., gt=0)
    height: float = Field(..., gt=0)
    required: bool = True


class FieldResponse(BaseModel):
    """Field data, including its value once filled."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    signer_id: int
    type: FieldType
    label: Optional[str] = None
    page: int
    x: float
    y: float
    width: float
    height: float
    required: bool
    value: Optional[str] = None
    filled_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
