"""Request / response models for the HTTP API."""

from datetime import date, datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from verisure.ledger import LedgerStatus


# Static segments under /verify that would shadow GET /verify/{product_id}
RESERVED_PRODUCT_IDS = frozenset({"by-qr"})


class ProductCreate(BaseModel):
    product_id: str = Field(..., min_length=1, max_length=128, examples=["PRD-001"])
    name: str = Field(..., min_length=1, max_length=255, examples=["Premium Sneakers"])

    @field_validator("product_id", "name")
    @classmethod
    def strip_and_require(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("product_id")
    @classmethod
    def not_reserved(cls, v: str) -> str:
        if v in RESERVED_PRODUCT_IDS:
            raise ValueError(f"'{v}' is reserved")
        return v


class ProductOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: str
    name: str
    qr_hash: str
    is_fake: bool
    created_at: datetime
    updated_at: datetime


class RegistrationOut(BaseModel):
    product: ProductOut
    ledger_status: LedgerStatus
    qr_code: str = Field(..., description="PNG data URL of the product's QR code")
    qr_filename: str


class FlagOut(BaseModel):
    product: ProductOut
    ledger_status: LedgerStatus


class VerificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    is_fake: bool
    source: Literal["ledger", "directory"]
    product_id: Optional[str] = None


class QRImageVerificationOut(BaseModel):
    token: Optional[str]
    token_source: Literal["image", "filename", "none"]
    result: Optional[VerificationOut] = None


class DailyCountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    date: date
    count: int
    real: int
    fake: int


class AnalyticsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    real_count: int
    fake_count: int
    total_count: int
    daily: List[DailyCountOut]
