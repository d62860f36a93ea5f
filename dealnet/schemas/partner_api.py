"""
Partner API response schemas. Every successful partner response is wrapped in
the versioned envelope; bump PARTNER_API_SCHEMA_DATE on any field change.
Envelope meta is camelCase on the wire (dump with by_alias=True); items are not.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

PARTNER_API_VERSION = 1
PARTNER_API_SCHEMA_DATE = "2026-01-15"


class PartnerRef(BaseModel):
    key: str
    site_key: str = Field(serialization_alias="siteKey")


class PartnerApiMeta(BaseModel):
    version: int = PARTNER_API_VERSION
    schema_date: str = Field(default=PARTNER_API_SCHEMA_DATE, serialization_alias="schemaDate")
    generated_at: datetime = Field(serialization_alias="generatedAt")
    partner: PartnerRef


class IntelligenceResponse(BaseModel):
    meta: PartnerApiMeta
    tier: str
    report: dict


class DealItem(BaseModel):
    asin: str
    title: Optional[str] = None
    category: Optional[str] = None
    current_price_cents: int
    old_price_cents: Optional[int] = None
    expires_at: datetime
    outbound_url: str


class DealsResponse(BaseModel):
    meta: PartnerApiMeta
    count: int
    items: list[DealItem] = Field(default_factory=list)
