"""
Tracking payload schemas - raw input from the site's client-side tracker.
Field names match what the tracker sends.
"""
from typing import Literal, Optional
from pydantic import BaseModel, Field

TrackEventName = Literal[
    "page_view",
    "view_item",
    "view_deal",
    "outbound_affiliate_click",
    "impression",
    "product_exit",
]


class TrackPayload(BaseModel):
    """POST /api/track body."""
    event: TrackEventName
    section: str = Field(min_length=1, max_length=200)
    asin: Optional[str] = Field(default=None, max_length=20)
    dealId: Optional[str] = Field(default=None, max_length=64)
    dealStatus: Optional[str] = Field(default=None, max_length=40)
    ctaVariant: Optional[str] = Field(default=None, max_length=40)
    badgeVariant: Optional[str] = Field(default=None, max_length=40)
    provider: Optional[str] = Field(default=None, max_length=40)
    partner: Optional[str] = Field(default=None, max_length=64)


class TrackResponse(BaseModel):
    ok: bool = True
