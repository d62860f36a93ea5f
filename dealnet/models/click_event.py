"""
Click event model - append-only log of impressions, synthetic tracking events
and outbound affiliate clicks. The attribution column carries the encoded
attribution record (see services/attribution.py); there is no other schema.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, DateTime, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from dealnet.database import Base

IMPRESSION_HREF = "event://impression"

KIND_IMPRESSION = "impression"
KIND_AFFILIATE_OUTBOUND = "affiliate_outbound"


class ClickEvent(Base):
    __tablename__ = "click_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(30), nullable=False)  # impression, affiliate_outbound
    # event://<name> for synthetic events, otherwise the real outbound URL
    href: Mapped[str] = mapped_column(Text, nullable=False)
    asin: Mapped[Optional[str]] = mapped_column(String(20))
    deal_id: Mapped[Optional[str]] = mapped_column(String(64))
    attribution: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # Debugging only. Never read by aggregation.
    user_agent: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("ix_click_events_occurred_at", "occurred_at"),
        Index("ix_click_events_deal_id", "deal_id"),
    )

    def __repr__(self) -> str:
        return f"<ClickEvent {self.kind} href={self.href}>"
