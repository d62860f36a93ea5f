"""
System alert model - append-only, soft-resolved alert log.
Shared by operational alerts and governance bookkeeping; governance rows are
the ones whose message starts with the "gov:" namespace token.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, Boolean, DateTime, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from dealnet.database import Base

SEVERITIES = ("INFO", "WARNING", "ERROR", "CRITICAL")


class SystemAlert(Base):
    __tablename__ = "system_alerts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )
    type: Mapped[str] = mapped_column(String(30), nullable=False, default="SYSTEM")
    severity: Mapped[str] = mapped_column(String(10), nullable=False)  # INFO, WARNING, ERROR, CRITICAL
    # Noisy alerts are hidden from the human-facing feed
    noisy: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_system_alerts_created_at", "created_at"),
        Index("ix_system_alerts_message", "message"),
    )

    def __repr__(self) -> str:
        return f"<SystemAlert {self.severity} {self.message[:40]}>"
