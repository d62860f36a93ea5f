"""
Product and deal models. Owned by the ingestion side; this service only reads
them to resolve a deal snapshot (category, prices, expiry) for click events.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, Integer, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from dealnet.database import Base


def _new_id() -> str:
    return uuid.uuid4().hex


class Product(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    asin: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    title: Mapped[Optional[str]] = mapped_column(String(500))
    product_url: Mapped[Optional[str]] = mapped_column(Text)
    category: Mapped[Optional[str]] = mapped_column(String(100))
    category_override: Mapped[Optional[str]] = mapped_column(String(100))

    deals: Mapped[list["Deal"]] = relationship(back_populates="product")

    def __repr__(self) -> str:
        return f"<Product {self.asin}>"


class Deal(Base):
    __tablename__ = "deals"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    product_id: Mapped[str] = mapped_column(String(64), ForeignKey("products.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="ACTIVE")  # ACTIVE, EXPIRING_24H, EXPIRED, ...
    current_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    old_price_cents: Mapped[Optional[int]] = mapped_column(Integer)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    product: Mapped[Product] = relationship(back_populates="deals")

    __table_args__ = (
        Index("ix_deals_product_id", "product_id"),
        Index("ix_deals_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<Deal {self.id} status={self.status}>"
