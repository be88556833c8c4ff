"""Discount code model."""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Enum
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK
import enum


class DiscountType(str, enum.Enum):
    """How a discount amount is expressed."""
    FIXED = 'fixed'
    PERCENT = 'percent'


class DiscountCode(Base):
    """Promotional code. Deactivated instead of deleted."""

    __tablename__ = 'discount_code'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    code = Column(String(64), nullable=False, unique=True, index=True)
    discount_type = Column(
        Enum(DiscountType, name='discount_type', values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=DiscountType.FIXED,
    )
    amount_cents = Column(Integer, nullable=True)
    percent_off = Column(Integer, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<DiscountCode(code='{self.code}', type={self.discount_type}, active={self.active})>"
