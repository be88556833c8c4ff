"""Shipping option model."""
from sqlalchemy import Column, String, Integer, Boolean, DateTime
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK

SHIPPING_TYPE_HOME = 'home'
SHIPPING_TYPE_SERVICE_POINTS = 'service_points'


class ShippingOption(Base):
    """Admin-defined delivery option, applicable inside an order-total bracket."""

    __tablename__ = 'shipping_option'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    carrier = Column(String(100), nullable=False)
    shipping_type = Column(String(32), nullable=False, default=SHIPPING_TYPE_HOME)
    title = Column(String(200), nullable=False)
    price_cents = Column(Integer, nullable=False)
    # Inclusive bounds on the cart subtotal; NULL means unbounded
    min_order_total_cents = Column(Integer, nullable=True)
    max_order_total_cents = Column(Integer, nullable=True)
    position = Column(Integer, nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    @property
    def is_service_point(self):
        return self.shipping_type == SHIPPING_TYPE_SERVICE_POINTS

    def contains(self, subtotal_cents: int) -> bool:
        """True when the subtotal falls inside this option's bracket."""
        if self.min_order_total_cents is not None and subtotal_cents < self.min_order_total_cents:
            return False
        if self.max_order_total_cents is not None and subtotal_cents > self.max_order_total_cents:
            return False
        return True

    def to_dict(self):
        return {
            'id': self.id,
            'carrier': self.carrier,
            'shipping_type': self.shipping_type,
            'title': self.title,
            'price_cents': self.price_cents,
            'min_order_total_cents': self.min_order_total_cents,
            'max_order_total_cents': self.max_order_total_cents,
            'position': self.position,
        }

    def __repr__(self):
        return f"<ShippingOption(id={self.id}, title='{self.title}', price_cents={self.price_cents})>"
