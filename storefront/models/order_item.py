"""Order line snapshot model."""
from sqlalchemy import Column, String, Integer, ForeignKey
from sqlalchemy.orm import relationship
from storefront.database import Base, BigIntPK


class OrderItem(Base):
    """Immutable copy of a product line captured when the order was created."""

    __tablename__ = 'order_item'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    order_id = Column(BigIntPK, ForeignKey('orders.id'), nullable=False, index=True)
    product_id = Column(BigIntPK, ForeignKey('product.id'), nullable=True)
    title_snapshot = Column(String, nullable=False)
    unit_price_cents_snapshot = Column(Integer, nullable=False)
    unit_weight_grams_snapshot = Column(Integer, nullable=True)
    qty = Column(Integer, nullable=False)

    # Relationships
    order = relationship('Order', back_populates='items')

    @property
    def line_total_cents(self):
        return self.unit_price_cents_snapshot * self.qty

    def __repr__(self):
        return f"<OrderItem(id={self.id}, product_id={self.product_id}, qty={self.qty})>"
