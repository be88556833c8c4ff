"""Product model."""
from sqlalchemy import Column, String, Boolean, Integer, DateTime
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK


class Product(Base):
    """Catalog product. Only the fields checkout needs are mapped here."""

    __tablename__ = 'product'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    title = Column(String, nullable=False)
    price_cents = Column(Integer, nullable=False)
    weight_grams = Column(Integer, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Product(id={self.id}, title='{self.title}', price_cents={self.price_cents})>"
