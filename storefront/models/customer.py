"""Customer model."""
from sqlalchemy import Column, String, Text, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK


class Customer(Base):
    """Customer, keyed by lower-cased email."""

    __tablename__ = 'customer'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    first_name = Column(String(200), nullable=True)
    last_name = Column(String(200), nullable=True)
    company_name = Column(String(200), nullable=True)
    phone = Column(String(50), nullable=True)
    address1 = Column(Text, nullable=True)
    address2 = Column(Text, nullable=True)
    postal_code = Column(String(20), nullable=True)
    city = Column(String(200), nullable=True)
    country = Column(String(2), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    orders = relationship('Order', back_populates='customer')

    @property
    def full_name(self):
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    def __repr__(self):
        return f"<Customer(id={self.id}, email='{self.email}')>"
