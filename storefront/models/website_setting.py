"""Website settings model (single row)."""
from sqlalchemy import Column, String, Text, Integer, DateTime
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK


class WebsiteSetting(Base):
    """Shop-wide settings. Provider secrets are stored AES-GCM encrypted."""

    __tablename__ = 'website_setting'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    default_currency = Column(String(3), nullable=False, default='EUR')
    default_shipping_cents = Column(Integer, nullable=True)

    stripe_secret_key_encrypted = Column(Text, nullable=True)
    paypal_client_id_encrypted = Column(Text, nullable=True)
    paypal_client_secret_encrypted = Column(Text, nullable=True)
    sendcloud_public_key_encrypted = Column(Text, nullable=True)
    sendcloud_private_key_encrypted = Column(Text, nullable=True)

    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<WebsiteSetting(id={self.id}, currency={self.default_currency})>"
