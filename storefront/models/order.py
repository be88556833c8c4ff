"""Order model."""
from sqlalchemy import Column, String, Integer, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK
from storefront.exceptions import InvalidTransitionError
import enum


class OrderStatus(str, enum.Enum):
    """Order lifecycle."""
    PENDING_PAYMENT = 'pending_payment'
    PAID = 'paid'
    FULFILLED = 'fulfilled'
    CANCELLED = 'cancelled'


ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING_PAYMENT: {OrderStatus.PAID, OrderStatus.CANCELLED},
    OrderStatus.PAID: {OrderStatus.FULFILLED},
    OrderStatus.FULFILLED: set(),
    OrderStatus.CANCELLED: set(),
}


class Order(Base):
    """Order aggregate root. Never deleted."""

    __tablename__ = 'orders'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    public_id = Column(String(32), nullable=False, unique=True, index=True)
    status = Column(String(32), nullable=False, default=OrderStatus.PENDING_PAYMENT.value)

    # Settlement. payment_reference is the idempotency key.
    payment_rail = Column(String(20), nullable=False)
    payment_reference = Column(String(255), nullable=True, unique=True, index=True)
    provider_charge_id = Column(String(255), nullable=True)
    preferred_payment_method = Column(String(50), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    # Card risk signals (informational only)
    risk_score = Column(Integer, nullable=True)
    risk_level = Column(String(50), nullable=True)
    risk_reason = Column(String(255), nullable=True)
    risk_rule = Column(String(255), nullable=True)
    seller_message = Column(Text, nullable=True)
    outcome_type = Column(String(50), nullable=True)
    network_status = Column(String(50), nullable=True)

    customer_id = Column(BigIntPK, ForeignKey('customer.id'), nullable=False)

    # Price breakdown, integer cents
    subtotal_cents = Column(Integer, nullable=False)
    shipping_cents = Column(Integer, nullable=False)
    discount_cents = Column(Integer, nullable=False, default=0)
    total_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default='eur')
    discount_code_id = Column(BigIntPK, ForeignKey('discount_code.id'), nullable=True)

    # Shipping option snapshot
    shipping_option_id = Column(BigIntPK, nullable=True)
    shipping_option_title = Column(String(200), nullable=True)
    shipping_option_carrier = Column(String(100), nullable=True)
    shipping_option_type = Column(String(32), nullable=True)

    # Service point snapshot (service_points deliveries only)
    service_point_id = Column(String(64), nullable=True)
    service_point_name = Column(String(200), nullable=True)
    service_point_street = Column(String(200), nullable=True)
    service_point_house_number = Column(String(20), nullable=True)
    service_point_postal_code = Column(String(20), nullable=True)
    service_point_city = Column(String(200), nullable=True)
    service_point_distance = Column(Integer, nullable=True)

    # Fulfillment (written once per successful label purchase)
    shipment_id = Column(String(64), nullable=True)
    parcel_id = Column(String(64), nullable=True, index=True)
    tracking_number = Column(String(128), nullable=True, index=True)
    tracking_url = Column(Text, nullable=True)
    label_url = Column(Text, nullable=True)
    delivery_status = Column(String(64), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    customer = relationship('Customer', back_populates='orders')
    discount = relationship('DiscountCode')
    items = relationship('OrderItem', back_populates='order', cascade='all, delete-orphan',
                         order_by='OrderItem.id')

    @property
    def is_service_point_delivery(self):
        return self.shipping_option_type == 'service_points'

    def transition_to(self, target: OrderStatus) -> None:
        """Move to `target`, enforcing the order state machine."""
        current = OrderStatus(self.status)
        target = OrderStatus(target)
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(current.value, target.value)
        self.status = target.value

    def to_summary(self):
        return {
            'public_id': self.public_id,
            'status': self.status,
            'subtotal_cents': self.subtotal_cents,
            'shipping_cents': self.shipping_cents,
            'discount_cents': self.discount_cents or 0,
            'total_cents': self.total_cents,
            'currency': self.currency,
            'payment_rail': self.payment_rail,
            'payment_reference': self.payment_reference,
            'delivery_status': self.delivery_status,
            'tracking_number': self.tracking_number,
            'tracking_url': self.tracking_url,
        }

    def __repr__(self):
        return f"<Order(public_id={self.public_id}, status={self.status}, total_cents={self.total_cents})>"
