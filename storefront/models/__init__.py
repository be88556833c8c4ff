"""Models package - exports all SQLAlchemy models."""
from storefront.models.product import Product
from storefront.models.customer import Customer
from storefront.models.discount_code import DiscountCode, DiscountType
from storefront.models.shipping_option import (
    ShippingOption, SHIPPING_TYPE_HOME, SHIPPING_TYPE_SERVICE_POINTS
)
from storefront.models.order import Order, OrderStatus
from storefront.models.order_item import OrderItem
from storefront.models.website_setting import WebsiteSetting

__all__ = [
    'Product', 'Customer', 'DiscountCode', 'DiscountType',
    'ShippingOption', 'SHIPPING_TYPE_HOME', 'SHIPPING_TYPE_SERVICE_POINTS',
    'Order', 'OrderStatus', 'OrderItem', 'WebsiteSetting',
]
