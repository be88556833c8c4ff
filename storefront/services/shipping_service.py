"""Shipping rate resolution from admin-defined shipping options."""
import math
from dataclasses import dataclass
from typing import List, Optional

from storefront.exceptions import ValidationError
from storefront.models import ShippingOption
from storefront.utils.validators import get_object, get_optional_trimmed_string

INVALID_OPTION_MESSAGE = 'Option de livraison invalide.'


@dataclass(frozen=True)
class ServicePoint:
    id: str
    name: Optional[str] = None
    street: Optional[str] = None
    house_number: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    distance: Optional[int] = None

    @classmethod
    def from_payload(cls, payload) -> Optional['ServicePoint']:
        """Build from checkout JSON; None when no usable id is present."""
        data = get_object(payload)
        point_id = get_optional_trimmed_string(data.get('id'))
        if not point_id:
            return None

        distance = data.get('distance')
        if isinstance(distance, bool) or not isinstance(distance, (int, float)) or not math.isfinite(distance):
            distance = None

        return cls(
            id=point_id,
            name=get_optional_trimmed_string(data.get('name')),
            street=get_optional_trimmed_string(data.get('street')),
            house_number=get_optional_trimmed_string(data.get('house_number')),
            postal_code=get_optional_trimmed_string(data.get('postal_code')),
            city=get_optional_trimmed_string(data.get('city')),
            distance=int(distance) if distance is not None else None,
        )


@dataclass(frozen=True)
class ShippingSelection:
    shipping_cents: int
    option: Optional[ShippingOption] = None
    service_point: Optional[ServicePoint] = None


def list_available(session, subtotal_cents: Optional[int] = None) -> List[ShippingOption]:
    """Active options in display order, limited to the subtotal's bracket when one is given."""
    options = session.query(ShippingOption).filter(
        ShippingOption.active == True
    ).order_by(ShippingOption.position, ShippingOption.id).all()
    if subtotal_cents is None:
        return options
    return [option for option in options if option.contains(subtotal_cents)]


def resolve(session, config, subtotal_cents: int, option_id=None,
            service_point: Optional[ServicePoint] = None) -> ShippingSelection:
    """
    Resolve the shipping cost for a cart.

    Without an option id the configured flat rate applies. The bracket is
    matched against the subtotal alone, before any discount.

    Raises:
        ValidationError: unknown, inactive or out-of-bracket option, or a
            service-point option without a service point
    """
    if option_id is None:
        return ShippingSelection(shipping_cents=config.default_shipping_cents)

    option = session.query(ShippingOption).filter(
        ShippingOption.id == option_id,
        ShippingOption.active == True
    ).first()
    if not option or not option.contains(subtotal_cents):
        raise ValidationError(INVALID_OPTION_MESSAGE)

    if option.is_service_point:
        if not service_point:
            raise ValidationError('Point relais obligatoire.')
        return ShippingSelection(shipping_cents=option.price_cents, option=option,
                                 service_point=service_point)

    return ShippingSelection(shipping_cents=option.price_cents, option=option)
