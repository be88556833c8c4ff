"""
Fulfillment label orchestrator.

Buys a carrier label for a paid order. Every local precondition (recipient
address, service point, parcel weight) is checked before the carrier is
contacted, and the order is only written after the carrier accepted the
shipment, so a failed attempt leaves it untouched.
"""
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from storefront.exceptions import CarrierError, FulfillmentPreconditionError, ValidationError
from storefront.models import Order, OrderStatus
from storefront.services.order_service import get_by_public_id
from storefront.services.sendcloud_client import SendcloudClient, compact
from storefront.utils.units import (
    format_cents, format_grams_as_kg, parse_money_to_cents, parse_weight_to_grams
)

logger = logging.getLogger(__name__)

# Checked in order; the first matching fragment wins
DELIVERY_STATUS_LABELS = (
    (('DELIVERED',), 'Delivered'),
    (('READY_TO_SEND',), 'Label created'),
    (('READY_FOR_PICKUP', 'AT_SERVICE_POINT'), 'Ready for pickup'),
    (('OUT_FOR_DELIVERY', 'IN_TRANSIT'), 'In transit'),
    (('PICKED_UP',), 'Picked up'),
    (('FAILED_DELIVERY', 'DELIVERY_ATTEMPT'), 'Delivery attempt failed'),
    (('ANNOUNCEMENT_FAILED',), 'Announcement failed'),
    (('EXCEPTION',), 'Exception'),
    (('RETURN',), 'Returning'),
    (('CANCEL',), 'Cancelled'),
)


@dataclass(frozen=True)
class Quote:
    code: str
    name: str
    carrier_name: Optional[str]
    price_cents: Optional[int]
    currency: Optional[str]
    lead_time: Optional[int]
    requires_service_point: bool

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class LabelResult:
    shipment_id: Optional[str]
    parcel_id: Optional[str]
    label_url: Optional[str]
    tracking_number: Optional[str]
    tracking_url: Optional[str]
    delivery_status: Optional[str]
    shipping_option_code: str
    weight_kg: str

    def to_dict(self) -> dict:
        return asdict(self)


def normalize_delivery_status(raw: Optional[str]) -> Optional[str]:
    """Map a carrier parcel status code to the label shown to staff."""
    if not raw:
        return None
    upper = raw.upper()
    for fragments, label in DELIVERY_STATUS_LABELS:
        if any(fragment in upper for fragment in fragments):
            return label
    return raw


def build_carrier(config) -> SendcloudClient:
    if not config.has_sendcloud_keys:
        raise FulfillmentPreconditionError('Sendcloud keys are missing.', field='carrier_credentials')
    return SendcloudClient(config.sendcloud_public_key, config.sendcloud_private_key,
                           default_country=config.default_country,
                           timeout=config.provider_timeout)


def _text(value) -> str:
    return str(value).strip() if value is not None else ''


def build_recipient(order: Order, default_country: str) -> Dict[str, str]:
    """
    Recipient address from the order's customer.

    Raises:
        FulfillmentPreconditionError: naming the first missing field
    """
    customer = order.customer
    if customer is None:
        raise FulfillmentPreconditionError('Customer is missing.', field='customer')

    for field in ('address1', 'postal_code', 'city'):
        if not _text(getattr(customer, field)):
            raise FulfillmentPreconditionError('Shipping address is incomplete.', field=field)

    # Blank means domestic; anything else must be an ISO alpha-2 code
    country = _text(customer.country).upper() or default_country
    if len(country) != 2 or not country.isalpha():
        raise FulfillmentPreconditionError('Shipping address is incomplete.', field='country')

    return compact({
        'name': customer.full_name or 'Customer',
        'company_name': customer.company_name,
        'address_line_1': _text(customer.address1),
        'address_line_2': customer.address2,
        'postal_code': _text(customer.postal_code),
        'city': _text(customer.city),
        'country_code': country,
        'phone_number': customer.phone,
        'email': customer.email,
    })


def require_service_point(order: Order) -> None:
    if order.is_service_point_delivery and not _text(order.service_point_id):
        raise FulfillmentPreconditionError('Service point is missing for this order.', field='service_point')


def resolve_weight_grams(order: Order, total_weight=None) -> int:
    """
    Parcel weight in grams: the operator's override (kg) when given, else the
    sum of line snapshot weights. Zero is rejected.
    """
    if total_weight is not None and _text(total_weight) != '':
        try:
            grams = parse_weight_to_grams(total_weight)
        except ValueError:
            raise FulfillmentPreconditionError('Invalid weight.', field='weight')
    else:
        grams = sum((item.unit_weight_grams_snapshot or 0) * item.qty for item in order.items)

    if grams <= 0:
        raise FulfillmentPreconditionError('Invalid weight.', field='weight')
    return grams


def _parse_quote(option: Dict[str, Any]) -> Quote:
    quotes = option.get('quotes') if isinstance(option.get('quotes'), list) else []
    first = quotes[0] if quotes and isinstance(quotes[0], dict) else {}
    total = ((first.get('price') or {}).get('total')) or {}

    price_cents = None
    if total.get('value') not in (None, ''):
        try:
            price_cents = parse_money_to_cents(total['value'])
        except ValueError:
            price_cents = None

    lead_time = first.get('lead_time')
    return Quote(
        code=_text(option.get('code')),
        name=_text(option.get('name')),
        carrier_name=_text((option.get('carrier') or {}).get('name')) or None,
        price_cents=price_cents,
        currency=_text(total.get('currency')) or None,
        lead_time=lead_time if isinstance(lead_time, int) and not isinstance(lead_time, bool) else None,
        requires_service_point=bool((option.get('requirements') or {}).get('is_service_point_required')),
    )


def rank_quotes(options: List[Dict[str, Any]], service_point: bool) -> List[Quote]:
    """Quotes matching the delivery type, cheapest first; unpriced ones last."""
    quotes = [_parse_quote(option) for option in options if isinstance(option, dict)]
    eligible = [q for q in quotes if q.code and q.requires_service_point == service_point]
    return sorted(eligible, key=lambda q: (q.price_cents is None, q.price_cents or 0))


def _carrier_code(order: Order) -> Optional[str]:
    code = _text(order.shipping_option_carrier).lower()
    return code if code and code != 'other' else None


def _fetch_quotes(carrier, order: Order, recipient: Dict[str, str], weight_kg: str) -> List[Quote]:
    options = carrier.get_quotes(recipient['country_code'], recipient['postal_code'], weight_kg,
                                 carrier_code=_carrier_code(order))
    return rank_quotes(options, service_point=order.is_service_point_delivery)


def quote(session, config, carrier, public_id: str, total_weight=None) -> dict:
    """Ranked carrier quotes for an order, without buying anything."""
    order = get_by_public_id(session, public_id)
    recipient = build_recipient(order, config.default_country)
    require_service_point(order)
    weight_kg = format_grams_as_kg(resolve_weight_grams(order, total_weight))

    quotes = _fetch_quotes(carrier, order, recipient, weight_kg)
    return {
        'weight_kg': weight_kg,
        'default_code': quotes[0].code if quotes else None,
        'quotes': [q.to_dict() for q in quotes],
    }


def select_quote(quotes: List[Quote], shipping_option_code: Optional[str] = None) -> Quote:
    if not quotes:
        raise FulfillmentPreconditionError('No carrier quote available for this order.',
                                           field='shipping_option_code')
    code = _text(shipping_option_code)
    if not code:
        return quotes[0]
    for candidate in quotes:
        if candidate.code == code:
            return candidate
    raise ValidationError('Shipping option is not available for this order.')


def build_announce_payload(order: Order, recipient, sender, shipping_option_code: str,
                           weight_kg: str, currency: str) -> Dict[str, Any]:
    payload = {
        'label_details': {'mime_type': 'application/pdf', 'dpi': 72},
        'to_address': recipient,
        'from_address': sender,
        'ship_with': {
            'type': 'shipping_option_code',
            'properties': {'shipping_option_code': shipping_option_code},
        },
        'order_number': order.public_id,
        'total_order_price': {'currency': currency.upper(), 'value': format_cents(order.total_cents or 0)},
        'parcels': [{'weight': {'value': weight_kg, 'unit': 'kg'}}],
    }
    if order.is_service_point_delivery and order.service_point_id:
        payload['to_service_point'] = {'id': str(order.service_point_id)}
    return payload


def _parcel_status(parcel: Dict[str, Any]) -> Optional[str]:
    status = parcel.get('status') or {}
    if isinstance(status, dict):
        return _text(status.get('code')) or _text(status.get('message')) or None
    return _text(status) or None


def purchase_label(session, config, carrier, public_id: str, shipping_option_code=None,
                   total_weight=None) -> LabelResult:
    """
    Buy a label for a paid order and mark it fulfilled.

    Raises:
        NotFoundError: unknown order
        FulfillmentPreconditionError: order not paid, incomplete recipient or
            sender address, missing service point, zero weight
        CarrierError: the carrier refused a request; the order is unchanged
    """
    order = get_by_public_id(session, public_id)
    if order.status != OrderStatus.PAID.value:
        raise FulfillmentPreconditionError('Order is not paid.', field='status')

    recipient = build_recipient(order, config.default_country)
    require_service_point(order)
    weight_kg = format_grams_as_kg(resolve_weight_grams(order, total_weight))

    try:
        sender = carrier.get_sender_address()
    except CarrierError as e:
        if e.status_code == 404:
            raise FulfillmentPreconditionError(
                'Sender address not found in Sendcloud. Add one in your Sendcloud account.',
                field='sender_address')
        raise
    if not sender:
        raise FulfillmentPreconditionError(
            'Sender address is missing in Sendcloud. Configure one in your Sendcloud account.',
            field='sender_address')

    selected = select_quote(_fetch_quotes(carrier, order, recipient, weight_kg), shipping_option_code)
    payload = build_announce_payload(order, recipient, sender, selected.code, weight_kg, config.currency)
    shipment = carrier.announce_shipment(payload)

    parcels = shipment.get('parcels') if isinstance(shipment.get('parcels'), list) else []
    parcel = parcels[0] if parcels and isinstance(parcels[0], dict) else {}
    documents = parcel.get('documents') if isinstance(parcel.get('documents'), list) else []
    label = next((d for d in documents if isinstance(d, dict) and d.get('type') == 'label'), {})

    result = LabelResult(
        shipment_id=_text(shipment.get('id')) or None,
        parcel_id=_text(parcel.get('id')) or None,
        label_url=_text(label.get('link')) or None,
        tracking_number=_text(parcel.get('tracking_number')) or None,
        tracking_url=_text(parcel.get('tracking_url')) or None,
        delivery_status=normalize_delivery_status(_parcel_status(parcel)),
        shipping_option_code=selected.code,
        weight_kg=weight_kg,
    )

    try:
        order.transition_to(OrderStatus.FULFILLED)
        order.shipment_id = result.shipment_id
        order.parcel_id = result.parcel_id
        order.label_url = result.label_url
        order.tracking_number = result.tracking_number
        order.tracking_url = result.tracking_url
        order.delivery_status = result.delivery_status
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"[SENDCLOUD] Label bought for {order.public_id}: shipment={result.shipment_id} "
                f"code={selected.code} weight={weight_kg}kg")
    return result


def _status_text(value) -> Optional[str]:
    if isinstance(value, dict):
        code = _text(value.get('code'))
        message = _text(value.get('message'))
        if code and message:
            return f"{code} - {message}"
        return code or message or None
    return _text(value) or None


def apply_tracking_update(session, payload) -> int:
    """
    Store the delivery status pushed by a carrier webhook.

    Only `delivery_status` is written, matched by parcel id or else by
    tracking number. Returns the number of orders updated.
    """
    if not isinstance(payload, dict):
        raise ValidationError('Invalid payload.')

    parcel = payload.get('parcel') if isinstance(payload.get('parcel'), dict) else {}
    parcel_id = _text(payload.get('parcel_id') or parcel.get('id') or payload.get('id'))
    tracking_number = _text(payload.get('tracking_number') or parcel.get('tracking_number'))
    raw_status = (_status_text(payload.get('parcel_status'))
                  or _status_text(parcel.get('status'))
                  or _status_text(payload.get('status')))
    delivery_status = normalize_delivery_status(raw_status)

    if not parcel_id and not tracking_number:
        raise ValidationError('Parcel identifier is missing.')
    if not delivery_status:
        raise ValidationError('Delivery status is missing.')

    query = session.query(Order)
    if parcel_id:
        query = query.filter(Order.parcel_id == parcel_id)
    else:
        query = query.filter(Order.tracking_number == tracking_number)

    try:
        updated = query.update({Order.delivery_status: delivery_status}, synchronize_session=False)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"[SENDCLOUD] Tracking update parcel={parcel_id or '-'} "
                f"tracking={tracking_number or '-'} status={delivery_status} orders={updated}")
    return updated
