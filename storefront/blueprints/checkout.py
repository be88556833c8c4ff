"""
Checkout JSON API.

Public endpoints used by the storefront: payment intent creation and order
confirmation for each payment rail, order lookup, discount preview and
shipping options. Exempt from CSRF (called from the storefront's JS client).
"""
from flask import Blueprint, request, jsonify, current_app

from storefront.blueprints.metrics import settlements_total
from storefront.database import get_session
from storefront.exceptions import PaymentProviderError, SettlementMismatchError, ValidationError
from storefront.services import discount_service, fulfillment_service, order_service, pricing_service, shipping_service
from storefront.services.customer_service import parse_customer_input
from storefront.services.payment_rails import ManualRail, PayPalWalletRail, StripeCardRail
from storefront.services.settings_service import resolve_configuration
from storefront.services.shipping_service import ServicePoint
from storefront.utils.units import parse_cents
from storefront.utils.validators import get_optional_trimmed_string, get_positive_int, get_trimmed_string

checkout_bp = Blueprint('checkout', __name__, url_prefix='/api')


def _read_json() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Corps JSON invalide.')
    return data


def _shipping_selection(data: dict):
    """(shipping option id, service point) from a checkout body."""
    raw_option_id = data.get('shippingOptionId')
    option_id = None
    if raw_option_id not in (None, ''):
        option_id = get_positive_int(raw_option_id)
        if option_id is None:
            raise ValidationError(shipping_service.INVALID_OPTION_MESSAGE)
    return option_id, ServicePoint.from_payload(data.get('servicePoint'))


def _price(session, config, data: dict):
    option_id, service_point = _shipping_selection(data)
    return pricing_service.price_cart(
        session, config, data.get('items'),
        discount_code=get_optional_trimmed_string(data.get('discountCode')),
        shipping_option_id=option_id,
        service_point=service_point,
    )


def _settle(session, config, rail, reference: str, data: dict, customer_input):
    option_id, service_point = _shipping_selection(data)
    try:
        result = order_service.settle(
            session, config, rail, reference, data.get('items'),
            customer_input=customer_input,
            discount_code=get_optional_trimmed_string(data.get('discountCode')),
            shipping_option_id=option_id,
            service_point=service_point,
        )
    except SettlementMismatchError:
        settlements_total.labels(rail=rail.name, outcome='mismatch').inc()
        raise
    except PaymentProviderError:
        settlements_total.labels(rail=rail.name, outcome='provider_error').inc()
        raise
    except ValidationError:
        settlements_total.labels(rail=rail.name, outcome='rejected').inc()
        raise

    settlements_total.labels(rail=rail.name, outcome='replayed' if result.replayed else 'created').inc()
    return jsonify(result.to_dict()), 200 if result.replayed else 201


@checkout_bp.route('/stripe/create-payment-intent', methods=['POST'])
def stripe_create_payment_intent():
    """Create a Stripe PaymentIntent for the server-computed total."""
    session = get_session()
    config = resolve_configuration(session)
    data = _read_json()

    priced_cart = _price(session, config, data)
    intent = StripeCardRail(config).create_intent(priced_cart.breakdown, discount_code=priced_cart.discount.code)
    intent['lines'] = pricing_service.cart_lines_summary(priced_cart)
    return jsonify(intent)


@checkout_bp.route('/stripe/confirm-order', methods=['POST'])
def stripe_confirm_order():
    """Verify a succeeded PaymentIntent and record the order."""
    session = get_session()
    config = resolve_configuration(session)
    data = _read_json()

    reference = get_trimmed_string(data.get('paymentIntentId'))
    errors = [] if reference else ['Paiement invalide.']
    try:
        customer_input = parse_customer_input(data, config.default_country)
    except ValidationError as e:
        errors.extend(e.errors)
        customer_input = None
    if errors:
        raise ValidationError(errors)

    return _settle(session, config, StripeCardRail(config), reference, data, customer_input)


@checkout_bp.route('/paypal/create-order', methods=['POST'])
def paypal_create_order():
    """Create the PayPal order the buyer approves in the PayPal popup."""
    session = get_session()
    config = resolve_configuration(session)
    data = _read_json()

    priced_cart = _price(session, config, data)
    paypal_order = PayPalWalletRail(config).create_intent(priced_cart)
    paypal_order['lines'] = pricing_service.cart_lines_summary(priced_cart)
    return jsonify(paypal_order)


@checkout_bp.route('/paypal/capture-order', methods=['POST'])
def paypal_capture_order():
    """
    Capture an approved PayPal order and record it.

    Customer details are optional; PayPal's payer and shipping details fill
    whatever the client did not send.
    """
    session = get_session()
    config = resolve_configuration(session)
    data = _read_json()

    reference = get_trimmed_string(data.get('orderId'))
    if not reference:
        raise ValidationError('Order ID manquant.')

    customer_input = None
    if data.get('customer'):
        customer_input = parse_customer_input(data, config.default_country)

    return _settle(session, config, PayPalWalletRail(config), reference, data, customer_input)


@checkout_bp.route('/orders', methods=['POST'])
def create_manual_order():
    """Record an order paid later (bank transfer); it starts as pending_payment."""
    session = get_session()
    config = resolve_configuration(session)
    data = _read_json()

    customer_input = parse_customer_input(data, config.default_country)
    reference = ManualRail.reference_for(get_optional_trimmed_string(data.get('idempotencyKey')))
    return _settle(session, config, ManualRail(config), reference, data, customer_input)


@checkout_bp.route('/orders/<public_id>', methods=['GET'])
def get_order(public_id):
    session = get_session()
    order = order_service.get_by_public_id(session, public_id.strip())

    summary = order.to_summary()
    summary['shipping_option_title'] = order.shipping_option_title
    summary['items'] = [
        {
            'product_id': item.product_id,
            'title': item.title_snapshot,
            'qty': item.qty,
            'unit_price_cents': item.unit_price_cents_snapshot,
            'line_total_cents': item.line_total_cents,
        }
        for item in order.items
    ]
    return jsonify({'order': summary})


@checkout_bp.route('/discounts/validate', methods=['POST'])
def validate_discount():
    """Preview a discount code against the basket the client is showing."""
    session = get_session()
    data = _read_json()

    try:
        base_cents = parse_cents(data.get('subtotalCents', 0)) + parse_cents(data.get('shippingCents', 0))
    except ValueError:
        raise ValidationError('Sous-total invalide.')

    preview = discount_service.preview(session, data.get('code'), base_cents)
    return jsonify({'valid': True, 'discount_cents': preview.pop('discount_cents'), 'discount': preview})


@checkout_bp.route('/shipping/options', methods=['GET'])
def shipping_options():
    session = get_session()

    raw_subtotal = request.args.get('subtotalCents')
    subtotal_cents = None
    if raw_subtotal:
        try:
            subtotal_cents = parse_cents(raw_subtotal)
        except ValueError:
            current_app.logger.info(f"Ignoring invalid subtotalCents={raw_subtotal!r}")

    options = shipping_service.list_available(session, subtotal_cents)
    return jsonify({'options': [option.to_dict() for option in options]})


@checkout_bp.route('/shipping/service-points', methods=['GET'])
def service_points():
    """Carrier pickup points near the buyer's address, nearest first."""
    session = get_session()
    config = resolve_configuration(session)

    address = get_trimmed_string(request.args.get('address'))
    postal_code = get_trimmed_string(request.args.get('postal_code'))
    city = get_trimmed_string(request.args.get('city'))
    if not address or not postal_code or not city:
        raise ValidationError('Adresse, code postal et ville obligatoires.')

    carrier = fulfillment_service.build_carrier(config)
    points = carrier.search_service_points(
        address, postal_code, city,
        country=get_trimmed_string(request.args.get('country')) or None,
        carrier=get_optional_trimmed_string(request.args.get('carrier')),
    )
    return jsonify({'servicePoints': points})
