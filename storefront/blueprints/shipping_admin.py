"""Back-office shipping API: carrier quotes and label purchase for paid orders."""
from flask import Blueprint, Response, request, jsonify

from storefront.blueprints.metrics import shipping_labels_total
from storefront.database import get_session
from storefront.decorators.admin_security import admin_required
from storefront.exceptions import CarrierError, FulfillmentPreconditionError, ValidationError
from storefront.services import fulfillment_service
from storefront.services.settings_service import resolve_configuration
from storefront.utils.validators import get_trimmed_string

shipping_admin_bp = Blueprint('shipping_admin', __name__, url_prefix='/api/admin/shipping')


def _read_order_request():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Invalid JSON body.')

    public_id = get_trimmed_string(data.get('orderPublicId'))
    if not public_id:
        raise ValidationError('Order is missing.')
    return data, public_id


@shipping_admin_bp.route('/quote', methods=['POST'])
@admin_required
def quote():
    """Carrier quotes for an order, cheapest first."""
    session = get_session()
    config = resolve_configuration(session)
    data, public_id = _read_order_request()

    carrier = fulfillment_service.build_carrier(config)
    result = fulfillment_service.quote(session, config, carrier, public_id,
                                       total_weight=data.get('totalWeightKg'))
    return jsonify(result)


@shipping_admin_bp.route('/labels', methods=['POST'])
@admin_required
def create_label():
    """
    Buy a label and mark the order fulfilled.

    Body: orderPublicId, optional shippingOptionCode (defaults to the
    cheapest quote) and optional totalWeightKg overriding line weights.
    """
    session = get_session()
    config = resolve_configuration(session)
    data, public_id = _read_order_request()

    try:
        carrier = fulfillment_service.build_carrier(config)
        result = fulfillment_service.purchase_label(
            session, config, carrier, public_id,
            shipping_option_code=get_trimmed_string(data.get('shippingOptionCode')) or None,
            total_weight=data.get('totalWeightKg'),
        )
    except FulfillmentPreconditionError:
        shipping_labels_total.labels(outcome='precondition').inc()
        raise
    except CarrierError:
        shipping_labels_total.labels(outcome='carrier_error').inc()
        raise

    shipping_labels_total.labels(outcome='created').inc()
    return jsonify(result.to_dict()), 201


@shipping_admin_bp.route('/labels/download', methods=['GET'])
@admin_required
def download_label():
    """Stream a Sendcloud label document fetched with the account credentials."""
    session = get_session()
    config = resolve_configuration(session)

    carrier = fulfillment_service.build_carrier(config)
    content, content_type = carrier.download_label(request.args.get('url', ''))
    return Response(content, content_type=content_type,
                    headers={'Content-Disposition': 'attachment; filename=label.pdf'})
