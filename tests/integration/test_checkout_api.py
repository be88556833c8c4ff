"""
Integration tests for the checkout JSON API.
"""

import pytest
import stripe
from storefront.models import Customer, Order
from storefront.services import payment_rails, sendcloud_client


@pytest.fixture
def stripe_intents(monkeypatch):
    """Patch the Stripe SDK; tests register intents by id."""
    intents = {}
    calls = {'retrieve': [], 'create': []}

    def retrieve(intent_id, api_key=None):
        calls['retrieve'].append(intent_id)
        return intents[intent_id]

    def create(**kwargs):
        calls['create'].append(kwargs)
        return stripe.PaymentIntent.construct_from(
            {'id': 'pi_created', 'client_secret': 'pi_created_secret_x'}, kwargs['api_key'])

    def retrieve_charge(charge_id, api_key=None):
        return stripe.Charge.construct_from({'id': charge_id, 'outcome': None}, api_key)

    monkeypatch.setattr(stripe.PaymentIntent, 'retrieve', retrieve)
    monkeypatch.setattr(stripe.PaymentIntent, 'create', create)
    monkeypatch.setattr(stripe.Charge, 'retrieve', retrieve_charge)

    def add(intent_id, amount, status='succeeded', currency='eur'):
        intents[intent_id] = stripe.PaymentIntent.construct_from({
            'id': intent_id, 'amount': amount, 'currency': currency,
            'status': status, 'latest_charge': f'ch_{intent_id}',
        }, 'sk_test_dummy')

    add.calls = calls
    return add


def checkout_body(checkout_customer, items, **extra):
    body = dict(checkout_customer, items=items)
    body.update(extra)
    return body


def test_create_payment_intent_uses_server_prices(client, products, discounts, stripe_intents):
    response = client.post('/api/stripe/create-payment-intent', json={
        'items': [{'product_id': products['soap'], 'qty': 1, 'price_cents': 1}],
        'discountCode': 'promo10',
    })

    assert response.status_code == 200
    data = response.get_json()
    assert data['client_secret'] == 'pi_created_secret_x'
    assert data['breakdown'] == {
        'subtotal_cents': 1999, 'shipping_cents': 500, 'discount_cents': 250, 'total_cents': 2249,
    }
    assert stripe_intents.calls['create'][0]['amount'] == 2249
    assert data['lines'] == [{
        'product_id': products['soap'], 'title': 'Savon lavande', 'qty': 1,
        'unit_price_cents': 1999, 'line_total_cents': 1999,
    }]


def test_create_payment_intent_empty_cart(client, stripe_intents):
    response = client.post('/api/stripe/create-payment-intent', json={'items': []})

    assert response.status_code == 400
    data = response.get_json()
    assert data['code'] == 'validation_error'
    assert data['errors'] == ['Panier vide.']
    assert stripe_intents.calls['create'] == []


def test_confirm_order_then_replay(client, session, products, checkout_customer, stripe_intents):
    stripe_intents('pi_ok', 2499)
    body = checkout_body(checkout_customer, [{'product_id': products['soap'], 'qty': 1}],
                         paymentIntentId='pi_ok')

    first = client.post('/api/stripe/confirm-order', json=body)
    assert first.status_code == 201
    first_data = first.get_json()
    assert first_data['ok'] is True
    assert first_data['replayed'] is False
    assert first_data['order']['status'] == 'paid'
    assert first_data['order']['total_cents'] == 2499

    second = client.post('/api/stripe/confirm-order', json=body)
    assert second.status_code == 200
    second_data = second.get_json()
    assert second_data['replayed'] is True
    assert second_data['order']['public_id'] == first_data['order']['public_id']

    assert stripe_intents.calls['retrieve'] == ['pi_ok']
    assert session.query(Order).count() == 1


def test_confirm_order_amount_mismatch(client, session, products, checkout_customer, stripe_intents):
    stripe_intents('pi_short', 2400)
    body = checkout_body(checkout_customer, [{'product_id': products['candle'], 'qty': 4}],
                         paymentIntentId='pi_short')

    response = client.post('/api/stripe/confirm-order', json=body)

    assert response.status_code == 409
    data = response.get_json()
    assert data['code'] == 'settlement_mismatch'
    assert data['expected'] == 2500
    assert data['actual'] == 2400
    assert session.query(Order).count() == 0
    assert session.query(Customer).count() == 0


def test_confirm_order_reports_every_input_problem(client, products, stripe_intents):
    response = client.post('/api/stripe/confirm-order', json={
        'items': [{'product_id': products['soap'], 'qty': 1}],
        'customer': {'first_name': 'Camille', 'email': 'not-an-email'},
        'shipping': {'country': 'Belgique'},
    })

    assert response.status_code == 400
    errors = response.get_json()['errors']
    assert errors[0] == 'Paiement invalide.'
    assert 'Email invalide.' in errors
    assert 'Le nom est obligatoire.' in errors
    assert 'Livraison uniquement en France.' in errors
    assert stripe_intents.calls['retrieve'] == []


def test_confirm_order_provider_outage_is_retryable(client, session, products, checkout_customer, monkeypatch):
    def unavailable(intent_id, api_key=None):
        raise stripe.APIConnectionError('timed out')

    monkeypatch.setattr(stripe.PaymentIntent, 'retrieve', unavailable)
    body = checkout_body(checkout_customer, [{'product_id': products['soap'], 'qty': 1}],
                         paymentIntentId='pi_timeout')

    response = client.post('/api/stripe/confirm-order', json=body)

    assert response.status_code == 502
    assert response.get_json()['retryable'] is True
    assert session.query(Order).count() == 0


def test_service_point_option_without_point_is_rejected(client, products, shipping_options,
                                                        checkout_customer, stripe_intents):
    stripe_intents('pi_relay', 2389)
    body = checkout_body(checkout_customer, [{'product_id': products['soap'], 'qty': 1}],
                         paymentIntentId='pi_relay', shippingOptionId=shipping_options['relay'])

    response = client.post('/api/stripe/confirm-order', json=body)

    assert response.status_code == 400
    assert response.get_json()['message'] == 'Point relais obligatoire.'
    assert stripe_intents.calls['retrieve'] == []


def test_paypal_capture_without_customer_block(client, session, products, monkeypatch):
    captured = {
        'id': 'PP-1',
        'status': 'COMPLETED',
        'payer': {'email_address': 'lea@example.com', 'name': {'given_name': 'Lea', 'surname': 'Durand'}},
        'purchase_units': [{
            'shipping': {'address': {'address_line_1': '3 place Bellecour', 'admin_area_2': 'Lyon',
                                     'postal_code': '69002', 'country_code': 'FR'}},
            'payments': {'captures': [{'id': 'CAP-1', 'amount': {'currency_code': 'EUR', 'value': '24.99'}}]},
        }],
    }

    class FakePayPalClient:
        def __init__(self, client_id, client_secret, base_url, timeout=10):
            assert base_url == 'https://api-m.sandbox.paypal.com'

        def capture_order(self, order_id):
            return captured

    monkeypatch.setattr(payment_rails, 'PayPalClient', FakePayPalClient)

    response = client.post('/api/paypal/capture-order', json={
        'orderId': 'PP-1',
        'items': [{'product_id': products['soap'], 'qty': 1}],
    })

    assert response.status_code == 201
    public_id = response.get_json()['order']['public_id']
    order = session.query(Order).filter(Order.public_id == public_id).one()
    assert order.payment_rail == 'wallet'
    assert order.provider_charge_id == 'CAP-1'
    assert order.customer.email == 'lea@example.com'
    assert order.customer.city == 'Lyon'


def test_paypal_create_order_lists_priced_lines(client, products, monkeypatch):
    payloads = []

    class FakePayPalClient:
        def __init__(self, client_id, client_secret, base_url, timeout=10):
            pass

        def create_order(self, payload):
            payloads.append(payload)
            return {'id': 'PP-NEW', 'status': 'CREATED'}

    monkeypatch.setattr(payment_rails, 'PayPalClient', FakePayPalClient)

    response = client.post('/api/paypal/create-order', json={
        'items': [{'product_id': products['candle'], 'qty': 3}],
    })

    assert response.status_code == 200
    data = response.get_json()
    assert data['order_id'] == 'PP-NEW'
    assert data['breakdown']['total_cents'] == 2000
    assert [(line['title'], line['qty'], line['line_total_cents']) for line in data['lines']] == [
        ('Bougie', 3, 1500),
    ]
    assert len(payloads) == 1


def test_paypal_capture_requires_order_id(client, products):
    response = client.post('/api/paypal/capture-order', json={'items': [{'product_id': products['soap'], 'qty': 1}]})
    assert response.status_code == 400
    assert response.get_json()['message'] == 'Order ID manquant.'


def test_manual_order_is_pending_and_idempotent(client, session, products, checkout_customer):
    body = checkout_body(checkout_customer, [{'product_id': products['candle'], 'qty': 2}],
                         idempotencyKey='cart-7')

    first = client.post('/api/orders', json=body)
    second = client.post('/api/orders', json=body)

    assert first.status_code == 201
    assert second.status_code == 200
    assert first.get_json()['order']['status'] == 'pending_payment'
    assert first.get_json()['order']['payment_reference'] == 'manual:cart-7'
    assert second.get_json()['order']['public_id'] == first.get_json()['order']['public_id']
    assert session.query(Order).count() == 1


def test_get_order(client, products, checkout_customer):
    created = client.post('/api/orders', json=checkout_body(
        checkout_customer, [{'product_id': products['soap'], 'qty': 2}], idempotencyKey='cart-8'))
    public_id = created.get_json()['order']['public_id']

    response = client.get(f'/api/orders/{public_id}')

    assert response.status_code == 200
    order = response.get_json()['order']
    assert order['subtotal_cents'] == 3998
    assert order['items'] == [{
        'product_id': products['soap'], 'title': 'Savon lavande', 'qty': 2,
        'unit_price_cents': 1999, 'line_total_cents': 3998,
    }]

    missing = client.get('/api/orders/000000000000')
    assert missing.status_code == 404
    assert missing.get_json()['message'] == 'Commande introuvable.'


def test_validate_discount(client, discounts):
    response = client.post('/api/discounts/validate', json={'code': 'promo10', 'subtotalCents': 1999})
    assert response.status_code == 200
    data = response.get_json()
    assert data['valid'] is True
    assert data['discount_cents'] == 200
    assert data['discount']['code'] == 'PROMO10'

    unknown = client.post('/api/discounts/validate', json={'code': 'NOPE', 'subtotalCents': 1999})
    assert unknown.status_code == 400
    assert unknown.get_json()['message'] == 'Code promo invalide.'


def test_shipping_options_for_subtotal(client, shipping_options):
    response = client.get('/api/shipping/options?subtotalCents=3000')

    assert response.status_code == 200
    titles = [option['title'] for option in response.get_json()['options']]
    assert titles == ['Colissimo offert', 'Point relais']


def test_invalid_json_body(client):
    response = client.post('/api/orders', data='not json', content_type='application/json')
    assert response.status_code == 400
    assert response.get_json()['message'] == 'Corps JSON invalide.'


def test_service_points_nearest_first(client, monkeypatch):
    requested = []

    class PointsResponse:
        status_code = 200
        ok = True

        def json(self):
            return [
                {'id': 11, 'name': 'Relais Loin', 'street': 'rue Paul Bert', 'house_number': '40',
                 'postal_code': '69003', 'city': 'Lyon', 'distance': 950},
                {'id': 12, 'name': 'Tabac du Parc', 'street': 'cours Lafayette', 'house_number': '7',
                 'postal_code': '69003', 'city': 'Lyon', 'distance': 180.5},
            ]

    def fake_request(method, url, **kwargs):
        requested.append(kwargs['params'])
        return PointsResponse()

    monkeypatch.setattr(sendcloud_client.requests, 'request', fake_request)

    response = client.get('/api/shipping/service-points', query_string={
        'address': '12 rue Garibaldi', 'postal_code': '69003', 'city': 'Lyon',
    })

    assert response.status_code == 200
    points = response.get_json()['servicePoints']
    assert [point['name'] for point in points] == ['Tabac du Parc', 'Relais Loin']
    assert points[0]['distance'] == 180.5
    assert requested[0]['country'] == 'FR'
    assert requested[0]['access_token'] == 'sc-public'
    assert 'carrier' not in requested[0]


def test_service_points_need_a_full_address(client, monkeypatch):
    monkeypatch.setattr(sendcloud_client.requests, 'request',
                        lambda method, url, **kwargs: pytest.fail('carrier must not be called'))

    response = client.get('/api/shipping/service-points', query_string={'postal_code': '69003', 'city': 'Lyon'})

    assert response.status_code == 400
    assert response.get_json()['message'] == 'Adresse, code postal et ville obligatoires.'
