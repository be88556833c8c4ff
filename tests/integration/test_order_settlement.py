"""
Integration tests for order settlement and persistence.
"""

from smtplib import SMTPException

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from storefront.exceptions import SettlementMismatchError, ValidationError
from storefront.models import Customer, Order, OrderItem
from storefront.services import customer_service, email_service, order_service, pricing_service
from storefront.services.customer_service import parse_customer_input
from storefront.services.payment_rails import ManualRail, PaymentRail, SettlementFacts


class FakeCardRail(PaymentRail):
    """Card rail whose provider reports a fixed outcome."""

    name = 'card'
    label = 'Stripe'

    def __init__(self, config, amount_cents=None, succeeded=True, payer=None):
        super().__init__(config)
        self.amount_cents = amount_cents
        self.succeeded = succeeded
        self.payer = payer
        self.calls = []

    def verify(self, reference, priced_cart=None):
        self.calls.append(reference)
        amount = self.amount_cents if self.amount_cents is not None else priced_cart.breakdown.total_cents
        return SettlementFacts(
            succeeded=self.succeeded,
            amount_cents=amount,
            currency='eur',
            charge_id=f'ch_{reference}',
            risk={'risk_level': 'normal', 'risk_score': 8},
            payer=self.payer,
        )


@pytest.fixture
def customer_input(checkout_customer):
    return parse_customer_input(checkout_customer, 'FR')


def test_same_reference_twice_creates_one_order(session, config, products, customer_input):
    """A retried confirmation returns the existing order without asking the provider again."""
    rail = FakeCardRail(config)
    items = [
        {'product_id': products['soap'], 'qty': 2},
        {'product_id': products['candle'], 'qty': 1},
        {'product_id': products['soap'], 'qty': 1},
    ]

    first = order_service.settle(session, config, rail, 'pi_1', items, customer_input)
    public_id = first.order.public_id
    second = order_service.settle(session, config, rail, 'pi_1', items, customer_input)

    assert not first.replayed
    assert second.replayed
    assert second.email_skipped
    assert second.order.public_id == public_id
    assert rail.calls == ['pi_1']

    order = session.query(Order).one()
    assert order.status == 'paid'
    assert order.paid_at is not None
    assert order.total_cents == 3 * 1999 + 500 + 500
    assert order.provider_charge_id == 'ch_pi_1'
    assert order.risk_level == 'normal'
    assert order.customer.email == 'camille.martin@example.com'
    assert [(item.title_snapshot, item.qty) for item in order.items] == [('Savon lavande', 3), ('Bougie', 1)]
    assert session.query(OrderItem).count() == 2


def test_line_snapshots_survive_catalog_changes(session, config, products, customer_input):
    from storefront.models import Product

    result = order_service.settle(session, config, FakeCardRail(config), 'pi_snap',
                                  [{'product_id': products['soap'], 'qty': 1}], customer_input)
    public_id = result.order.public_id

    soap = session.get(Product, products['soap'])
    soap.price_cents = 2500
    soap.title = 'Savon lavande XL'
    session.commit()

    item = order_service.get_by_public_id(session, public_id).items[0]
    assert item.unit_price_cents_snapshot == 1999
    assert item.title_snapshot == 'Savon lavande'


def test_amount_mismatch_writes_nothing(session, config, products, customer_input):
    """Provider reports 24.00 for a 25.00 basket."""
    rail = FakeCardRail(config, amount_cents=2400)
    with pytest.raises(SettlementMismatchError) as exc:
        order_service.settle(session, config, rail, 'pi_short',
                             [{'product_id': products['candle'], 'qty': 4}], customer_input)

    assert exc.value.expected == 2500
    assert exc.value.actual == 2400
    assert session.query(Order).count() == 0
    assert session.query(Customer).count() == 0


def test_unsucceeded_payment_writes_nothing(session, config, products, customer_input):
    with pytest.raises(SettlementMismatchError):
        order_service.settle(session, config, FakeCardRail(config, succeeded=False), 'pi_failed',
                             [{'product_id': products['candle'], 'qty': 1}], customer_input)
    assert session.query(Order).count() == 0


def test_card_rail_rejects_zero_total_before_provider_call(session, config, products, discounts,
                                                           customer_input):
    rail = FakeCardRail(config)
    with pytest.raises(ValidationError) as exc:
        order_service.settle(session, config, rail, 'pi_zero',
                             [{'product_id': products['candle'], 'qty': 1}], customer_input,
                             discount_code='MOINS10')
    assert exc.value.message == 'Montant total invalide.'
    assert rail.calls == []


def test_manual_rail_records_pending_order(session, config, products, discounts, customer_input):
    rail = ManualRail(config)
    result = order_service.settle(session, config, rail, ManualRail.reference_for('cart-42'),
                                  [{'product_id': products['candle'], 'qty': 1}], customer_input,
                                  discount_code='MOINS10')

    order = result.order
    assert order.status == 'pending_payment'
    assert order.paid_at is None
    assert order.total_cents == 0
    assert order.discount_cents == 1000
    assert order.discount.code == 'MOINS10'
    assert order.payment_reference == 'manual:cart-42'
    assert order.preferred_payment_method == 'Virement'


def test_existing_customer_is_refreshed_not_blanked(session, config, products, customer_input):
    session.add(Customer(email='camille.martin@example.com', first_name='Cam', phone='0700000000',
                         company_name='Atelier Martin'))
    session.commit()

    order_service.settle(session, config, FakeCardRail(config), 'pi_known',
                         [{'product_id': products['soap'], 'qty': 1}], customer_input)

    customer = session.query(Customer).one()
    assert customer.first_name == 'Camille'
    assert customer.phone == '0601020304'
    assert customer.company_name == 'Atelier Martin'
    assert customer.city == 'Lyon'


def test_line_insert_failure_undoes_customer_refresh(session, config, products, customer_input, monkeypatch):
    session.add(Customer(email='camille.martin@example.com', first_name='Cam', phone='0700000000',
                         company_name='Atelier Martin'))
    session.commit()

    def broken_item(**kwargs):
        raise OperationalError('INSERT INTO order_item', {}, Exception('disk I/O error'))

    monkeypatch.setattr(order_service, 'OrderItem', broken_item)

    with pytest.raises(OperationalError):
        order_service.settle(session, config, FakeCardRail(config), 'pi_disk',
                             [{'product_id': products['soap'], 'qty': 1}], customer_input)

    assert session.query(Order).count() == 0
    assert session.query(OrderItem).count() == 0
    customer = session.query(Customer).one()
    assert customer.first_name == 'Cam'
    assert customer.phone == '0700000000'
    assert customer.city is None


def test_payer_details_fill_missing_customer(session, config, products):
    payer = {
        'first_name': 'Lea', 'last_name': 'Durand', 'email': 'lea@example.com',
        'address1': '3 place Bellecour', 'postal_code': '69002', 'city': 'Lyon', 'country': 'FR',
    }
    result = order_service.settle(session, config, FakeCardRail(config, payer=payer), 'PAYPAL-1',
                                  [{'product_id': products['soap'], 'qty': 1}])
    assert result.order.customer.email == 'lea@example.com'
    assert result.order.customer.postal_code == '69002'


def test_missing_email_is_rejected(session, config, products):
    with pytest.raises(ValidationError) as exc:
        order_service.settle(session, config, FakeCardRail(config), 'PAYPAL-2',
                             [{'product_id': products['soap'], 'qty': 1}])
    assert exc.value.message == 'Email invalide.'
    assert session.query(Order).count() == 0


def test_service_point_snapshot(session, config, products, shipping_options, customer_input):
    from storefront.services.shipping_service import ServicePoint

    point = ServicePoint(id='sp-42', name='Tabac de la Gare', postal_code='69003', city='Lyon', distance=420)
    result = order_service.settle(session, config, FakeCardRail(config), 'pi_relay',
                                  [{'product_id': products['soap'], 'qty': 1}], customer_input,
                                  shipping_option_id=shipping_options['relay'], service_point=point)

    order = result.order
    assert order.shipping_cents == 390
    assert order.shipping_option_title == 'Point relais'
    assert order.is_service_point_delivery
    assert order.service_point_id == 'sp-42'
    assert order.service_point_distance == 420


def test_concurrent_confirmation_returns_the_winner(session, config, products, customer_input, monkeypatch):
    """The unique payment reference resolves a race between two confirmations."""
    items = [{'product_id': products['soap'], 'qty': 1}]
    winner = order_service.settle(session, config, FakeCardRail(config), 'pi_race', items, customer_input)
    winner_id = winner.order.public_id

    real_find = order_service.find_by_reference
    seen = []

    def find_misses_once(session, reference):
        seen.append(reference)
        return None if len(seen) == 1 else real_find(session, reference)

    monkeypatch.setattr(order_service, 'find_by_reference', find_misses_once)

    priced_cart = pricing_service.price_cart(session, config, items)
    rail = FakeCardRail(config)
    facts = rail.verify('pi_race', priced_cart)
    result = order_service.commit(session, customer_input, priced_cart, facts, rail, 'pi_race')

    assert result.replayed
    assert result.order.public_id == winner_id
    assert session.query(Order).count() == 1
    assert session.query(OrderItem).count() == 1


def test_customer_race_is_retried_once(session, config, products, customer_input, monkeypatch):
    real_upsert = customer_service.upsert_customer
    attempts = []

    def upsert_conflicts_once(session, customer_input):
        attempts.append(customer_input.email)
        if len(attempts) == 1:
            raise IntegrityError('INSERT INTO customer', {}, Exception('duplicate email'))
        return real_upsert(session, customer_input)

    monkeypatch.setattr(customer_service, 'upsert_customer', upsert_conflicts_once)

    result = order_service.settle(session, config, FakeCardRail(config), 'pi_retry',
                                  [{'product_id': products['soap'], 'qty': 1}], customer_input)
    assert not result.replayed
    assert len(attempts) == 2
    assert session.query(Order).count() == 1


def test_mail_failure_does_not_undo_the_order(session, config, products, customer_input, monkeypatch):
    def smtp_down(message):
        raise SMTPException('connection refused')

    monkeypatch.setattr(email_service, '_mail_enabled', lambda: True)
    monkeypatch.setattr(email_service.mail, 'send', smtp_down)

    result = order_service.settle(session, config, FakeCardRail(config), 'pi_mail',
                                  [{'product_id': products['soap'], 'qty': 1}], customer_input)
    assert result.email_skipped
    assert session.query(Order).count() == 1


def test_unknown_public_id(session):
    from storefront.exceptions import NotFoundError

    with pytest.raises(NotFoundError):
        order_service.get_by_public_id(session, 'deadbeef0000')
