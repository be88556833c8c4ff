import pytest

from storefront import create_app, database
from storefront.database import get_session
from storefront.models import (
    Product, DiscountCode, DiscountType, ShippingOption,
    SHIPPING_TYPE_HOME, SHIPPING_TYPE_SERVICE_POINTS
)
from storefront.services.settings_service import Configuration


@pytest.fixture(scope='function')
def app():
    """Create application instance with a fresh in-memory database."""
    app = create_app('config.TestConfig')
    with app.app_context():
        database.create_all()
        yield app
        get_session().remove()
        database.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def admin_client(app):
    """Test client carrying an allow-listed admin session."""
    client = app.test_client()
    with client.session_transaction() as sess:
        sess['admin_email'] = 'admin@example.com'
    return client


@pytest.fixture(scope='function')
def session(app):
    """Database session for the current test."""
    session = get_session()
    yield session
    session.rollback()


@pytest.fixture
def config():
    """Checkout configuration matching config.TestConfig."""
    return Configuration(
        default_shipping_cents=500,
        currency='eur',
        default_country='FR',
        stripe_secret_key='sk_test_dummy',
        paypal_client_id='paypal-client',
        paypal_client_secret='paypal-secret',
        sendcloud_public_key='sc-public',
        sendcloud_private_key='sc-private',
    )


@pytest.fixture(scope='function')
def products(session):
    """Two active products and one retired product; returns their ids."""
    soap = Product(title='Savon lavande', price_cents=1999, weight_grams=200, active=True)
    candle = Product(title='Bougie', price_cents=500, weight_grams=500, active=True)
    retired = Product(title='Ancien coffret', price_cents=3500, weight_grams=900, active=False)
    session.add_all([soap, candle, retired])
    session.commit()
    return {'soap': soap.id, 'candle': candle.id, 'retired': retired.id}


@pytest.fixture(scope='function')
def discounts(session):
    session.add_all([
        DiscountCode(code='PROMO10', discount_type=DiscountType.PERCENT, percent_off=10, active=True),
        DiscountCode(code='MOINS10', discount_type=DiscountType.FIXED, amount_cents=1000, active=True),
        DiscountCode(code='EXPIRED', discount_type=DiscountType.FIXED, amount_cents=500, active=False),
        DiscountCode(code='BROKEN', discount_type=DiscountType.PERCENT, percent_off=150, active=True),
    ])
    session.commit()


@pytest.fixture(scope='function')
def shipping_options(session):
    """Paid delivery below 30.00, free from 30.00, and a relay option; returns ids."""
    standard = ShippingOption(carrier='colissimo', shipping_type=SHIPPING_TYPE_HOME, title='Colissimo',
                              price_cents=500, min_order_total_cents=0, max_order_total_cents=2999,
                              position=1, active=True)
    free = ShippingOption(carrier='colissimo', shipping_type=SHIPPING_TYPE_HOME, title='Colissimo offert',
                          price_cents=0, min_order_total_cents=3000, max_order_total_cents=None,
                          position=2, active=True)
    relay = ShippingOption(carrier='mondial_relay', shipping_type=SHIPPING_TYPE_SERVICE_POINTS,
                           title='Point relais', price_cents=390, position=3, active=True)
    hidden = ShippingOption(carrier='chronopost', shipping_type=SHIPPING_TYPE_HOME, title='Express',
                            price_cents=1500, position=0, active=False)
    session.add_all([standard, free, relay, hidden])
    session.commit()
    return {'standard': standard.id, 'free': free.id, 'relay': relay.id, 'hidden': hidden.id}


@pytest.fixture
def checkout_customer():
    """Customer and shipping blocks of a checkout request body."""
    return {
        'customer': {
            'first_name': 'Camille',
            'last_name': 'Martin',
            'email': 'Camille.Martin@Example.com',
            'phone': '0601020304',
        },
        'shipping': {
            'address1': '12 rue des Lilas',
            'postal_code': '69003',
            'city': 'Lyon',
            'country': 'France',
        },
    }
