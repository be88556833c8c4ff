"""
Unit tests for shipping rate resolution.
"""

import pytest
from storefront.exceptions import ValidationError
from storefront.services import shipping_service
from storefront.services.shipping_service import ServicePoint


class TestResolve:
    """Tests for shipping_service.resolve."""

    def test_without_option_uses_flat_rate(self, session, config):
        selection = shipping_service.resolve(session, config, 1999)
        assert selection.shipping_cents == 500
        assert selection.option is None

    def test_bracket_edges(self, session, config, shipping_options):
        assert shipping_service.resolve(session, config, 2999, shipping_options['standard']).shipping_cents == 500
        assert shipping_service.resolve(session, config, 3000, shipping_options['free']).shipping_cents == 0

    @pytest.mark.parametrize('subtotal, key', [
        (3000, 'standard'),
        (2999, 'free'),
        (1000, 'hidden'),
    ])
    def test_out_of_bracket_or_inactive(self, session, config, shipping_options, subtotal, key):
        with pytest.raises(ValidationError) as exc:
            shipping_service.resolve(session, config, subtotal, shipping_options[key])
        assert exc.value.message == shipping_service.INVALID_OPTION_MESSAGE

    def test_unknown_option(self, session, config, shipping_options):
        with pytest.raises(ValidationError):
            shipping_service.resolve(session, config, 1000, 999999)

    def test_service_point_option_requires_a_point(self, session, config, shipping_options):
        with pytest.raises(ValidationError) as exc:
            shipping_service.resolve(session, config, 1000, shipping_options['relay'])
        assert exc.value.message == 'Point relais obligatoire.'

        point = ServicePoint(id='sp-42', name='Tabac de la Gare')
        selection = shipping_service.resolve(session, config, 1000, shipping_options['relay'], point)
        assert selection.shipping_cents == 390
        assert selection.service_point == point

    def test_home_option_ignores_service_point(self, session, config, shipping_options):
        selection = shipping_service.resolve(session, config, 1000, shipping_options['standard'],
                                             ServicePoint(id='sp-42'))
        assert selection.service_point is None


def test_list_available_filters_by_bracket(session, shipping_options):
    def ids(subtotal):
        return [option.id for option in shipping_service.list_available(session, subtotal)]

    assert ids(2999) == [shipping_options['standard'], shipping_options['relay']]
    assert ids(3000) == [shipping_options['free'], shipping_options['relay']]
    assert ids(None) == [shipping_options['standard'], shipping_options['free'], shipping_options['relay']]


def test_service_point_from_payload():
    point = ServicePoint.from_payload({
        'id': 12345, 'name': ' Tabac ', 'postal_code': '69003', 'city': 'Lyon', 'distance': 420.7,
    })
    assert point.id == '12345'
    assert point.name == 'Tabac'
    assert point.distance == 420

    assert ServicePoint.from_payload({'name': 'No id'}) is None
    assert ServicePoint.from_payload(None) is None
    assert ServicePoint.from_payload({'id': 'x', 'distance': True}).distance is None


@pytest.mark.parametrize('distance', [float('inf'), float('-inf'), float('nan')])
def test_service_point_non_finite_distance_is_dropped(distance):
    point = ServicePoint.from_payload({'id': 'sp-1', 'distance': distance})
    assert point.id == 'sp-1'
    assert point.distance is None
