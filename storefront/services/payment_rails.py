"""
Payment rails and settlement verification.

Every provider is reached through the same PaymentRail interface: a rail
verifies a payment reference and reports SettlementFacts, which are then
reconciled against the locally computed price before anything is written.
"""
import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests
import stripe

from storefront.exceptions import (
    PaymentProviderError, SettlementMismatchError, ValidationError
)
from storefront.models import OrderStatus
from storefront.services.paypal_client import PayPalClient
from storefront.utils.units import format_cents, parse_money_to_cents

logger = logging.getLogger(__name__)

RISK_FIELDS = {
    'risk_score': 'risk_score',
    'risk_level': 'risk_level',
    'reason': 'risk_reason',
    'rule': 'risk_rule',
    'seller_message': 'seller_message',
    'type': 'outcome_type',
    'network_status': 'network_status',
}


@dataclass(frozen=True)
class SettlementFacts:
    """What the provider reports about a payment."""
    succeeded: bool
    amount_cents: int
    currency: str
    charge_id: Optional[str] = None
    risk: Dict[str, Any] = field(default_factory=dict)
    payer: Optional[Dict[str, Any]] = None


def check_settlement(facts: SettlementFacts, breakdown, currency: str) -> None:
    """
    Reconcile provider facts with the computed price.

    Raises:
        SettlementMismatchError: payment not succeeded, or amount or currency differ
    """
    expected = breakdown.total_cents
    if not facts.succeeded:
        raise SettlementMismatchError('Paiement non abouti.', expected=expected, actual=facts.amount_cents)
    if facts.amount_cents != expected:
        raise SettlementMismatchError('Montant du paiement invalide.', expected=expected, actual=facts.amount_cents)
    if (facts.currency or '').lower() != (currency or '').lower():
        raise SettlementMismatchError('Devise du paiement invalide.', expected=currency.lower(),
                                      actual=(facts.currency or '').lower())


def _field(obj, name):
    """Attribute of a Stripe object (nested objects included), None when absent."""
    if obj is None:
        return None
    return getattr(obj, name, None)


def _require_positive_total(breakdown) -> None:
    if breakdown.total_cents <= 0:
        raise ValidationError('Montant total invalide.')


class PaymentRail(ABC):
    """A way of getting paid."""

    name: str = ''
    initial_status: OrderStatus = OrderStatus.PAID
    label: str = ''
    requires_positive_total: bool = True

    def __init__(self, config):
        self.config = config

    @abstractmethod
    def verify(self, reference: str, priced_cart=None) -> SettlementFacts:
        """Ask the provider what happened to `reference`."""


class StripeCardRail(PaymentRail):
    """Card payments through Stripe PaymentIntents."""

    name = 'card'
    label = 'Stripe'

    @property
    def api_key(self) -> str:
        if not self.config.stripe_secret_key:
            raise PaymentProviderError('Stripe non configure.', provider='stripe')
        return self.config.stripe_secret_key

    def create_intent(self, breakdown, discount_code: Optional[str] = None) -> Dict[str, Any]:
        """Create a PaymentIntent for the computed total and return its client secret."""
        _require_positive_total(breakdown)

        metadata = {
            'subtotal_cents': str(breakdown.subtotal_cents),
            'shipping_cents': str(breakdown.shipping_cents),
            'discount_cents': str(breakdown.discount_cents),
        }
        if discount_code:
            metadata['discount_code'] = discount_code

        try:
            intent = stripe.PaymentIntent.create(
                amount=breakdown.total_cents,
                currency=self.config.currency,
                automatic_payment_methods={'enabled': True},
                metadata=metadata,
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logger.error(f"[STRIPE] PaymentIntent creation failed: {e}")
            raise PaymentProviderError('Erreur Stripe.', provider='stripe')

        logger.info(f"[STRIPE] PaymentIntent created: {intent['id']} amount={breakdown.total_cents}")
        return {
            'client_secret': intent['client_secret'],
            'payment_intent_id': intent['id'],
            'breakdown': breakdown.to_dict(),
        }

    def verify(self, reference: str, priced_cart=None) -> SettlementFacts:
        api_key = self.api_key
        try:
            intent = stripe.PaymentIntent.retrieve(reference, api_key=api_key)
            latest_charge = _field(intent, 'latest_charge')
            if isinstance(latest_charge, str):
                charge = stripe.Charge.retrieve(latest_charge, api_key=api_key)
            else:
                charge = latest_charge
        except stripe.StripeError as e:
            logger.error(f"[STRIPE] Could not retrieve PaymentIntent {reference}: {e}")
            raise PaymentProviderError('Erreur Stripe.', provider='stripe')

        try:
            amount = int(intent['amount'])
            currency = str(intent['currency'])
        except (KeyError, TypeError, ValueError):
            raise PaymentProviderError('Reponse Stripe invalide.', provider='stripe')

        risk = self._extract_risk(charge)
        logger.info(
            f"[STRIPE] PaymentIntent {reference} status={_field(intent, 'status')} "
            f"risk_level={risk.get('risk_level')}"
        )

        return SettlementFacts(
            succeeded=_field(intent, 'status') == 'succeeded',
            amount_cents=amount,
            currency=currency,
            charge_id=_field(charge, 'id'),
            risk=risk,
        )

    @staticmethod
    def _extract_risk(charge) -> Dict[str, Any]:
        """Copy the charge outcome signals. They are informational only."""
        outcome = _field(charge, 'outcome')
        if outcome is None:
            return {}

        risk = {}
        for source, target in RISK_FIELDS.items():
            value = _field(outcome, source)
            if source == 'rule' and value is not None and not isinstance(value, str):
                value = _field(value, 'id')
            if source == 'risk_score' and not isinstance(value, int):
                value = None
            risk[target] = value
        return risk


class PayPalWalletRail(PaymentRail):
    """PayPal wallet payments; verification captures the approved order."""

    name = 'wallet'
    label = 'PayPal'

    def __init__(self, config, client: Optional[PayPalClient] = None):
        super().__init__(config)
        self._client = client

    @property
    def client(self) -> PayPalClient:
        if self._client is None:
            try:
                self._client = PayPalClient(
                    self.config.paypal_client_id,
                    self.config.paypal_client_secret,
                    self.config.paypal_base_url,
                    timeout=self.config.provider_timeout,
                )
            except ValueError:
                raise PaymentProviderError('PayPal non configure.', provider='paypal')
        return self._client

    def _money(self, cents: int) -> Dict[str, str]:
        return {'currency_code': self.config.currency.upper(), 'value': format_cents(cents)}

    def build_order_payload(self, priced_cart) -> Dict[str, Any]:
        breakdown = priced_cart.breakdown
        amount_breakdown = {
            'item_total': self._money(breakdown.subtotal_cents),
            'shipping': self._money(breakdown.shipping_cents),
        }
        if breakdown.discount_cents > 0:
            amount_breakdown['discount'] = self._money(breakdown.discount_cents)

        return {
            'intent': 'CAPTURE',
            'purchase_units': [{
                'amount': dict(self._money(breakdown.total_cents), breakdown=amount_breakdown),
                'items': [
                    {
                        'name': product.title,
                        'quantity': str(qty),
                        'unit_amount': self._money(product.price_cents),
                    }
                    for product, qty in priced_cart.iter_items()
                ],
            }],
        }

    def create_intent(self, priced_cart) -> Dict[str, Any]:
        """Create the PayPal order the buyer will approve."""
        _require_positive_total(priced_cart.breakdown)

        try:
            data = self.client.create_order(self.build_order_payload(priced_cart))
        except (requests.RequestException, ValueError) as e:
            logger.error(f"[PAYPAL] Order creation failed: {e}")
            raise PaymentProviderError('Erreur PayPal.', provider='paypal')

        if not data.get('id'):
            raise PaymentProviderError('Impossible de creer la commande PayPal.', provider='paypal')
        return {'order_id': data['id'], 'breakdown': priced_cart.breakdown.to_dict()}

    def verify(self, reference: str, priced_cart=None) -> SettlementFacts:
        try:
            data = self.client.capture_order(reference)
        except requests.HTTPError as e:
            response = e.response
            status = response.status_code if response is not None else 502
            body = response.text if response is not None else ''
            if status == 422 and 'ORDER_ALREADY_CAPTURED' in body:
                logger.info(f"[PAYPAL] Order {reference} already captured, reading it back")
                data = self._read_order(reference)
            elif status < 500:
                logger.warning(f"[PAYPAL] Capture refused for {reference} ({status})")
                return SettlementFacts(succeeded=False, amount_cents=0, currency='')
            else:
                raise PaymentProviderError('Erreur PayPal.', provider='paypal')
        except (requests.RequestException, ValueError) as e:
            logger.error(f"[PAYPAL] Capture failed for {reference}: {e}")
            raise PaymentProviderError('Erreur PayPal.', provider='paypal')

        return self._facts_from_order(data)

    def _read_order(self, reference: str) -> Dict[str, Any]:
        try:
            return self.client.get_order(reference)
        except (requests.RequestException, ValueError) as e:
            logger.error(f"[PAYPAL] Could not read order {reference}: {e}")
            raise PaymentProviderError('Erreur PayPal.', provider='paypal')

    def _facts_from_order(self, data: Dict[str, Any]) -> SettlementFacts:
        unit = (data.get('purchase_units') or [{}])[0]
        captures = (unit.get('payments') or {}).get('captures') or []
        capture = captures[0] if captures else {}
        amount = capture.get('amount') or unit.get('amount') or {}

        try:
            amount_cents = parse_money_to_cents(amount.get('value'))
        except ValueError:
            raise PaymentProviderError('Reponse PayPal invalide.', provider='paypal')

        return SettlementFacts(
            succeeded=data.get('status') == 'COMPLETED',
            amount_cents=amount_cents,
            currency=str(amount.get('currency_code') or ''),
            charge_id=capture.get('id'),
            payer=extract_payer(data),
        )


def _clean(value) -> str:
    return value.strip() if isinstance(value, str) else ''


def extract_payer(data: Dict[str, Any]) -> Dict[str, Any]:
    """Customer and shipping details reported by PayPal for a captured order."""
    payer = data.get('payer') or {}
    name = payer.get('name') or {}
    shipping = ((data.get('purchase_units') or [{}])[0]).get('shipping') or {}
    address = shipping.get('address') or {}

    full_name = _clean((shipping.get('name') or {}).get('full_name'))
    first_part, _, last_part = full_name.partition(' ')
    phone = ((payer.get('phone') or {}).get('phone_number') or {}).get('national_number')

    return {
        'first_name': _clean(name.get('given_name')) or first_part or 'Client',
        'last_name': _clean(name.get('surname')) or last_part.strip() or 'PayPal',
        'email': _clean(payer.get('email_address')).lower(),
        'phone': _clean(phone) or None,
        'address1': _clean(address.get('address_line_1')),
        'address2': _clean(address.get('address_line_2')) or None,
        'postal_code': _clean(address.get('postal_code')),
        'city': _clean(address.get('admin_area_2')),
        'country': _clean(address.get('country_code')).upper(),
    }


class ManualRail(PaymentRail):
    """Bank transfer or cash on delivery: no provider call, order awaits payment."""

    name = 'manual'
    label = 'Virement'
    initial_status = OrderStatus.PENDING_PAYMENT
    requires_positive_total = False

    @staticmethod
    def reference_for(idempotency_key: Optional[str]) -> str:
        key = (idempotency_key or '').strip() or secrets.token_hex(16)
        return f"manual:{key}"

    def verify(self, reference: str, priced_cart=None) -> SettlementFacts:
        if priced_cart is None:
            raise ValueError('ManualRail.verify needs the priced cart')
        return SettlementFacts(
            succeeded=True,
            amount_cents=priced_cart.breakdown.total_cents,
            currency=self.config.currency,
        )


RAILS = {
    StripeCardRail.name: StripeCardRail,
    PayPalWalletRail.name: PayPalWalletRail,
    ManualRail.name: ManualRail,
}


def get_rail(name: str, config) -> PaymentRail:
    try:
        return RAILS[name](config)
    except KeyError:
        raise ValidationError('Moyen de paiement inconnu.')
