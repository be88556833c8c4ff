"""
Order service with transactional logic.

Orders are written only after the payment provider's settled state has been
reconciled with the locally computed price. The provider payment reference is
the idempotency key: a unique constraint on `orders.payment_reference` makes a
retried confirmation return the order that already exists.
"""
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError

from storefront.exceptions import NotFoundError, SettlementMismatchError, ValidationError
from storefront.models import Order, OrderItem, OrderStatus
from storefront.services import customer_service, email_service, pricing_service
from storefront.services.customer_service import CustomerInput
from storefront.services.payment_rails import SettlementFacts, check_settlement
from storefront.utils.validators import is_valid_email

logger = logging.getLogger(__name__)

COMMIT_ATTEMPTS = 2


@dataclass(frozen=True)
class CommitResult:
    order: Order
    replayed: bool


@dataclass(frozen=True)
class SettlementResult:
    order: Order
    replayed: bool
    email_skipped: bool

    def to_dict(self) -> dict:
        return {
            'ok': True,
            'order': self.order.to_summary(),
            'replayed': self.replayed,
            'email_skipped': self.email_skipped,
        }


def generate_public_id() -> str:
    return secrets.token_hex(6)


def find_by_reference(session, payment_reference: str) -> Optional[Order]:
    return session.query(Order).filter(Order.payment_reference == payment_reference).first()


def get_by_public_id(session, public_id: str) -> Order:
    order = session.query(Order).filter(Order.public_id == public_id).first()
    if not order:
        raise NotFoundError('Commande introuvable.')
    return order


def _build_order(customer, priced_cart, facts: SettlementFacts, rail, payment_reference: str) -> Order:
    breakdown = priced_cart.breakdown
    option = priced_cart.shipping_option
    status = rail.initial_status

    order = Order(
        public_id=generate_public_id(),
        status=status.value,
        payment_rail=rail.name,
        payment_reference=payment_reference,
        provider_charge_id=facts.charge_id,
        preferred_payment_method=rail.label,
        customer_id=customer.id,
        subtotal_cents=breakdown.subtotal_cents,
        shipping_cents=breakdown.shipping_cents,
        discount_cents=breakdown.discount_cents,
        total_cents=breakdown.total_cents,
        currency=(facts.currency or rail.config.currency).lower(),
        discount_code_id=priced_cart.discount_rule.id if priced_cart.discount_rule else None,
        paid_at=datetime.now(timezone.utc) if status == OrderStatus.PAID else None,
        **facts.risk
    )

    if option is not None:
        order.shipping_option_id = option.id
        order.shipping_option_title = option.title
        order.shipping_option_carrier = option.carrier
        order.shipping_option_type = option.shipping_type

        point = priced_cart.service_point
        if option.is_service_point and point is not None:
            order.service_point_id = point.id
            order.service_point_name = point.name
            order.service_point_street = point.street
            order.service_point_house_number = point.house_number
            order.service_point_postal_code = point.postal_code
            order.service_point_city = point.city
            order.service_point_distance = point.distance

    return order


def _insert(session, customer_input, priced_cart, facts, rail, payment_reference) -> Order:
    customer = customer_service.upsert_customer(session, customer_input)

    order = _build_order(customer, priced_cart, facts, rail, payment_reference)
    session.add(order)
    session.flush()

    session.add_all([
        OrderItem(
            order_id=order.id,
            product_id=product.id,
            title_snapshot=product.title,
            unit_price_cents_snapshot=product.price_cents,
            unit_weight_grams_snapshot=product.weight_grams,
            qty=qty,
        )
        for product, qty in priced_cart.iter_items()
    ])
    session.commit()
    return order


def commit(session, customer_input: CustomerInput, priced_cart, facts: SettlementFacts, rail,
           payment_reference: str) -> CommitResult:
    """
    Persist customer, order and line snapshots as one unit of work.

    A payment reference that already has an order returns that order with
    `replayed=True`. Any failure rolls everything back. A unique violation
    caused by a concurrent retry returns the winning order; one caused by a
    concurrent customer insert is retried once.
    """
    existing = find_by_reference(session, payment_reference)
    if existing:
        return CommitResult(order=existing, replayed=True)

    for attempt in range(1, COMMIT_ATTEMPTS + 1):
        try:
            order = _insert(session, customer_input, priced_cart, facts, rail, payment_reference)
            logger.info(
                f"[ORDER] Created {order.public_id} rail={rail.name} "
                f"total={order.total_cents} ref={payment_reference}"
            )
            return CommitResult(order=order, replayed=False)

        except IntegrityError:
            session.rollback()
            winner = find_by_reference(session, payment_reference)
            if winner:
                logger.info(f"[ORDER] Concurrent confirmation for {payment_reference}, returning {winner.public_id}")
                return CommitResult(order=winner, replayed=True)
            if attempt == COMMIT_ATTEMPTS:
                raise
            logger.warning(f"[ORDER] Unique violation while saving {payment_reference}, retrying")

        except Exception:
            session.rollback()
            raise


def _resolve_customer(customer_input: Optional[CustomerInput], facts: SettlementFacts) -> CustomerInput:
    if facts.payer:
        base = customer_input or CustomerInput(email='')
        customer_input = base.fill_from(facts.payer)

    if customer_input is None or not is_valid_email(customer_input.email):
        raise ValidationError('Email invalide.')
    return customer_input


def settle(session, config, rail, payment_reference: str, raw_items,
           customer_input: Optional[CustomerInput] = None, discount_code=None,
           shipping_option_id=None, service_point=None) -> SettlementResult:
    """
    Full checkout confirmation: replay check, pricing, provider verification,
    reconciliation, persistence and a best-effort confirmation email.

    Raises:
        ValidationError: rejected cart, discount, shipping or customer input
        SettlementMismatchError: provider state disagrees with the computed price
        PaymentProviderError: provider unreachable or returned garbage
    """
    existing = find_by_reference(session, payment_reference)
    if existing:
        logger.info(f"[ORDER] Replayed confirmation for {payment_reference} -> {existing.public_id}")
        return SettlementResult(order=existing, replayed=True, email_skipped=True)

    priced_cart = pricing_service.price_cart(
        session, config, raw_items,
        discount_code=discount_code,
        shipping_option_id=shipping_option_id,
        service_point=service_point,
    )
    if rail.requires_positive_total and priced_cart.breakdown.total_cents <= 0:
        raise ValidationError('Montant total invalide.')

    facts = rail.verify(payment_reference, priced_cart)
    try:
        check_settlement(facts, priced_cart.breakdown, config.currency)
    except SettlementMismatchError as e:
        logger.warning(
            f"[ORDER] Settlement mismatch for {payment_reference}: {e.message} "
            f"expected={e.expected} actual={e.actual}"
        )
        raise

    result = commit(session, _resolve_customer(customer_input, facts), priced_cart, facts, rail,
                    payment_reference)
    if result.replayed:
        return SettlementResult(order=result.order, replayed=True, email_skipped=True)

    email_result = email_service.send_order_confirmation(result.order)
    return SettlementResult(order=result.order, replayed=False, email_skipped=email_result['skipped'])
