"""Discount code resolution."""
from dataclasses import dataclass
from typing import Optional

from storefront.exceptions import ValidationError
from storefront.models import DiscountCode, DiscountType
from storefront.utils.units import round_half_up_div

INVALID_CODE_MESSAGE = 'Code promo invalide.'


@dataclass(frozen=True)
class AppliedDiscount:
    discount_cents: int
    rule: Optional[DiscountCode] = None

    @property
    def code(self) -> Optional[str]:
        return self.rule.code if self.rule else None


NO_DISCOUNT = AppliedDiscount(discount_cents=0)


def normalize_code(code) -> str:
    if not isinstance(code, str):
        return ''
    return code.strip().upper()


def compute_discount_cents(rule: DiscountCode, base_cents: int) -> int:
    """
    Amount a rule takes off `base_cents`, clamped to [0, base].

    Percent rules round half up using integer arithmetic only.

    Raises:
        ValidationError: percent outside (0, 100] or fixed amount <= 0
    """
    base_cents = max(int(base_cents), 0)

    if rule.discount_type == DiscountType.PERCENT:
        percent = rule.percent_off or 0
        if percent <= 0 or percent > 100:
            raise ValidationError(INVALID_CODE_MESSAGE)
        amount = round_half_up_div(base_cents * percent, 100)
    else:
        amount = rule.amount_cents or 0
        if amount <= 0:
            raise ValidationError(INVALID_CODE_MESSAGE)

    return min(max(amount, 0), base_cents)


def resolve(session, code, base_cents: int) -> AppliedDiscount:
    """
    Look up an active discount code and apply it to `base_cents`.

    An empty code yields no discount. Unknown, inactive or misconfigured
    codes are rejected with a ValidationError.
    """
    normalized = normalize_code(code)
    if not normalized:
        return NO_DISCOUNT

    rule = session.query(DiscountCode).filter(
        DiscountCode.code == normalized,
        DiscountCode.active == True
    ).first()
    if not rule:
        raise ValidationError(INVALID_CODE_MESSAGE)

    return AppliedDiscount(discount_cents=compute_discount_cents(rule, base_cents), rule=rule)


def preview(session, code, base_cents: int) -> dict:
    """Describe what a code would take off a basket, for the checkout form."""
    normalized = normalize_code(code)
    if not normalized:
        raise ValidationError('Code promo manquant.')

    applied = resolve(session, normalized, base_cents)
    rule = applied.rule
    return {
        'code': rule.code,
        'discount_type': rule.discount_type.value,
        'amount_cents': rule.amount_cents,
        'percent_off': rule.percent_off,
        'discount_cents': applied.discount_cents,
    }
