"""
Pricing engine.

Turns a raw cart into a deterministic price breakdown:
subtotal from active catalog prices, shipping from the shipping resolver,
discount from the discount resolver applied to subtotal + shipping, and
total = max(subtotal + shipping - discount, 0). All amounts are integer cents.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from storefront.exceptions import ValidationError
from storefront.models import Product
from storefront.services import discount_service, shipping_service
from storefront.services.discount_service import AppliedDiscount
from storefront.services.shipping_service import ServicePoint, ShippingSelection
from storefront.utils.validators import get_object, get_positive_int

EMPTY_CART_MESSAGE = 'Panier vide.'
UNAVAILABLE_MESSAGE = 'Certains articles sont indisponibles.'


@dataclass(frozen=True)
class CartLine:
    product_id: int
    qty: int


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal_cents: int
    shipping_cents: int
    discount_cents: int
    total_cents: int

    def to_dict(self) -> dict:
        return {
            'subtotal_cents': self.subtotal_cents,
            'shipping_cents': self.shipping_cents,
            'discount_cents': self.discount_cents,
            'total_cents': self.total_cents,
        }


@dataclass(frozen=True)
class PricedCart:
    lines: Tuple[CartLine, ...]
    products: Dict[int, Product] = field(repr=False)
    breakdown: PriceBreakdown
    discount: AppliedDiscount
    shipping: ShippingSelection

    @property
    def discount_rule(self):
        return self.discount.rule

    @property
    def shipping_option(self):
        return self.shipping.option

    @property
    def service_point(self) -> Optional[ServicePoint]:
        return self.shipping.service_point

    def iter_items(self):
        """Yield (product, qty) pairs in cart order."""
        for line in self.lines:
            yield self.products[line.product_id], line.qty


def normalize_cart(raw_items) -> Tuple[CartLine, ...]:
    """
    Validate raw cart lines and merge duplicates.

    Each line needs a positive integer `product_id` (or `id`) and a positive
    integer `qty`. Duplicate products are merged by summing quantities, in
    first-seen order.

    Raises:
        ValidationError: malformed line or empty cart
    """
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError(EMPTY_CART_MESSAGE)

    errors = []
    quantities: Dict[int, int] = {}
    for index, raw in enumerate(raw_items, start=1):
        item = get_object(raw)
        product_id = get_positive_int(item.get('product_id', item.get('id')))
        qty = get_positive_int(item.get('qty'))
        if product_id is None:
            errors.append(f'Article {index}: produit invalide.')
            continue
        if qty is None:
            errors.append(f'Article {index}: quantite invalide.')
            continue
        quantities[product_id] = quantities.get(product_id, 0) + qty

    if errors:
        raise ValidationError(errors)

    return tuple(CartLine(product_id=pid, qty=qty) for pid, qty in quantities.items())


def load_cart_products(session, lines) -> Dict[int, Product]:
    """Fetch the active products of a cart; any missing one rejects the whole cart."""
    product_ids = [line.product_id for line in lines]
    if not product_ids:
        raise ValidationError(EMPTY_CART_MESSAGE)

    products = session.query(Product).filter(
        Product.id.in_(product_ids),
        Product.active == True
    ).all()

    if len(products) != len(set(product_ids)):
        raise ValidationError(UNAVAILABLE_MESSAGE)

    return {product.id: product for product in products}


def compute_subtotal(lines, products: Dict[int, Product]) -> int:
    return sum(products[line.product_id].price_cents * line.qty for line in lines)


def compute_breakdown(subtotal_cents: int, shipping_cents: int, discount_cents: int) -> PriceBreakdown:
    """Assemble the breakdown; the discount never exceeds subtotal + shipping."""
    base_cents = subtotal_cents + shipping_cents
    discount_cents = min(max(discount_cents, 0), base_cents)
    return PriceBreakdown(
        subtotal_cents=subtotal_cents,
        shipping_cents=shipping_cents,
        discount_cents=discount_cents,
        total_cents=max(base_cents - discount_cents, 0),
    )


def price_cart(session, config, raw_items, discount_code=None, shipping_option_id=None,
               service_point: Optional[ServicePoint] = None) -> PricedCart:
    """Price a cart end to end. Raises ValidationError on any rejected input."""
    lines = normalize_cart(raw_items)
    products = load_cart_products(session, lines)
    subtotal_cents = compute_subtotal(lines, products)

    shipping = shipping_service.resolve(session, config, subtotal_cents,
                                        shipping_option_id, service_point)
    discount = discount_service.resolve(session, discount_code,
                                        subtotal_cents + shipping.shipping_cents)

    return PricedCart(
        lines=lines,
        products=products,
        breakdown=compute_breakdown(subtotal_cents, shipping.shipping_cents, discount.discount_cents),
        discount=discount,
        shipping=shipping,
    )


def cart_lines_summary(priced_cart: PricedCart) -> List[dict]:
    return [
        {
            'product_id': product.id,
            'title': product.title,
            'qty': qty,
            'unit_price_cents': product.price_cents,
            'line_total_cents': product.price_cents * qty,
        }
        for product, qty in priced_cart.iter_items()
    ]
