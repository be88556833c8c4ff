"""Customer service: validation and upsert by email."""
from dataclasses import dataclass, fields, replace
from typing import Optional

from flask import current_app

from storefront.exceptions import ValidationError
from storefront.models import Customer
from storefront.utils.validators import (
    get_object, get_optional_trimmed_string, get_trimmed_string, is_valid_email
)

FRANCE_ALIASES = ('FR', 'FRANCE')


@dataclass(frozen=True)
class CustomerInput:
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company_name: Optional[str] = None
    phone: Optional[str] = None
    address1: Optional[str] = None
    address2: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None

    def fill_from(self, other: dict) -> 'CustomerInput':
        """Return a copy where empty fields are taken from `other`."""
        updates = {}
        for f in fields(self):
            if not getattr(self, f.name) and other.get(f.name):
                updates[f.name] = other[f.name]
        return replace(self, **updates) if updates else self


def normalize_country(value, default_country: str) -> Optional[str]:
    """Shipping is domestic only: blank or an alias of the home country."""
    if not value:
        return default_country
    normalized = value.strip().upper()
    if normalized == default_country or (default_country == 'FR' and normalized in FRANCE_ALIASES):
        return default_country
    return None


def parse_customer_input(payload, default_country: str, require_address: bool = True) -> CustomerInput:
    """
    Validate the `customer` and `shipping` objects of a checkout request.

    Raises:
        ValidationError: with every problem found, not just the first
    """
    data = get_object(payload)
    customer = get_object(data.get('customer'))
    shipping = get_object(data.get('shipping'))

    first_name = get_trimmed_string(customer.get('first_name'))
    last_name = get_trimmed_string(customer.get('last_name'))
    email = get_trimmed_string(customer.get('email')).lower()
    address1 = get_trimmed_string(shipping.get('address1'))
    postal_code = get_trimmed_string(shipping.get('postal_code'))
    city = get_trimmed_string(shipping.get('city'))
    country = normalize_country(get_optional_trimmed_string(shipping.get('country')), default_country)

    errors = []
    if not first_name:
        errors.append('Le prenom est obligatoire.')
    if not last_name:
        errors.append('Le nom est obligatoire.')
    if not is_valid_email(email):
        errors.append('Email invalide.')
    if require_address:
        if not address1:
            errors.append('Adresse de livraison obligatoire.')
        if not postal_code:
            errors.append('Code postal obligatoire.')
        if not city:
            errors.append('Ville obligatoire.')
    if not country:
        errors.append('Livraison uniquement en France.')

    if errors:
        raise ValidationError(errors)

    return CustomerInput(
        email=email,
        first_name=first_name,
        last_name=last_name,
        company_name=get_optional_trimmed_string(customer.get('company_name')),
        phone=get_optional_trimmed_string(customer.get('phone')),
        address1=address1 or None,
        address2=get_optional_trimmed_string(shipping.get('address2')),
        postal_code=postal_code or None,
        city=city or None,
        country=country,
    )


def _apply_fields(customer: Customer, customer_input: CustomerInput) -> None:
    # Only non-empty incoming values overwrite what is stored
    for f in fields(customer_input):
        if f.name == 'email':
            continue
        value = getattr(customer_input, f.name)
        if value:
            setattr(customer, f.name, value)


def upsert_customer(session, customer_input: CustomerInput) -> Customer:
    """
    Find the customer by lower-cased email or create it, inside the caller's transaction.

    A concurrent insert of the same email surfaces as an IntegrityError at
    flush. The caller owns the transaction and decides whether to retry.
    """
    email = customer_input.email.strip().lower()
    customer = session.query(Customer).filter(Customer.email == email).first()

    if customer is None:
        customer = Customer(email=email)
        session.add(customer)
        current_app.logger.info(f"[ORDER] New customer {email}")

    _apply_fields(customer, customer_input)
    session.flush()
    return customer
