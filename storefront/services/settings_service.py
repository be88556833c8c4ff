"""
Settings service - resolves a per-request Configuration.

Provider credentials live encrypted in the single `website_setting` row and
fall back to environment configuration. The resolved value is immutable and
passed explicitly to the pricing, payment and carrier services.
"""
import base64
import binascii
import logging
import os
import re
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from flask import current_app

from storefront.models import WebsiteSetting
from storefront.utils.units import parse_cents

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
IV_LENGTH = 12
TAG_LENGTH = 16
HEX_KEY_PATTERN = re.compile(r'^[0-9a-fA-F]{64}$')


class SettingsError(Exception):
    """Encryption key missing or an encrypted value cannot be read."""


@dataclass(frozen=True)
class Configuration:
    """Checkout configuration resolved once per request."""
    default_shipping_cents: int
    currency: str
    default_country: str
    stripe_secret_key: str = ''
    paypal_client_id: str = ''
    paypal_client_secret: str = ''
    paypal_env: str = 'sandbox'
    sendcloud_public_key: str = ''
    sendcloud_private_key: str = ''
    provider_timeout: int = 10

    @property
    def paypal_base_url(self) -> str:
        if self.paypal_env.lower() in ('live', 'production'):
            return 'https://api-m.paypal.com'
        return 'https://api-m.sandbox.paypal.com'

    @property
    def has_sendcloud_keys(self) -> bool:
        return bool(self.sendcloud_public_key and self.sendcloud_private_key)


def _get_encryption_key(raw: Optional[str]) -> Optional[bytes]:
    raw = (raw or '').strip()
    if not raw:
        return None
    if HEX_KEY_PATTERN.match(raw):
        return bytes.fromhex(raw)
    try:
        decoded = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError):
        return None
    return decoded if len(decoded) == KEY_LENGTH else None


def encrypt_secret(value: str, raw_key: str) -> str:
    """Encrypt `value` as `iv:tag:ciphertext` (base64 parts, AES-256-GCM)."""
    key = _get_encryption_key(raw_key)
    if not key:
        raise SettingsError('Missing SETTINGS_ENCRYPTION_KEY.')

    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(key).encrypt(iv, value.encode('utf-8'), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return ':'.join(base64.b64encode(part).decode('ascii') for part in (iv, tag, ciphertext))


def decrypt_secret(payload: str, raw_key: str) -> str:
    """Reverse of `encrypt_secret`."""
    key = _get_encryption_key(raw_key)
    if not key:
        raise SettingsError('Missing SETTINGS_ENCRYPTION_KEY.')

    parts = (payload or '').split(':')
    if len(parts) != 3 or not all(parts):
        raise SettingsError('Invalid encrypted payload.')

    try:
        iv, tag, ciphertext = (base64.b64decode(part) for part in parts)
        plain = AESGCM(key).decrypt(iv, ciphertext + tag, None)
    except (binascii.Error, ValueError, InvalidTag):
        raise SettingsError('Invalid encrypted payload.')
    return plain.decode('utf-8')


def get_settings_row(session) -> Optional[WebsiteSetting]:
    return session.query(WebsiteSetting).order_by(WebsiteSetting.id).first()


def _secret(settings, attribute: str, fallback: str, raw_key: str) -> str:
    encrypted = (getattr(settings, attribute, None) or '').strip() if settings else ''
    if encrypted:
        return decrypt_secret(encrypted, raw_key).strip()
    return (fallback or '').strip()


def _default_shipping_cents(settings, raw_value) -> int:
    if settings and settings.default_shipping_cents is not None and settings.default_shipping_cents >= 0:
        return settings.default_shipping_cents
    try:
        return parse_cents(raw_value if raw_value not in (None, '') else 0)
    except ValueError:
        logger.warning(f"[SETTINGS] Invalid SHIPPING_CENTS={raw_value!r}, using 0")
        return 0


def resolve_configuration(session, app_config=None) -> Configuration:
    """Build the Configuration for the current request."""
    cfg = app_config if app_config is not None else current_app.config
    settings = get_settings_row(session)
    raw_key = cfg.get('SETTINGS_ENCRYPTION_KEY', '')

    currency = (cfg.get('SETTLEMENT_CURRENCY') or 'eur').lower()
    if settings and settings.default_currency:
        currency = settings.default_currency.lower()

    return Configuration(
        default_shipping_cents=_default_shipping_cents(settings, cfg.get('SHIPPING_CENTS')),
        currency=currency,
        default_country=(cfg.get('DEFAULT_COUNTRY') or 'FR').upper(),
        stripe_secret_key=_secret(settings, 'stripe_secret_key_encrypted', cfg.get('STRIPE_SECRET_KEY'), raw_key),
        paypal_client_id=_secret(settings, 'paypal_client_id_encrypted', cfg.get('PAYPAL_CLIENT_ID'), raw_key),
        paypal_client_secret=_secret(settings, 'paypal_client_secret_encrypted', cfg.get('PAYPAL_CLIENT_SECRET'), raw_key),
        paypal_env=cfg.get('PAYPAL_ENV') or 'sandbox',
        sendcloud_public_key=_secret(settings, 'sendcloud_public_key_encrypted', cfg.get('SENDCLOUD_PUBLIC_KEY'), raw_key),
        sendcloud_private_key=_secret(settings, 'sendcloud_private_key_encrypted', cfg.get('SENDCLOUD_PRIVATE_KEY'), raw_key),
        provider_timeout=int(cfg.get('PROVIDER_TIMEOUT') or 10),
    )
