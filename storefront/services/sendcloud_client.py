"""Sendcloud API client (sender addresses, quotes, shipment announcement, service points, labels)."""
import math
import requests
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse
from flask import current_app

from storefront.exceptions import CarrierError, ValidationError


def _text(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def compact(record: Dict[str, Any]) -> Dict[str, str]:
    """Drop empty values and stringify the rest, as the API rejects nulls."""
    cleaned = {}
    for key, value in record.items():
        text = _text(value)
        if text:
            cleaned[key] = text
    return cleaned


def error_detail(data, fallback: str) -> str:
    """First error detail of a Sendcloud error body, with its JSON pointer when given."""
    if not isinstance(data, dict):
        return fallback
    errors = data.get('errors')
    first = errors[0] if isinstance(errors, list) and errors and isinstance(errors[0], dict) else {}
    error = data.get('error')
    if isinstance(error, dict):
        error = error.get('message')
    detail = first.get('detail') or error
    if not detail:
        return fallback
    pointer = (first.get('source') or {}).get('pointer')
    return f"{detail} ({pointer})" if pointer else str(detail)


class SendcloudClient:
    """Client for the Sendcloud v3 API, authenticated with Basic auth."""

    BASE_URL = "https://panel.sendcloud.sc/api/v3"
    SERVICE_POINTS_URL = "https://servicepoints.sendcloud.sc/api/v2"
    LABEL_HOST = "panel.sendcloud.sc"
    LABEL_PATH_PREFIX = "/api/v3/"

    def __init__(self, public_key: str, private_key: str, default_country: str = 'FR', timeout: int = 10):
        if not public_key or not private_key:
            raise ValueError("Sendcloud API keys are required")

        self.public_key = public_key
        self.auth = (public_key, private_key)
        self.default_country = default_country
        self.timeout = timeout

    def _request(self, method: str, path: str, fallback_error: str, base_url: Optional[str] = None, **kwargs) -> Any:
        url = f"{base_url or self.BASE_URL}{path}"
        kwargs.setdefault('auth', self.auth)
        try:
            response = requests.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            current_app.logger.error(f"[SENDCLOUD] {method} {path} failed: {e}")
            raise CarrierError(fallback_error, 502)

        try:
            data = response.json()
        except ValueError:
            data = None

        if not response.ok:
            detail = error_detail(data, f"{fallback_error} (status {response.status_code})")
            current_app.logger.error(f"[SENDCLOUD] {method} {path} -> {response.status_code}: {detail}")
            raise CarrierError(detail, response.status_code)

        return data

    def normalize_sender_address(self, raw) -> Optional[Dict[str, str]]:
        """Sender address in announce format, or None when it lacks street, postal code or city."""
        if not isinstance(raw, dict):
            return None

        address_line_1 = _text(raw.get('address_line_1') or raw.get('street'))
        postal_code = _text(raw.get('postal_code'))
        city = _text(raw.get('city'))
        if not address_line_1 or not postal_code or not city:
            return None

        country = (_text(raw.get('country_code')) or '').upper()
        return compact({
            'name': _text(raw.get('name')) or _text(raw.get('contact_name')) or _text(raw.get('company_name')) or 'Sender',
            'company_name': raw.get('company_name'),
            'address_line_1': address_line_1,
            'address_line_2': raw.get('address_line_2'),
            'house_number': raw.get('house_number'),
            'postal_code': postal_code,
            'city': city,
            'country_code': country if len(country) == 2 else self.default_country,
            'phone_number': raw.get('phone_number') or raw.get('telephone'),
            'email': raw.get('email'),
            'po_box': raw.get('po_box'),
        })

    def get_sender_address(self) -> Optional[Dict[str, str]]:
        """
        Default sender address of the account.

        Returns None when the account has none or it is incomplete.

        Raises:
            CarrierError: with the carrier status (404 when no address exists)
        """
        data = self._request('GET', '/addresses/sender-addresses', 'Failed to load sender address.',
                             params={'page_size': 100})

        if isinstance(data, dict) and isinstance(data.get('data'), list):
            entries = data['data']
        elif isinstance(data, list):
            entries = data
        else:
            entries = []
        if not entries:
            return None

        preferred = next((e for e in entries if isinstance(e, dict) and e.get('is_default')), None)
        if preferred is None:
            preferred = next((e for e in entries if isinstance(e, dict) and e.get('default')), entries[0])
        return self.normalize_sender_address(preferred)

    def get_quotes(self, to_country_code: str, to_postal_code: str, weight_kg: str,
                   carrier_code: Optional[str] = None) -> List[Dict[str, Any]]:
        """Shipping options with calculated quotes for one parcel of `weight_kg` ("1.100")."""
        payload = {
            'from_country_code': self.default_country,
            'to_country_code': to_country_code,
            'to_postal_code': to_postal_code,
            'parcels': [{'weight': {'value': weight_kg, 'unit': 'kg'}}],
            'calculate_quotes': True,
        }
        if carrier_code:
            payload['carrier_code'] = carrier_code

        current_app.logger.info(f"[SENDCLOUD] Quotes to {to_country_code}-{to_postal_code} weight={weight_kg}kg")
        data = self._request('POST', '/shipping-options', 'Failed to load quotes.', json=payload)
        options = data.get('data') if isinstance(data, dict) else None
        return options if isinstance(options, list) else []

    def announce_shipment(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Create the shipment and its label; returns the `data` object of the response."""
        current_app.logger.info(f"[SENDCLOUD] Announcing shipment for order {payload.get('order_number')}")
        data = self._request('POST', '/shipments/announce', 'Failed to create shipping label.', json=payload)
        shipment = data.get('data') if isinstance(data, dict) else None
        if not isinstance(shipment, dict):
            raise CarrierError('Malformed shipment response.', 502)
        return shipment

    @staticmethod
    def normalize_service_point(raw: Dict[str, Any]) -> Dict[str, Any]:
        distance = raw.get('distance')
        if isinstance(distance, str):
            try:
                distance = float(distance)
            except ValueError:
                distance = None
        if isinstance(distance, bool) or not isinstance(distance, (int, float)) or not math.isfinite(distance):
            distance = None

        opening_times = raw.get('formatted_opening_times')
        return {
            'id': raw.get('id'),
            'name': raw.get('name'),
            'street': raw.get('street'),
            'house_number': raw.get('house_number'),
            'postal_code': raw.get('postal_code'),
            'city': raw.get('city'),
            'distance': distance,
            'formatted_opening_times': opening_times if isinstance(opening_times, dict) else None,
        }

    def search_service_points(self, address: str, postal_code: str, city: str,
                              country: Optional[str] = None, carrier: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Pickup points near an address, nearest first.

        Points without a usable distance go last. The service point API
        authenticates with the public key as an access token.
        """
        params = {
            'country': (country or self.default_country).upper(),
            'address': address,
            'city': city,
            'postal_code': postal_code,
            'access_token': self.public_key,
        }
        if carrier:
            params['carrier'] = carrier

        current_app.logger.info(f"[SENDCLOUD] Service points near {params['country']}-{postal_code} carrier={carrier}")
        data = self._request('GET', '/service-points', 'Failed to load service points.',
                             base_url=self.SERVICE_POINTS_URL, auth=None, params=params,
                             headers={'X-Requested-With': 'XMLHttpRequest'})

        entries = data if isinstance(data, list) else []
        points = [self.normalize_service_point(raw) for raw in entries if isinstance(raw, dict)]
        points.sort(key=lambda point: (point['distance'] is None, point['distance'] or 0))
        return points

    def check_label_url(self, label_url: str) -> str:
        """
        Only label documents served by the Sendcloud panel API may be fetched
        with the account credentials.

        Raises:
            ValidationError: empty, malformed or foreign URL
        """
        label_url = (label_url or '').strip()
        try:
            parsed = urlparse(label_url)
            port = parsed.port
        except ValueError:
            raise ValidationError('Invalid label URL.')
        if not parsed.scheme or not parsed.netloc:
            raise ValidationError('Invalid label URL.')

        segments = parsed.path.split('/')
        if (parsed.scheme != 'https' or parsed.hostname != self.LABEL_HOST or port not in (None, 443)
                or parsed.username or parsed.password
                or not parsed.path.startswith(self.LABEL_PATH_PREFIX) or '..' in segments):
            raise ValidationError('Unsupported label URL.')
        return label_url

    def download_label(self, label_url: str) -> Tuple[bytes, str]:
        """
        Fetch a label document; returns its bytes and content type.

        Raises:
            ValidationError: URL outside the Sendcloud panel API
            CarrierError: with the carrier status when the download fails
        """
        label_url = self.check_label_url(label_url)
        try:
            response = requests.get(label_url, auth=self.auth, timeout=self.timeout)
        except requests.RequestException as e:
            current_app.logger.error(f"[SENDCLOUD] Label download failed: {e}")
            raise CarrierError('Failed to fetch label.', 502)

        if not response.ok:
            try:
                data = response.json()
            except ValueError:
                data = None
            detail = error_detail(data, 'Failed to fetch label.')
            current_app.logger.error(f"[SENDCLOUD] Label download -> {response.status_code}: {detail}")
            raise CarrierError(detail, response.status_code)

        return response.content, response.headers.get('Content-Type') or 'application/pdf'
