"""PayPal Orders v2 REST client."""
import requests
from typing import Dict, Any, Optional
from flask import current_app


class PayPalClient:
    """Thin client for the PayPal checkout orders API."""

    def __init__(self, client_id: str, client_secret: str, base_url: str, timeout: int = 10):
        """
        Initialize PayPal client.

        Args:
            client_id: REST app client id
            client_secret: REST app secret
            base_url: sandbox or live API root
            timeout: per-request timeout in seconds
        """
        if not client_id or not client_secret:
            raise ValueError("PayPal API credentials are required")

        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self._access_token: Optional[str] = None

    def _get_access_token(self) -> str:
        if self._access_token:
            return self._access_token

        response = requests.post(
            f"{self.base_url}/v1/oauth2/token",
            data={'grant_type': 'client_credentials'},
            auth=(self.client_id, self.client_secret),
            headers={'Accept': 'application/json'},
            timeout=self.timeout
        )
        response.raise_for_status()
        token = response.json().get('access_token')
        if not token:
            raise ValueError("PayPal token response has no access_token")

        self._access_token = token
        return token

    def _headers(self) -> Dict[str, str]:
        return {
            'Authorization': f'Bearer {self._get_access_token()}',
            'Content-Type': 'application/json'
        }

    def create_order(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a CAPTURE-intent order.

        Raises:
            requests.HTTPError: if PayPal returns an error status
        """
        url = f"{self.base_url}/v2/checkout/orders"
        current_app.logger.info("[PAYPAL] Creating order")

        try:
            response = requests.post(url, json=payload, headers=self._headers(), timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
            current_app.logger.info(f"[PAYPAL] Order created: {data.get('id')}")
            return data

        except requests.HTTPError as e:
            current_app.logger.error(f"[PAYPAL] Error creating order: {e.response.text}")
            raise

    def capture_order(self, order_id: str) -> Dict[str, Any]:
        """
        Capture an approved order.

        Raises:
            requests.HTTPError: if PayPal returns an error status
        """
        url = f"{self.base_url}/v2/checkout/orders/{order_id}/capture"
        current_app.logger.info(f"[PAYPAL] Capturing order: {order_id}")

        try:
            response = requests.post(url, json={}, headers=self._headers(), timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
            current_app.logger.info(f"[PAYPAL] Capture status: {data.get('status')} - {order_id}")
            return data

        except requests.HTTPError as e:
            current_app.logger.error(f"[PAYPAL] Error capturing order {order_id}: {e.response.text}")
            raise

    def get_order(self, order_id: str) -> Dict[str, Any]:
        """Read an order, including its captures once captured."""
        url = f"{self.base_url}/v2/checkout/orders/{order_id}"
        current_app.logger.info(f"[PAYPAL] Getting order: {order_id}")

        try:
            response = requests.get(url, headers=self._headers(), timeout=self.timeout)
            response.raise_for_status()
            return response.json()

        except requests.HTTPError as e:
            current_app.logger.error(f"[PAYPAL] Error getting order {order_id}: {e.response.text}")
            raise
