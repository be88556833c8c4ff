"""
Webhooks Blueprint for Sendcloud parcel status notifications.
Only the order's delivery_status is ever written from here.
"""

import logging
import hmac
import hashlib
from flask import Blueprint, request, jsonify, current_app
from storefront.database import get_session
from storefront.services.fulfillment_service import apply_tracking_update

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint('webhooks', __name__, url_prefix='/webhooks')


def verify_sendcloud_signature(request_data: bytes, signature: str) -> bool:
    """
    Verify the Sendcloud-Signature header (HMAC-SHA256 of the raw body).

    Verification is skipped when SENDCLOUD_WEBHOOK_SECRET is not configured.
    """
    secret = current_app.config.get('SENDCLOUD_WEBHOOK_SECRET')

    if not secret:
        logger.info("Skipping Sendcloud webhook signature verification (no secret configured)")
        return True

    if not signature:
        logger.warning("Missing Sendcloud-Signature header")
        return False

    expected_signature = hmac.new(
        secret.encode('utf-8'),
        request_data,
        hashlib.sha256
    ).hexdigest()

    is_valid = hmac.compare_digest(signature.strip().lower(), expected_signature)
    if not is_valid:
        logger.warning("Invalid Sendcloud webhook signature")
    return is_valid


@webhooks_bp.route('/sendcloud', methods=['POST'])
def sendcloud_webhook():
    """
    Handle Sendcloud parcel status changes.

    The parcel is matched by parcel id, or by tracking number when the
    payload carries no id.
    """
    signature = request.headers.get('Sendcloud-Signature', '')
    if not verify_sendcloud_signature(request.get_data(), signature):
        return jsonify({'error': 'Invalid signature'}), 401

    data = request.get_json(silent=True)
    if not data:
        logger.warning("Empty Sendcloud webhook payload")
        return jsonify({'error': 'Invalid payload.'}), 400

    logger.info(f"Received Sendcloud webhook: action={data.get('action')}")

    updated = apply_tracking_update(get_session(), data)
    return jsonify({'ok': True, 'updated': updated}), 200
