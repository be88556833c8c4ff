"""
Admin security decorators.
Protects the back-office JSON endpoints (shipping quotes and labels).
"""

from functools import wraps
from flask import session, jsonify, current_app, g


def get_admin_allowlist():
    """Lower-cased emails from ADMIN_EMAILS (comma separated)."""
    raw = current_app.config.get('ADMIN_EMAILS') or ''
    return {email.strip().lower() for email in raw.split(',') if email.strip()}


def admin_required(f):
    """
    Decorator: require an admin session.

    The session is issued by the surrounding application and carries
    session['admin_email']. When ADMIN_EMAILS is set, the email must be on it.
    Returns JSON 401 without a session and 403 for an email off the allowlist.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        admin_email = (session.get('admin_email') or '').strip().lower()

        if not admin_email:
            return jsonify({'status': 'error', 'message': 'Unauthorized.'}), 401

        allowlist = get_admin_allowlist()
        if allowlist and admin_email not in allowlist:
            current_app.logger.warning(f"[ADMIN] Rejected admin session for {admin_email}")
            return jsonify({'status': 'error', 'message': 'Forbidden.'}), 403

        g.admin_email = admin_email
        return f(*args, **kwargs)

    return decorated_function
