"""
Flask CLI commands.

Commands:
- flask init-db: create all tables
- flask encrypt-secret: print the encrypted form of a provider secret
- flask set-secret: store an encrypted provider secret in website_setting
"""

import click
from flask import current_app
from storefront import database
from storefront.models import WebsiteSetting
from storefront.services.settings_service import SettingsError, encrypt_secret, get_settings_row

SECRET_COLUMNS = {
    'stripe-secret-key': 'stripe_secret_key_encrypted',
    'paypal-client-id': 'paypal_client_id_encrypted',
    'paypal-client-secret': 'paypal_client_secret_encrypted',
    'sendcloud-public-key': 'sendcloud_public_key_encrypted',
    'sendcloud-private-key': 'sendcloud_private_key_encrypted',
}


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create every table that does not exist yet."""
        database.create_all()
        click.echo(click.style('Database tables created.', fg='green'))

    @app.cli.command('encrypt-secret')
    @click.option('--value', prompt=True, hide_input=True, help='Secret to encrypt')
    def encrypt_secret_command(value):
        """Encrypt a secret with SETTINGS_ENCRYPTION_KEY."""
        try:
            click.echo(encrypt_secret(value, current_app.config.get('SETTINGS_ENCRYPTION_KEY')))
        except SettingsError as e:
            raise click.ClickException(str(e))

    @app.cli.command('set-secret')
    @click.argument('name', type=click.Choice(sorted(SECRET_COLUMNS)))
    @click.option('--value', prompt=True, hide_input=True, help='Secret value')
    def set_secret_command(name, value):
        """Encrypt a provider secret and store it in the settings row."""
        session = database.get_session()
        try:
            encrypted = encrypt_secret(value.strip(), current_app.config.get('SETTINGS_ENCRYPTION_KEY'))
        except SettingsError as e:
            raise click.ClickException(str(e))

        try:
            settings = get_settings_row(session)
            if settings is None:
                settings = WebsiteSetting()
                session.add(settings)
            setattr(settings, SECRET_COLUMNS[name], encrypted)
            session.commit()
        except Exception as e:
            session.rollback()
            raise click.ClickException(f'Could not store {name}: {e}')

        click.echo(click.style(f'{name} stored.', fg='green'))
