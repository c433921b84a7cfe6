from flask import Flask
import os
import logging

from admin_routes import admin_bp
from auth import init_auth, MAGIC_LINK_TTL_MINUTES
from certificate import DEFAULT_MAX_ATTEMPTS
from errors import register_error_handlers
from routes import api_bp
from secondary_store import create_secondary_store
from storage import create_storage
from utils import env_flag, parse_int


def load_config_from_env(environ=None) -> dict:
    """Map process environment variables onto Flask config keys."""
    env = os.environ if environ is None else environ
    return {
        'SECRET_KEY': env.get('SECRET_KEY', 'dev-secret-key-change-me'),
        'DATABASE_URL': env.get('DATABASE_URL') or None,
        'DB_WAIT_SECONDS': parse_int(env.get('DB_WAIT_SECONDS')) or 0,
        'SEED_SAMPLE_DATA': env_flag(env.get('SEED_SAMPLE_DATA')),
        'SECONDARY_STORE_URI': env.get('SECONDARY_STORE_URI') or None,
        'SECONDARY_STORE_DATABASE': env.get('SECONDARY_STORE_DATABASE', 'wespark'),
        'SECONDARY_STORE_COLLECTION': env.get('SECONDARY_STORE_COLLECTION', 'certificates'),
        'SECONDARY_STORE_TIMEOUT_MS': parse_int(env.get('SECONDARY_STORE_TIMEOUT_MS')) or 3000,
        'PUBLIC_BASE_URL': env.get('PUBLIC_BASE_URL', 'http://localhost:5000'),
        'CERTIFICATE_TEMPLATE_PDF': env.get('CERTIFICATE_TEMPLATE_PDF') or None,
        'CERTIFICATE_ID_MAX_ATTEMPTS': parse_int(env.get('CERTIFICATE_ID_MAX_ATTEMPTS')) or DEFAULT_MAX_ATTEMPTS,
        'MAGIC_LINK_TTL_MINUTES': parse_int(env.get('MAGIC_LINK_TTL_MINUTES')) or MAGIC_LINK_TTL_MINUTES,
        # Mail configuration for MailHog
        'MAIL_ENABLED': env_flag(env.get('MAIL_ENABLED')),
        'MAIL_SERVER': env.get('MAIL_SERVER', 'localhost'),
        'MAIL_PORT': parse_int(env.get('MAIL_PORT')) or 1025,
        'MAIL_USE_TLS': env_flag(env.get('MAIL_USE_TLS')),
        'MAIL_USE_SSL': env_flag(env.get('MAIL_USE_SSL')),
        'MAIL_DEFAULT_SENDER': env.get('MAIL_DEFAULT_SENDER', 'no-reply@wespark.io'),
        'LOG_LEVEL': env.get('LOG_LEVEL', 'INFO').upper(),
    }


def create_app(test_config=None) -> Flask:
    """Build the certificate service.

    Environment variables are read first; `test_config` overrides them.
    """
    app = Flask(__name__)
    app.config.update(load_config_from_env())
    if test_config:
        app.config.update(test_config)

    logging.basicConfig(
        level=getattr(logging, str(app.config['LOG_LEVEL']).upper(), logging.INFO),
        format='%(asctime)s %(levelname)s %(message)s',
    )

    storage = create_storage(app)
    create_secondary_store(app)

    if app.config.get('DATABASE_URL') and app.config.get('SEED_SAMPLE_DATA'):
        from database import seed_sample_data
        with app.app_context():
            seed_sample_data(storage)

    init_auth(app)
    register_error_handlers(app)

    app.register_blueprint(api_bp)
    app.register_blueprint(admin_bp)
    return app
