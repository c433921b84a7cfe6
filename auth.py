"""
Authentication helpers: password hashing, single-use magic links,
Flask-Login wiring and the magic-link e-mail.
"""
import logging
import secrets
from datetime import datetime, timedelta, UTC

from flask import jsonify
from flask_login import LoginManager
from flask_mail import Mail, Message
from werkzeug.security import generate_password_hash, check_password_hash

from errors import ValidationError
from storage import get_storage, normalize_email
from utils import as_utc

login_manager = LoginManager()
mail = Mail()

MAGIC_LINK_TTL_MINUTES = 15


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password: str, password_hash) -> bool:
    if not password or not password_hash:
        return False
    return check_password_hash(password_hash, password)


def create_magic_link(storage, email, ttl_minutes=MAGIC_LINK_TTL_MINUTES) -> str:
    """Store a fresh single-use token for `email` and return it."""
    email = normalize_email(email)
    if not email or '@' not in email:
        raise ValidationError('Email is required', fields={'email': 'A valid email is required'})
    purged = storage.clean_expired_magic_links()
    if purged:
        logging.info(f'[AUTH] purged {purged} used or expired magic links')
    token = secrets.token_hex(32)
    storage.create_magic_link({
        'email': email,
        'token': token,
        'expires_at': datetime.now(UTC) + timedelta(minutes=ttl_minutes),
        'used': False,
    })
    logging.info(f'[AUTH] magic link created for {email}')
    return token


def verify_magic_link(storage, token):
    """Consume `token` and return the matching user, creating one on first use.

    Returns None when the token is unknown, already used or expired.
    """
    if not token:
        return None
    link = storage.get_magic_link(token)
    if not link or link.used or as_utc(link.expires_at) < datetime.now(UTC):
        return None
    if not storage.use_magic_link(token):
        # Lost the race against another verification of the same token
        return None
    user = storage.get_user_by_email(link.email)
    if not user:
        user = storage.create_user({
            'email': link.email,
            'name': link.email.split('@')[0],
            'role': 'graduate',
        })
        logging.info(f'[AUTH] created user {user.id} on first magic-link login')
    return user


def authenticate(storage, email, password):
    user = storage.get_user_by_email(email)
    if not user or not verify_password(password, user.password):
        return None
    return user


def send_magic_link_email(email, token, base_url, ttl_minutes=MAGIC_LINK_TTL_MINUTES):
    link = f"{(base_url or '').rstrip('/')}/login?token={token}"
    msg = Message(
        subject='Your WeSpark sign-in link',
        recipients=[email],
        body=(
            "Use the link below to sign in to WeSpark. It expires in "
            f"{ttl_minutes} minutes and works once.\n\n{link}\n"
        ),
    )
    mail.send(msg)
    logging.info(f'[AUTH] magic link e-mailed to {email}')


def init_auth(app) -> None:
    mail.init_app(app)
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        try:
            return get_storage().get_user(int(user_id))
        except (TypeError, ValueError):
            return None

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Authentication required'}), 401
