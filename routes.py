"""
Public REST API for the WeSpark certificate service, using Flask Blueprint.
"""
import logging

from flask import Blueprint, request, jsonify, current_app, make_response
from flask_login import login_user, logout_user, login_required, current_user

from auth import (create_magic_link, verify_magic_link, authenticate, hash_password,
                  send_magic_link_email, MAGIC_LINK_TTL_MINUTES)
from certificate import issue_certificate, effective_hash, sync_certificate_on_download, DEFAULT_MAX_ATTEMPTS
from errors import CertificateServiceError, NotFound, ValidationError
from generate_certificate import generate_certificate_pdf
from secondary_store import get_secondary_store
from storage import get_storage
from utils import parse_int
from verification import resolve_verification

api_bp = Blueprint('api', __name__, url_prefix='/api')

# camelCase request keys accepted for course payloads
COURSE_FIELD_ALIASES = {'certificateBackground': 'certificate_background'}


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _text_field(data, key, strip=True) -> str:
    """Read a string field from a JSON body; other JSON types are a client error."""
    value = data.get(key)
    if value is None:
        return ''
    if not isinstance(value, str):
        raise ValidationError(f'Invalid {key}', fields={key: f'{key.capitalize()} must be text'})
    return value.strip() if strip else value


def _user_payload(data):
    values = dict(data)
    if values.get('password') and not isinstance(values['password'], str):
        raise ValidationError('Invalid user data', fields={'password': 'Password must be text'})
    if values.get('password'):
        values['password'] = hash_password(values['password'])
    else:
        values.pop('password', None)
    return values


def _course_payload(data):
    values = dict(data)
    for alias, column in COURSE_FIELD_ALIASES.items():
        if alias in values:
            values[column] = values.pop(alias)
    return values


def _server_error(label, message):
    logging.exception(f'[API] {label} failed')
    return jsonify({'error': message}), 500


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

@api_bp.route('/auth/magic-link', methods=['POST'])
def request_magic_link():
    email = _text_field(_json_body(), 'email')
    if not email:
        return jsonify({'error': 'Email is required'}), 400
    try:
        ttl = current_app.config.get('MAGIC_LINK_TTL_MINUTES', MAGIC_LINK_TTL_MINUTES)
        token = create_magic_link(get_storage(), email, ttl_minutes=ttl)
        if current_app.config.get('MAIL_ENABLED'):
            try:
                send_magic_link_email(email, token, current_app.config.get('PUBLIC_BASE_URL'), ttl_minutes=ttl)
            except Exception:
                logging.exception(f'[AUTH] Failed sending magic link to {email}')
        return jsonify({'success': True, 'message': 'Magic link created', 'token': token})
    except CertificateServiceError:
        raise
    except Exception:
        return _server_error('magic-link', 'Failed to create magic link')


@api_bp.route('/auth/verify', methods=['POST'])
def verify_login_token():
    token = _text_field(_json_body(), 'token')
    if not token:
        return jsonify({'error': 'Token is required'}), 400
    user = verify_magic_link(get_storage(), token)
    if not user:
        return jsonify({'error': 'Invalid or expired token'}), 401
    login_user(user)
    logging.info(f'[AUTH] user {user.id} signed in with a magic link')
    return jsonify({'user': user.to_dict()})


@api_bp.route('/auth/login', methods=['POST'])
def password_login():
    data = _json_body()
    email = _text_field(data, 'email')
    password = _text_field(data, 'password', strip=False)
    if not email or not password:
        return jsonify({'error': 'Email and password are required'}), 400
    user = authenticate(get_storage(), email, password)
    if not user:
        logging.info(f'[AUTH] failed password login for {email}')
        return jsonify({'error': 'Invalid credentials'}), 401
    login_user(user)
    return jsonify({'user': user.to_dict()})


@api_bp.route('/auth/logout', methods=['POST'])
def logout():
    logout_user()
    return jsonify({'success': True})


@api_bp.route('/auth/me')
@login_required
def who_am_i():
    return jsonify({'user': current_user.to_dict()})


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

@api_bp.route('/users', methods=['GET'])
def list_users():
    return jsonify([u.to_dict() for u in get_storage().get_all_users()])


@api_bp.route('/users/<int:user_id>', methods=['GET'])
def get_user(user_id):
    user = get_storage().get_user(user_id)
    if not user:
        raise NotFound('User not found')
    return jsonify(user.to_dict())


@api_bp.route('/users', methods=['POST'])
def create_user():
    user = get_storage().create_user(_user_payload(_json_body()))
    logging.info(f'[CREATE USER] {user.email} created')
    return jsonify(user.to_dict()), 201


@api_bp.route('/users/<int:user_id>', methods=['PUT'])
def update_user(user_id):
    user = get_storage().update_user(user_id, _user_payload(_json_body()))
    return jsonify(user.to_dict())


@api_bp.route('/users/<int:user_id>', methods=['DELETE'])
def delete_user(user_id):
    if not get_storage().delete_user(user_id):
        raise NotFound('User not found')
    logging.info(f'[DELETE USER] User {user_id} deleted')
    return jsonify({'success': True})


# ---------------------------------------------------------------------------
# Courses
# ---------------------------------------------------------------------------

@api_bp.route('/courses', methods=['GET'])
def list_courses():
    return jsonify([c.to_dict() for c in get_storage().get_all_courses()])


@api_bp.route('/courses/<int:course_id>', methods=['GET'])
def get_course(course_id):
    course = get_storage().get_course(course_id)
    if not course:
        raise NotFound('Course not found')
    return jsonify(course.to_dict())


@api_bp.route('/courses', methods=['POST'])
def create_course():
    course = get_storage().create_course(_course_payload(_json_body()))
    logging.info(f'[CREATE COURSE] course {course.id} "{course.title}" created')
    return jsonify(course.to_dict()), 201


@api_bp.route('/courses/<int:course_id>', methods=['PUT'])
def update_course(course_id):
    course = get_storage().update_course(course_id, _course_payload(_json_body()))
    return jsonify(course.to_dict())


@api_bp.route('/courses/<int:course_id>', methods=['DELETE'])
def delete_course(course_id):
    if not get_storage().delete_course(course_id):
        raise NotFound('Course not found')
    logging.info(f'[DELETE COURSE] Course {course_id} deleted')
    return jsonify({'success': True})


# ---------------------------------------------------------------------------
# Certificates
# ---------------------------------------------------------------------------

@api_bp.route('/certificates', methods=['GET'])
def list_certificates():
    return jsonify([d.to_dict() for d in get_storage().get_all_certificates()])


@api_bp.route('/certificates/user/<int:user_id>', methods=['GET'])
def list_user_certificates(user_id):
    return jsonify([d.to_dict() for d in get_storage().get_certificates_by_user_id(user_id)])


@api_bp.route('/certificates', methods=['POST'])
def create_certificate():
    data = _json_body()
    storage = get_storage()
    user_id = parse_int(data.get('userId'))
    course_id = parse_int(data.get('courseId'))
    user = storage.get_user(user_id) if user_id is not None else None
    course = storage.get_course(course_id) if course_id is not None else None
    errors = {}
    if not user:
        errors['userId'] = 'Unknown user'
    if not course:
        errors['courseId'] = 'Unknown course'
    if errors:
        raise ValidationError('Invalid certificate data', fields=errors)
    cert = issue_certificate(
        storage, user, course, data.get('completionDate'),
        city=data.get('city'),
        max_attempts=current_app.config.get('CERTIFICATE_ID_MAX_ATTEMPTS', DEFAULT_MAX_ATTEMPTS),
    )
    return jsonify(cert.to_dict()), 201


@api_bp.route('/certificates/<int:certificate_pk>', methods=['DELETE'])
def delete_certificate(certificate_pk):
    if not get_storage().delete_certificate(certificate_pk):
        raise NotFound('Certificate not found')
    logging.info(f'[DELETE CERTIFICATE] Certificate {certificate_pk} deleted')
    return jsonify({'success': True})


@api_bp.route('/certificates/<int:certificate_pk>/download', methods=['GET'])
def download_certificate(certificate_pk):
    storage = get_storage()
    cert = storage.get_certificate(certificate_pk)
    if not cert:
        raise NotFound('Certificate not found')
    user = storage.get_user(cert.user_id)
    course = storage.get_course(cert.course_id)
    if not user or not course:
        raise NotFound('Certificate data incomplete')

    try:
        pdf_bytes = generate_certificate_pdf(
            cert, user, course,
            cert_hash=effective_hash(cert, user, course),
            base_url=current_app.config.get('PUBLIC_BASE_URL'),
            template_path=current_app.config.get('CERTIFICATE_TEMPLATE_PDF'),
        )
    except Exception:
        return _server_error(f'download {cert.certificate_id}', 'Failed to generate certificate')

    # The PDF goes out even when the stores cannot be updated
    try:
        sync_certificate_on_download(storage, get_secondary_store(), cert, user, course)
    except Exception:
        logging.exception(f'[DOWNLOAD SYNC] Unexpected failure for {cert.certificate_id}')

    response = make_response(pdf_bytes)
    response.headers['Content-Type'] = 'application/pdf'
    response.headers['Content-Disposition'] = f'attachment; filename="certificate-{cert.certificate_id}.pdf"'
    return response


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------

@api_bp.route('/verify/<certificate_id>', methods=['GET'])
def verify_certificate(certificate_id):
    details = get_storage().get_certificate_by_certificate_id(certificate_id)
    if not details:
        return jsonify({'error': 'Certificate not found'}), 404
    return jsonify(details.to_dict())


@api_bp.route('/verify-firebase/<token>', methods=['GET'])
def verify_any_store(token):
    result = resolve_verification(token, get_storage(), get_secondary_store())
    return jsonify(result.to_dict()), (200 if result.valid else 404)
