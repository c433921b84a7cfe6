"""
Storage abstraction for users, courses, certificates and magic links.

Two interchangeable backends implement `Storage`: `MemStorage` (process-local,
seeded with sample data, for development and tests) and `DatabaseStorage`
(relational, see db_storage.py). `create_storage` picks one when the app is
created; everything else talks to the instance returned by `get_storage()`.
"""
import logging
import threading
from abc import ABC, abstractmethod
from datetime import date, datetime, UTC

from flask import current_app
from werkzeug.security import generate_password_hash

from errors import ConstraintViolation, NotFound, ValidationError
from models import User, Course, Certificate, MagicLink, CertificateDetails, copy_record, column_names
from utils import safe_parse_date, parse_int, as_utc

STORAGE_EXTENSION_KEY = 'certificate_storage'

_PROTECTED_FIELDS = {'id', 'created_at', 'issued_at'}


def _pick(model, data):
    allowed = column_names(model) - _PROTECTED_FIELDS
    return {k: v for k, v in (data or {}).items() if k in allowed}


def clean_text(value):
    """Strip a text field. None stays empty; any other non-string is rejected."""
    if value is None:
        return ''
    if not isinstance(value, str):
        raise TypeError(f'expected text, got {type(value).__name__}')
    return value.strip()


def normalize_email(email) -> str:
    if not isinstance(email, str):
        return ''
    return email.strip().lower()


def user_values(data, partial=False) -> dict:
    """Validate and clean user fields. With partial=True only given fields are checked."""
    values = _pick(User, data)
    errors = {}
    if 'email' in values or not partial:
        values['email'] = normalize_email(values.get('email'))
        if not values['email'] or '@' not in values['email']:
            errors['email'] = 'A valid email is required'
    if 'name' in values or not partial:
        try:
            values['name'] = clean_text(values.get('name'))
        except TypeError:
            errors['name'] = 'Name must be text'
        else:
            if not values['name']:
                errors['name'] = 'Name is required'
    if 'role' in values or not partial:
        values['role'] = values.get('role') or 'graduate'
        if not isinstance(values['role'], str) or values['role'] not in User.ROLES:
            errors['role'] = f"Role must be one of: {', '.join(User.ROLES)}"
    if errors:
        raise ValidationError('Invalid user data', fields=errors)
    return values


def course_values(data, partial=False) -> dict:
    values = _pick(Course, data)
    errors = {}
    for field in ('title', 'description'):
        if field in values or not partial:
            try:
                values[field] = clean_text(values.get(field))
            except TypeError:
                errors[field] = f'{field.capitalize()} must be text'
                continue
            if not values[field]:
                errors[field] = f'{field.capitalize()} is required'
    if 'duration' in values or not partial:
        duration = parse_int(values.get('duration'))
        if duration is None or duration < 0:
            errors['duration'] = 'Duration must be a non-negative number of hours'
        values['duration'] = duration
    for field in ('icon', 'thumbnail', 'certificate_background'):
        if field in values or (field == 'icon' and not partial):
            try:
                values[field] = clean_text(values.get(field)) or None
            except TypeError:
                errors[field] = f'{field} must be text'
    if 'icon' in values and not values['icon']:
        values['icon'] = 'fas fa-book'
    if errors:
        raise ValidationError('Invalid course data', fields=errors)
    return values


def certificate_values(data, partial=False) -> dict:
    values = _pick(Certificate, data)
    errors = {}
    if 'certificate_id' in values or not partial:
        if not values.get('certificate_id'):
            errors['certificateId'] = 'Certificate identifier is required'
        elif not isinstance(values['certificate_id'], str):
            errors['certificateId'] = 'Certificate identifier must be text'
    for field, label in (('user_id', 'userId'), ('course_id', 'courseId')):
        if field in values or not partial:
            parsed = parse_int(values.get(field))
            if parsed is None:
                errors[label] = f'{label} must be an integer'
            values[field] = parsed
    if 'completion_date' in values or not partial:
        parsed_date = safe_parse_date(values.get('completion_date'))
        if parsed_date is None:
            errors['completionDate'] = 'Completion date must be YYYY-MM-DD'
        values['completion_date'] = parsed_date
    if 'city' in values:
        try:
            values['city'] = clean_text(values['city']) or None
        except TypeError:
            errors['city'] = 'City must be text'
    if errors:
        raise ValidationError('Invalid certificate data', fields=errors)
    return values


class Storage(ABC):
    """Uniform CRUD and statistics interface over the primary store."""

    # Users
    @abstractmethod
    def get_user(self, user_id): ...

    @abstractmethod
    def get_user_by_email(self, email): ...

    @abstractmethod
    def get_all_users(self): ...

    @abstractmethod
    def create_user(self, data): ...

    @abstractmethod
    def update_user(self, user_id, data): ...

    @abstractmethod
    def delete_user(self, user_id) -> bool: ...

    # Courses
    @abstractmethod
    def get_course(self, course_id): ...

    @abstractmethod
    def get_all_courses(self): ...

    @abstractmethod
    def create_course(self, data): ...

    @abstractmethod
    def update_course(self, course_id, data): ...

    @abstractmethod
    def delete_course(self, course_id) -> bool: ...

    def find_course_by_title(self, title):
        """Case-insensitive exact title match; the first course wins on duplicates."""
        wanted = (title or '').strip().lower()
        if not wanted:
            return None
        matches = [c for c in self.get_all_courses() if (c.title or '').strip().lower() == wanted]
        if len(matches) > 1:
            logging.warning(f'[STORAGE] {len(matches)} courses share the title {title!r}; '
                            f'using course {matches[0].id}')
        return matches[0] if matches else None

    # Certificates
    @abstractmethod
    def get_certificate(self, certificate_pk): ...

    @abstractmethod
    def get_certificate_by_certificate_id(self, certificate_id): ...

    @abstractmethod
    def get_certificates_by_user_id(self, user_id): ...

    @abstractmethod
    def get_all_certificates(self): ...

    @abstractmethod
    def create_certificate(self, data): ...

    @abstractmethod
    def update_certificate(self, certificate_pk, data): ...

    @abstractmethod
    def update_certificate_hash(self, certificate_pk, cert_hash) -> bool: ...

    @abstractmethod
    def claim_certificate_secondary_id(self, certificate_pk, secondary_id) -> bool:
        """Set the secondary id only while it is still empty. True when this call set it."""

    @abstractmethod
    def release_certificate_secondary_id(self, certificate_pk, secondary_id) -> bool:
        """Clear the secondary id, but only if it still holds `secondary_id`."""

    @abstractmethod
    def delete_certificate(self, certificate_pk) -> bool: ...

    # Magic links
    @abstractmethod
    def create_magic_link(self, data): ...

    @abstractmethod
    def get_magic_link(self, token): ...

    @abstractmethod
    def use_magic_link(self, token) -> bool: ...

    @abstractmethod
    def clean_expired_magic_links(self) -> int: ...

    # Statistics
    @abstractmethod
    def get_user_stats(self) -> dict: ...

    @abstractmethod
    def get_course_stats(self) -> dict: ...


class MemStorage(Storage):
    """Process-local storage. All collections are guarded by one lock."""

    def __init__(self, seed: bool = True):
        self._lock = threading.RLock()
        self._users = {}
        self._courses = {}
        self._certificates = {}
        self._magic_links = {}  # keyed by token
        self._next_ids = {'user': 1, 'course': 1, 'certificate': 1, 'magic_link': 1}
        if seed:
            self._seed_sample_data()

    def _next_id(self, kind):
        value = self._next_ids[kind]
        self._next_ids[kind] = value + 1
        return value

    def _seed_sample_data(self):
        admin = self.create_user({
            'email': 'admin@wespark.io',
            'name': 'Admin User',
            'password': generate_password_hash('admin123'),
            'role': 'admin',
        })
        for course in SAMPLE_COURSES:
            self.create_course(course)
        self.create_certificate({
            'certificate_id': 'WS-2025-0A1B2C',
            'user_id': admin.id,
            'course_id': 1,
            'completion_date': date(2025, 1, 15),
            'city': 'Berlin',
        })

    def _details(self, certificate):
        user = self._users.get(certificate.user_id)
        course = self._courses.get(certificate.course_id)
        if not user or not course:
            logging.warning(f'[STORAGE] certificate {certificate.certificate_id} references a missing user or course; hidden')
            return None
        return CertificateDetails(certificate, user, course)

    # Users
    def get_user(self, user_id):
        return self._users.get(user_id)

    def get_user_by_email(self, email):
        wanted = normalize_email(email)
        with self._lock:
            return next((u for u in self._users.values() if u.email == wanted), None)

    def get_all_users(self):
        with self._lock:
            return list(self._users.values())

    def create_user(self, data):
        values = user_values(data)
        with self._lock:
            if any(u.email == values['email'] for u in self._users.values()):
                raise ConstraintViolation(f"Email {values['email']} is already registered", field='email')
            password = values.pop('password', None) or None
            user = User(id=self._next_id('user'), created_at=datetime.now(UTC), password=password, **values)
            self._users[user.id] = user
        return user

    def update_user(self, user_id, data):
        values = user_values(data, partial=True)
        with self._lock:
            user = self._users.get(user_id)
            if not user:
                raise NotFound('User not found')
            email = values.get('email')
            if email and any(u.email == email and u.id != user_id for u in self._users.values()):
                raise ConstraintViolation(f'Email {email} is already registered', field='email')
            updated = copy_record(user, **values)
            self._users[user_id] = updated
        return updated

    def delete_user(self, user_id):
        with self._lock:
            if user_id not in self._users:
                return False
            if any(c.user_id == user_id for c in self._certificates.values()):
                raise ConstraintViolation('User still holds certificates', field='userId')
            del self._users[user_id]
        return True

    # Courses
    def get_course(self, course_id):
        return self._courses.get(course_id)

    def get_all_courses(self):
        with self._lock:
            return list(self._courses.values())

    def create_course(self, data):
        values = course_values(data)
        with self._lock:
            course = Course(id=self._next_id('course'), created_at=datetime.now(UTC), **values)
            self._courses[course.id] = course
        return course

    def update_course(self, course_id, data):
        values = course_values(data, partial=True)
        with self._lock:
            course = self._courses.get(course_id)
            if not course:
                raise NotFound('Course not found')
            updated = copy_record(course, **values)
            self._courses[course_id] = updated
        return updated

    def delete_course(self, course_id):
        with self._lock:
            if course_id not in self._courses:
                return False
            if any(c.course_id == course_id for c in self._certificates.values()):
                raise ConstraintViolation('Course still has certificates', field='courseId')
            del self._courses[course_id]
        return True

    # Certificates
    def get_certificate(self, certificate_pk):
        return self._certificates.get(certificate_pk)

    def get_certificate_by_certificate_id(self, certificate_id):
        with self._lock:
            cert = next((c for c in self._certificates.values() if c.certificate_id == certificate_id), None)
            return self._details(cert) if cert else None

    def get_certificates_by_user_id(self, user_id):
        with self._lock:
            rows = [self._details(c) for c in self._certificates.values() if c.user_id == user_id]
        return [r for r in rows if r]

    def get_all_certificates(self):
        with self._lock:
            rows = [self._details(c) for c in self._certificates.values()]
        return [r for r in rows if r]

    def create_certificate(self, data):
        values = certificate_values(data)
        with self._lock:
            if any(c.certificate_id == values['certificate_id'] for c in self._certificates.values()):
                raise ConstraintViolation(f"Certificate identifier {values['certificate_id']} already exists",
                                          field='certificateId')
            cert = Certificate(id=self._next_id('certificate'), issued_at=datetime.now(UTC), **values)
            self._certificates[cert.id] = cert
        return cert

    def update_certificate(self, certificate_pk, data):
        values = certificate_values(data, partial=True)
        with self._lock:
            cert = self._certificates.get(certificate_pk)
            if not cert:
                raise NotFound('Certificate not found')
            new_cid = values.get('certificate_id')
            if new_cid and new_cid != cert.certificate_id:
                raise ConstraintViolation('Certificate identifier is immutable', field='certificateId')
            updated = copy_record(cert, **values)
            self._certificates[certificate_pk] = updated
        return updated

    def update_certificate_hash(self, certificate_pk, cert_hash):
        with self._lock:
            cert = self._certificates.get(certificate_pk)
            if not cert:
                return False
            self._certificates[certificate_pk] = copy_record(cert, hash=cert_hash)
        return True

    def claim_certificate_secondary_id(self, certificate_pk, secondary_id):
        with self._lock:
            cert = self._certificates.get(certificate_pk)
            if not cert or cert.secondary_id:
                return False
            self._certificates[certificate_pk] = copy_record(cert, secondary_id=secondary_id)
        return True

    def release_certificate_secondary_id(self, certificate_pk, secondary_id):
        with self._lock:
            cert = self._certificates.get(certificate_pk)
            if not cert or cert.secondary_id != secondary_id:
                return False
            self._certificates[certificate_pk] = copy_record(cert, secondary_id=None)
        return True

    def delete_certificate(self, certificate_pk):
        with self._lock:
            return self._certificates.pop(certificate_pk, None) is not None

    # Magic links
    def create_magic_link(self, data):
        values = _pick(MagicLink, data)
        with self._lock:
            if values.get('token') in self._magic_links:
                raise ConstraintViolation('Magic link token already exists', field='token')
            used = bool(values.pop('used', False))
            link = MagicLink(id=self._next_id('magic_link'), created_at=datetime.now(UTC), used=used, **values)
            self._magic_links[link.token] = link
        return link

    def get_magic_link(self, token):
        return self._magic_links.get(token)

    def use_magic_link(self, token):
        with self._lock:
            link = self._magic_links.get(token)
            if not link or link.used:
                return False
            self._magic_links[token] = copy_record(link, used=True)
        return True

    def clean_expired_magic_links(self):
        now = datetime.now(UTC)
        with self._lock:
            stale = [t for t, link in self._magic_links.items()
                     if link.used or as_utc(link.expires_at) < now]
            for token in stale:
                del self._magic_links[token]
        return len(stale)

    # Statistics
    def get_user_stats(self):
        with self._lock:
            return {
                'totalUsers': len(self._users),
                'activeUsers': sum(1 for u in self._users.values() if u.role == 'graduate'),
                'totalCertificates': len(self._certificates),
            }

    def get_course_stats(self):
        with self._lock:
            return {
                'totalCourses': len(self._courses),
                'totalEnrollments': len(self._certificates),
            }


SAMPLE_COURSES = [
    {
        'title': 'AI Design Sprint Bootcamp',
        'description': 'Advanced AI design methodologies and sprint techniques',
        'duration': 16,
        'icon': 'fas fa-code',
        'thumbnail': 'https://images.unsplash.com/photo-1677442136019-21780ecad995?w=400&h=200&fit=crop',
        'certificate_background': 'https://images.unsplash.com/photo-1586953208448-b95a79798f07?w=842&h=595&fit=crop',
    },
    {
        'title': 'Machine Learning Fundamentals',
        'description': 'Core concepts and practical applications of ML',
        'duration': 24,
        'icon': 'fas fa-brain',
        'thumbnail': 'https://images.unsplash.com/photo-1555255707-c07966088b7b?w=400&h=200&fit=crop',
        'certificate_background': 'https://images.unsplash.com/photo-1522202176988-66273c2fd55f?w=842&h=595&fit=crop',
    },
    {
        'title': 'UX Design Principles',
        'description': 'User-centered design methodologies and best practices',
        'duration': 8,
        'icon': 'fas fa-palette',
        'thumbnail': 'https://images.unsplash.com/photo-1561070791-2526d30994b5?w=400&h=200&fit=crop',
        'certificate_background': 'https://images.unsplash.com/photo-1558618047-3c8c76ca7d13?w=842&h=595&fit=crop',
    },
]


def create_storage(app) -> Storage:
    """Build the primary store for `app` and register it under app.extensions."""
    database_url = app.config.get('DATABASE_URL')
    if database_url:
        from database import init_database
        from db_storage import DatabaseStorage
        init_database(app, database_url)
        storage = DatabaseStorage()
        logging.info('[STORAGE] using relational storage')
    else:
        storage = MemStorage()
        logging.info('[STORAGE] DATABASE_URL not set; using in-memory storage')
    app.extensions[STORAGE_EXTENSION_KEY] = storage
    return storage


def get_storage() -> Storage:
    return current_app.extensions[STORAGE_EXTENSION_KEY]
