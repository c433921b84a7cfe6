"""
Relational implementation of the storage interface on Flask-SQLAlchemy.
"""
import logging
from datetime import datetime, UTC
from functools import wraps

from sqlalchemy import update, delete, func, or_
from sqlalchemy.exc import IntegrityError, DBAPIError

from errors import ConstraintViolation, NotFound, UpstreamUnavailable
from models import db, User, Course, Certificate, MagicLink, CertificateDetails
from storage import Storage, user_values, course_values, certificate_values, normalize_email, _pick


def _guarded(fn):
    """Roll back and translate database failures raised by a storage call."""
    @wraps(fn)
    def wrapper(self, *args, **kwargs):
        try:
            return fn(self, *args, **kwargs)
        except IntegrityError as e:
            db.session.rollback()
            logging.warning(f'[STORAGE] {fn.__name__} violated a constraint: {e.orig}')
            raise ConstraintViolation('Write rejected by a database constraint') from e
        except DBAPIError as e:
            db.session.rollback()
            logging.error(f'[STORAGE] {fn.__name__} failed against the database: {e}')
            raise UpstreamUnavailable('Primary store unavailable') from e
    return wrapper


def _joined_certificates():
    return (
        db.session.query(Certificate, User, Course)
        .join(User, User.id == Certificate.user_id)
        .join(Course, Course.id == Certificate.course_id)
    )


class DatabaseStorage(Storage):

    # Users
    @_guarded
    def get_user(self, user_id):
        return db.session.get(User, user_id)

    @_guarded
    def get_user_by_email(self, email):
        return User.query.filter_by(email=normalize_email(email)).first()

    @_guarded
    def get_all_users(self):
        return User.query.order_by(User.id.asc()).all()

    @_guarded
    def create_user(self, data):
        values = user_values(data)
        if User.query.filter_by(email=values['email']).first():
            raise ConstraintViolation(f"Email {values['email']} is already registered", field='email')
        user = User(**values)
        db.session.add(user)
        try:
            db.session.commit()
        except IntegrityError as e:
            db.session.rollback()
            raise ConstraintViolation(f"Email {values['email']} is already registered", field='email') from e
        return user

    @_guarded
    def update_user(self, user_id, data):
        values = user_values(data, partial=True)
        user = db.session.get(User, user_id)
        if not user:
            raise NotFound('User not found')
        email = values.get('email')
        if email and User.query.filter(User.email == email, User.id != user_id).first():
            raise ConstraintViolation(f'Email {email} is already registered', field='email')
        for key, value in values.items():
            setattr(user, key, value)
        db.session.commit()
        return user

    @_guarded
    def delete_user(self, user_id):
        user = db.session.get(User, user_id)
        if not user:
            return False
        if Certificate.query.filter_by(user_id=user_id).first():
            raise ConstraintViolation('User still holds certificates', field='userId')
        db.session.delete(user)
        db.session.commit()
        return True

    # Courses
    @_guarded
    def get_course(self, course_id):
        return db.session.get(Course, course_id)

    @_guarded
    def get_all_courses(self):
        return Course.query.order_by(Course.id.asc()).all()

    @_guarded
    def create_course(self, data):
        course = Course(**course_values(data))
        db.session.add(course)
        db.session.commit()
        return course

    @_guarded
    def update_course(self, course_id, data):
        values = course_values(data, partial=True)
        course = db.session.get(Course, course_id)
        if not course:
            raise NotFound('Course not found')
        for key, value in values.items():
            setattr(course, key, value)
        db.session.commit()
        return course

    @_guarded
    def delete_course(self, course_id):
        course = db.session.get(Course, course_id)
        if not course:
            return False
        if Certificate.query.filter_by(course_id=course_id).first():
            raise ConstraintViolation('Course still has certificates', field='courseId')
        db.session.delete(course)
        db.session.commit()
        return True

    # Certificates
    @_guarded
    def get_certificate(self, certificate_pk):
        return db.session.get(Certificate, certificate_pk, populate_existing=True)

    @_guarded
    def get_certificate_by_certificate_id(self, certificate_id):
        row = _joined_certificates().filter(Certificate.certificate_id == certificate_id).first()
        return CertificateDetails(*row) if row else None

    @_guarded
    def get_certificates_by_user_id(self, user_id):
        rows = _joined_certificates().filter(Certificate.user_id == user_id).order_by(Certificate.id.asc()).all()
        return [CertificateDetails(*row) for row in rows]

    @_guarded
    def get_all_certificates(self):
        rows = _joined_certificates().order_by(Certificate.id.asc()).all()
        total = db.session.query(func.count(Certificate.id)).scalar() or 0
        if total > len(rows):
            logging.warning(f'[STORAGE] {total - len(rows)} certificate(s) reference a missing user or course; hidden')
        return [CertificateDetails(*row) for row in rows]

    @_guarded
    def create_certificate(self, data):
        values = certificate_values(data)
        cid = values['certificate_id']
        if Certificate.query.filter_by(certificate_id=cid).first():
            raise ConstraintViolation(f'Certificate identifier {cid} already exists', field='certificateId')
        cert = Certificate(**values)
        db.session.add(cert)
        try:
            db.session.commit()
        except IntegrityError as e:
            db.session.rollback()
            # A concurrent writer may have taken the identifier between check and insert
            if Certificate.query.filter_by(certificate_id=cid).first():
                raise ConstraintViolation(f'Certificate identifier {cid} already exists',
                                          field='certificateId') from e
            raise
        return cert

    @_guarded
    def update_certificate(self, certificate_pk, data):
        values = certificate_values(data, partial=True)
        cert = db.session.get(Certificate, certificate_pk)
        if not cert:
            raise NotFound('Certificate not found')
        new_cid = values.get('certificate_id')
        if new_cid and new_cid != cert.certificate_id:
            raise ConstraintViolation('Certificate identifier is immutable', field='certificateId')
        for key, value in values.items():
            setattr(cert, key, value)
        db.session.commit()
        return cert

    @_guarded
    def update_certificate_hash(self, certificate_pk, cert_hash):
        result = db.session.execute(
            update(Certificate).where(Certificate.id == certificate_pk).values(hash=cert_hash)
        )
        db.session.commit()
        return (result.rowcount or 0) > 0

    @_guarded
    def claim_certificate_secondary_id(self, certificate_pk, secondary_id):
        # Only one concurrent download can move secondary_id off NULL
        result = db.session.execute(
            update(Certificate)
            .where(Certificate.id == certificate_pk, Certificate.secondary_id.is_(None))
            .values(secondary_id=secondary_id)
            .execution_options(synchronize_session='fetch')
        )
        db.session.commit()
        return (result.rowcount or 0) > 0

    @_guarded
    def release_certificate_secondary_id(self, certificate_pk, secondary_id):
        result = db.session.execute(
            update(Certificate)
            .where(Certificate.id == certificate_pk, Certificate.secondary_id == secondary_id)
            .values(secondary_id=None)
            .execution_options(synchronize_session='fetch')
        )
        db.session.commit()
        return (result.rowcount or 0) > 0

    @_guarded
    def delete_certificate(self, certificate_pk):
        result = db.session.execute(delete(Certificate).where(Certificate.id == certificate_pk))
        db.session.commit()
        return (result.rowcount or 0) > 0

    # Magic links
    @_guarded
    def create_magic_link(self, data):
        link = MagicLink(**_pick(MagicLink, data))
        db.session.add(link)
        db.session.commit()
        return link

    @_guarded
    def get_magic_link(self, token):
        return MagicLink.query.filter_by(token=token).first()

    @_guarded
    def use_magic_link(self, token):
        # Conditional flip so two concurrent verifications cannot both succeed
        result = db.session.execute(
            update(MagicLink)
            .where(MagicLink.token == token, MagicLink.used.is_(False))
            .values(used=True)
            .execution_options(synchronize_session='fetch')
        )
        db.session.commit()
        return (result.rowcount or 0) > 0

    @_guarded
    def clean_expired_magic_links(self):
        now = datetime.now(UTC)
        result = db.session.execute(
            delete(MagicLink).where(or_(MagicLink.used.is_(True), MagicLink.expires_at < now))
            .execution_options(synchronize_session='fetch')
        )
        db.session.commit()
        return result.rowcount or 0

    # Statistics
    @_guarded
    def get_user_stats(self):
        return {
            'totalUsers': db.session.query(func.count(User.id)).scalar() or 0,
            'activeUsers': db.session.query(func.count(User.id)).filter(User.role == 'graduate').scalar() or 0,
            'totalCertificates': db.session.query(func.count(Certificate.id)).scalar() or 0,
        }

    @_guarded
    def get_course_stats(self):
        return {
            'totalCourses': db.session.query(func.count(Course.id)).scalar() or 0,
            'totalEnrollments': db.session.query(func.count(Certificate.id)).scalar() or 0,
        }
