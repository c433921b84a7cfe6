from flask_sqlalchemy import SQLAlchemy
from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime, date, UTC
from flask_login import UserMixin
from sqlalchemy import inspect as sa_inspect

# Records handed out by the storage layer must stay readable after commit
db = SQLAlchemy(session_options={'expire_on_commit': False})

PLACEHOLDER_HASH_PREFIX = 'temp_hash_'


def _iso(value):
    if value is None:
        return None
    return value.isoformat()


def copy_record(record, **changes):
    """Return a new transient instance of the record's model with `changes` applied."""
    mapper = sa_inspect(type(record))
    values = {attr.key: getattr(record, attr.key) for attr in mapper.column_attrs}
    values.update(changes)
    return type(record)(**values)


def column_names(model) -> set:
    return {attr.key for attr in sa_inspect(model).column_attrs}


class User(UserMixin, db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    name = db.Column(db.String(255), nullable=False)
    password = db.Column(db.String(255))  # werkzeug hash, never plaintext
    role = db.Column(db.String(20), nullable=False, default='graduate')  # graduate / admin
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(UTC))

    ROLES = ('graduate', 'admin')

    def set_password(self, password):
        self.password = generate_password_hash(password)

    def check_password(self, password):
        if not self.password:
            return False
        return check_password_hash(self.password, password)

    @property
    def is_admin(self):
        return self.role == 'admin'

    def to_dict(self):
        # password is deliberately left out
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'role': self.role,
            'createdAt': _iso(self.created_at),
        }


class Course(db.Model):
    __tablename__ = 'courses'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False)
    duration = db.Column(db.Integer, nullable=False)  # in hours
    icon = db.Column(db.String(100), nullable=False, default='fas fa-book')
    thumbnail = db.Column(db.String(500))
    certificate_background = db.Column(db.String(500))
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(UTC))

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'duration': self.duration,
            'icon': self.icon,
            'thumbnail': self.thumbnail,
            'certificateBackground': self.certificate_background,
            'createdAt': _iso(self.created_at),
        }


class Certificate(db.Model):
    __tablename__ = 'certificates'

    id = db.Column(db.Integer, primary_key=True)
    # Format: WS-YYYY-XXXXXX
    certificate_id = db.Column(db.String(20), unique=True, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    course_id = db.Column(db.Integer, db.ForeignKey('courses.id'), nullable=False)
    issued_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(UTC))
    completion_date = db.Column(db.Date, nullable=False)
    pdf_path = db.Column(db.String(500))
    city = db.Column(db.String(255))
    hash = db.Column(db.String(64), index=True)
    secondary_id = db.Column(db.String(64), index=True)

    @property
    def completion_date_iso(self):
        value = self.completion_date
        if isinstance(value, datetime):
            value = value.date()
        return value.isoformat() if isinstance(value, date) else None

    @property
    def has_real_hash(self):
        return bool(self.hash) and not self.hash.startswith(PLACEHOLDER_HASH_PREFIX)

    def to_dict(self):
        return {
            'id': self.id,
            'certificateId': self.certificate_id,
            'userId': self.user_id,
            'courseId': self.course_id,
            'issuedAt': _iso(self.issued_at),
            'completionDate': self.completion_date_iso,
            'pdfPath': self.pdf_path,
            'city': self.city,
            'hash': self.hash,
            'secondaryId': self.secondary_id,
        }


class MagicLink(db.Model):
    __tablename__ = 'magic_links'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False)
    token = db.Column(db.String(128), unique=True, nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    used = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(UTC))


class CertificateDetails:
    """A certificate joined with its holder and course."""

    __slots__ = ('certificate', 'user', 'course')

    def __init__(self, certificate, user, course):
        self.certificate = certificate
        self.user = user
        self.course = course

    def __getattr__(self, name):
        # Expose certificate columns directly (details.hash, details.certificate_id ...)
        return getattr(self.certificate, name)

    def to_dict(self):
        data = self.certificate.to_dict()
        data['user'] = self.user.to_dict()
        data['course'] = self.course.to_dict()
        return data
