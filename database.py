"""
Database helpers for the relational storage backend.
URL normalisation, start-up reachability wait, schema creation and sample data.
"""
import logging
from datetime import date

from sqlalchemy import text
from werkzeug.security import generate_password_hash

from models import db


def normalize_pg_url_for_sqlalchemy(url: str) -> str:
    """Normalize PostgreSQL URL for SQLAlchemy driver."""
    if not isinstance(url, str) or not url:
        return url
    if url.startswith('postgres://'):
        url = url.replace('postgres://', 'postgresql://', 1)
    if url.startswith('postgresql+') or not url.startswith('postgresql://'):
        return url
    # psycopg 3 is the declared driver
    return url.replace('postgresql://', 'postgresql+psycopg://', 1)


def wait_for_db(engine, seconds: int = 20) -> bool:
    """Try to connect to the DB for up to `seconds`. Returns True if reachable, False otherwise."""
    import time
    start = time.time()
    last_err = None
    while time.time() - start < seconds:
        try:
            with engine.connect() as conn:
                conn.execute(text('SELECT 1'))
                return True
        except Exception as e:
            last_err = e
            time.sleep(1.0)
    if last_err:
        logging.warning(f"[DB WAIT] DB not reachable after {seconds}s: {last_err}")
    return False


def init_database(app, database_url: str) -> None:
    """Bind Flask-SQLAlchemy to `app` and create missing tables."""
    app.config['SQLALCHEMY_DATABASE_URI'] = normalize_pg_url_for_sqlalchemy(database_url)
    app.config.setdefault('SQLALCHEMY_TRACK_MODIFICATIONS', False)
    app.config.setdefault('SQLALCHEMY_ENGINE_OPTIONS', {'pool_pre_ping': True})
    db.init_app(app)
    with app.app_context():
        wait_seconds = int(app.config.get('DB_WAIT_SECONDS') or 0)
        if wait_seconds > 0:
            wait_for_db(db.engine, wait_seconds)
        db.create_all()
    logging.info('[DB] schema ready')


def seed_sample_data(storage) -> bool:
    """Insert the demo admin, courses and a graduate with two certificates.

    Does nothing when the store already has users. Returns True when data was inserted.
    """
    if storage.get_all_users():
        logging.info('[DB] sample data skipped; store already initialized')
        return False
    from storage import SAMPLE_COURSES
    storage.create_user({
        'email': 'admin@wespark.io',
        'name': 'Admin User',
        'password': generate_password_hash('admin123'),
        'role': 'admin',
    })
    courses = [storage.create_course(c) for c in SAMPLE_COURSES]
    graduate = storage.create_user({'email': 'john.doe@example.com', 'name': 'John Doe', 'role': 'graduate'})
    storage.create_certificate({
        'certificate_id': 'WS-2025-ABC123',
        'user_id': graduate.id,
        'course_id': courses[0].id,
        'completion_date': date(2024, 12, 15),
    })
    storage.create_certificate({
        'certificate_id': 'WS-2025-DEF456',
        'user_id': graduate.id,
        'course_id': courses[1].id,
        'completion_date': date(2024, 11, 20),
    })
    logging.info(f"[DB] sample data inserted: {len(courses)} courses, 2 certificates")
    return True
