import pytest

from app import create_app

BASE_CONFIG = {
    'TESTING': True,
    'SECRET_KEY': 'test-secret',
    'DATABASE_URL': None,
    'SEED_SAMPLE_DATA': False,
    'SECONDARY_STORE_URI': None,
    'MAIL_ENABLED': False,
    'PUBLIC_BASE_URL': 'http://verify.test',
    'CERTIFICATE_TEMPLATE_PDF': None,
}

BACKENDS = ['memory', 'database']


def make_app(backend='memory', **overrides):
    config = dict(BASE_CONFIG)
    if backend == 'database':
        config['DATABASE_URL'] = 'sqlite://'
    config.update(overrides)
    return create_app(config)


@pytest.fixture()
def app():
    return make_app('memory')


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture(params=BACKENDS)
def backend_app(request):
    return make_app(request.param)


@pytest.fixture()
def backend_client(backend_app):
    return backend_app.test_client()


@pytest.fixture(params=BACKENDS)
def storage(request):
    """Primary store of either backend, used inside an app context."""
    flask_app = make_app(request.param)
    with flask_app.app_context():
        yield flask_app.extensions['certificate_storage']


@pytest.fixture()
def course_and_user(storage):
    course = storage.create_course({
        'title': 'Data Engineering Basics',
        'description': 'Pipelines, storage and orchestration',
        'duration': 12,
    })
    user = storage.create_user({'name': 'Jane Doe', 'email': 'jane.doe@example.com'})
    return course, user


@pytest.fixture()
def app_factory():
    return make_app
