import io

from certificate import compute_certificate_hash
from csv_import import import_certificates_csv
from storage import MemStorage

THREE_ROWS = (
    "name,email,course,completion_date,city\n"
    "Alice Smith,alice@example.com,Machine Learning Fundamentals,2025-02-01,Madrid\n"
    "Bob Jones,bob@example.com,Underwater Basket Weaving,2025-02-02,\n"
    "Carol White,carol@example.com,ux design principles,2025-02-03,Lisbon\n"
)


def test_partial_success_over_http(client, app):
    resp = client.post(
        '/api/admin/import-csv',
        data={'csvFile': (io.BytesIO(THREE_ROWS.encode('utf-8')), 'completions.csv')},
        content_type='multipart/form-data',
    )
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['success'] is True
    imported = body['imported']
    assert imported['users'] == 2
    assert imported['certificates'] == 2
    assert len(imported['errors']) == 1
    assert 'Course not found: Underwater Basket Weaving' in imported['errors'][0]

    storage = app.extensions['certificate_storage']
    assert storage.get_user_by_email('bob@example.com') is None
    carol = storage.get_user_by_email('carol@example.com')
    [cert] = storage.get_certificates_by_user_id(carol.id)
    assert cert.course.title == 'UX Design Principles'
    assert cert.city == 'Lisbon'
    assert cert.hash == compute_certificate_hash('Carol White', 'UX Design Principles', '2025-02-03',
                                                 cert.certificate_id)


def test_upload_under_generic_field_name(client):
    resp = client.post(
        '/api/admin/import-csv',
        data={'file': (io.BytesIO(THREE_ROWS.encode('utf-8')), 'completions.csv')},
        content_type='multipart/form-data',
    )
    assert resp.get_json()['imported']['certificates'] == 2


def test_missing_upload(client):
    resp = client.post('/api/admin/import-csv', data={}, content_type='multipart/form-data')
    assert resp.status_code == 400
    assert resp.get_json() == {'error': 'No file uploaded'}


def test_bad_rows_are_reported_and_skipped():
    storage = MemStorage()
    text = (
        "Name,Email,Course,Completion_Date\n"
        "Dan Brown,dan@example.com,UX Design Principles,\n"
        "Eve Black,eve@example.com,UX Design Principles,31/12/2025\n"
        ",,,\n"
        "Admin User,admin@wespark.io,AI Design Sprint Bootcamp,2025-03-03\n"
    )
    result = import_certificates_csv(storage, text.encode('utf-8-sig'))

    assert result['users'] == 0
    assert result['certificates'] == 1
    assert result['errors'] == [
        'Row 2: missing required fields: completion_date',
        "Row 3: invalid completion date '31/12/2025'",
    ]
    assert len(storage.get_certificates_by_user_id(1)) == 2


def test_database_backend_import(app_factory):
    flask_app = app_factory('database')
    client = flask_app.test_client()
    client.post('/api/courses', json={'title': 'Machine Learning Fundamentals', 'description': 'ML', 'duration': 24})
    client.post('/api/courses', json={'title': 'UX Design Principles', 'description': 'UX', 'duration': 8})

    resp = client.post(
        '/api/admin/import-csv',
        data={'csvFile': (io.BytesIO(THREE_ROWS.encode('utf-8')), 'completions.csv')},
        content_type='multipart/form-data',
    )
    imported = resp.get_json()['imported']
    assert (imported['users'], imported['certificates'], len(imported['errors'])) == (2, 2, 1)
    stats = client.get('/api/admin/stats').get_json()
    assert stats['totalCertificates'] == 2
    assert stats['totalUsers'] == 2


def test_errors_name_physical_lines_and_fields():
    storage = MemStorage()
    text = (
        "name,email,course,completion_date\n"
        "\n"
        "Fay Green,not-an-email,UX Design Principles,2025-03-01\n"
        '"Gus\nHill",gus@example.com,UX Design Principles,2025-03-02\n'
        "Hal King,hal@example.com,UX Design Principles,bad\n"
    )
    result = import_certificates_csv(storage, text)

    assert result['certificates'] == 1
    assert result['errors'] == [
        'Row 3: Invalid user data (email: A valid email is required)',
        "Row 6: invalid completion date 'bad'",
    ]
