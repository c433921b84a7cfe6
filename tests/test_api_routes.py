import re


def _new_course(client, **overrides):
    payload = {'title': 'Security Essentials', 'description': 'Threat models and defences', 'duration': 6}
    payload.update(overrides)
    return client.post('/api/courses', json=payload)


def test_user_crud(backend_client):
    created = backend_client.post('/api/users', json={
        'name': 'Sam Taylor', 'email': 'sam@example.com', 'password': 'pw-123'})
    assert created.status_code == 201
    user = created.get_json()
    assert 'password' not in user
    assert user['role'] == 'graduate'

    assert backend_client.get(f"/api/users/{user['id']}").get_json()['email'] == 'sam@example.com'
    assert any(u['id'] == user['id'] for u in backend_client.get('/api/users').get_json())

    updated = backend_client.put(f"/api/users/{user['id']}", json={'name': 'Samantha Taylor'})
    assert updated.status_code == 200
    assert updated.get_json()['name'] == 'Samantha Taylor'

    login = backend_client.post('/api/auth/login', json={'email': 'sam@example.com', 'password': 'pw-123'})
    assert login.status_code == 200

    assert backend_client.delete(f"/api/users/{user['id']}").get_json() == {'success': True}
    assert backend_client.delete(f"/api/users/{user['id']}").status_code == 404
    assert backend_client.get(f"/api/users/{user['id']}").status_code == 404


def test_user_validation_and_conflicts(backend_client):
    resp = backend_client.post('/api/users', json={'name': 'No Mail'})
    assert resp.status_code == 400
    assert 'email' in resp.get_json()['fields']

    backend_client.post('/api/users', json={'name': 'One', 'email': 'taken@example.com'})
    conflict = backend_client.post('/api/users', json={'name': 'Two', 'email': 'TAKEN@example.com'})
    assert conflict.status_code == 409
    assert conflict.get_json()['field'] == 'email'

    bad_role = backend_client.post('/api/users', json={'name': 'R', 'email': 'r@example.com', 'role': 'root'})
    assert bad_role.status_code == 400
    assert backend_client.put('/api/users/99999', json={'name': 'Ghost'}).status_code == 404


def test_course_crud(backend_client):
    created = _new_course(backend_client, certificateBackground='https://img.example.com/bg.png')
    assert created.status_code == 201
    course = created.get_json()
    assert course['icon'] == 'fas fa-book'
    assert course['certificateBackground'] == 'https://img.example.com/bg.png'

    updated = backend_client.put(f"/api/courses/{course['id']}", json={'duration': '9', 'icon': 'fas fa-lock'})
    assert updated.get_json()['duration'] == 9
    assert updated.get_json()['icon'] == 'fas fa-lock'
    assert updated.get_json()['certificateBackground'] == 'https://img.example.com/bg.png'

    assert backend_client.get(f"/api/courses/{course['id']}").status_code == 200
    assert backend_client.delete(f"/api/courses/{course['id']}").status_code == 200
    assert backend_client.delete(f"/api/courses/{course['id']}").status_code == 404


def test_course_validation(backend_client):
    resp = _new_course(backend_client, duration='lots', title='')
    assert resp.status_code == 400
    assert set(resp.get_json()['fields']) == {'title', 'duration'}


def test_certificate_issue_list_verify_delete(backend_client):
    course = _new_course(backend_client).get_json()
    user = backend_client.post('/api/users', json={'name': 'Lee Park', 'email': 'lee@example.com'}).get_json()

    resp = backend_client.post('/api/certificates', json={
        'userId': user['id'], 'courseId': course['id'], 'completionDate': '2025-04-30'})
    assert resp.status_code == 201
    cert = resp.get_json()
    assert re.match(r'^WS-\d{4}-[0-9A-F]{6}$', cert['certificateId'])
    assert re.match(r'^[0-9a-f]{64}$', cert['hash'])
    assert cert['completionDate'] == '2025-04-30'
    assert cert['city'] is None

    listed = backend_client.get(f"/api/certificates/user/{user['id']}").get_json()
    assert [c['certificateId'] for c in listed] == [cert['certificateId']]
    assert listed[0]['course']['title'] == 'Security Essentials'
    assert any(c['id'] == cert['id'] for c in backend_client.get('/api/certificates').get_json())

    verified = backend_client.get(f"/api/verify/{cert['certificateId']}")
    assert verified.status_code == 200
    assert verified.get_json()['user']['name'] == 'Lee Park'

    resolved = backend_client.get(f"/api/verify-firebase/{cert['hash']}")
    assert resolved.status_code == 200
    assert resolved.get_json()['source'] == 'primary'
    assert resolved.get_json()['certificate']['holderName'] == 'Lee Park'

    conflict = backend_client.delete(f"/api/users/{user['id']}")
    assert conflict.status_code == 409

    assert backend_client.delete(f"/api/certificates/{cert['id']}").status_code == 200
    assert backend_client.delete(f"/api/certificates/{cert['id']}").status_code == 404
    assert backend_client.get(f"/api/verify/{cert['certificateId']}").status_code == 404


def test_certificate_issue_validation(backend_client):
    course = _new_course(backend_client).get_json()
    resp = backend_client.post('/api/certificates', json={'userId': 99999, 'courseId': course['id'],
                                                          'completionDate': '2025-04-30'})
    assert resp.status_code == 400
    assert resp.get_json()['fields'] == {'userId': 'Unknown user'}

    user = backend_client.post('/api/users', json={'name': 'Kim', 'email': 'kim@example.com'}).get_json()
    bad_date = backend_client.post('/api/certificates', json={'userId': user['id'], 'courseId': course['id'],
                                                              'completionDate': 'yesterday'})
    assert bad_date.status_code == 400
    assert 'completionDate' in bad_date.get_json()['fields']


def test_non_text_values_are_field_errors(backend_client):
    resp = backend_client.post('/api/users', json={'name': 123, 'email': 'x@example.com'})
    assert resp.status_code == 400
    assert resp.get_json()['fields'] == {'name': 'Name must be text'}

    resp = backend_client.post('/api/users', json={'name': 'X', 'email': 42})
    assert resp.status_code == 400
    assert 'email' in resp.get_json()['fields']

    resp = backend_client.post('/api/users', json={'name': 'X', 'email': 'pw@example.com', 'password': 99})
    assert resp.status_code == 400
    assert 'password' in resp.get_json()['fields']

    resp = _new_course(backend_client, title=['Security'], description={'text': 'x'}, icon=7)
    assert resp.status_code == 400
    assert set(resp.get_json()['fields']) == {'title', 'description', 'icon'}

    course = _new_course(backend_client).get_json()
    user = backend_client.post('/api/users', json={'name': 'Lee', 'email': 'lee@example.com'}).get_json()
    resp = backend_client.post('/api/certificates', json={'userId': user['id'], 'courseId': course['id'],
                                                          'completionDate': '2025-04-30', 'city': 5})
    assert resp.status_code == 400
    assert resp.get_json()['fields'] == {'city': 'City must be text'}

    for path, body in (('/api/auth/magic-link', {'email': 42}),
                       ('/api/auth/verify', {'token': ['abc']}),
                       ('/api/auth/login', {'email': 'admin@wespark.io', 'password': 1234})):
        resp = backend_client.post(path, json=body)
        assert resp.status_code == 400
        assert list(resp.get_json()['fields']) == list(body)[-1:]


def test_verify_unknown_tokens(client):
    assert client.get('/api/verify/WS-2099-000000').status_code == 404
    resp = client.get('/api/verify-firebase/WS-2099-000000')
    assert resp.status_code == 404
    assert resp.get_json() == {'valid': False, 'error': 'Certificate not found'}


def test_verify_after_download_uses_secondary_store(client):
    client.get('/api/certificates/1/download')
    resp = client.get('/api/verify-firebase/WS-2025-0A1B2C')
    body = resp.get_json()
    assert body['valid'] is True
    assert body['source'] == 'secondary'
    assert body['certificate']['id'].startswith('SV-')


def test_stats(client):
    stats = client.get('/api/admin/stats').get_json()
    assert stats == {
        'totalUsers': 1,
        'activeUsers': 0,
        'totalCertificates': 1,
        'totalCourses': 3,
        'totalEnrollments': 1,
    }


def test_unknown_route_and_method(client):
    assert client.get('/api/nothing-here').get_json() == {'error': 'Not found'}
    assert client.delete('/api/certificates').status_code == 405
