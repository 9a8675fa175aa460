import io

from fastapi.testclient import TestClient
from PIL import Image

from evalify import models
from evalify.config import settings
from evalify.main import app

from conftest import PASSWORD

client = TestClient(app)


def _png() -> bytes:
    img = Image.new("RGB", (900, 300), "navy")
    bio = io.BytesIO()
    img.save(bio, format="PNG")
    return bio.getvalue()


def test_login_and_me(make_user):
    user = make_user(models.Role.FACULTY, email="ada@example.edu")
    r = client.post('/auth/login', json={'email': 'ADA@example.edu', 'password': PASSWORD})
    assert r.status_code == 200
    body = r.json()
    assert body['role'] == 'FACULTY'
    me = client.get('/me', headers={'Authorization': f"Bearer {body['access_token']}"})
    assert me.status_code == 200
    assert me.json()['id'] == user.id
    assert 'password_hash' not in me.json()
    assert me.headers.get('X-Request-ID')


def test_login_rejects_bad_password_and_inactive_user(make_user):
    make_user(email="a@example.edu")
    make_user(email="b@example.edu", status=models.UserStatus.SUSPENDED)
    assert client.post('/auth/login', json={'email': 'a@example.edu', 'password': 'nope'}).status_code == 401
    assert client.post('/auth/login', json={'email': 'b@example.edu', 'password': PASSWORD}).status_code == 401


def test_login_is_rate_limited(monkeypatch, make_user):
    monkeypatch.setattr(settings, "LOGIN_RATE_LIMIT_PER_MIN", 2)
    make_user(email="c@example.edu")
    for _ in range(2):
        client.post('/auth/login', json={'email': 'c@example.edu', 'password': 'wrong'})
    r = client.post('/auth/login', json={'email': 'c@example.edu', 'password': PASSWORD})
    assert r.status_code == 429
    assert 'Retry-After' in r.headers


def test_invalid_token_rejected():
    r = client.get('/me', headers={'Authorization': 'Bearer invalid.token.here'})
    assert r.status_code == 401


def test_change_password(make_user, headers):
    user = make_user(email="d@example.edu")
    bad = client.post('/auth/change-password', json={'current_password': 'x', 'new_password': 'newpass1'},
                      headers=headers(user))
    assert bad.status_code == 400
    ok = client.post('/auth/change-password', json={'current_password': PASSWORD, 'new_password': 'newpass1'},
                     headers=headers(user))
    assert ok.status_code == 200
    assert client.post('/auth/login', json={'email': 'd@example.edu', 'password': 'newpass1'}).status_code == 200


def test_update_my_profile(make_user, headers):
    user = make_user()
    r = client.put('/me', json={'theme': 'dark', 'phone': '555-0100'}, headers=headers(user))
    assert r.status_code == 200
    assert r.json()['theme'] == 'dark'
    assert r.json()['phone'] == '555-0100'


def test_admin_routes_require_admin(make_user, headers):
    faculty = make_user(models.Role.FACULTY)
    assert client.get('/admin/users', headers=headers(faculty)).status_code == 403
    assert client.get('/admin/users').status_code in (401, 403)


def test_admin_user_crud(make_user, headers):
    admin = make_user(models.Role.ADMIN)
    h = headers(admin)
    payload = {'name': 'Grace', 'email': 'grace@example.edu', 'profile_id': 'CB.EN.U4CSE1', 'password': 'abcdef'}
    r = client.post('/admin/users', json=payload, headers=h)
    assert r.status_code == 201
    user_id = r.json()['id']
    assert r.json()['role'] == 'STUDENT'

    dup = client.post('/admin/users', json={**payload, 'profile_id': 'other'}, headers=h)
    assert dup.status_code == 409

    listed = client.get('/admin/users', params={'search': 'grace'}, headers=h).json()
    assert listed['total'] == 1
    assert listed['hasMore'] is False
    assert listed['users'][0]['email'] == 'grace@example.edu'

    upd = client.put(f'/admin/users/{user_id}', json={'role': 'FACULTY'}, headers=h)
    assert upd.json()['role'] == 'FACULTY'

    assert client.delete(f'/admin/users/{admin.id}', headers=h).status_code == 400
    assert client.delete(f'/admin/users/{user_id}', headers=h).status_code == 200
    assert client.get(f'/admin/users/{user_id}', headers=h).status_code == 404


def test_user_pagination(make_user, headers):
    admin = make_user(models.Role.ADMIN)
    for _ in range(5):
        make_user()
    page = client.get('/admin/users', params={'role': 'STUDENT', 'limit': 2, 'page': 1}, headers=headers(admin)).json()
    assert page['total'] == 5
    assert len(page['users']) == 2
    assert page['hasMore'] is True
    last = client.get('/admin/users', params={'role': 'STUDENT', 'limit': 2, 'page': 3}, headers=headers(admin)).json()
    assert len(last['users']) == 1
    assert last['hasMore'] is False


def test_semester_managers_and_bulk(make_user, headers):
    admin = make_user(models.Role.ADMIN)
    manager = make_user(models.Role.MANAGER)
    faculty = make_user(models.Role.FACULTY)
    h = headers(admin)
    dept = client.post('/admin/departments', json={'name': 'ECE'}, headers=h).json()
    sem = client.post('/admin/semesters', json={'name': 'S1', 'year': 2024, 'department_id': dept['id']},
                      headers=h).json()
    again = client.post('/admin/semesters', json={'name': 'S1', 'year': 2024, 'department_id': dept['id']},
                        headers=h)
    assert again.status_code == 409

    assert client.post(f"/admin/semesters/{sem['id']}/managers", json={'manager_id': faculty.id},
                       headers=h).status_code == 400
    assert client.post(f"/admin/semesters/{sem['id']}/managers", json={'manager_id': manager.id},
                       headers=h).status_code == 200
    assert client.post(f"/admin/semesters/{sem['id']}/managers", json={'manager_id': manager.id},
                       headers=h).status_code == 409
    managers = client.get(f"/admin/semesters/{sem['id']}/managers", headers=h).json()
    assert [m['id'] for m in managers] == [manager.id]

    bulk = client.post('/admin/semesters/bulk', json={'items': [
        {'name': 'S1', 'year': 2024, 'department_id': dept['id']},
        {'name': 'S2', 'year': 2025, 'department_id': dept['id']},
    ]}, headers=h).json()
    assert [s['name'] for s in bulk['created']] == ['S2']
    assert bulk['skipped'][0]['index'] == 0
    assert client.get('/admin/semesters/years', headers=h).json() == [2025, 2024]


def test_batches_and_course_enrolment(make_user, headers):
    admin = make_user(models.Role.ADMIN)
    students = [make_user() for _ in range(2)]
    faculty = make_user(models.Role.FACULTY)
    h = headers(admin)
    dept = client.post('/admin/departments', json={'name': 'CSE'}, headers=h).json()
    bad = client.post('/admin/batches', json={'name': 'B', 'join_year': 2024, 'graduation_year': 2020,
                                              'section': 'A', 'department_id': dept['id']}, headers=h)
    assert bad.status_code == 400
    batch = client.post('/admin/batches', json={'name': 'CSE 24', 'join_year': 2024, 'graduation_year': 2028,
                                                'section': 'A', 'department_id': dept['id']}, headers=h).json()
    added = client.post(f"/admin/batches/{batch['id']}/students",
                        json={'student_ids': [s.id for s in students]}, headers=h).json()
    assert added['added'] == 2
    assert len(client.get(f"/admin/batches/{batch['id']}/students", headers=h).json()) == 2

    sem = client.post('/admin/semesters', json={'name': 'S1', 'year': 2024, 'department_id': dept['id']},
                      headers=h).json()
    course = client.post('/admin/courses', json={'name': 'OS', 'code': 'cs301', 'semester_id': sem['id']},
                         headers=h).json()
    assert course['code'] == 'CS301'
    dup = client.post('/admin/courses', json={'name': 'OS 2', 'code': 'CS301', 'semester_id': sem['id']}, headers=h)
    assert dup.status_code == 409
    assert client.post('/admin/courses/check-duplicates', json={'codes': ['CS301', 'CS999']},
                       headers=h).json()['duplicates'] == ['CS301']

    assert client.post(f"/admin/courses/{course['id']}/instructors", json={'instructor_id': faculty.id},
                       headers=h).status_code == 200
    assert client.post(f"/admin/courses/{course['id']}/instructors", json={'instructor_id': students[0].id},
                       headers=h).status_code == 400
    assert client.post(f"/admin/courses/{course['id']}/batches", json={'batch_id': batch['id']},
                       headers=h).status_code == 200
    assert client.post(f"/admin/courses/{course['id']}/students", json={'student_id': students[0].id},
                       headers=h).status_code == 200
    assert client.post(f"/admin/courses/{course['id']}/students", json={'student_id': students[0].id},
                       headers=h).status_code == 409

    mine = client.get('/faculty/courses', headers=headers(faculty)).json()
    assert [c['code'] for c in mine['courses']] == ['CS301']
    # batch-assigned students see the course too
    theirs = client.get('/student/courses', headers=headers(students[1])).json()
    assert [c['code'] for c in theirs['courses']] == ['CS301']


def test_labs_validate_subnet(make_user, headers):
    h = headers(make_user(models.Role.ADMIN))
    bad = client.post('/admin/labs', json={'name': 'L1', 'block': 'AB1', 'ip_subnet': '10.0.0.0'}, headers=h)
    assert bad.status_code == 422
    ok = client.post('/admin/labs', json={'name': 'L1', 'block': 'AB1', 'ip_subnet': '10.0.0.0/24'}, headers=h)
    assert ok.status_code == 201
    client.post('/admin/labs', json={'name': 'L2', 'block': 'AB2', 'ip_subnet': '10.0.1.0/24'}, headers=h)
    assert client.get('/admin/labs/blocks', headers=h).json() == ['AB1', 'AB2']
    listed = client.get('/admin/labs', params={'block': 'AB2'}, headers=h).json()
    assert [lab['name'] for lab in listed['labs']] == ['L2']


def test_course_image_upload(make_user, headers, campus):
    h = headers(make_user(models.Role.ADMIN))
    files = {'file': ('cover.png', _png(), 'image/png')}
    r = client.post(f'/admin/courses/{campus.course_id}/image', files=files, headers=h)
    assert r.status_code == 200
    image = r.json()['image']
    assert image.startswith('/uploads/courses/')
    served = client.get(image)
    assert served.status_code == 200
    assert Image.open(io.BytesIO(served.content)).size[0] <= 640

    not_image = client.post(f'/admin/courses/{campus.course_id}/image',
                            files={'file': ('x.png', b'not an image', 'image/png')}, headers=h)
    assert not_image.status_code == 400


def test_health():
    r = client.get('/health')
    assert r.status_code == 200
    assert r.json()['status'] == 'ok'
