from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from evalify import models
from evalify.main import app

client = TestClient(app)


def _iso(delta: timedelta) -> str:
    return (datetime.now(timezone.utc) + delta).isoformat()


def _quiz_payload(**extra):
    payload = {
        'name': 'Midterm',
        'start_time': _iso(timedelta(hours=-1)),
        'end_time': _iso(timedelta(hours=2)),
        'duration_minutes': 60,
    }
    payload.update(extra)
    return payload


def _create_quiz(campus, headers, **extra):
    r = client.post(f'/faculty/courses/{campus.course_id}/quizzes', json=_quiz_payload(**extra),
                    headers=headers(campus.faculty))
    assert r.status_code == 201, r.text
    return r.json()


def _tf(text, answer=True):
    return {'type': 'TRUE_FALSE', 'question': text, 'marks': 2, 'true_false_answer': answer}


def test_create_quiz(campus, headers):
    quiz = _create_quiz(campus, headers, tags=['unit-1', 'unit-1', 'core'], password='pw',
                        student_ids=[campus.student.id])
    assert quiz['course_ids'] == [campus.course_id]
    assert quiz['student_ids'] == [campus.student.id]
    assert quiz['tags'] == ['core', 'unit-1']
    assert quiz['is_protected'] is True
    assert 'password' not in quiz
    assert quiz['evaluation_settings']['mcq_global_partial_marking'] is False
    assert quiz['question_count'] == 0


def test_create_quiz_rejections(campus, make_user, headers):
    h = headers(campus.faculty)
    url = f'/faculty/courses/{campus.course_id}/quizzes'
    bad_window = _quiz_payload(end_time=_iso(timedelta(hours=-2)))
    assert client.post(url, json=bad_window, headers=h).status_code == 400
    both = _quiz_payload(evaluation_settings={'mcq_global_negative_mark': 1, 'mcq_global_negative_percent': 25})
    r = client.post(url, json=both, headers=h)
    assert r.status_code == 400
    assert r.json()['detail'] == 'Cannot set both fixed and percentage negative marks'
    faculty_only = _quiz_payload(student_ids=[campus.faculty.id])
    assert client.post(url, json=faculty_only, headers=h).status_code == 400

    outsider = make_user(models.Role.FACULTY)
    assert client.post(url, json=_quiz_payload(), headers=headers(outsider)).status_code == 403


def test_semester_manager_can_manage_course_quizzes(session, campus, make_user, headers):
    manager = make_user(models.Role.MANAGER)
    session.add(models.SemesterManager(semester_id=campus.semester_id, manager_id=manager.id))
    session.commit()
    quiz = _create_quiz(campus, headers)
    assert client.get(f"/faculty/quizzes/{quiz['id']}", headers=headers(manager)).status_code == 200
    info = client.get(f'/faculty/courses/{campus.course_id}', headers=headers(manager)).json()
    assert info['quiz_count'] == 1
    assert info['student_count'] == 1
    assert [i['id'] for i in info['instructors']] == [campus.faculty.id]


def test_list_by_course_status_filter(campus, headers):
    _create_quiz(campus, headers, name='Live')
    _create_quiz(campus, headers, name='Later', start_time=_iso(timedelta(days=1)),
                 end_time=_iso(timedelta(days=2)))
    _create_quiz(campus, headers, name='Done', start_time=_iso(timedelta(days=-2)),
                 end_time=_iso(timedelta(days=-1)))
    h = headers(campus.faculty)
    url = f'/faculty/courses/{campus.course_id}/quizzes'

    every = client.get(url, headers=h).json()
    assert every['total'] == 3
    assert [q['name'] for q in every['quizzes']] == ['Later', 'Live', 'Done']
    assert [q['name'] for q in client.get(url, params={'status': 'active'}, headers=h).json()['quizzes']] == ['Live']
    assert [q['status'] for q in client.get(url, params={'status': 'upcoming'}, headers=h).json()['quizzes']] == \
        ['UPCOMING']
    page = client.get(url, params={'limit': 2}, headers=h).json()
    assert page['hasMore'] is True


def test_update_quiz(campus, make_user, headers):
    other = make_user()
    quiz = _create_quiz(campus, headers, tags=['a'], password='pw')
    h = headers(campus.faculty)
    r = client.put(f"/faculty/quizzes/{quiz['id']}", json={
        'name': 'Final', 'password': '', 'student_ids': [other.id], 'tags': ['b'], 'publish_quiz': True,
    }, headers=h)
    assert r.status_code == 200
    body = r.json()
    assert body['name'] == 'Final'
    assert body['is_protected'] is False
    assert body['student_ids'] == [other.id]
    assert body['tags'] == ['b']
    assert body['publish_quiz'] is True
    # untouched links stay
    assert body['course_ids'] == [campus.course_id]

    moved = client.put(f"/faculty/quizzes/{quiz['id']}", json={'end_time': _iso(timedelta(days=-3))}, headers=h)
    assert moved.status_code == 400


def test_delete_quiz(campus, headers):
    quiz = _create_quiz(campus, headers)
    h = headers(campus.faculty)
    assert client.delete(f"/faculty/quizzes/{quiz['id']}", headers=h).status_code == 200
    assert client.get(f"/faculty/quizzes/{quiz['id']}", headers=h).status_code == 404


def test_evaluation_settings(campus, headers):
    quiz = _create_quiz(campus, headers)
    h = headers(campus.faculty)
    url = f"/faculty/quizzes/{quiz['id']}/evaluation-settings"
    assert client.get(url, headers=h).json()['mcq_global_negative_mark'] is None

    upd = client.put(url, json={'mcq_global_negative_mark': 0.5, 'mcq_global_partial_marking': True}, headers=h)
    assert upd.json()['mcq_global_negative_mark'] == 0.5
    assert upd.json()['mcq_global_partial_marking'] is True

    clash = client.put(url, json={'mcq_global_negative_percent': 10}, headers=h)
    assert clash.status_code == 400
    switched = client.put(url, json={'mcq_global_negative_mark': None, 'mcq_global_negative_percent': 10}, headers=h)
    assert switched.status_code == 200
    assert switched.json()['mcq_global_negative_percent'] == 10
    assert client.get(url, headers=h).json()['mcq_global_partial_marking'] is True


def test_sections_and_ordering(campus, headers):
    quiz = _create_quiz(campus, headers)
    h = headers(campus.faculty)
    base = f"/faculty/quizzes/{quiz['id']}"
    s1 = client.post(f'{base}/sections', json={'name': 'Part A'}, headers=h).json()
    s2 = client.post(f'{base}/sections', json={'name': 'Part B'}, headers=h).json()
    assert (s1['order_index'], s2['order_index']) == (0, 1)

    q1 = client.post(f'{base}/questions', json={**_tf('one'), 'section_id': s1['id']}, headers=h).json()
    q2 = client.post(f'{base}/questions', json={**_tf('two'), 'section_id': s1['id']}, headers=h).json()
    q3 = client.post(f'{base}/questions', json=_tf('loose'), headers=h).json()
    assert (q1['order_index'], q2['order_index'], q3['order_index']) == (0, 1, 0)

    reordered = client.put(f'{base}/sections/reorder', json={'ordered_ids': [s2['id'], s1['id']]}, headers=h)
    assert [s['name'] for s in reordered.json()] == ['Part B', 'Part A']
    assert client.put(f'{base}/sections/reorder', json={'ordered_ids': [999]}, headers=h).status_code == 400

    client.put(f'{base}/questions/reorder', json={'section_id': s1['id'],
                                                   'ordered_ids': [q2['quiz_question_id'], q1['quiz_question_id']]},
               headers=h)
    listed = client.get(f'{base}/questions', headers=h).json()
    assert [q['question'] for q in listed] == ['loose', 'two', 'one']

    client.put(f"{base}/questions/{q3['quiz_question_id']}/move", json={'target_section_id': s2['id']}, headers=h)
    sections = client.get(f'{base}/sections', headers=h).json()
    assert {s['name']: s['question_count'] for s in sections} == {'Part B': 1, 'Part A': 2}

    renamed = client.put(f"{base}/sections/{s1['id']}", json={'name': 'Theory'}, headers=h)
    assert renamed.json()['name'] == 'Theory'

    # deleting a section keeps its questions in the quiz
    assert client.delete(f"{base}/sections/{s1['id']}", headers=h).status_code == 200
    listed = client.get(f'{base}/questions', headers=h).json()
    assert len(listed) == 3
    assert [q['question'] for q in listed if q['section_id'] is None] == ['two', 'one']


def test_add_questions_from_bank(campus, headers):
    h = headers(campus.faculty)
    bank = client.post('/banks', json={'name': 'Pool'}, headers=h).json()
    made = [client.post(f"/banks/{bank['id']}/questions", json=_tf(f'fact {i}'), headers=h).json()
            for i in range(3)]
    bq_ids = [q['bank_question_id'] for q in made]
    quiz = _create_quiz(campus, headers)
    url = f"/faculty/quizzes/{quiz['id']}/questions/from-bank"

    first = client.post(url, json={'bank_question_ids': bq_ids[:2]}, headers=h)
    assert first.json() == {'added': 2, 'skipped': 0}
    second = client.post(url, json={'bank_question_ids': bq_ids}, headers=h)
    assert second.json() == {'added': 1, 'skipped': 2}
    again = client.post(url, json={'bank_question_ids': bq_ids}, headers=h)
    assert again.status_code == 400
    assert again.json()['detail'] == 'All selected questions are already in the quiz'
    assert client.post(url, json={'bank_question_ids': [9999]}, headers=h).status_code == 404

    detail = client.get(f"/faculty/quizzes/{quiz['id']}", headers=h).json()
    assert detail['question_count'] == 3
    assert detail['total_marks'] == 6


def test_bank_questions_need_bank_access(campus, make_user, headers):
    stranger = make_user(models.Role.FACULTY)
    bank = client.post('/banks', json={'name': 'Private'}, headers=headers(stranger)).json()
    q = client.post(f"/banks/{bank['id']}/questions", json=_tf('secret'), headers=headers(stranger)).json()
    quiz = _create_quiz(campus, headers)
    r = client.post(f"/faculty/quizzes/{quiz['id']}/questions/from-bank",
                    json={'bank_question_ids': [q['bank_question_id']]}, headers=headers(campus.faculty))
    assert r.status_code == 403


def test_quiz_question_update_and_delete(campus, headers):
    quiz = _create_quiz(campus, headers)
    h = headers(campus.faculty)
    base = f"/faculty/quizzes/{quiz['id']}/questions"
    created = client.post(base, json=_tf('Earth is flat', answer=False), headers=h)
    assert created.status_code == 201
    q = created.json()
    assert q['solution'] == {'trueFalseAnswer': False}

    upd = client.put(f"{base}/{q['id']}", json={'marks': 4, 'question': 'Earth is round', 'true_false_answer': True},
                     headers=h)
    assert upd.status_code == 200
    assert upd.json()['marks'] == 4
    assert upd.json()['solution'] == {'trueFalseAnswer': True}
    assert client.put(f'{base}/9999', json={'marks': 1}, headers=h).status_code == 404

    assert client.delete(f"{base}/{q['quiz_question_id']}", headers=h).status_code == 200
    assert client.get(base, headers=h).json() == []


def test_other_faculty_cannot_touch_quiz(campus, make_user, headers):
    quiz = _create_quiz(campus, headers)
    outsider = headers(make_user(models.Role.FACULTY))
    assert client.get(f"/faculty/quizzes/{quiz['id']}", headers=outsider).status_code == 403
    assert client.post(f"/faculty/quizzes/{quiz['id']}/sections", json={'name': 'X'},
                       headers=outsider).status_code == 403


def test_quiz_window_round_trips_through_the_database(session, campus, headers):
    start = datetime(2031, 3, 1, 14, 30, tzinfo=timezone(timedelta(hours=5, minutes=30)))
    end = start + timedelta(hours=2)
    quiz = _create_quiz(campus, headers, start_time=start.isoformat(), end_time=end.isoformat())
    # stored as naive UTC
    assert quiz['start_time'] == '2031-03-01T09:00:00'
    assert quiz['end_time'] == '2031-03-01T11:00:00'

    stored = session.get(models.Quiz, quiz['id'])
    assert stored.start_time == datetime(2031, 3, 1, 9, 0)
    assert stored.end_time - stored.start_time == timedelta(hours=2)
    assert stored.created_at is not None

    fetched = client.get(f"/faculty/quizzes/{quiz['id']}", headers=headers(campus.faculty)).json()
    assert (fetched['start_time'], fetched['end_time']) == (quiz['start_time'], quiz['end_time'])
