import random
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from evalify import models
from evalify.config import settings
from evalify.main import app
from evalify.services.exam import student_question_view
from evalify.utils.versioning import version_data, version_solution

client = TestClient(app)

MCQ = {
    'type': 'MCQ', 'question': 'Which is a stack operation?', 'marks': 2,
    'question_data': {'options': [
        {'id': 'a', 'optionText': 'enqueue', 'orderIndex': 0},
        {'id': 'b', 'optionText': 'push', 'orderIndex': 1},
    ]},
    'solution': {'correctOptions': [{'id': 'b', 'isCorrect': True}]},
}
TF = {'type': 'TRUE_FALSE', 'question': 'A queue is FIFO', 'marks': 1, 'true_false_answer': True}
ESSAY = {'type': 'DESCRIPTIVE', 'question': 'Explain hashing', 'marks': 5,
         'descriptive_config': {'modelAnswer': 'Maps keys to buckets'}}


def _iso(delta: timedelta) -> str:
    return (datetime.now(timezone.utc) + delta).isoformat()


def _exam(campus, headers, questions=(MCQ, TF, ESSAY), **extra):
    """A published, running quiz assigned to the campus student; returns (quiz_id, question ids)."""
    payload = {
        'name': 'Quiz 1',
        'start_time': _iso(timedelta(minutes=-10)),
        'end_time': _iso(timedelta(hours=1)),
        'duration_minutes': 30,
        'publish_quiz': True,
        'student_ids': [campus.student.id],
    }
    payload.update(extra)
    h = headers(campus.faculty)
    r = client.post(f'/faculty/courses/{campus.course_id}/quizzes', json=payload, headers=h)
    assert r.status_code == 201, r.text
    quiz_id = r.json()['id']
    ids = [client.post(f'/faculty/quizzes/{quiz_id}/questions', json=q, headers=h).json()['id'] for q in questions]
    return quiz_id, ids


def _backdate_attempt(session, quiz_id, student_id):
    attempt = session.get(models.QuizResponse, (quiz_id, student_id))
    attempt.end_time = models.utcnow() - timedelta(minutes=1)
    session.add(attempt)
    session.commit()


def test_full_attempt_and_result(campus, headers):
    quiz_id, (mcq_id, tf_id, essay_id) = _exam(campus, headers)
    sh, fh = headers(campus.student), headers(campus.faculty)
    base = f'/student/quizzes/{quiz_id}'

    listed = client.get('/student/quizzes', headers=sh).json()
    assert [q['status'] for q in listed] == ['ACTIVE']
    assert listed[0]['courses'][0]['code'] == 'CS201'
    assert client.get(f'{base}/response', headers=sh).json() is None

    started = client.post(f'{base}/start', headers=sh)
    assert started.status_code == 200
    assert started.json()['resumed'] is False
    assert started.json()['duration_minutes'] == 30

    paper = client.get(f'{base}/questions', headers=sh).json()
    assert [q['id'] for q in paper['questions']] == [mcq_id, tf_id, essay_id]
    assert all('solution' not in q for q in paper['questions'])
    assert paper['questions'][0]['question_data']['options'][1] == {'id': 'b', 'optionText': 'push', 'orderIndex': 1}
    assert paper['questions'][2]['question_data'] == {'config': {'minWords': None, 'maxWords': None}}
    assert paper['answers'] == {}

    saved = client.put(f'{base}/response', json={'response': {str(mcq_id): {'studentAnswer': 'b'}}}, headers=sh)
    assert saved.json() == {'saved': True, 'answered': 1}
    saved = client.put(f'{base}/response', json={'response': {
        str(tf_id): {'studentAnswer': 'True'},
        str(essay_id): {'studentAnswer': 'Hashing maps keys to buckets.'},
    }}, headers=sh)
    assert saved.json()['answered'] == 3

    submitted = client.post(f'{base}/submit', headers=sh)
    assert submitted.status_code == 200
    assert submitted.json()['submission_status'] == 'SUBMITTED'
    assert 'response' not in submitted.json()
    again = client.post(f'{base}/submit', headers=sh)
    assert again.status_code == 403
    assert again.json()['detail'] == 'Quiz already submitted'
    assert client.post(f'{base}/start', headers=sh).status_code == 403
    assert client.get(f'{base}/questions', headers=sh).status_code == 403
    assert client.get('/student/quizzes', headers=sh).json()[0]['status'] == 'COMPLETED'

    evaluated = client.post(f'/faculty/quizzes/{quiz_id}/evaluate', headers=fh).json()
    assert evaluated == {'evaluated': 0, 'pending_manual': 1, 'failed': 0}

    responses = client.get(f'/faculty/quizzes/{quiz_id}/responses', headers=fh).json()
    assert responses[0]['student']['id'] == campus.student.id
    assert responses[0]['score'] == 3
    assert responses[0]['evaluation_status'] == 'NOT_EVALUATED'

    # scores stay hidden from the student until results are published
    own = client.get(f'{base}/response', headers=sh).json()
    assert own['evaluation_status'] == 'NOT_EVALUATED'
    assert (own['score'], own['total_score'], own['evaluation_results']) == (None, None, None)

    score_url = f'/faculty/quizzes/{quiz_id}/responses/{campus.student.id}/questions/{essay_id}'
    too_much = client.put(score_url, json={'mark': 6}, headers=fh)
    assert too_much.status_code == 400
    too_little = client.put(score_url, json={'mark': -1000}, headers=fh)
    assert too_little.status_code == 400
    assert too_little.json()['detail'] == 'Mark cannot be below 0'
    manual = client.put(score_url, json={'mark': 4, 'remarks': 'solid'}, headers=fh).json()
    assert manual['score'] == 7
    assert manual['total_score'] == 8
    assert manual['evaluation_status'] == 'EVALUATED_MANUALLY'

    # re-running automatic evaluation keeps the manual mark
    client.post(f'/faculty/quizzes/{quiz_id}/evaluate', headers=fh)
    detail = client.get(f'/faculty/quizzes/{quiz_id}/responses/{campus.student.id}', headers=fh).json()
    assert detail['score'] == 7
    essay = next(q for q in detail['questions'] if q['id'] == essay_id)
    assert essay['result'] == {'status': 'EVALUATED_MANUALLY', 'mark': 4, 'remarks': 'solid'}
    assert essay['student_answer'] == 'Hashing maps keys to buckets.'

    hidden = client.get(f'{base}/result', headers=sh)
    assert hidden.status_code == 403
    assert hidden.json()['detail'] == 'Results are not published yet'
    client.put(f'/faculty/quizzes/{quiz_id}', json={'publish_result': True}, headers=fh)
    result = client.get(f'{base}/result', headers=sh).json()
    assert result['score'] == 7
    marks = {q['id']: q['obtained'] for q in result['questions']}
    assert marks == {mcq_id: 2, tf_id: 1, essay_id: 4}
    assert client.get(f'{base}/response', headers=sh).json()['score'] == 7
    assert result['questions'][0]['solution']['correctOptions'][0]['id'] == 'b'


def test_start_resumes_the_same_attempt(campus, headers):
    quiz_id, _ = _exam(campus, headers, questions=(TF,))
    sh = headers(campus.student)
    first = client.post(f'/student/quizzes/{quiz_id}/start', headers=sh).json()
    client.put(f'/student/quizzes/{quiz_id}/response', json={'response': {'1': {'studentAnswer': 'True'}}},
               headers=sh)
    second = client.post(f'/student/quizzes/{quiz_id}/start', headers={**sh, 'X-Forwarded-For': '10.9.9.9'}).json()
    assert second['resumed'] is True
    assert second['start_time'] == first['start_time']
    stored = client.get(f'/student/quizzes/{quiz_id}/response', headers=sh).json()
    assert stored['response'] == {'1': {'studentAnswer': 'True'}}
    assert stored['ip'] == ['testclient', '10.9.9.9']


def test_attempt_end_is_capped_by_quiz_end(campus, headers):
    quiz_id, _ = _exam(campus, headers, questions=(TF,), end_time=_iso(timedelta(minutes=5)),
                       duration_minutes=120)
    started = client.post(f'/student/quizzes/{quiz_id}/start', headers=headers(campus.student)).json()
    delta = datetime.fromisoformat(started['end_time']) - datetime.fromisoformat(started['start_time'])
    assert delta < timedelta(minutes=6)


def test_start_rejections(campus, make_user, headers):
    sh = headers(campus.student)
    hidden, _ = _exam(campus, headers, questions=(), publish_quiz=False)
    assert client.post(f'/student/quizzes/{hidden}/start', headers=sh).status_code == 404

    later, _ = _exam(campus, headers, questions=(), start_time=_iso(timedelta(hours=1)),
                     end_time=_iso(timedelta(hours=2)))
    r = client.post(f'/student/quizzes/{later}/start', headers=sh)
    assert r.status_code == 403
    assert r.json()['detail'] == 'Quiz has not started yet'

    over, _ = _exam(campus, headers, questions=(), start_time=_iso(timedelta(hours=-3)),
                    end_time=_iso(timedelta(hours=-1)))
    r = client.post(f'/student/quizzes/{over}/start', headers=sh)
    assert r.status_code == 403
    assert r.json()['detail'] == 'Quiz has already ended'

    locked, _ = _exam(campus, headers, questions=(), password='open-sesame')
    assert client.post(f'/student/quizzes/{locked}/start', headers=sh).status_code == 403
    assert client.post(f'/student/quizzes/{locked}/start', json={'password': 'nope'}, headers=sh).status_code == 403
    assert client.post(f'/student/quizzes/{locked}/start', json={'password': 'open-sesame'},
                       headers=sh).status_code == 200

    stranger = make_user()
    open_quiz, _ = _exam(campus, headers, questions=())
    r = client.post(f'/student/quizzes/{open_quiz}/start', headers=headers(stranger))
    assert r.status_code == 403
    assert r.json()['detail'] == "You don't have access to this quiz"
    assert client.post(f'/student/quizzes/{open_quiz}/start', headers=headers(campus.faculty)).status_code == 403


def test_lab_subnet_gate(session, campus, headers):
    lab = models.Lab(name='Lab 1', block='AB1', ip_subnet='10.0.0.0/24')
    session.add(lab)
    session.commit()
    quiz_id, _ = _exam(campus, headers, questions=(TF,), lab_ids=[lab.id])
    sh = headers(campus.student)

    outside = {**sh, 'X-Forwarded-For': '192.168.1.20'}
    info = client.get(f'/student/quizzes/{quiz_id}', headers=outside).json()
    assert info['is_in_lab_subnet'] is False
    r = client.post(f'/student/quizzes/{quiz_id}/start', headers=outside)
    assert r.status_code == 403
    assert r.json()['detail'] == 'You must be in an authorized lab to start this quiz'

    inside = {**sh, 'X-Forwarded-For': '10.0.0.42, 172.16.0.1'}
    assert client.get(f'/student/quizzes/{quiz_id}', headers=inside).json()['is_in_lab_subnet'] is True
    assert client.post(f'/student/quizzes/{quiz_id}/start', headers=inside).status_code == 200


def test_batch_assignment_grants_access(session, campus, make_user, headers):
    student = make_user()
    batch = models.Batch(name='CSE 25', join_year=2025, graduation_year=2029, section='B',
                         department_id=campus.department_id)
    session.add(batch)
    session.commit()
    session.add(models.BatchStudent(batch_id=batch.id, student_id=student.id))
    session.add(models.CourseBatch(course_id=campus.course_id, batch_id=batch.id))
    session.commit()
    quiz_id, _ = _exam(campus, headers, questions=(TF,), student_ids=[], batch_ids=[batch.id])

    listed = client.get(f'/student/courses/{campus.course_id}/quizzes', headers=headers(student)).json()
    assert [q['id'] for q in listed['quizzes']] == [quiz_id]
    assert client.post(f'/student/quizzes/{quiz_id}/start', headers=headers(student)).status_code == 200
    # the directly enrolled student is not in the batch
    assert client.post(f'/student/quizzes/{quiz_id}/start', headers=headers(campus.student)).status_code == 403


def test_instructions_open_five_minutes_before_start(campus, headers):
    quiz_id, _ = _exam(campus, headers, questions=(), start_time=_iso(timedelta(hours=1)),
                       end_time=_iso(timedelta(hours=2)))
    r = client.get(f'/student/quizzes/{quiz_id}', headers=headers(campus.student))
    assert r.status_code == 403
    assert r.json()['detail'].startswith('Quiz instructions will be available')

    soon, _ = _exam(campus, headers, questions=(), start_time=_iso(timedelta(minutes=3)),
                    end_time=_iso(timedelta(hours=2)))
    info = client.get(f'/student/quizzes/{soon}', headers=headers(campus.student)).json()
    assert info['status'] == 'UPCOMING'
    assert info['is_in_lab_subnet'] is True
    assert info['response'] is None
    assert info['instructor']['id'] == campus.faculty.id


def test_sections_visible_during_attempt(campus, headers):
    quiz_id, _ = _exam(campus, headers, questions=())
    fh, sh = headers(campus.faculty), headers(campus.student)
    part = client.post(f'/faculty/quizzes/{quiz_id}/sections', json={'name': 'Part A'}, headers=fh).json()
    client.post(f'/faculty/quizzes/{quiz_id}/questions', json={**TF, 'section_id': part['id']}, headers=fh)
    loose = client.post(f'/faculty/quizzes/{quiz_id}/questions', json=MCQ, headers=fh).json()

    assert client.get(f'/student/quizzes/{quiz_id}/sections', headers=sh).status_code == 403
    client.post(f'/student/quizzes/{quiz_id}/start', headers=sh)
    sections = client.get(f'/student/quizzes/{quiz_id}/sections', headers=sh).json()
    assert sections == [{'id': part['id'], 'name': 'Part A', 'order_index': 0}]
    paper = client.get(f'/student/quizzes/{quiz_id}/questions', headers=sh).json()
    # unsectioned questions lead
    assert paper['questions'][0]['id'] == loose['id']
    assert paper['questions'][1]['section_id'] == part['id']


def test_auto_submit_status_and_expired_attempts(session, campus, headers):
    quiz_id, _ = _exam(campus, headers, questions=(TF,), auto_submit=True)
    sh = headers(campus.student)
    base = f'/student/quizzes/{quiz_id}'
    assert client.get(f'{base}/auto-submit-status', headers=sh).json() == {
        'autoSubmitted': False, 'submission_status': None}
    client.post(f'{base}/start', headers=sh)
    assert client.get(f'{base}/auto-submit-status', headers=sh).json() == {
        'autoSubmitted': False, 'submission_status': 'NOT_SUBMITTED'}

    _backdate_attempt(session, quiz_id, campus.student.id)
    r = client.put(f'{base}/response', json={'response': {'1': 'x'}}, headers=sh)
    assert r.status_code == 403
    assert r.json()['detail'] == 'Quiz time has ended'
    assert client.get(f'{base}/auto-submit-status', headers=sh).json() == {
        'autoSubmitted': True, 'submission_status': 'AUTO_SUBMITTED'}
    # only the call that flips the attempt reports it
    assert client.get(f'{base}/auto-submit-status', headers=sh).json()['autoSubmitted'] is False


def test_violations_are_recorded(campus, headers):
    quiz_id, _ = _exam(campus, headers, questions=(TF,))
    sh = headers(campus.student)
    base = f'/student/quizzes/{quiz_id}'
    assert client.post(f'{base}/violations', json={'violation': 'tab switch'}, headers=sh).status_code == 404
    client.post(f'{base}/start', headers=sh)
    client.post(f'{base}/violations', json={'violation': 'tab switch'}, headers=sh)
    second = client.post(f'{base}/violations', json={'violation': 'exit fullscreen'}, headers=sh)
    assert second.json() == {'violations': 2}
    stored = client.get(f'{base}/response', headers=sh).json()
    assert [v['violation'] for v in stored['violations']] == ['tab switch', 'exit fullscreen']
    client.post(f'{base}/submit', headers=sh)
    assert client.post(f'{base}/violations', json={'violation': 'late'}, headers=sh).status_code == 403


def test_quiz_start_is_rate_limited(monkeypatch, campus, headers):
    monkeypatch.setattr(settings, 'QUIZ_START_RATE_LIMIT_PER_MIN', 2)
    quiz_id, _ = _exam(campus, headers, questions=(TF,))
    sh = headers(campus.student)
    for _ in range(2):
        assert client.post(f'/student/quizzes/{quiz_id}/start', headers=sh).status_code == 200
    r = client.post(f'/student/quizzes/{quiz_id}/start', headers=sh)
    assert r.status_code == 429
    assert 'Retry-After' in r.headers


MATCH = {'type': 'MATCHING', 'question': 'Match the structures', 'marks': 2, 'options': [
    {'id': 'l1', 'isLeft': True, 'text': 'stack', 'orderIndex': 0, 'matchPairIds': ['r1']},
    {'id': 'l2', 'isLeft': True, 'text': 'queue', 'orderIndex': 1, 'matchPairIds': ['r2']},
    {'id': 'r1', 'isLeft': False, 'text': 'LIFO', 'orderIndex': 2},
    {'id': 'r2', 'isLeft': False, 'text': 'FIFO', 'orderIndex': 3},
    {'id': 'r3', 'isLeft': False, 'text': 'random', 'orderIndex': 4},
]}


def _paper(quiz_id, student):
    r = client.get(f'/student/quizzes/{quiz_id}/questions', headers=student)
    assert r.status_code == 200, r.text
    return r.json()['questions']


def test_student_view_strips_solutions_for_every_type(campus, headers):
    blank = {'type': 'FILL_THE_BLANK', 'question': '___ + ___', 'blank_config': {
        'blankCount': 2, 'blankWeights': {'0': 2},
        'acceptableAnswers': {'0': {'answers': ['4'], 'type': 'NUMBER'}, '1': {'answers': ['x']}},
    }}
    coding = {'type': 'CODING', 'question': 'Reverse a list', 'reference_solution': 'print(xs[::-1])',
              'coding_config': {'language': 'C'}, 'test_cases': [
                  {'id': 't1', 'input': '1 2', 'expectedOutput': '2 1'},
                  {'id': 't2', 'input': '3 4', 'expectedOutput': '4 3', 'visibility': 'HIDDEN', 'orderIndex': 1},
              ]}
    upload = {'type': 'FILE_UPLOAD', 'question': 'Upload your report', 'attached_files': ['/uploads/brief.pdf'],
              'file_upload_config': {'allowedFileTypes': ['pdf'], 'maxFileSizeInMB': 5}}
    quiz_id, (blank_id, coding_id, upload_id, match_id) = _exam(campus, headers,
                                                                questions=(blank, coding, upload, MATCH))
    sh = headers(campus.student)
    client.post(f'/student/quizzes/{quiz_id}/start', headers=sh)
    paper = {q['id']: q for q in _paper(quiz_id, sh)}

    assert paper[blank_id]['question_data'] == {'config': {
        'blankCount': 2, 'blankWeights': {'0': 2}, 'blankTypes': {'0': 'NUMBER', '1': 'TEXT'},
        'evaluationType': 'NORMAL',
    }}
    coding_view = paper[coding_id]['question_data']
    assert coding_view['config']['language'] == 'C'
    assert coding_view['testCases'] == [
        {'id': 't1', 'input': '1 2', 'visibility': 'VISIBLE', 'marksWeightage': None, 'orderIndex': 0}]
    assert paper[upload_id]['question_data'] == {
        'config': {'allowedFileTypes': ['pdf'], 'maxFileSizeInMB': 5, 'maxFiles': None},
        'attachedFiles': ['/uploads/brief.pdf'],
    }
    assert all('matchPairIds' not in o for o in paper[match_id]['question_data']['options'])
    raw = client.get(f'/student/quizzes/{quiz_id}/questions', headers=sh).text
    for secret in ('xs[::-1]', '4 3', 'acceptableAnswers', 'matchPairIds'):
        assert secret not in raw


def test_coding_view_defaults_language_to_python():
    question = models.Question(
        id=1, type=models.QuestionType.CODING, question='q', marks=1,
        question_data=version_data(models.QuestionType.CODING, {'config': {}, 'testCases': [
            {'id': 't1', 'input': '', 'expectedOutput': 'ok'},
        ]}),
        solution=version_solution(models.QuestionType.CODING, {'referenceSolution': 'print("ok")'}),
    )
    view = student_question_view(question)
    assert view == {'config': {'language': 'PYTHON'}, 'testCases': [{'id': 't1', 'input': ''}]}


def test_shuffled_questions_are_stable_per_student(campus, make_user, headers):
    other = make_user()
    questions = tuple({**TF, 'question': f'Statement {i}'} for i in range(8))
    quiz_id, ids = _exam(campus, headers, questions=questions, shuffle_questions=True,
                         student_ids=[campus.student.id, other.id])

    for student in (campus.student, other):
        sh = headers(student)
        client.post(f'/student/quizzes/{quiz_id}/start', headers=sh)
        expected = list(ids)
        random.Random(f'{quiz_id}:{student.id}:questions').shuffle(expected)
        first = [q['id'] for q in _paper(quiz_id, sh)]
        assert first == expected
        # reloading the paper keeps the order
        assert [q['id'] for q in _paper(quiz_id, sh)] == first


def test_shuffled_options_keep_matching_left_column(campus, headers):
    options = [{'id': c, 'optionText': c.upper(), 'orderIndex': n} for n, c in enumerate('abcdef')]
    mcq = {**MCQ, 'question_data': {'options': options}}
    quiz_id, (mcq_id, match_id) = _exam(campus, headers, questions=(mcq, MATCH), shuffle_options=True)
    sh = headers(campus.student)
    client.post(f'/student/quizzes/{quiz_id}/start', headers=sh)

    first = {q['id']: q['question_data']['options'] for q in _paper(quiz_id, sh)}
    again = {q['id']: q['question_data']['options'] for q in _paper(quiz_id, sh)}
    assert first == again
    assert sorted(o['id'] for o in first[mcq_id]) == list('abcdef')

    matching = [o['id'] for o in first[match_id]]
    assert matching[:2] == ['l1', 'l2']
    assert sorted(matching[2:]) == ['r1', 'r2', 'r3']
