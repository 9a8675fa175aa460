from evalify import models
from evalify.services.evaluation import evaluate_response, negative_mark, normalize_student_answer, score_question
from evalify.utils.versioning import version_data, version_solution

QT = models.QuestionType


def _question(qtype, data, solution, marks=4, negative=0, qid=1):
    return models.Question(id=qid, type=qtype, question="q", marks=marks, negative_marks=negative,
                           question_data=version_data(qtype, data), solution=version_solution(qtype, solution))


def _mcq(qtype=QT.MCQ, correct=("a",), **kw):
    data = {'options': [{'id': i, 'optionText': i.upper(), 'orderIndex': n} for n, i in enumerate("abcd")]}
    solution = {'correctOptions': [{'id': i, 'isCorrect': True} for i in correct]}
    return _question(qtype, data, solution, **kw)


def _settings(**kw):
    return models.QuizEvaluationSettings(quiz_id=1, **kw)


def test_normalize_answers():
    assert normalize_student_answer(QT.MCQ, {'studentAnswer': 'a'}) == 'a'
    assert normalize_student_answer(QT.MCQ, ['b']) == 'b'
    assert normalize_student_answer(QT.MMCQ, 'a') == ['a']
    assert normalize_student_answer(QT.TRUE_FALSE, True) == 'True'
    assert normalize_student_answer(QT.TRUE_FALSE, 'false') == 'False'
    assert normalize_student_answer(QT.FILL_THE_BLANK, ['x', None]) == {'0': 'x', '1': ''}
    assert normalize_student_answer(QT.MATCHING, {'l1': 'r1'}) == {'l1': ['r1']}
    assert normalize_student_answer(QT.CODING, 'print(1)') == {'code': 'print(1)', 'language': None}


def test_unanswered_scores_zero():
    result = score_question(_mcq(negative=1), None)
    assert result['status'] == 'EVALUATED'
    assert result['mark'] == 0


def test_mcq_correct_and_wrong():
    q = _mcq(negative=1)
    assert score_question(q, {'studentAnswer': 'a'})['mark'] == 4
    assert score_question(q, {'studentAnswer': 'b'})['mark'] == -1


def test_negative_mark_precedence():
    q = _mcq(negative=0, marks=4)
    assert negative_mark(q, None) == 0
    assert negative_mark(q, _settings(mcq_global_negative_mark=0.5)) == 0.5
    assert negative_mark(q, _settings(mcq_global_negative_percent=25)) == 1.0
    q.negative_marks = 2
    assert negative_mark(q, _settings(mcq_global_negative_mark=0.5)) == 2


def test_mmcq_partial_marking():
    q = _mcq(QT.MMCQ, correct=("a", "b"), marks=4)
    assert score_question(q, ['a', 'b'])['mark'] == 4
    assert score_question(q, ['a'])['mark'] == 0
    partial = score_question(q, ['a'], _settings(mcq_global_partial_marking=True))
    assert partial['mark'] == 2
    # a wrong option outweighs partial credit
    wrong = score_question(q, ['a', 'c'], _settings(mcq_global_partial_marking=True, mcq_global_negative_mark=1))
    assert wrong['mark'] == -1


def test_true_false():
    q = _question(QT.TRUE_FALSE, {}, {'trueFalseAnswer': False}, marks=2, negative=0.5)
    assert score_question(q, 'False')['mark'] == 2
    assert score_question(q, True)['mark'] == -0.5


def _blank_question(mode, marks=4):
    data = {'config': {'blankCount': 2, 'blankWeights': {'0': 1, '1': 3}, 'evaluationType': mode}}
    solution = {'acceptableAnswers': {
        '0': {'answers': ['Paris'], 'type': 'TEXT'},
        '1': {'answers': ['42'], 'type': 'NUMBER'},
    }}
    return _question(QT.FILL_THE_BLANK, data, solution, marks=marks)


def test_fill_the_blank_modes():
    answer = {'0': ' paris ', '1': '42.0'}
    assert score_question(_blank_question('NORMAL'), answer)['mark'] == 4

    half = {'0': 'paris', '1': '41'}
    assert score_question(_blank_question('NORMAL'), half)['mark'] == 1
    assert score_question(_blank_question('STRICT'), half)['mark'] == 0
    hybrid = score_question(_blank_question('HYBRID'), half)
    assert hybrid['status'] == 'UNEVALUATED'
    assert hybrid['mark'] == 1


def test_fill_the_blank_case_sensitive_types():
    data = {'config': {'blankCount': 1, 'blankWeights': {}, 'evaluationType': 'NORMAL'}}
    solution = {'acceptableAnswers': {'0': {'answers': ['NaCl'], 'type': 'UPPERCASE'}}}
    q = _question(QT.FILL_THE_BLANK, data, solution, marks=1)
    assert score_question(q, {'0': 'NaCl'})['mark'] == 1
    assert score_question(q, {'0': 'nacl'})['mark'] == 0


def test_matching():
    data = {'options': [
        {'id': 'l1', 'isLeft': True, 'text': 'dog', 'orderIndex': 0},
        {'id': 'l2', 'isLeft': True, 'text': 'cat', 'orderIndex': 1},
        {'id': 'r1', 'isLeft': False, 'text': 'bark', 'orderIndex': 2},
        {'id': 'r2', 'isLeft': False, 'text': 'meow', 'orderIndex': 3},
    ]}
    solution = {'options': [{'id': 'l1', 'matchPairIds': ['r1']}, {'id': 'l2', 'matchPairIds': ['r2']}]}
    q = _question(QT.MATCHING, data, solution, marks=4)
    assert score_question(q, {'l1': ['r1'], 'l2': ['r2']})['mark'] == 4
    assert score_question(q, {'l1': 'r1', 'l2': ['r1']})['mark'] == 2


def test_descriptive_pending_manual():
    q = _question(QT.DESCRIPTIVE, {'config': {}}, {'modelAnswer': 'x'})
    result = score_question(q, {'studentAnswer': 'an essay'})
    assert result == {'status': 'UNEVALUATED', 'mark': 0, 'remarks': 'Pending manual evaluation'}


def _response(answers, results=None):
    return models.QuizResponse(quiz_id=1, student_id=2, start_time=models.utcnow(), duration_minutes=30,
                               response=answers, evaluation_results=results)


def test_evaluate_response_aggregates():
    q1 = _mcq(qid=1, marks=2)
    q2 = _question(QT.TRUE_FALSE, {}, {'trueFalseAnswer': True}, marks=3, qid=2)
    resp = evaluate_response(_response({'1': {'studentAnswer': 'a'}, '2': {'studentAnswer': 'True'}}), [q1, q2])
    assert resp.score == 5
    assert resp.total_score == 5
    assert resp.evaluation_status == models.EvaluationStatus.EVALUATED
    assert resp.evaluation_results['v'] == 'v1'
    assert set(resp.evaluation_results['data']) == {'1', '2'}


def test_evaluate_response_pending_and_manual_kept():
    q1 = _mcq(qid=1, marks=2)
    q2 = _question(QT.DESCRIPTIVE, {'config': {}}, {}, marks=5, qid=2)
    resp = evaluate_response(_response({'1': {'studentAnswer': 'a'}, '2': {'studentAnswer': 'text'}}), [q1, q2])
    assert resp.evaluation_status == models.EvaluationStatus.NOT_EVALUATED

    manual = {'data': {'2': {'status': 'EVALUATED_MANUALLY', 'mark': 4, 'remarks': 'good'}}, 'v': 'v1'}
    resp = evaluate_response(_response({'1': {'studentAnswer': 'a'}, '2': {'studentAnswer': 'text'}}, manual),
                             [q1, q2])
    assert resp.evaluation_results['data']['2']['mark'] == 4
    assert resp.score == 6
    assert resp.evaluation_status == models.EvaluationStatus.EVALUATED_MANUALLY


def test_evaluate_response_failure_marks_failed():
    broken = models.Question(id=1, type=QT.MCQ, question="q", marks=1,
                             question_data={'version': 1, 'data': {}},
                             solution={'version': 1, 'data': {'correctOptions': [{'isCorrect': True}]}})
    resp = evaluate_response(_response({'1': 'a'}), [broken])
    assert resp.evaluation_status == models.EvaluationStatus.FAILED


def test_malformed_answers_count_as_unanswered():
    assert normalize_student_answer(QT.MMCQ, {'studentAnswer': 1.5}) is None
    assert normalize_student_answer(QT.MMCQ, {'a': True}) is None
    assert normalize_student_answer(QT.MATCHING, {'l1': 5}) == {'l1': ['5']}
    assert normalize_student_answer(QT.MATCHING, {'l1': {'r1': True}, 'l2': ['r2']}) == {'l2': ['r2']}
    assert normalize_student_answer(QT.MATCHING, 1.5) is None


def test_one_malformed_answer_does_not_fail_the_response():
    q1 = _mcq(QT.MMCQ, correct=("a", "b"), qid=1, marks=2)
    q2 = _question(QT.TRUE_FALSE, {}, {'trueFalseAnswer': True}, marks=3, qid=2)
    resp = evaluate_response(_response({'1': {'studentAnswer': 1.5}, '2': {'studentAnswer': True}}), [q1, q2])
    assert resp.evaluation_status == models.EvaluationStatus.EVALUATED
    assert resp.score == 3
    assert resp.evaluation_results['data']['1'] == {'status': 'EVALUATED', 'mark': 0, 'remarks': 'Not answered'}
