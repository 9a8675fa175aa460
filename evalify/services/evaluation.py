"""Scoring of quiz responses.

Objective question types (MCQ, MMCQ, TRUE_FALSE, FILL_THE_BLANK,
MATCHING) are scored automatically. DESCRIPTIVE, CODING and FILE_UPLOAD
answers are left UNEVALUATED for staff to mark through
`update_question_score`.

Results are stored on the response as

    {"data": {"<question id>": {"status", "mark", "remarks"}}, "v": "v1"}

Manually marked results survive re-evaluation.
"""

import json
import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlmodel import Session

from .. import models, repositories, schemas
from ..errors import NotFoundError
from ..serializers import response_out, settings_out, user_brief
from ..utils.versioning import unwrap
from .quizzes import QuizService, apply_evaluation_settings

logger = logging.getLogger("evalify.evaluation")

RESULTS_VERSION = "v1"
PENDING_REMARK = "Pending manual evaluation"

_QE = models.QuestionEvaluationStatus
_SUBMITTED = (models.SubmissionStatus.SUBMITTED, models.SubmissionStatus.AUTO_SUBMITTED)


def answer_value(entry: Any) -> Any:
    """Unpack a stored `{studentAnswer: ...}` entry; bare values pass through."""
    if isinstance(entry, dict) and 'studentAnswer' in entry:
        return entry['studentAnswer']
    return entry


def normalize_student_answer(qtype: models.QuestionType, raw: Any) -> Any:
    """Convert a stored answer into the canonical form used for scoring."""
    value = answer_value(raw)
    qtype = models.QuestionType(qtype)
    if value is None:
        return None
    if qtype == models.QuestionType.MCQ:
        if isinstance(value, list):
            value = value[0] if value else None
        if isinstance(value, dict):
            value = value.get('id')
        return None if value is None else str(value)
    if qtype == models.QuestionType.MMCQ:
        if isinstance(value, (str, int)):
            value = [value]
        if not isinstance(value, list):
            return None
        return [str(v.get('id') if isinstance(v, dict) else v) for v in value]
    if qtype == models.QuestionType.TRUE_FALSE:
        if isinstance(value, bool):
            return 'True' if value else 'False'
        text = str(value).strip().lower()
        if text in ('true', 'false'):
            return text.capitalize()
        return None
    if qtype == models.QuestionType.FILL_THE_BLANK:
        if isinstance(value, list):
            return {str(i): '' if v is None else str(v) for i, v in enumerate(value)}
        if isinstance(value, dict):
            return {str(k): '' if v is None else str(v) for k, v in value.items()}
        return None
    if qtype == models.QuestionType.MATCHING:
        if not isinstance(value, dict):
            return None
        out = {}
        for left, right in value.items():
            if isinstance(right, (str, int)):
                right = [right]
            if not isinstance(right, list):
                continue
            out[str(left)] = [str(r) for r in right]
        return out
    if qtype == models.QuestionType.CODING:
        if isinstance(value, str):
            return {'code': value, 'language': None}
        if isinstance(value, dict):
            return {'code': value.get('code') or '', 'language': value.get('language')}
        return None
    if qtype == models.QuestionType.FILE_UPLOAD:
        if isinstance(value, dict):
            return {'fileUrl': value.get('fileUrl'), 'fileName': value.get('fileName'),
                    'fileSize': value.get('fileSize')}
        return None
    return str(value)


def _is_blank(answer: Any) -> bool:
    if answer is None:
        return True
    if isinstance(answer, str):
        return not answer.strip()
    if isinstance(answer, dict):
        if 'code' in answer:
            return not (answer.get('code') or '').strip()
        if 'fileUrl' in answer:
            return not answer.get('fileUrl')
        return all(_is_blank(v) for v in answer.values())
    if isinstance(answer, list):
        return len(answer) == 0
    return False


def _result(status: models.QuestionEvaluationStatus, mark: float, remarks: Optional[str] = None) -> dict:
    return {'status': status.value, 'mark': round(float(mark), 2), 'remarks': remarks}


def negative_mark(question: models.Question, settings: Optional[models.QuizEvaluationSettings]) -> float:
    """Penalty for a wrong MCQ/MMCQ answer: question value, then quiz fixed, then quiz percent."""
    if question.negative_marks and question.negative_marks > 0:
        return question.negative_marks
    if settings is not None:
        if settings.mcq_global_negative_mark:
            return settings.mcq_global_negative_mark
        if settings.mcq_global_negative_percent:
            return question.marks * settings.mcq_global_negative_percent / 100.0
    return 0.0


def _blank_matches(student: str, accepted: Iterable[str], blank_type: str) -> bool:
    student = (student or '').strip()
    for candidate in accepted:
        candidate = str(candidate).strip()
        if blank_type == 'NUMBER':
            try:
                if float(student) == float(candidate):
                    return True
            except ValueError:
                continue
        elif blank_type in ('UPPERCASE', 'LOWERCASE'):
            if student == candidate:
                return True
        elif student.lower() == candidate.lower():
            return True
    return False


def score_question(question: models.Question, raw_answer: Any,
                   settings: Optional[models.QuizEvaluationSettings] = None) -> dict:
    """Score one answer and return `{status, mark, remarks}`."""
    qtype = question.type
    answer = normalize_student_answer(qtype, raw_answer)
    if _is_blank(answer):
        return _result(_QE.EVALUATED, 0, "Not answered")
    data = unwrap(question.question_data) or {}
    solution = unwrap(question.solution) or {}
    marks = question.marks

    if qtype == models.QuestionType.MCQ:
        correct = {str(c['id']) for c in solution.get('correctOptions') or [] if c.get('isCorrect')}
        if answer in correct:
            return _result(_QE.EVALUATED, marks)
        return _result(_QE.EVALUATED, -negative_mark(question, settings))

    if qtype == models.QuestionType.MMCQ:
        correct = {str(c['id']) for c in solution.get('correctOptions') or [] if c.get('isCorrect')}
        selected = set(answer)
        if selected == correct:
            return _result(_QE.EVALUATED, marks)
        if selected - correct:
            return _result(_QE.EVALUATED, -negative_mark(question, settings))
        if settings is not None and settings.mcq_global_partial_marking and correct:
            weights = {str(o.get('id')): o.get('marksWeightage') or 1 for o in data.get('options') or []}
            total = sum(weights.get(i, 1) for i in correct)
            got = sum(weights.get(i, 1) for i in selected & correct)
            return _result(_QE.EVALUATED, marks * got / total if total else 0, "Partial marks")
        return _result(_QE.EVALUATED, 0)

    if qtype == models.QuestionType.TRUE_FALSE:
        expected = 'True' if solution.get('trueFalseAnswer') else 'False'
        if answer == expected:
            return _result(_QE.EVALUATED, marks)
        return _result(_QE.EVALUATED, -(question.negative_marks or 0))

    if qtype == models.QuestionType.FILL_THE_BLANK:
        config = data.get('config') or {}
        accepted = solution.get('acceptableAnswers') or config.get('acceptableAnswers') or {}
        weights = config.get('blankWeights') or {}
        mode = config.get('evaluationType') or 'NORMAL'
        if not accepted:
            return _result(_QE.UNEVALUATED, 0, PENDING_REMARK)
        total = got = 0.0
        all_right = True
        for blank, rule in accepted.items():
            weight = float(weights.get(blank, 1) or 1)
            total += weight
            if _blank_matches(answer.get(str(blank), ''), rule.get('answers') or [], rule.get('type') or 'TEXT'):
                got += weight
            else:
                all_right = False
        if mode == 'STRICT':
            return _result(_QE.EVALUATED, marks if all_right else 0)
        partial = marks * got / total if total else 0
        if mode == 'HYBRID' and not all_right:
            return _result(_QE.UNEVALUATED, partial, "Unmatched blanks need manual review")
        return _result(_QE.EVALUATED, partial)

    if qtype == models.QuestionType.MATCHING:
        pairs = {str(o['id']): {str(p) for p in o.get('matchPairIds') or []}
                 for o in solution.get('options') or [] if o.get('matchPairIds')}
        if not pairs:
            return _result(_QE.UNEVALUATED, 0, PENDING_REMARK)
        right = sum(1 for left, expected in pairs.items() if set(answer.get(left, [])) == expected)
        return _result(_QE.EVALUATED, marks * right / len(pairs))

    return _result(_QE.UNEVALUATED, 0, PENDING_REMARK)


def aggregate(results: Dict[str, dict]) -> models.EvaluationStatus:
    statuses = {r.get('status') for r in results.values()}
    if _QE.UNEVALUATED.value in statuses:
        return models.EvaluationStatus.NOT_EVALUATED
    if _QE.EVALUATED_MANUALLY.value in statuses:
        return models.EvaluationStatus.EVALUATED_MANUALLY
    return models.EvaluationStatus.EVALUATED


def evaluate_response(response: models.QuizResponse, questions: List[models.Question],
                      settings: Optional[models.QuizEvaluationSettings] = None) -> models.QuizResponse:
    """Score every question of `response` in place.

    Manually marked results are kept. Any unexpected error leaves the
    response FAILED instead of raising.
    """
    previous = ((response.evaluation_results or {}).get('data')) or {}
    answers = response.response or {}
    try:
        results = {}
        for question in questions:
            key = str(question.id)
            kept = previous.get(key)
            if kept and kept.get('status') == _QE.EVALUATED_MANUALLY.value:
                results[key] = kept
            else:
                results[key] = score_question(question, answers.get(key), settings)
    except Exception:
        logger.exception("response_evaluation_failed quiz_id=%s student_id=%s", response.quiz_id, response.student_id)
        response.evaluation_status = models.EvaluationStatus.FAILED
        return response
    response.evaluation_results = {'data': results, 'v': RESULTS_VERSION}
    response.score = round(sum(r['mark'] for r in results.values()), 2)
    response.total_score = round(sum(q.marks for q in questions), 2)
    response.evaluation_status = aggregate(results)
    response.updated_at = models.utcnow()
    return response


class EvaluationService:
    """Staff-facing evaluation: settings, bulk scoring and manual marks."""
    def __init__(self, session: Session):
        self.session = session
        self.quizzes = QuizService(session)
        self.responses = repositories.ResponseRepository(session)
        self.quiz_questions = repositories.QuizQuestionRepository(session)

    def _questions(self, quiz_id: int) -> List[models.Question]:
        return [question for _, question in self.quiz_questions.list_for_quiz(quiz_id)]

    def _response(self, quiz_id: int, student_id: int) -> models.QuizResponse:
        response = self.responses.get(quiz_id, student_id)
        if response is None:
            raise NotFoundError("Quiz response not found")
        return response

    def get_settings(self, user_id: int, quiz_id: int) -> dict:
        self.quizzes.require_quiz(user_id, quiz_id)
        settings = self.quizzes.repo.get_settings(quiz_id)
        if settings is None:
            raise NotFoundError("Evaluation settings not found")
        return settings_out(settings)

    def update_settings(self, user_id: int, quiz_id: int, patch: schemas.EvaluationSettingsIn) -> dict:
        self.quizzes.require_quiz(user_id, quiz_id)
        return settings_out(apply_evaluation_settings(self.session, quiz_id, patch))

    def evaluate_quiz(self, user_id: int, quiz_id: int) -> dict:
        self.quizzes.require_quiz(user_id, quiz_id)
        questions = self._questions(quiz_id)
        settings = self.quizzes.repo.get_settings(quiz_id)
        counts = {'evaluated': 0, 'pending_manual': 0, 'failed': 0}
        for response, _ in self.responses.list_for_quiz(quiz_id, statuses=list(_SUBMITTED)):
            evaluate_response(response, questions, settings)
            self.session.add(response)
            if response.evaluation_status == models.EvaluationStatus.FAILED:
                counts['failed'] += 1
            elif response.evaluation_status == models.EvaluationStatus.NOT_EVALUATED:
                counts['pending_manual'] += 1
            else:
                counts['evaluated'] += 1
        self.session.commit()
        logger.info("response_evaluated %s", json.dumps({'quiz_id': quiz_id, **counts}))
        return counts

    def list_responses(self, user_id: int, quiz_id: int) -> List[dict]:
        self.quizzes.require_quiz(user_id, quiz_id)
        out = []
        for response, student in self.responses.list_for_quiz(quiz_id):
            item = response_out(response, include_answers=False)
            item['student'] = user_brief(student)
            out.append(item)
        return out

    def get_student_response(self, user_id: int, quiz_id: int, student_id: int) -> dict:
        self.quizzes.require_quiz(user_id, quiz_id)
        response = self._response(quiz_id, student_id)
        results = ((response.evaluation_results or {}).get('data')) or {}
        answers = response.response or {}
        out = response_out(response)
        out['student'] = user_brief(self.quizzes.users.get(student_id))
        out['questions'] = [{
            'id': q.id,
            'type': q.type.value,
            'question': q.question,
            'marks': q.marks,
            'question_data': unwrap(q.question_data) or {},
            'solution': unwrap(q.solution) or {},
            'student_answer': answer_value(answers.get(str(q.id))),
            'result': results.get(str(q.id)),
        } for q in self._questions(quiz_id)]
        return out

    def save_evaluation(self, user_id: int, quiz_id: int, student_id: int,
                        data: schemas.SaveEvaluationIn) -> dict:
        self.quizzes.require_quiz(user_id, quiz_id)
        response = self._response(quiz_id, student_id)
        response.score = data.score
        response.total_score = data.total_score
        response.evaluation_results = data.evaluation_results
        response.evaluation_status = models.EvaluationStatus.EVALUATED
        response.updated_at = models.utcnow()
        return response_out(self.responses.save(response))

    def update_question_score(self, user_id: int, quiz_id: int, student_id: int, question_id: int,
                              mark: Optional[float], remarks: Optional[str] = None) -> dict:
        """Set (or clear with `mark=None`) the manual mark of one question."""
        self.quizzes.require_quiz(user_id, quiz_id)
        response = self._response(quiz_id, student_id)
        questions = self._questions(quiz_id)
        question = next((q for q in questions if q.id == question_id), None)
        if question is None:
            raise NotFoundError("Question not found in this quiz")
        if mark is not None and mark > question.marks:
            raise ValueError(f"Mark cannot exceed the question's maximum of {question.marks:g}")
        floor = -negative_mark(question, self.quizzes.repo.get_settings(quiz_id)) or 0.0
        if mark is not None and mark < floor:
            raise ValueError(f"Mark cannot be below {floor:g}")

        current = dict(((response.evaluation_results or {}).get('data')) or {})
        if mark is None:
            current[str(question_id)] = _result(_QE.UNEVALUATED, 0, remarks)
        else:
            current[str(question_id)] = _result(_QE.EVALUATED_MANUALLY, mark, remarks)
        response.evaluation_results = {'data': current, 'v': RESULTS_VERSION}
        response.score = round(sum(r.get('mark') or 0 for r in current.values()), 2)
        response.total_score = round(sum(q.marks for q in questions), 2)
        if mark is not None:
            response.evaluation_status = models.EvaluationStatus.EVALUATED_MANUALLY
        else:
            response.evaluation_status = aggregate(current)
        response.updated_at = models.utcnow()
        response = self.responses.save(response)
        logger.info("question_score_updated %s", json.dumps({'quiz_id': quiz_id, 'student_id': student_id,
                                                             'question_id': question_id, 'mark': mark}))
        return response_out(response)
