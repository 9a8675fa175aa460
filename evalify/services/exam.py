"""Student side of quizzes: listings, the attempt lifecycle and results.

A student may attempt a published quiz when they are assigned to it
directly or through one of their batches. Attempts (`QuizResponse`) are
keyed by `(quiz_id, student_id)`; starting twice resumes the same attempt.
All times are naive UTC.
"""

import copy
import json
import logging
import math
import random
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlmodel import Session

from .. import models, repositories
from ..errors import ForbiddenError, NotFoundError
from ..serializers import course_out, lab_out, quiz_out, response_out, user_brief
from ..utils.ip import is_client_in_lab_subnets
from ..utils.versioning import unwrap
from .evaluation import answer_value

logger = logging.getLogger("evalify.exam")

INSTRUCTIONS_LEAD = timedelta(minutes=5)
_SUBMITTED = (models.SubmissionStatus.SUBMITTED, models.SubmissionStatus.AUTO_SUBMITTED)


def _log(event: str, **payload) -> None:
    logger.info("%s %s", event, json.dumps(payload, default=str))


def student_status(quiz: models.Quiz, response: Optional[models.QuizResponse],
                   now: Optional[datetime] = None) -> str:
    """UPCOMING, ACTIVE, MISSED or COMPLETED from the student's point of view."""
    if response is not None and response.submission_status in _SUBMITTED:
        return 'COMPLETED'
    now = now or models.utcnow()
    if now < quiz.start_time:
        return 'UPCOMING'
    if now > quiz.end_time:
        return 'MISSED'
    return 'ACTIVE'


def student_question_view(question: models.Question, rng: Optional[random.Random] = None) -> dict:
    """Question payload safe to show during an attempt (no solutions).

    When `rng` is given, option order is shuffled with it.
    """
    qtype = question.type
    data = copy.deepcopy(unwrap(question.question_data) or {})
    solution = unwrap(question.solution) or {}
    view: Dict = {}

    if qtype in (models.QuestionType.MCQ, models.QuestionType.MMCQ):
        options = sorted(data.get('options') or [], key=lambda o: o.get('orderIndex', 0))
        view['options'] = [
            {'id': o.get('id'), 'optionText': o.get('optionText'), 'orderIndex': o.get('orderIndex')} for o in options
        ]
    elif qtype == models.QuestionType.FILL_THE_BLANK:
        config = data.get('config') or {}
        answers = solution.get('acceptableAnswers') or config.get('acceptableAnswers') or {}
        view['config'] = {
            'blankCount': config.get('blankCount', len(answers)),
            'blankWeights': config.get('blankWeights') or {},
            'blankTypes': {k: (v or {}).get('type') or 'TEXT' for k, v in answers.items()},
            'evaluationType': config.get('evaluationType') or 'NORMAL',
        }
    elif qtype == models.QuestionType.DESCRIPTIVE:
        config = data.get('config') or {}
        view['config'] = {'minWords': config.get('minWords'), 'maxWords': config.get('maxWords')}
    elif qtype == models.QuestionType.MATCHING:
        options = sorted(data.get('options') or [], key=lambda o: o.get('orderIndex', 0))
        view['options'] = [
            {'id': o.get('id'), 'isLeft': o.get('isLeft'), 'text': o.get('text'), 'orderIndex': o.get('orderIndex')}
            for o in options
        ]
    elif qtype == models.QuestionType.CODING:
        config = dict(data.get('config') or {})
        config['language'] = config.get('language') or 'PYTHON'
        view['config'] = config
        view['testCases'] = [
            {k: v for k, v in tc.items() if k != 'expectedOutput'}
            for tc in data.get('testCases') or []
            if tc.get('visibility', 'VISIBLE') == 'VISIBLE'
        ]
    elif qtype == models.QuestionType.FILE_UPLOAD:
        view['config'] = data.get('config') or {}
        view['attachedFiles'] = data.get('attachedFiles') or []

    if rng is not None and view.get('options'):
        if qtype == models.QuestionType.MATCHING:
            left = [o for o in view['options'] if o['isLeft']]
            right = [o for o in view['options'] if not o['isLeft']]
            rng.shuffle(right)
            view['options'] = left + right
        else:
            rng.shuffle(view['options'])
    return view


class StudentQuizService:
    """Quiz listings and instruction pages for students."""
    def __init__(self, session: Session):
        self.session = session
        self.quizzes = repositories.QuizRepository(session)
        self.courses = repositories.CourseRepository(session)
        self.batches = repositories.BatchRepository(session)
        self.responses = repositories.ResponseRepository(session)
        self.labs = repositories.LabRepository(session)
        self.users = repositories.UserRepository(session)

    def has_access(self, quiz_id: int, student_id: int) -> bool:
        if self.quizzes.is_assigned_student(quiz_id, student_id):
            return True
        return self.quizzes.is_assigned_batch(quiz_id, self.batches.batch_ids_for_student(student_id))

    def get_published(self, quiz_id: int) -> models.Quiz:
        quiz = self.quizzes.get(quiz_id)
        if not quiz or not quiz.publish_quiz:
            raise NotFoundError("Quiz not found or not published")
        return quiz

    def _collect(self, student_id: int, course_ids: List[int], search: Optional[str], status: Optional[str]):
        now = models.utcnow()
        grouped: Dict[int, dict] = {}
        order: List[int] = []
        for quiz, course_id in self.quizzes.list_for_courses(course_ids, published_only=True, search=search):
            if quiz.id not in grouped:
                if not self.has_access(quiz.id, student_id):
                    continue
                response = self.responses.get(quiz.id, student_id)
                item = quiz_out(quiz)
                item['status'] = student_status(quiz, response, now)
                item['courses'] = []
                grouped[quiz.id] = item
                order.append(quiz.id)
            course = self.courses.get(course_id)
            if course:
                grouped[quiz.id]['courses'].append({'id': course.id, 'name': course.name, 'code': course.code})
        items = [grouped[qid] for qid in order]
        if status and status != 'ALL':
            items = [i for i in items if i['status'] == status]
        return items

    def list_all(self, student_id: int, search: Optional[str] = None, status: Optional[str] = None) -> List[dict]:
        return self._collect(student_id, self.courses.course_ids_for_student(student_id), search, status)

    def list_by_course(self, student_id: int, course_id: int, search: Optional[str] = None,
                       status: Optional[str] = None, limit: int = 12, offset: int = 0) -> dict:
        if not self.courses.get(course_id):
            raise NotFoundError("Course not found")
        enrolled = set(self.courses.course_ids_for_student(student_id))
        enrolled.update(self.courses.course_ids_for_batches(self.batches.batch_ids_for_student(student_id)))
        if course_id not in enrolled:
            raise ForbiddenError("You are not enrolled in this course")
        items = self._collect(student_id, [course_id], search, status)
        offset, limit = max(0, offset), max(1, min(limit, 100))
        window = items[offset:offset + limit]
        return {'quizzes': window, 'total': len(items), 'hasMore': offset + len(window) < len(items)}

    def get(self, student_id: int, quiz_id: int, client_ip: Optional[str]) -> dict:
        """Instruction page for a quiz, available from shortly before it starts."""
        quiz = self.get_published(quiz_id)
        if not self.has_access(quiz.id, student_id):
            raise ForbiddenError("You don't have access to this quiz")
        now = models.utcnow()
        opens_at = quiz.start_time - INSTRUCTIONS_LEAD
        if now < opens_at:
            minutes = math.ceil((opens_at - now).total_seconds() / 60)
            raise ForbiddenError(f"Quiz instructions will be available {minutes} minutes before the quiz starts")

        labs = self.labs.get_many(self.quizzes.linked_ids(quiz.id, 'labs'))
        student_courses = set(self.courses.course_ids_for_student(student_id))
        courses = [c for c in self.courses.get_many(self.quizzes.linked_ids(quiz.id, 'courses'))
                   if c.id in student_courses]
        response = self.responses.get(quiz.id, student_id)

        out = quiz_out(quiz)
        out['status'] = student_status(quiz, response, now)
        out['is_in_lab_subnet'] = (not labs) or is_client_in_lab_subnets(client_ip, [lab.ip_subnet for lab in labs])
        out['courses'] = [course_out(c) for c in courses]
        out['instructor'] = user_brief(self.users.get(quiz.created_by_id)) if quiz.created_by_id else None
        out['labs'] = [lab_out(lab) for lab in labs]
        out['response'] = None
        if response:
            out['response'] = {
                'start_time': response.start_time.isoformat(),
                'end_time': response.end_time.isoformat() if response.end_time else None,
                'submission_status': response.submission_status.value,
            }
        return out


class ExamService:
    """Start, resume, answer and submit a quiz attempt."""
    def __init__(self, session: Session):
        self.session = session
        self.responses = repositories.ResponseRepository(session)
        self.quiz_questions = repositories.QuizQuestionRepository(session)
        self.sections = repositories.SectionRepository(session)
        self.student_quizzes = StudentQuizService(session)

    def start(self, student_id: int, quiz_id: int, password: Optional[str], client_ip: Optional[str]) -> dict:
        quiz = self.student_quizzes.get_published(quiz_id)
        now = models.utcnow()
        if now < quiz.start_time:
            raise ForbiddenError("Quiz has not started yet")
        if now >= quiz.end_time:
            raise ForbiddenError("Quiz has already ended")
        if quiz.password and password != quiz.password:
            raise ForbiddenError("Invalid quiz password")
        if not self.student_quizzes.has_access(quiz.id, student_id):
            raise ForbiddenError("You don't have access to this quiz")
        lab_ids = self.student_quizzes.quizzes.linked_ids(quiz.id, 'labs')
        if lab_ids:
            subnets = [lab.ip_subnet for lab in self.student_quizzes.labs.get_many(lab_ids)]
            if not is_client_in_lab_subnets(client_ip, subnets):
                raise ForbiddenError("You must be in an authorized lab to start this quiz")

        response = self.responses.get(quiz.id, student_id)
        if response is not None:
            if response.submission_status in _SUBMITTED:
                raise ForbiddenError("Quiz already submitted")
            ips = list(response.ip or [])
            if client_ip and client_ip not in ips:
                ips.append(client_ip)
                response.ip = ips
                response.updated_at = now
                response = self.responses.save(response)
            _log("quiz_resumed", quiz_id=quiz.id, student_id=student_id, ip=client_ip)
            return {'resumed': True, **self._timing(response)}

        response = models.QuizResponse(
            quiz_id=quiz.id,
            student_id=student_id,
            start_time=now,
            end_time=min(quiz.end_time, now + timedelta(minutes=quiz.duration_minutes)),
            ip=[client_ip] if client_ip else [],
            duration_minutes=quiz.duration_minutes,
            response={},
            violations=[],
        )
        response = self.responses.save(response)
        _log("quiz_started", quiz_id=quiz.id, student_id=student_id, ip=client_ip)
        return {'resumed': False, **self._timing(response)}

    @staticmethod
    def _timing(response: models.QuizResponse) -> dict:
        return {
            'start_time': response.start_time.isoformat(),
            'end_time': response.end_time.isoformat() if response.end_time else None,
            'duration_minutes': response.duration_minutes,
        }

    def _get_response(self, student_id: int, quiz_id: int) -> models.QuizResponse:
        response = self.responses.get(quiz_id, student_id)
        if response is None:
            raise NotFoundError("Quiz response not found")
        return response

    def _open_attempt(self, student_id: int, quiz_id: int) -> models.QuizResponse:
        """The student's running attempt; raises when absent, submitted or expired."""
        response = self.responses.get(quiz_id, student_id)
        if response is None:
            raise ForbiddenError("You must start the quiz before accessing questions")
        if response.submission_status in _SUBMITTED:
            raise ForbiddenError("Cannot access questions for a submitted quiz")
        if response.end_time is not None and response.end_time <= models.utcnow():
            raise ForbiddenError("Quiz time has ended")
        return response

    def get_questions(self, student_id: int, quiz_id: int) -> dict:
        quiz = self.student_quizzes.get_published(quiz_id)
        response = self._open_attempt(student_id, quiz_id)
        seed = f"{quiz.id}:{student_id}"
        option_rng = random.Random(seed + ":options") if quiz.shuffle_options else None

        groups: Dict[Optional[int], List] = {}
        for link, question in self.quiz_questions.list_for_quiz(quiz.id):
            groups.setdefault(link.section_id, []).append((link, question))
        section_order = [None] + [s.id for s in self.sections.list_by_quiz(quiz.id)]
        question_rng = random.Random(seed + ":questions") if quiz.shuffle_questions else None

        out = []
        for section_id in section_order:
            group = groups.get(section_id, [])
            if question_rng is not None:
                question_rng.shuffle(group)
            for link, question in group:
                out.append({
                    'id': question.id,
                    'quiz_question_id': link.id,
                    'section_id': link.section_id,
                    'order_index': link.order_index,
                    'type': question.type.value,
                    'question': question.question,
                    'marks': question.marks,
                    'negative_marks': question.negative_marks,
                    'question_data': student_question_view(question, option_rng),
                })
        return {'questions': out, 'answers': response.response or {}, **self._timing(response)}

    def get_sections(self, student_id: int, quiz_id: int) -> List[dict]:
        self.student_quizzes.get_published(quiz_id)
        self._open_attempt(student_id, quiz_id)
        return [{'id': s.id, 'name': s.name, 'order_index': s.order_index}
                for s in self.sections.list_by_quiz(quiz_id)]

    def save_answer(self, student_id: int, quiz_id: int, patch: Dict) -> dict:
        """Shallow-merge `patch` (question id -> `{studentAnswer: ...}`) into the attempt."""
        response = self._get_response(student_id, quiz_id)
        if response.submission_status in _SUBMITTED:
            raise ForbiddenError("Quiz already submitted")
        if response.end_time is not None and response.end_time <= models.utcnow():
            raise ForbiddenError("Quiz time has ended")
        merged = dict(response.response or {})
        merged.update(patch)
        response.response = merged
        response.updated_at = models.utcnow()
        self.responses.save(response)
        return {'saved': True, 'answered': len(merged)}

    def submit(self, student_id: int, quiz_id: int) -> dict:
        response = self._get_response(student_id, quiz_id)
        if response.submission_status in _SUBMITTED:
            raise ForbiddenError("Quiz already submitted")
        now = models.utcnow()
        response.submission_status = models.SubmissionStatus.SUBMITTED
        response.submission_time = now
        response.updated_at = now
        response = self.responses.save(response)
        _log("quiz_submitted", quiz_id=quiz_id, student_id=student_id)
        return response_out(response, include_answers=False)

    def check_auto_submit_status(self, student_id: int, quiz_id: int) -> dict:
        quiz = self.student_quizzes.get_published(quiz_id)
        response = self.responses.get(quiz_id, student_id)
        if response is None:
            return {'autoSubmitted': False, 'submission_status': None}
        now = models.utcnow()
        auto = False
        if (quiz.auto_submit and response.submission_status == models.SubmissionStatus.NOT_SUBMITTED
                and response.end_time is not None and response.end_time <= now):
            auto = self.responses.mark_auto_submitted(response, now)
            if auto:
                _log("quiz_auto_submitted", quiz_id=quiz_id, student_id=student_id, source="status_check")
            self.session.commit()
            self.session.refresh(response)
        return {'autoSubmitted': auto, 'submission_status': response.submission_status.value}

    def record_violation(self, student_id: int, quiz_id: int, violation: str) -> dict:
        response = self._get_response(student_id, quiz_id)
        if response.submission_status in _SUBMITTED:
            raise ForbiddenError("Quiz already submitted")
        violations = list(response.violations or [])
        violations.append({'violation': violation, 'time': models.utcnow().isoformat()})
        response.violations = violations
        self.responses.save(response)
        logger.warning("quiz_violation %s", json.dumps({'quiz_id': quiz_id, 'student_id': student_id,
                                                        'violation': violation}))
        return {'violations': len(violations)}

    def get_response(self, student_id: int, quiz_id: int) -> Optional[dict]:
        """The student's own attempt; scores stay hidden until results are published."""
        response = self.responses.get(quiz_id, student_id)
        if response is None:
            return None
        out = response_out(response)
        quiz = self.student_quizzes.quizzes.get(quiz_id)
        if quiz is None or not quiz.publish_result:
            out.update(score=None, total_score=None, evaluation_results=None)
        return out

    def get_result(self, student_id: int, quiz_id: int) -> dict:
        """Evaluated result with per-question marks, once results are published."""
        quiz = self.student_quizzes.get_published(quiz_id)
        response = self.responses.get(quiz_id, student_id)
        if not quiz.publish_result or response is None or response.submission_status not in _SUBMITTED:
            raise ForbiddenError("Results are not published yet")
        results = ((response.evaluation_results or {}).get('data')) or {}
        answers = response.response or {}
        questions = []
        for link, question in self.quiz_questions.list_for_quiz(quiz.id):
            key = str(question.id)
            result = results.get(key) or {}
            questions.append({
                'id': question.id,
                'type': question.type.value,
                'question': question.question,
                'marks': question.marks,
                'question_data': student_question_view(question),
                'solution': unwrap(question.solution) or {},
                'explanation': question.explanation,
                'student_answer': answer_value(answers.get(key)),
                'obtained': result.get('mark'),
                'status': result.get('status'),
                'remarks': result.get('remarks'),
            })
        out = response_out(response)
        out['quiz'] = quiz_out(quiz)
        out['questions'] = questions
        return out
