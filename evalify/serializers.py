"""Plain-dict views of models returned by the API.

Models are never returned directly so that secrets (password hashes,
quiz passwords, solutions) cannot leak through a new route by accident.
"""

from typing import Optional

from . import models
from .utils.versioning import unwrap


def _dt(value):
    return value.isoformat() if value else None


def user_out(user: models.User) -> dict:
    return {
        'id': user.id,
        'name': user.name,
        'email': user.email,
        'profile_id': user.profile_id,
        'role': user.role.value,
        'phone': user.phone,
        'status': user.status.value,
        'theme': user.theme,
        'view': user.view,
        'created_at': _dt(user.created_at),
    }


def user_brief(user: Optional[models.User]) -> Optional[dict]:
    if user is None:
        return None
    return {'id': user.id, 'name': user.name, 'email': user.email, 'profile_id': user.profile_id}


def department_out(dept: models.Department) -> dict:
    return {'id': dept.id, 'name': dept.name, 'is_active': dept.is_active.value, 'created_at': _dt(dept.created_at)}


def semester_out(sem: models.Semester) -> dict:
    return {
        'id': sem.id,
        'name': sem.name,
        'year': sem.year,
        'department_id': sem.department_id,
        'is_active': sem.is_active.value,
        'created_at': _dt(sem.created_at),
    }


def batch_out(batch: models.Batch) -> dict:
    return {
        'id': batch.id,
        'name': batch.name,
        'join_year': batch.join_year,
        'graduation_year': batch.graduation_year,
        'section': batch.section,
        'department_id': batch.department_id,
        'is_active': batch.is_active.value,
        'created_at': _dt(batch.created_at),
    }


def course_out(course: models.Course) -> dict:
    return {
        'id': course.id,
        'name': course.name,
        'description': course.description,
        'code': course.code,
        'image': course.image,
        'type': course.type.value,
        'semester_id': course.semester_id,
        'is_active': course.is_active.value,
        'created_at': _dt(course.created_at),
    }


def lab_out(lab: models.Lab) -> dict:
    return {
        'id': lab.id,
        'name': lab.name,
        'block': lab.block,
        'ip_subnet': lab.ip_subnet,
        'is_active': lab.is_active.value,
        'created_at': _dt(lab.created_at),
    }


def bank_out(bank: models.Bank, access_level: Optional[models.BankAccess] = None) -> dict:
    out = {
        'id': bank.id,
        'name': bank.name,
        'course_code': bank.course_code,
        'semester': bank.semester,
        'created_by_id': bank.created_by_id,
        'created_at': _dt(bank.created_at),
    }
    if access_level is not None:
        out['access_level'] = access_level.value
    return out


def topic_out(topic: models.Topic) -> dict:
    return {'id': topic.id, 'name': topic.name, 'bank_id': topic.bank_id}


def question_out(question: models.Question, include_solution: bool = True) -> dict:
    out = {
        'id': question.id,
        'type': question.type.value,
        'question': question.question,
        'marks': question.marks,
        'negative_marks': question.negative_marks,
        'difficulty': question.difficulty.value if question.difficulty else None,
        'course_outcome': question.course_outcome.value if question.course_outcome else None,
        'bloom_level': question.bloom_level.value if question.bloom_level else None,
        'question_data': unwrap(question.question_data) or {},
        'created_by_id': question.created_by_id,
        'created_at': _dt(question.created_at),
    }
    if include_solution:
        out['solution'] = unwrap(question.solution) or {}
        out['explanation'] = question.explanation
    return out


def quiz_out(quiz: models.Quiz) -> dict:
    """Quiz metadata; the password itself is never exposed."""
    return {
        'id': quiz.id,
        'name': quiz.name,
        'description': quiz.description,
        'instructions': quiz.instructions,
        'start_time': _dt(quiz.start_time),
        'end_time': _dt(quiz.end_time),
        'duration_minutes': quiz.duration_minutes,
        'is_protected': bool(quiz.password),
        'full_screen': quiz.full_screen,
        'shuffle_questions': quiz.shuffle_questions,
        'shuffle_options': quiz.shuffle_options,
        'linear_quiz': quiz.linear_quiz,
        'calculator': quiz.calculator,
        'auto_submit': quiz.auto_submit,
        'publish_result': quiz.publish_result,
        'publish_quiz': quiz.publish_quiz,
        'kiosk_mode': quiz.kiosk_mode,
        'created_by_id': quiz.created_by_id,
        'created_at': _dt(quiz.created_at),
    }


def section_out(section: models.QuizSection, question_count: Optional[int] = None) -> dict:
    out = {'id': section.id, 'quiz_id': section.quiz_id, 'name': section.name, 'order_index': section.order_index}
    if question_count is not None:
        out['question_count'] = question_count
    return out


def settings_out(s: models.QuizEvaluationSettings) -> dict:
    return s.model_dump()


def response_out(resp: models.QuizResponse, include_answers: bool = True) -> dict:
    out = {
        'quiz_id': resp.quiz_id,
        'student_id': resp.student_id,
        'start_time': _dt(resp.start_time),
        'end_time': _dt(resp.end_time),
        'submission_time': _dt(resp.submission_time),
        'ip': resp.ip or [],
        'duration_minutes': resp.duration_minutes,
        'score': resp.score,
        'total_score': resp.total_score,
        'violations': resp.violations or [],
        'submission_status': resp.submission_status.value,
        'evaluation_status': resp.evaluation_status.value,
    }
    if include_answers:
        out['response'] = resp.response or {}
        out['evaluation_results'] = resp.evaluation_results
    return out
