"""Student endpoints: courses, quiz listings and the attempt lifecycle."""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlmodel import Session

from .. import models, schemas, services
from ..auth import student_only
from ..config import settings
from ..database import get_session
from ..errors import http_error
from ..utils.ip import get_client_ip
from ..utils.rate_limit import limiter

router = APIRouter(prefix="/student", tags=["student"])


@router.get('/courses')
def list_my_courses(search: Optional[str] = None, is_active: Optional[models.Status] = models.Status.ACTIVE,
                    limit: int = 12, offset: int = 0, db: Session = Depends(get_session),
                    user: models.User = Depends(student_only)):
    return services.CourseService(db).list_for_student(user.id, search, is_active, limit, offset)


@router.get('/quizzes')
def list_quizzes(search: Optional[str] = None, status: Optional[str] = None, db: Session = Depends(get_session),
                 user: models.User = Depends(student_only)):
    return services.StudentQuizService(db).list_all(user.id, search, status.upper() if status else None)


@router.get('/courses/{course_id}/quizzes')
def list_course_quizzes(course_id: int, search: Optional[str] = None, status: Optional[str] = None,
                        limit: int = 12, offset: int = 0, db: Session = Depends(get_session),
                        user: models.User = Depends(student_only)):
    try:
        return services.StudentQuizService(db).list_by_course(user.id, course_id, search,
                                                              status.upper() if status else None, limit, offset)
    except ValueError as e:
        raise http_error(e)


@router.get('/quizzes/{quiz_id}')
def get_quiz(quiz_id: int, request: Request, db: Session = Depends(get_session),
             user: models.User = Depends(student_only)):
    client_ip = get_client_ip(request, settings.TRUST_PROXY_HEADERS)
    try:
        return services.StudentQuizService(db).get(user.id, quiz_id, client_ip)
    except ValueError as e:
        raise http_error(e)


@router.post('/quizzes/{quiz_id}/start')
def start_quiz(quiz_id: int, request: Request, payload: Optional[schemas.StartQuizIn] = None,
               db: Session = Depends(get_session), user: models.User = Depends(student_only)):
    """Start or resume an attempt.

    The response carries `resumed` and the attempt's timing. The client IP
    is checked against the quiz's lab subnets, if any.
    """
    client_ip = get_client_ip(request, settings.TRUST_PROXY_HEADERS)
    limiter.enforce(f"quiz_start:{client_ip or 'unknown'}:{user.id}", settings.QUIZ_START_RATE_LIMIT_PER_MIN)
    password = payload.password if payload else None
    try:
        return services.ExamService(db).start(user.id, quiz_id, password, client_ip)
    except ValueError as e:
        raise http_error(e)


@router.get('/quizzes/{quiz_id}/questions')
def get_questions(quiz_id: int, db: Session = Depends(get_session), user: models.User = Depends(student_only)):
    try:
        return services.ExamService(db).get_questions(user.id, quiz_id)
    except ValueError as e:
        raise http_error(e)


@router.get('/quizzes/{quiz_id}/sections')
def get_sections(quiz_id: int, db: Session = Depends(get_session), user: models.User = Depends(student_only)):
    try:
        return services.ExamService(db).get_sections(user.id, quiz_id)
    except ValueError as e:
        raise http_error(e)


@router.put('/quizzes/{quiz_id}/response')
def save_answer(quiz_id: int, payload: schemas.SaveAnswerIn, db: Session = Depends(get_session),
                user: models.User = Depends(student_only)):
    try:
        return services.ExamService(db).save_answer(user.id, quiz_id, payload.response)
    except ValueError as e:
        raise http_error(e)


@router.post('/quizzes/{quiz_id}/submit')
def submit_quiz(quiz_id: int, db: Session = Depends(get_session), user: models.User = Depends(student_only)):
    try:
        return services.ExamService(db).submit(user.id, quiz_id)
    except ValueError as e:
        raise http_error(e)


@router.get('/quizzes/{quiz_id}/auto-submit-status')
def auto_submit_status(quiz_id: int, db: Session = Depends(get_session), user: models.User = Depends(student_only)):
    try:
        return services.ExamService(db).check_auto_submit_status(user.id, quiz_id)
    except ValueError as e:
        raise http_error(e)


@router.post('/quizzes/{quiz_id}/violations')
def record_violation(quiz_id: int, payload: schemas.ViolationIn, db: Session = Depends(get_session),
                     user: models.User = Depends(student_only)):
    try:
        return services.ExamService(db).record_violation(user.id, quiz_id, payload.violation)
    except ValueError as e:
        raise http_error(e)


@router.get('/quizzes/{quiz_id}/response')
def get_response(quiz_id: int, db: Session = Depends(get_session), user: models.User = Depends(student_only)):
    return services.ExamService(db).get_response(user.id, quiz_id)


@router.get('/quizzes/{quiz_id}/result')
def get_result(quiz_id: int, db: Session = Depends(get_session), user: models.User = Depends(student_only)):
    try:
        return services.ExamService(db).get_result(user.id, quiz_id)
    except ValueError as e:
        raise http_error(e)
