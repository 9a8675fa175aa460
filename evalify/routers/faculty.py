"""Faculty and manager endpoints: their courses, quizzes, sections,
quiz questions and evaluation.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import models, schemas, services
from ..auth import faculty_or_manager
from ..database import get_session
from ..errors import http_error

router = APIRouter(prefix="/faculty", tags=["faculty"])


@router.get('/courses')
def list_my_courses(search: Optional[str] = None, type: Optional[models.CourseType] = None,
                    is_active: Optional[models.Status] = models.Status.ACTIVE, limit: int = 12, offset: int = 0,
                    db: Session = Depends(get_session), user: models.User = Depends(faculty_or_manager)):
    return services.CourseService(db).list_for_staff(user.id, search, type, is_active, limit, offset)


@router.get('/courses/{course_id}')
def get_course_info(course_id: int, db: Session = Depends(get_session),
                    user: models.User = Depends(faculty_or_manager)):
    try:
        return services.QuizService(db).get_course_info(user.id, course_id)
    except ValueError as e:
        raise http_error(e)


@router.get('/students')
def list_students(search: Optional[str] = None, limit: int = 50, db: Session = Depends(get_session),
                  user: models.User = Depends(faculty_or_manager)):
    return services.UserService(db).get_students(search, limit)


# quizzes

@router.get('/courses/{course_id}/quizzes')
def list_course_quizzes(course_id: int, search: Optional[str] = None, status: str = 'ALL', limit: int = 12,
                        offset: int = 0, db: Session = Depends(get_session),
                        user: models.User = Depends(faculty_or_manager)):
    try:
        return services.QuizService(db).list_by_course(user.id, course_id, search, status.upper(), limit, offset)
    except ValueError as e:
        raise http_error(e)


@router.post('/courses/{course_id}/quizzes', status_code=201)
def create_quiz(course_id: int, payload: schemas.QuizCreate, db: Session = Depends(get_session),
                user: models.User = Depends(faculty_or_manager)):
    try:
        return services.QuizService(db).create(user.id, course_id, payload)
    except ValueError as e:
        raise http_error(e)


@router.get('/quizzes/{quiz_id}')
def get_quiz(quiz_id: int, db: Session = Depends(get_session), user: models.User = Depends(faculty_or_manager)):
    try:
        return services.QuizService(db).get(user.id, quiz_id)
    except ValueError as e:
        raise http_error(e)


@router.put('/quizzes/{quiz_id}')
def update_quiz(quiz_id: int, payload: schemas.QuizUpdate, db: Session = Depends(get_session),
                user: models.User = Depends(faculty_or_manager)):
    try:
        return services.QuizService(db).update(user.id, quiz_id, payload)
    except ValueError as e:
        raise http_error(e)


@router.delete('/quizzes/{quiz_id}')
def delete_quiz(quiz_id: int, db: Session = Depends(get_session), user: models.User = Depends(faculty_or_manager)):
    try:
        services.QuizService(db).delete(user.id, quiz_id)
    except ValueError as e:
        raise http_error(e)
    return {'ok': True}


# sections

@router.get('/quizzes/{quiz_id}/sections')
def list_sections(quiz_id: int, db: Session = Depends(get_session), user: models.User = Depends(faculty_or_manager)):
    try:
        return services.SectionService(db).list_by_quiz(user.id, quiz_id)
    except ValueError as e:
        raise http_error(e)


@router.post('/quizzes/{quiz_id}/sections', status_code=201)
def create_section(quiz_id: int, payload: schemas.SectionIn, db: Session = Depends(get_session),
                   user: models.User = Depends(faculty_or_manager)):
    try:
        return services.SectionService(db).create(user.id, quiz_id, payload.name)
    except ValueError as e:
        raise http_error(e)


@router.put('/quizzes/{quiz_id}/sections/reorder')
def reorder_sections(quiz_id: int, payload: schemas.ReorderIn, db: Session = Depends(get_session),
                     user: models.User = Depends(faculty_or_manager)):
    try:
        return services.SectionService(db).reorder_sections(user.id, quiz_id, payload.ordered_ids)
    except ValueError as e:
        raise http_error(e)


@router.put('/quizzes/{quiz_id}/sections/{section_id}')
def rename_section(quiz_id: int, section_id: int, payload: schemas.SectionIn, db: Session = Depends(get_session),
                   user: models.User = Depends(faculty_or_manager)):
    try:
        return services.SectionService(db).update_name(user.id, quiz_id, section_id, payload.name)
    except ValueError as e:
        raise http_error(e)


@router.delete('/quizzes/{quiz_id}/sections/{section_id}')
def delete_section(quiz_id: int, section_id: int, db: Session = Depends(get_session),
                   user: models.User = Depends(faculty_or_manager)):
    try:
        services.SectionService(db).delete(user.id, quiz_id, section_id)
    except ValueError as e:
        raise http_error(e)
    return {'ok': True}


@router.put('/quizzes/{quiz_id}/questions/reorder')
def reorder_quiz_questions(quiz_id: int, payload: schemas.QuestionReorderIn, db: Session = Depends(get_session),
                           user: models.User = Depends(faculty_or_manager)):
    try:
        services.SectionService(db).reorder_questions(user.id, quiz_id, payload.section_id, payload.ordered_ids)
    except ValueError as e:
        raise http_error(e)
    return {'ok': True}


@router.put('/quizzes/{quiz_id}/questions/{quiz_question_id}/move')
def move_quiz_question(quiz_id: int, quiz_question_id: int, payload: schemas.MoveQuestionIn,
                       db: Session = Depends(get_session), user: models.User = Depends(faculty_or_manager)):
    try:
        services.SectionService(db).move_question(user.id, quiz_id, quiz_question_id, payload.target_section_id)
    except ValueError as e:
        raise http_error(e)
    return {'ok': True}


# quiz questions

@router.get('/quizzes/{quiz_id}/questions')
def list_quiz_questions(quiz_id: int, db: Session = Depends(get_session),
                        user: models.User = Depends(faculty_or_manager)):
    try:
        return services.QuizQuestionService(db).list_for_quiz(user.id, quiz_id)
    except ValueError as e:
        raise http_error(e)


@router.post('/quizzes/{quiz_id}/questions', status_code=201)
def create_quiz_question(quiz_id: int, payload: schemas.QuizQuestionIn, db: Session = Depends(get_session),
                         user: models.User = Depends(faculty_or_manager)):
    try:
        return services.QuizQuestionService(db).create_for_quiz(user.id, quiz_id, payload)
    except ValueError as e:
        raise http_error(e)


@router.post('/quizzes/{quiz_id}/questions/from-bank')
def add_questions_from_bank(quiz_id: int, payload: schemas.FromBankIn, db: Session = Depends(get_session),
                            user: models.User = Depends(faculty_or_manager)):
    try:
        return services.QuizQuestionService(db).add_from_bank(user.id, quiz_id, payload.bank_question_ids,
                                                              payload.section_id)
    except ValueError as e:
        raise http_error(e)


@router.put('/quizzes/{quiz_id}/questions/{question_id}')
def update_quiz_question(quiz_id: int, question_id: int, payload: schemas.QuestionUpdate,
                         db: Session = Depends(get_session), user: models.User = Depends(faculty_or_manager)):
    try:
        return services.QuizQuestionService(db).update_question(user.id, quiz_id, question_id, payload)
    except ValueError as e:
        raise http_error(e)


@router.delete('/quizzes/{quiz_id}/questions/{quiz_question_id}')
def delete_quiz_question(quiz_id: int, quiz_question_id: int, db: Session = Depends(get_session),
                         user: models.User = Depends(faculty_or_manager)):
    try:
        services.QuizQuestionService(db).delete_from_quiz(user.id, quiz_id, quiz_question_id)
    except ValueError as e:
        raise http_error(e)
    return {'ok': True}


# evaluation

@router.get('/quizzes/{quiz_id}/evaluation-settings')
def get_evaluation_settings(quiz_id: int, db: Session = Depends(get_session),
                            user: models.User = Depends(faculty_or_manager)):
    try:
        return services.EvaluationService(db).get_settings(user.id, quiz_id)
    except ValueError as e:
        raise http_error(e)


@router.put('/quizzes/{quiz_id}/evaluation-settings')
def update_evaluation_settings(quiz_id: int, payload: schemas.EvaluationSettingsIn,
                               db: Session = Depends(get_session), user: models.User = Depends(faculty_or_manager)):
    try:
        return services.EvaluationService(db).update_settings(user.id, quiz_id, payload)
    except ValueError as e:
        raise http_error(e)


@router.post('/quizzes/{quiz_id}/evaluate')
def evaluate_quiz(quiz_id: int, db: Session = Depends(get_session), user: models.User = Depends(faculty_or_manager)):
    """Score every submitted response of the quiz; manual marks are kept."""
    try:
        return services.EvaluationService(db).evaluate_quiz(user.id, quiz_id)
    except ValueError as e:
        raise http_error(e)


@router.get('/quizzes/{quiz_id}/responses')
def list_responses(quiz_id: int, db: Session = Depends(get_session), user: models.User = Depends(faculty_or_manager)):
    try:
        return services.EvaluationService(db).list_responses(user.id, quiz_id)
    except ValueError as e:
        raise http_error(e)


@router.get('/quizzes/{quiz_id}/responses/{student_id}')
def get_student_response(quiz_id: int, student_id: int, db: Session = Depends(get_session),
                         user: models.User = Depends(faculty_or_manager)):
    try:
        return services.EvaluationService(db).get_student_response(user.id, quiz_id, student_id)
    except ValueError as e:
        raise http_error(e)


@router.put('/quizzes/{quiz_id}/responses/{student_id}/evaluation')
def save_evaluation(quiz_id: int, student_id: int, payload: schemas.SaveEvaluationIn,
                    db: Session = Depends(get_session), user: models.User = Depends(faculty_or_manager)):
    try:
        return services.EvaluationService(db).save_evaluation(user.id, quiz_id, student_id, payload)
    except ValueError as e:
        raise http_error(e)


@router.put('/quizzes/{quiz_id}/responses/{student_id}/questions/{question_id}')
def update_question_score(quiz_id: int, student_id: int, question_id: int, payload: schemas.QuestionScoreIn,
                          db: Session = Depends(get_session), user: models.User = Depends(faculty_or_manager)):
    try:
        return services.EvaluationService(db).update_question_score(user.id, quiz_id, student_id, question_id,
                                                                    payload.mark, payload.remarks)
    except ValueError as e:
        raise http_error(e)
