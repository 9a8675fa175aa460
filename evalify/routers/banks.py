"""Question banks, their topics and questions (faculty and managers)."""

from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from sqlmodel import Session

from .. import models, schemas, services
from ..auth import faculty_or_manager
from ..config import settings
from ..database import get_session
from ..errors import http_error
from ..serializers import bank_out, topic_out

router = APIRouter(tags=["banks"])


@router.get('/banks')
def list_banks(search: Optional[str] = None, page: int = 1, limit: int = 20, db: Session = Depends(get_session),
               user: models.User = Depends(faculty_or_manager)):
    return services.BankService(db).list(user.id, search, page, limit)


@router.get('/banks/users/search')
def search_share_users(q: Optional[str] = None, limit: int = 20, db: Session = Depends(get_session),
                       user: models.User = Depends(faculty_or_manager)):
    """Faculty and managers the caller could share a bank with."""
    return services.BankService(db).search_users(user.id, q, limit)


@router.get('/banks/{bank_id}')
def get_bank(bank_id: int, db: Session = Depends(get_session), user: models.User = Depends(faculty_or_manager)):
    try:
        return services.BankService(db).get_detail(bank_id, user.id)
    except ValueError as e:
        raise http_error(e)


@router.post('/banks', status_code=201)
def create_bank(payload: schemas.BankIn, db: Session = Depends(get_session),
                user: models.User = Depends(faculty_or_manager)):
    bank = services.BankService(db).create(user.id, payload)
    return bank_out(bank, models.BankAccess.OWNER)


@router.put('/banks/{bank_id}')
def update_bank(bank_id: int, payload: schemas.BankUpdate, db: Session = Depends(get_session),
                user: models.User = Depends(faculty_or_manager)):
    svc = services.BankService(db)
    try:
        bank = svc.update(bank_id, user.id, payload)
    except ValueError as e:
        raise http_error(e)
    return bank_out(bank, svc.access_level(bank, user.id))


@router.delete('/banks/{bank_id}')
def delete_bank(bank_id: int, db: Session = Depends(get_session), user: models.User = Depends(faculty_or_manager)):
    try:
        services.BankService(db).delete(bank_id, user.id)
    except ValueError as e:
        raise http_error(e)
    return {'ok': True}


@router.post('/banks/{bank_id}/share')
def share_bank(bank_id: int, payload: schemas.ShareIn, db: Session = Depends(get_session),
               user: models.User = Depends(faculty_or_manager)):
    try:
        return services.BankService(db).share(bank_id, user.id, payload.user_ids, payload.access_level)
    except ValueError as e:
        raise http_error(e)


@router.get('/banks/{bank_id}/share')
def get_shared_users(bank_id: int, db: Session = Depends(get_session),
                     user: models.User = Depends(faculty_or_manager)):
    try:
        return services.BankService(db).shared_users(bank_id, user.id)
    except ValueError as e:
        raise http_error(e)


@router.put('/banks/{bank_id}/share/{user_id}')
def update_share_access(bank_id: int, user_id: int, payload: schemas.AccessLevelIn,
                        db: Session = Depends(get_session), user: models.User = Depends(faculty_or_manager)):
    try:
        services.BankService(db).update_access_level(bank_id, user.id, user_id, payload.access_level)
    except ValueError as e:
        raise http_error(e)
    return {'ok': True}


@router.delete('/banks/{bank_id}/share/{user_id}')
def unshare_bank(bank_id: int, user_id: int, db: Session = Depends(get_session),
                 user: models.User = Depends(faculty_or_manager)):
    try:
        services.BankService(db).unshare(bank_id, user.id, user_id)
    except ValueError as e:
        raise http_error(e)
    return {'ok': True}


# topics

@router.get('/banks/{bank_id}/topics')
def list_topics(bank_id: int, db: Session = Depends(get_session), user: models.User = Depends(faculty_or_manager)):
    try:
        return services.TopicService(db).list_by_bank(bank_id, user.id)
    except ValueError as e:
        raise http_error(e)


@router.post('/banks/{bank_id}/topics', status_code=201)
def create_topic(bank_id: int, payload: schemas.TopicIn, db: Session = Depends(get_session),
                 user: models.User = Depends(faculty_or_manager)):
    try:
        return topic_out(services.TopicService(db).create(bank_id, user.id, payload.name))
    except ValueError as e:
        raise http_error(e)


@router.put('/topics/{topic_id}')
def update_topic(topic_id: int, payload: schemas.TopicIn, db: Session = Depends(get_session),
                 user: models.User = Depends(faculty_or_manager)):
    try:
        return topic_out(services.TopicService(db).update(topic_id, user.id, payload.name))
    except ValueError as e:
        raise http_error(e)


@router.delete('/topics/{topic_id}')
def delete_topic(topic_id: int, db: Session = Depends(get_session), user: models.User = Depends(faculty_or_manager)):
    try:
        services.TopicService(db).delete(topic_id, user.id)
    except ValueError as e:
        raise http_error(e)
    return {'ok': True}


# questions

@router.get('/banks/{bank_id}/questions')
def list_bank_questions(bank_id: int, topic_ids: Optional[List[int]] = Query(default=None),
                        type: Optional[models.QuestionType] = None, search: Optional[str] = None,
                        db: Session = Depends(get_session), user: models.User = Depends(faculty_or_manager)):
    try:
        return services.QuestionService(db).list_by_bank(bank_id, user.id, topic_ids, type, search)
    except ValueError as e:
        raise http_error(e)


@router.post('/banks/{bank_id}/questions', status_code=201)
def create_bank_question(bank_id: int, payload: schemas.QuestionIn, db: Session = Depends(get_session),
                         user: models.User = Depends(faculty_or_manager)):
    try:
        return services.QuestionService(db).create_for_bank(bank_id, user.id, payload)
    except ValueError as e:
        raise http_error(e)


@router.post('/banks/{bank_id}/questions/import')
def import_bank_questions(bank_id: int, file: UploadFile = File(...), db: Session = Depends(get_session),
                          user: models.User = Depends(faculty_or_manager)):
    """Import questions from a JSON, CSV, TXT, PDF or DOCX file."""
    content = file.file.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail='file too large')
    try:
        return services.QuestionService(db).import_file(bank_id, user.id, content, file.filename or '')
    except ValueError as e:
        raise http_error(e)


@router.get('/questions/{question_id}')
def get_question(question_id: int, db: Session = Depends(get_session),
                 user: models.User = Depends(faculty_or_manager)):
    try:
        return services.QuestionService(db).get(question_id, user.id)
    except ValueError as e:
        raise http_error(e)


@router.put('/questions/{question_id}')
def update_question(question_id: int, payload: schemas.QuestionUpdate, db: Session = Depends(get_session),
                    user: models.User = Depends(faculty_or_manager)):
    svc = services.QuestionService(db)
    try:
        return svc.detail(svc.update(question_id, user.id, payload))
    except ValueError as e:
        raise http_error(e)


@router.delete('/questions/{question_id}')
def delete_question(question_id: int, db: Session = Depends(get_session),
                    user: models.User = Depends(faculty_or_manager)):
    try:
        services.QuestionService(db).delete(question_id, user.id)
    except ValueError as e:
        raise http_error(e)
    return {'ok': True}
