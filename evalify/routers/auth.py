"""Login, password change and the caller's own profile."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlmodel import Session

from .. import models, schemas, services
from ..auth import get_current_user
from ..config import settings
from ..database import get_session
from ..errors import http_error
from ..serializers import user_out
from ..utils.ip import get_client_ip
from ..utils.rate_limit import limiter

logger = logging.getLogger("evalify.api.auth")
router = APIRouter(tags=["auth"])


@router.post('/auth/login', response_model=schemas.TokenOut)
def login(payload: schemas.LoginIn, request: Request, db: Session = Depends(get_session)):
    """Authenticate a user and return a signed JWT token.

    The token carries `user_id` and `role`. Repeated attempts from one
    client are throttled.
    """
    client_ip = get_client_ip(request, settings.TRUST_PROXY_HEADERS) or 'unknown'
    limiter.enforce(f"login:{client_ip}", settings.LOGIN_RATE_LIMIT_PER_MIN)
    auth = services.AuthService(db)
    token = auth.authenticate(payload.email, payload.password)
    if not token:
        logger.info("login_failed client=%s", client_ip)
        raise HTTPException(status_code=401, detail='invalid credentials')
    user = auth.user_repo.get_by_email(payload.email)
    return {'access_token': token, 'role': user.role}


@router.post('/auth/change-password')
def change_password(payload: schemas.ChangePasswordIn, db: Session = Depends(get_session),
                    user: models.User = Depends(get_current_user)):
    try:
        services.AuthService(db).change_password(user.id, payload.current_password, payload.new_password)
    except ValueError as e:
        raise http_error(e)
    return {'ok': True}


@router.get('/me')
def get_my_profile(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    try:
        return user_out(services.UserService(db).get(user.id))
    except ValueError as e:
        raise http_error(e)


@router.put('/me')
def update_my_profile(payload: schemas.ProfileUpdate, db: Session = Depends(get_session),
                      user: models.User = Depends(get_current_user)):
    try:
        return user_out(services.UserService(db).update_profile(user.id, payload))
    except ValueError as e:
        raise http_error(e)
