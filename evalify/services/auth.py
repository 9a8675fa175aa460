"""Password hashing, token issuing and account bootstrap."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from passlib.context import CryptContext
from sqlmodel import Session

from .. import models, repositories
from ..config import settings

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
logger = logging.getLogger("evalify.auth")


def hash_password(password: str) -> str:
    return PWD_CTX.hash(password)


def create_access_token(user: models.User) -> str:
    expire = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRE_HOURS)
    payload = {"user_id": user.id, "role": user.role.value, "exp": int(expire.timestamp())}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


class AuthService:
    """Authentication related operations (authenticate + password changes)."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def authenticate(self, email: str, password: str) -> Optional[str]:
        """Verify credentials and return a signed JWT token on success.

        Returns `None` if authentication fails or the account is not active.
        """
        user = self.user_repo.get_by_email(email)
        if not user:
            return None
        if not PWD_CTX.verify(password, user.password_hash):
            return None
        if user.status != models.UserStatus.ACTIVE:
            return None
        return create_access_token(user)

    def change_password(self, user_id: int, current_password: str, new_password: str) -> None:
        user = self.user_repo.get(user_id)
        if not user or not PWD_CTX.verify(current_password, user.password_hash):
            raise ValueError("Current password is incorrect")
        if len(new_password) < 6:
            raise ValueError("Password must be at least 6 characters")
        user.password_hash = hash_password(new_password)
        user.updated_at = models.utcnow()
        self.user_repo.save(user)

    def ensure_admin(self, email: str, password: str, name: str = "Administrator") -> models.User:
        """Create an ADMIN account for `email` unless one already exists."""
        existing = self.user_repo.get_by_email(email)
        if existing:
            return existing
        user = models.User(
            name=name,
            email=email.strip().lower(),
            profile_id=f"ADMIN-{email.split('@')[0]}",
            password_hash=hash_password(password),
            role=models.Role.ADMIN,
        )
        created = self.user_repo.create(user)
        logger.info("admin_bootstrapped user_id=%s", created.id)
        return created
