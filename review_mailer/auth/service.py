"""Authentication service: admin users and password hashing."""

import logging

import bcrypt
from sqlalchemy.orm import Session

from ..config import settings
from .models import User

logger = logging.getLogger(__name__)


def _normalize(email: str) -> str:
    return (email or "").strip().lower()


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(plain: str, hashed: str) -> bool:
    return bcrypt.checkpw(plain.encode(), hashed.encode())


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.query(User).filter(User.email == _normalize(email)).first()


def authenticate_user(db: Session, email: str, password: str) -> User | None:
    """Verify credentials and return the active user, or None if invalid."""
    user = get_user_by_email(db, email)
    if not user or not user.is_active or not verify_password(password, user.password_hash):
        return None
    return user


def ensure_admin_user(db: Session) -> bool:
    """Create the admin user from ADMIN_EMAIL / ADMIN_PASSWORD if missing.

    Returns True when a user was created.
    """
    if not settings.admin_email or not settings.admin_password:
        logger.warning("ADMIN_EMAIL / ADMIN_PASSWORD not set, admin pages are unreachable")
        return False

    if get_user_by_email(db, settings.admin_email):
        return False

    db.add(
        User(
            email=_normalize(settings.admin_email),
            password_hash=hash_password(settings.admin_password),
        )
    )
    db.flush()
    logger.info("Admin user %s created", _normalize(settings.admin_email))
    return True
