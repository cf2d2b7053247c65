from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from cadence.core.errors import APIError
from cadence.core.security import create_access_token, hash_password, verify_password
from cadence.core.settings import get_settings
from cadence.events import EventBus
from cadence.models import ROLE_USER, User
from cadence.schemas.auth import AccessToken, LoginRequest, RegisterRequest

logger = logging.getLogger(__name__)


def _access_token(user: User) -> AccessToken:
    settings = get_settings()
    return AccessToken(
        access_token=create_access_token(subject=user.id, role=user.role),
        token_type="bearer",
        expires_in=settings.access_token_expire_minutes * 60,
    )


def register_user(db: Session, payload: RegisterRequest, *, bus: EventBus | None = None) -> tuple[User, AccessToken]:
    email = payload.email.lower()
    existing_user = db.scalar(select(User).where(User.email == email))
    if existing_user is not None:
        raise APIError(status_code=409, code="email_taken", message="Email is already in use")

    user = User(
        email=email,
        name=payload.name,
        role=ROLE_USER,
        password_hash=hash_password(payload.password),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("User registered user_id=%s", user.id)

    if bus is not None:
        bus.emit("user.created", {"userId": user.id, "email": user.email, "name": user.name, "role": user.role})
    return user, _access_token(user)


def authenticate_user(db: Session, payload: LoginRequest) -> tuple[User, AccessToken]:
    user = db.scalar(select(User).where(User.email == payload.email.lower()))
    if user is None or not verify_password(payload.password, user.password_hash):
        raise APIError(status_code=401, code="invalid_credentials", message="Invalid email or password")

    if payload.fcm_token and payload.fcm_token != user.fcm_token:
        user.fcm_token = payload.fcm_token
        db.commit()
        logger.debug("Stored FCM token user_id=%s", user.id)
    return user, _access_token(user)
