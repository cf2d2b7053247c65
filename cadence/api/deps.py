from __future__ import annotations

import logging

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from cadence.core.errors import APIError
from cadence.core.security import decode_access_token
from cadence.db.session import get_db
from cadence.events import EventBus
from cadence.jobs import JobQueues
from cadence.models import ROLE_ADMIN, User
from cadence.services.push_service import PushSender

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/v1/auth/login")


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    logger.debug("Resolving current user from access token")
    payload = decode_access_token(token)
    subject = str(payload["sub"])

    user = db.get(User, subject)
    if user is None:
        logger.warning("Token user_id=%s not found", subject)
        raise APIError(status_code=401, code="invalid_token", message="Token user was not found")

    logger.debug("Resolved current user user_id=%s", user.id)
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != ROLE_ADMIN:
        logger.warning("Admin route denied user_id=%s role=%s", user.id, user.role)
        raise APIError(status_code=403, code="forbidden", message="Admin role required")
    return user


def get_event_bus(request: Request) -> EventBus:
    return request.app.state.event_bus


def get_job_queues(request: Request) -> JobQueues:
    return request.app.state.job_queues


def get_push_sender(request: Request) -> PushSender | None:
    return getattr(request.app.state, "push_sender", None)
