from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from cadence.api.deps import get_event_bus
from cadence.core.errors import success_response
from cadence.core.rate_limit import enforce_auth_rate_limit
from cadence.db.session import get_db
from cadence.events import EventBus
from cadence.schemas.auth import AuthResponse, LoginRequest, RegisterRequest
from cadence.schemas.users import UserPublic
from cadence.services import auth_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", dependencies=[Depends(enforce_auth_rate_limit)])
def register(payload: RegisterRequest, db: Session = Depends(get_db), bus: EventBus = Depends(get_event_bus)):
    logger.info("Auth register endpoint hit email=%s", payload.email)
    user, tokens = auth_service.register_user(db, payload, bus=bus)
    body = AuthResponse(user=UserPublic.model_validate(user), tokens=tokens)
    return success_response(body.model_dump(mode="json"), status_code=status.HTTP_201_CREATED)


@router.post("/login", dependencies=[Depends(enforce_auth_rate_limit)])
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    logger.info("Auth login endpoint hit email=%s", payload.email)
    user, tokens = auth_service.authenticate_user(db, payload)
    body = AuthResponse(user=UserPublic.model_validate(user), tokens=tokens)
    return success_response(body.model_dump(mode="json"))
