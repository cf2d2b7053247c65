from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from cadence.models import User

logger = logging.getLogger(__name__)


def normalize_user_ids(user_ids: Iterable[object]) -> list[str]:
    normalized = [user_id.strip() for user_id in user_ids if isinstance(user_id, str) and user_id.strip()]
    return list(dict.fromkeys(normalized))


def fetch_users_by_ids(db: Session, user_ids: Iterable[str]) -> list[User]:
    deduped_ids = normalize_user_ids(user_ids)
    if not deduped_ids:
        return []

    rows = db.scalars(select(User).where(User.id.in_(deduped_ids)).order_by(User.email.asc(), User.id.asc())).all()
    logger.debug("Fetched users requested=%s returned=%s", len(deduped_ids), len(rows))
    return list(rows)


def get_user(db: Session, user_id: str) -> User | None:
    return db.get(User, user_id)


def serialize_user_public(user: User) -> dict[str, object]:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
    }
