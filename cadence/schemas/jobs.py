from __future__ import annotations

from pydantic import BaseModel


class JobRead(BaseModel):
    id: str
    queue: str
    name: str
    state: str
    data: dict[str, object]
    attempts: int
    attempts_made: int
    failed_reason: str | None = None
    return_value: object | None = None
    created_at: float
    processed_at: float | None = None
    finished_at: float | None = None


class QueueCounts(BaseModel):
    queue: str
    counts: dict[str, int]
