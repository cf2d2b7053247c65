from fastapi import APIRouter

from cadence.api.v1 import auth, jobs, notifications, ws

api_router = APIRouter()
api_router.include_router(auth.router)
api_router.include_router(notifications.router)
api_router.include_router(jobs.router)
api_router.include_router(ws.router)
