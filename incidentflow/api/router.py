"""Master API router: includes all sub-routers."""

from fastapi import APIRouter

from .routes.auth import router as auth_router
from .routes.comments import router as comments_router
from .routes.incident_logs import router as incident_logs_router
from .routes.incidents import router as incidents_router
from .routes.users import router as users_router

api_router = APIRouter(prefix="/api")

api_router.include_router(auth_router)
api_router.include_router(incidents_router)
api_router.include_router(comments_router)
api_router.include_router(incident_logs_router)
api_router.include_router(users_router)
