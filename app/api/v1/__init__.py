"""API v1 routes."""

from fastapi import APIRouter

from app.api.v1 import activity, auth, health, patients, register, specialists, users

router = APIRouter()
router.include_router(health.router, prefix="/health", tags=["health"])
router.include_router(register.router, prefix="/register", tags=["registration"])
router.include_router(auth.router, prefix="/auth", tags=["auth"])
router.include_router(users.router, prefix="/users", tags=["users"])
router.include_router(activity.router, prefix="/activity", tags=["activity"])
router.include_router(specialists.router, prefix="/specialists", tags=["specialists"])
router.include_router(patients.router, prefix="/patients", tags=["patients"])
