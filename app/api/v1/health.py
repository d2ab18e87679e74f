"""Health check endpoint: database connectivity and default-role provisioning."""

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import check_db_connected, get_db
from app.schemas.health import HealthResponse
from app.services.registration import DEFAULT_ROLE
from app.services.stores import SqlRoleStore

router = APIRouter()


@router.get("/", response_model=HealthResponse)
def get_health(db: Session = Depends(get_db)) -> HealthResponse:
    """
    Return service health status, database connectivity and whether registration
    can assign its default role. Used by load balancers and monitoring.
    """
    if not check_db_connected(db):
        return HealthResponse(
            status="degraded",
            environment=settings.APP_ENV,
            database="disconnected",
        )

    try:
        role = SqlRoleStore(db).find_by_name(DEFAULT_ROLE)
    except SQLAlchemyError:
        role_status = "unknown"
    else:
        role_status = "present" if role is not None else "missing"

    return HealthResponse(
        status="ok" if role_status == "present" else "degraded",
        environment=settings.APP_ENV,
        database="connected",
        default_role=role_status,
    )
