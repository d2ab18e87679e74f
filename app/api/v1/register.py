"""Self-service registration and email confirmation endpoints."""

import logging
from functools import lru_cache
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.config import SettingsProvider, get_settings
from app.core.database import get_db
from app.core.errors import ConfigurationError, InvalidConfirmationTokenError
from app.schemas.registration import (
    ConfirmationResponse,
    FeatureFlags,
    RegistrationErrorResponse,
    RegistrationFormResponse,
    RegistrationInput,
    RegistrationResponse,
    ValidationFailure,
    snapshot_feature_flags,
)
from app.services.audit import SqlAuditLogger
from app.services.notifications import DeliveryRetryQueue, build_notification_sender
from app.services.registration import MSG_EMAIL_CONFIRMED, RegistrationWorkflow
from app.services.stores import SqlAccountStore, SqlRoleStore

logger = logging.getLogger(__name__)
router = APIRouter()


@lru_cache
def get_retry_queue() -> DeliveryRetryQueue:
    """Process-wide retry queue for deferred confirmation emails."""
    settings = get_settings()
    return DeliveryRetryQueue(
        build_notification_sender(settings),
        attempts=settings.MAIL_RETRY_ATTEMPTS,
        base_delay=settings.MAIL_RETRY_BASE_DELAY_SEC,
        timeout=settings.MAIL_DISPATCH_TIMEOUT_SEC,
    )


def get_feature_flags() -> FeatureFlags:
    """Dependency: one settings snapshot per request."""
    return snapshot_feature_flags(SettingsProvider())


def get_registration_workflow(
    db: Annotated[Session, Depends(get_db)],
) -> RegistrationWorkflow:
    """Dependency: workflow wired to the request session and the SQL audit log."""
    settings = get_settings()
    return RegistrationWorkflow(
        accounts=SqlAccountStore(db),
        roles=SqlRoleStore(db),
        notifier=build_notification_sender(settings),
        audit=SqlAuditLogger(),
        retry_queue=get_retry_queue(),
        dispatch_timeout=settings.MAIL_DISPATCH_TIMEOUT_SEC,
    )


def _require_enabled(flags: FeatureFlags) -> None:
    if not flags.registration_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Registration is disabled.")


@router.get("", response_model=RegistrationFormResponse)
def get_registration_form(
    flags: Annotated[FeatureFlags, Depends(get_feature_flags)],
) -> RegistrationFormResponse:
    """Registration form configuration: which optional fields the client must render."""
    return RegistrationFormResponse(
        registration_enabled=flags.registration_enabled,
        terms_required=flags.terms_required,
        email_confirmation_required=flags.email_confirmation_required,
    )


@router.post(
    "",
    response_model=RegistrationResponse,
    responses={422: {"model": RegistrationErrorResponse}},
)
async def post_registration(
    body: RegistrationInput,
    flags: Annotated[FeatureFlags, Depends(get_feature_flags)],
    workflow: Annotated[RegistrationWorkflow, Depends(get_registration_workflow)],
) -> RegistrationResponse | JSONResponse:
    """
    Register a new account.

    422 carries field -> messages under `message`. When email confirmation is on,
    the account starts Unconfirmed and a confirmation link is emailed.
    """
    _require_enabled(flags)
    try:
        result = await workflow.submit_registration(body, flags)
    except ConfigurationError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error.",
        ) from e

    if isinstance(result, ValidationFailure):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=RegistrationErrorResponse(message=result.errors).model_dump(),
        )
    return RegistrationResponse(message=result.message, account_id=result.account_id)


@router.get("/confirm/{token}", response_model=ConfirmationResponse)
def confirm_email(
    token: str,
    flags: Annotated[FeatureFlags, Depends(get_feature_flags)],
    workflow: Annotated[RegistrationWorkflow, Depends(get_registration_workflow)],
) -> ConfirmationResponse:
    """Consume an email confirmation token and activate the account."""
    try:
        workflow.confirm_account(token, flags)
    except InvalidConfirmationTokenError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message) from e
    return ConfirmationResponse(message=MSG_EMAIL_CONFIRMED)
