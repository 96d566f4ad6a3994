"""Shared API dependencies for admin authentication and background services."""

import secrets
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from zlog.core.errors import SecurityRejection
from zlog.core.settings import settings
from zlog.db.session import get_db
from zlog.services.dispatcher import WebhookDispatcher
from zlog.services.federation_client import FederationClient, get_federation_client
from zlog.services.notifier import Notifier, build_notifier
from zlog.services.sync_worker import SyncWorker

# HTTP Bearer scheme for the static admin token
bearer_scheme = HTTPBearer(auto_error=False)

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def require_admin(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> None:
    """Reject requests that do not carry the configured admin token.

    Raises:
        HTTPException: 401 if the token is missing or wrong, 503 if no admin
            token is configured.
    """
    if not settings.admin_token:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API is disabled",
        )
    if credentials is None or not secrets.compare_digest(
        credentials.credentials.encode(), settings.admin_token.encode()
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin token",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_dispatcher(request: Request) -> WebhookDispatcher:
    """Return the dispatcher started with the application."""
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        dispatcher = WebhookDispatcher()
        request.app.state.dispatcher = dispatcher
    return dispatcher


def get_sync_worker(request: Request) -> SyncWorker:
    """Return the sync worker created with the application."""
    worker = getattr(request.app.state, "sync_worker", None)
    if worker is None:
        worker = SyncWorker()
        request.app.state.sync_worker = worker
    return worker


def get_client_dep() -> FederationClient:
    """Get FederationClient dependency for dependency injection."""
    return get_federation_client()


def get_notifier(request: Request) -> Notifier:
    notifier = getattr(request.app.state, "notifier", None)
    return notifier if notifier is not None else build_notifier()


def security_error(exc: SecurityRejection) -> HTTPException:
    """Map a rejected URL onto a 400 response carrying the reason code."""
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"code": exc.code, "message": str(exc)},
    )


AdminDep = Depends(require_admin)
DispatcherDep = Annotated[WebhookDispatcher, Depends(get_dispatcher)]
SyncWorkerDep = Annotated[SyncWorker, Depends(get_sync_worker)]
ClientDep = Annotated[FederationClient, Depends(get_client_dep)]
NotifierDep = Annotated[Notifier, Depends(get_notifier)]
