"""
FastAPI wiring for the OAuth 1.0a engine: settings, per-request engine objects over
the DB session, RequestContext construction and error conversion.
"""
import logging
from dataclasses import replace

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from oauth1_server.audit import EVENT_AUTH_FAIL, OUTCOME_FAIL, get_client_ip, log_audit
from oauth1_server.config import OAuth1Settings
from oauth1_server.context import RequestContext
from oauth1_server.database import get_db
from oauth1_server.dispatcher import RequestDispatcher
from oauth1_server.errors import MissingParameters, OAuth1Error
from oauth1_server.storage import SqlConsumerStore, SqlOptionStore, SqlUserDirectory
from oauth1_server.tokens import TokenLifecycle, TokenStore

logger = logging.getLogger(__name__)

_settings = OAuth1Settings()

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


def get_settings() -> OAuth1Settings:
    """Dependency: process-wide settings. Tests override it via app.dependency_overrides."""
    return _settings


def get_lifecycle(
    db: Session = Depends(get_db),
    settings: OAuth1Settings = Depends(get_settings),
) -> TokenLifecycle:
    return TokenLifecycle(
        TokenStore(SqlOptionStore(db)),
        SqlConsumerStore(db),
        SqlUserDirectory(db),
        settings,
    )


def get_dispatcher(lifecycle: TokenLifecycle = Depends(get_lifecycle)) -> RequestDispatcher:
    return RequestDispatcher(lifecycle)


async def build_request_context(request: Request, user_id: int | None = None) -> RequestContext:
    """
    Snapshot the request for the engine. Form bodies are only read for form-encoded
    POST/PUT requests; other bodies never take part in signing.
    """
    body_params: dict[str, str] = {}
    content_type = request.headers.get("content-type", "")
    if request.method.upper() in ("POST", "PUT") and content_type.split(";")[0].strip() == FORM_CONTENT_TYPE:
        form = await request.form()
        body_params = {key: value for key, value in form.items() if isinstance(value, str)}

    return RequestContext(
        method=request.method,
        url=str(request.url),
        headers=dict(request.headers),
        query_params=dict(request.query_params),
        body_params=body_params,
        user_id=user_id,
    )


def as_http_exception(exc: OAuth1Error) -> HTTPException:
    return HTTPException(status_code=exc.status, detail=exc.to_dict())


async def authenticated_context(
    request: Request,
    dispatcher: RequestDispatcher = Depends(get_dispatcher),
    db: Session = Depends(get_db),
) -> RequestContext:
    """
    Dependency for OAuth-protected routes: the request context with user_id set to the
    access token's owner. 401 when no OAuth parameters are present.
    """
    context = await build_request_context(request)
    user_id = await run_in_threadpool(authenticate_request, dispatcher, db, context, get_client_ip(request))
    return replace(context, user_id=user_id)


def authenticate_request(dispatcher: RequestDispatcher, db: Session, context: RequestContext, ip: str | None) -> int:
    try:
        user_id = dispatcher.authenticate(context)
    except OAuth1Error as exc:
        logger.debug("Request authentication failed: %s", exc.code)
        log_audit(db, EVENT_AUTH_FAIL, consumer_id=exc.consumer_id, ip=ip, outcome=OUTCOME_FAIL)
        raise as_http_exception(exc)
    if user_id is None:
        raise as_http_exception(MissingParameters(message="No OAuth parameters supplied"))
    return user_id
