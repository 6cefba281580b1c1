"""
OAuth 1.0a handshake endpoint: GET|POST /oauth1/{operation}.
request and access answer form-encoded credentials; authorize redirects to the login page.
Must be registered after the fixed /oauth1/* routes (login, revoke).
"""
import logging
from typing import Any
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from oauth1_server.audit import (
    EVENT_ACCESS_TOKEN_ISSUED,
    EVENT_AUTH_FAIL,
    EVENT_REQUEST_TOKEN_ISSUED,
    OUTCOME_FAIL,
    OUTCOME_SUCCESS,
    get_client_ip,
    log_audit,
)
from oauth1_server.context import RequestContext
from oauth1_server.database import get_db
from oauth1_server.dispatcher import AuthorizeRedirect, RequestDispatcher
from oauth1_server.errors import OAuth1Error
from oauth1_server.provider import FORM_CONTENT_TYPE, as_http_exception, build_request_context, get_dispatcher

logger = logging.getLogger(__name__)
router = APIRouter()


@router.api_route("/oauth1/{operation}", methods=["GET", "POST"])
async def oauth1_operation(
    operation: str,
    request: Request,
    dispatcher: RequestDispatcher = Depends(get_dispatcher),
    db: Session = Depends(get_db),
):
    """
    Run one handshake step. Errors are returned as {"detail": {"error", "error_description"}}
    with the status carried by the error.
    """
    context = await build_request_context(request)
    # Signing, token records and audit writes use the sync session; keep them off the event loop
    result = await run_in_threadpool(run_operation, dispatcher, db, operation, context, get_client_ip(request))

    if isinstance(result, AuthorizeRedirect):
        return RedirectResponse(url=result.url, status_code=302)
    return Response(content=urlencode(result), media_type=FORM_CONTENT_TYPE)


def run_operation(
    dispatcher: RequestDispatcher,
    db: Session,
    operation: str,
    context: RequestContext,
    ip: str | None,
) -> dict[str, Any] | AuthorizeRedirect:
    """Dispatch one handshake step and audit it. Raises HTTPException on OAuth errors."""
    try:
        result, token = dispatcher.dispatch_with_token(operation, context)
    except OAuth1Error as exc:
        logger.debug("OAuth1 %s failed: %s", operation, exc.code)
        if operation in ("request", "access"):
            log_audit(db, EVENT_AUTH_FAIL, consumer_id=exc.consumer_id, ip=ip, outcome=OUTCOME_FAIL)
        raise as_http_exception(exc)

    if operation == "request":
        log_audit(db, EVENT_REQUEST_TOKEN_ISSUED, consumer_id=token.consumer, ip=ip, outcome=OUTCOME_SUCCESS)
    elif operation == "access":
        log_audit(
            db,
            EVENT_ACCESS_TOKEN_ISSUED,
            consumer_id=token.consumer,
            user_id=token.user,
            ip=ip,
            outcome=OUTCOME_SUCCESS,
        )
    return result
