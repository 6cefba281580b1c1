"""
Access token revocation (POST /oauth1/revoke). The request must be signed with the
access token being revoked; a consumer can only give up its own credentials.
"""
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from oauth1_server.audit import EVENT_ACCESS_TOKEN_REVOKED, OUTCOME_SUCCESS, get_client_ip, log_audit
from oauth1_server.context import RequestContext
from oauth1_server.database import get_db
from oauth1_server.dispatcher import merge_parameters
from oauth1_server.errors import OAuth1Error
from oauth1_server.provider import as_http_exception, authenticated_context, get_lifecycle
from oauth1_server.tokens import TokenLifecycle

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/oauth1/revoke")
def revoke(
    request: Request,
    context: RequestContext = Depends(authenticated_context),
    lifecycle: TokenLifecycle = Depends(get_lifecycle),
    db: Session = Depends(get_db),
):
    """Delete the signing access token. Later requests signed with it fail with invalid_token."""
    try:
        token = lifecycle.revoke_access_token(merge_parameters(context)["oauth_token"])
    except OAuth1Error as exc:
        # Revoked by a concurrent request after authentication
        raise as_http_exception(exc)
    log_audit(
        db,
        EVENT_ACCESS_TOKEN_REVOKED,
        consumer_id=token.consumer,
        user_id=token.user,
        ip=get_client_ip(request),
        outcome=OUTCOME_SUCCESS,
    )
    return {"revoked": True}
