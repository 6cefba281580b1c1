"""
Audit logging. Security-relevant events only; no token secrets, verifiers, passwords or request bodies.
"""
from fastapi import Request
from sqlalchemy.orm import Session

from oauth1_server.models import AuditLog

EVENT_REQUEST_TOKEN_ISSUED = "request_token_issued"
EVENT_TOKEN_AUTHORIZED = "token_authorized"
EVENT_LOGIN_FAIL = "login_fail"
EVENT_ACCESS_TOKEN_ISSUED = "access_token_issued"
EVENT_ACCESS_TOKEN_REVOKED = "access_token_revoked"
EVENT_AUTH_FAIL = "auth_fail"

OUTCOME_SUCCESS = "success"
OUTCOME_FAIL = "fail"


def get_client_ip(request: Request | None) -> str | None:
    """Client IP if available (request.client.host). Forwarding headers are not trusted."""
    if request is None or request.client is None:
        return None
    return getattr(request.client, "host", None)


def log_audit(
    db: Session,
    event_type: str,
    *,
    consumer_id: int | None = None,
    user_id: int | None = None,
    ip: str | None = None,
    outcome: str = OUTCOME_SUCCESS,
) -> None:
    """Append one audit record."""
    db.add(
        AuditLog(
            event_type=event_type,
            consumer_id=consumer_id,
            user_id=user_id,
            ip=ip,
            outcome=outcome,
        )
    )
    db.commit()
