"""
Login and consent page for the OAuth 1.0a `authorize` step.
GET /oauth1/login: load the request token, show login form. POST /oauth1/login: check the
password, attach any callback and authorize the token, then redirect to the consumer's
callback or show the verifier.
"""
import html
import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from sqlalchemy.orm import Session

from oauth1_server.audit import (
    EVENT_LOGIN_FAIL,
    EVENT_TOKEN_AUTHORIZED,
    OUTCOME_FAIL,
    OUTCOME_SUCCESS,
    get_client_ip,
    log_audit,
)
from oauth1_server.callbacks import OUT_OF_BAND
from oauth1_server.database import get_db
from oauth1_server.errors import InvalidCallback, OAuth1Error
from oauth1_server.provider import get_lifecycle
from oauth1_server.seed import verify_password
from oauth1_server.storage import SqlUserDirectory
from oauth1_server.tokens import RequestToken, TokenLifecycle

logger = logging.getLogger(__name__)
router = APIRouter()


def e(s) -> str:
    return html.escape("" if s is None else str(s))


def _page(title: str, content: str, status_code: int = 200) -> HTMLResponse:
    body = f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{e(title)}</title></head>
<body>
  <h1>{e(title)}</h1>
  {content}
</body>
</html>"""
    return HTMLResponse(body, status_code=status_code)


def _error_page(exc: OAuth1Error) -> HTMLResponse:
    return _page("Error", f"<p>{e(exc.message)}</p>", status_code=exc.status)


def _login_form(
    token: RequestToken,
    consumer_name: str,
    error: str | None = None,
    username: str = "",
    callback: str | None = None,
) -> HTMLResponse:
    error_html = f'<p style="color:red;">{e(error)}</p>' if error else ""
    callback_html = f'<input type="hidden" name="oauth_callback" value="{e(callback)}"/>' if callback else ""
    content = f"""{error_html}
  <p><strong>{e(consumer_name)}</strong> would like to connect to your account.</p>
  <form method="post" action="/oauth1/login">
    <input type="hidden" name="oauth_token" value="{e(token.key)}"/>
    {callback_html}
    <label>Username: <input type="text" name="username" value="{e(username)}" required/></label><br/>
    <label>Password: <input type="password" name="password" required/></label><br/>
    <button type="submit" name="action" value="authorize">Authorize</button>
    <button type="submit" name="action" value="cancel">Cancel</button>
  </form>"""
    return _page("Authorize", content, status_code=401 if error else 200)


def _callback_redirect(lifecycle: TokenLifecycle, token: RequestToken, verifier: str):
    """Send the user back to the consumer, or show the verifier when there is nowhere to go."""
    if not token.callback or token.callback == OUT_OF_BAND:
        return _page("Access Token", f"<p>Your verification token is <code>{e(verifier)}</code></p>")

    # Re-check the stored callback before leaving the site
    if not lifecycle.callbacks.check(token.callback, token.consumer):
        return _error_page(InvalidCallback())

    args = urlencode({"oauth_token": token.key, "oauth_verifier": verifier})
    separator = "&" if "?" in token.callback else "?"
    return RedirectResponse(url=f"{token.callback}{separator}{args}", status_code=302)


def _consumer_name(lifecycle: TokenLifecycle, token: RequestToken) -> str:
    consumer = lifecycle.consumers.get_by_id(token.consumer)
    return consumer.name if consumer and consumer.name else "An application"


@router.get("/oauth1/login", response_class=HTMLResponse)
def login_get(
    oauth_token: str | None = None,
    oauth_callback: str | None = None,
    lifecycle: TokenLifecycle = Depends(get_lifecycle),
):
    """Show the login form for a request token. Nothing is changed or disclosed until the user signs in."""
    if not oauth_token:
        return _page("Error", "<p>Missing parameter oauth_token</p>", status_code=400)
    try:
        token = lifecycle.get_request_token(oauth_token)
    except OAuth1Error as exc:
        logger.debug("Login page rejected token: %s", exc.code)
        return _error_page(exc)

    return _login_form(token, _consumer_name(lifecycle, token), callback=oauth_callback)


@router.post("/oauth1/login")
def login_post(
    request: Request,
    oauth_token: str = Form(...),
    action: str = Form("authorize"),
    username: str = Form(""),
    password: str = Form(""),
    oauth_callback: str = Form(""),
    lifecycle: TokenLifecycle = Depends(get_lifecycle),
    db: Session = Depends(get_db),
):
    """Authorize or cancel. Authorizing requires valid credentials for a local user."""
    try:
        token = lifecycle.get_request_token(oauth_token)
    except OAuth1Error as exc:
        return _error_page(exc)

    if action == "cancel":
        logger.info("Authorization cancelled for consumer=%s", token.consumer)
        return _page("Authorization cancelled", "<p>You may close this window.</p>")
    if action != "authorize":
        return _page("Error", "<p>Invalid authorization action</p>", status_code=400)

    user = SqlUserDirectory(db).get_by_username(username)
    if not user or not verify_password(password, user.password_hash):
        log_audit(
            db,
            EVENT_LOGIN_FAIL,
            consumer_id=token.consumer,
            user_id=None,
            ip=get_client_ip(request),
            outcome=OUTCOME_FAIL,
        )
        return _login_form(
            token, _consumer_name(lifecycle, token), "Invalid username or password.", username, oauth_callback
        )

    if token.authorized is True:
        # Already approved: only the approving user gets the verifier again
        if token.user != user.id:
            return _page("Error", "<p>This request has already been authorized.</p>", status_code=403)
        return _callback_redirect(lifecycle, token, token.verifier)

    try:
        if oauth_callback:
            lifecycle.set_callback(token.key, oauth_callback)
        verifier = lifecycle.authorize_token(token.key, user_id=user.id)
    except OAuth1Error as exc:
        return _error_page(exc)

    log_audit(
        db,
        EVENT_TOKEN_AUTHORIZED,
        consumer_id=token.consumer,
        user_id=user.id,
        ip=get_client_ip(request),
        outcome=OUTCOME_SUCCESS,
    )
    return _callback_redirect(lifecycle, lifecycle.get_request_token(token.key), verifier)
