"""
Pytest tests for the HTTP host: handshake endpoints, login page, revocation and /me,
driven end to end with oauthlib as the OAuth 1 client.
"""
import asyncio
import re
from urllib.parse import parse_qsl, urlsplit

import oauthlib.oauth1
import pytest
from fastapi.testclient import TestClient

from conftest import CALLBACK, CONSUMER_KEY, CONSUMER_SECRET
from oauth1_server.database import SessionLocal, reset_db
from oauth1_server.dispatcher import RequestDispatcher
from oauth1_server.main import app
from oauth1_server.models import AuditLog, OAuthConsumer, User
from oauth1_server.seed import create_consumer, create_user, seed_from_env

SERVER = "http://testserver"
PASSWORD = "wonderland"


@pytest.fixture
def client():
    reset_db()
    return TestClient(app)


@pytest.fixture
def seeded(client):
    db = SessionLocal()
    try:
        user = create_user(db, "alice", PASSWORD, email="alice@example.com", display_name="Alice")
        consumer = create_consumer(db, "Test client", callback=CALLBACK, key=CONSUMER_KEY, secret=CONSUMER_SECRET)
        yield {"user_id": user.id, "consumer_id": consumer.id}
    finally:
        db.close()


def _oauth_client(key=CONSUMER_KEY, secret=CONSUMER_SECRET, **kwargs):
    return oauthlib.oauth1.Client(key, client_secret=secret, **kwargs)


def _signed(client, method, path, oauth_client, **kwargs):
    uri, headers, _ = oauth_client.sign(SERVER + path, http_method=method)
    return client.request(method, uri, headers=headers, **kwargs)


def _request_token(client, callback=CALLBACK, key=CONSUMER_KEY, secret=CONSUMER_SECRET):
    response = _signed(client, "POST", "/oauth1/request", _oauth_client(key, secret, callback_uri=callback))
    assert response.status_code == 200, response.text
    assert response.headers["content-type"].startswith("application/x-www-form-urlencoded")
    return dict(parse_qsl(response.text))


def _request_token_without_callback(client):
    response = _signed(client, "POST", "/oauth1/request", _oauth_client())
    assert response.status_code == 200, response.text
    return dict(parse_qsl(response.text))


def _login(client, token_key, password=PASSWORD, action="authorize"):
    return client.post(
        "/oauth1/login",
        data={"oauth_token": token_key, "username": "alice", "password": password, "action": action},
        follow_redirects=False,
    )


def _verifier_from_redirect(response) -> str:
    assert response.status_code == 302
    location = response.headers["location"]
    assert location.startswith(CALLBACK + "?")
    return dict(parse_qsl(urlsplit(location).query))["oauth_verifier"]


def _access_token(client, request_creds, verifier):
    oauth_client = _oauth_client(
        resource_owner_key=request_creds["oauth_token"],
        resource_owner_secret=request_creds["oauth_token_secret"],
        verifier=verifier,
    )
    return _signed(client, "POST", "/oauth1/access", oauth_client)


def _as_user(access_creds):
    return _oauth_client(
        resource_owner_key=access_creds["oauth_token"],
        resource_owner_secret=access_creds["oauth_token_secret"],
    )


def _audit_events() -> list[str]:
    db = SessionLocal()
    try:
        return [row.event_type for row in db.query(AuditLog).order_by(AuditLog.id).all()]
    finally:
        db.close()


def _audit_consumers() -> list[int | None]:
    db = SessionLocal()
    try:
        return [row.consumer_id for row in db.query(AuditLog).order_by(AuditLog.id).all()]
    finally:
        db.close()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_full_handshake_and_protected_resource(client, seeded):
    request_creds = _request_token(client)
    assert request_creds["oauth_callback_confirmed"] == "true"

    response = client.get(f"/oauth1/authorize?oauth_token={request_creds['oauth_token']}", follow_redirects=False)
    assert response.status_code == 302
    assert response.headers["location"] == f"/oauth1/login?oauth_token={request_creds['oauth_token']}"

    response = client.get(f"/oauth1/login?oauth_token={request_creds['oauth_token']}")
    assert response.status_code == 200
    assert "Test client" in response.text
    assert request_creds["oauth_token"] in response.text

    verifier = _verifier_from_redirect(_login(client, request_creds["oauth_token"]))

    response = _access_token(client, request_creds, verifier)
    assert response.status_code == 200, response.text
    access_creds = dict(parse_qsl(response.text))
    assert access_creds["user_login"] == "alice"
    assert access_creds["user_ID"] == str(seeded["user_id"])
    assert access_creds["user_email"] == "alice@example.com"
    assert access_creds["display_name"] == "Alice"

    response = _signed(client, "GET", "/me", _as_user(access_creds))
    assert response.status_code == 200, response.text
    assert response.json() == {
        "id": seeded["user_id"],
        "login": "alice",
        "email": "alice@example.com",
        "display_name": "Alice",
    }

    # Request token is single use
    response = _access_token(client, request_creds, verifier)
    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "invalid_token"

    events = _audit_events()
    assert "request_token_issued" in events
    assert "token_authorized" in events
    assert "access_token_issued" in events


def test_revoke_access_token(client, seeded):
    request_creds = _request_token(client)
    verifier = _verifier_from_redirect(_login(client, request_creds["oauth_token"]))
    access_creds = dict(parse_qsl(_access_token(client, request_creds, verifier).text))

    response = _signed(client, "POST", "/oauth1/revoke", _as_user(access_creds))
    assert response.status_code == 200
    assert response.json() == {"revoked": True}

    response = _signed(client, "GET", "/me", _as_user(access_creds))
    assert response.status_code == 401
    assert response.json()["detail"]["error"] == "invalid_token"
    assert "access_token_revoked" in _audit_events()


def test_me_requires_oauth(client, seeded):
    response = client.get("/me")
    assert response.status_code == 401
    assert response.json()["detail"]["error"] == "missing_parameter"


def test_bad_signature_is_rejected(client, seeded):
    response = _signed(client, "POST", "/oauth1/request", _oauth_client(secret="wrongsecret", callback_uri=CALLBACK))
    assert response.status_code == 401
    assert response.json()["detail"]["error"] == "signature_mismatch"
    assert _audit_events() == ["auth_fail"]
    assert _audit_consumers() == [seeded["consumer_id"]]


def test_audit_records_name_the_consumer(client, seeded):
    request_creds = _request_token(client)
    verifier = _verifier_from_redirect(_login(client, request_creds["oauth_token"]))
    assert _access_token(client, request_creds, "wrongverifier").status_code == 400
    assert _access_token(client, request_creds, verifier).status_code == 200

    assert _audit_events() == ["request_token_issued", "token_authorized", "auth_fail", "access_token_issued"]
    assert _audit_consumers() == [seeded["consumer_id"]] * 4


def _running_loop():
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def test_engine_work_runs_outside_event_loop(client, seeded, monkeypatch):
    loops = []
    dispatch_with_token = RequestDispatcher.dispatch_with_token
    authenticate = RequestDispatcher.authenticate

    def recording_dispatch(self, operation, context):
        loops.append(_running_loop())
        return dispatch_with_token(self, operation, context)

    def recording_authenticate(self, context):
        loops.append(_running_loop())
        return authenticate(self, context)

    monkeypatch.setattr(RequestDispatcher, "dispatch_with_token", recording_dispatch)
    monkeypatch.setattr(RequestDispatcher, "authenticate", recording_authenticate)

    request_creds = _request_token(client)
    verifier = _verifier_from_redirect(_login(client, request_creds["oauth_token"]))
    access_creds = dict(parse_qsl(_access_token(client, request_creds, verifier).text))
    assert _signed(client, "GET", "/me", _as_user(access_creds)).status_code == 200

    assert loops == [None, None, None]


def test_unknown_consumer_is_rejected(client, seeded):
    response = _signed(client, "POST", "/oauth1/request", _oauth_client(key="nobody", callback_uri=CALLBACK))
    assert response.status_code == 401
    assert response.json()["detail"]["error"] == "invalid_consumer"
    assert _audit_consumers() == [None]


def test_request_without_oauth_parameters(client, seeded):
    response = client.post("/oauth1/request")
    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "missing_parameter"


def test_unknown_operation(client, seeded):
    response = client.get("/oauth1/bogus")
    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "invalid_route"


def test_login_wrong_password(client, seeded):
    request_creds = _request_token(client)
    response = _login(client, request_creds["oauth_token"], password="nope")
    assert response.status_code == 401
    assert "Invalid username or password" in response.text
    assert "login_fail" in _audit_events()


def test_login_unknown_token(client, seeded):
    response = client.get("/oauth1/login?oauth_token=doesnotexist")
    assert response.status_code == 400
    response = client.get("/oauth1/login")
    assert response.status_code == 400


def test_login_page_does_not_disclose_verifier_of_authorized_token(client, seeded):
    request_creds = _request_token(client)
    verifier = _verifier_from_redirect(_login(client, request_creds["oauth_token"]))

    response = client.get(f"/oauth1/login?oauth_token={request_creds['oauth_token']}", follow_redirects=False)
    assert response.status_code == 200
    assert verifier not in response.text
    assert verifier not in response.headers.get("location", "")

    response = _login(client, request_creds["oauth_token"], password="nope")
    assert response.status_code == 401
    assert verifier not in response.text

    # The user who approved the request can see the verifier again
    assert _verifier_from_redirect(_login(client, request_creds["oauth_token"])) == verifier


def test_login_page_hides_verifier_from_other_users(client, seeded):
    db = SessionLocal()
    try:
        create_user(db, "mallory", "hunter2")
    finally:
        db.close()
    request_creds = _request_token(client)
    verifier = _verifier_from_redirect(_login(client, request_creds["oauth_token"]))

    response = client.post(
        "/oauth1/login",
        data={"oauth_token": request_creds["oauth_token"], "username": "mallory", "password": "hunter2"},
        follow_redirects=False,
    )
    assert response.status_code == 403
    assert verifier not in response.text


def test_login_get_does_not_attach_callback(client, seeded):
    request_creds = _request_token_without_callback(client)
    elsewhere = "https://elsewhere.example/collect"

    response = client.get(
        "/oauth1/login",
        params={"oauth_token": request_creds["oauth_token"], "oauth_callback": elsewhere},
    )
    assert response.status_code == 200
    assert f'name="oauth_callback" value="{elsewhere}"' in response.text

    # Signing in without posting the callback: nothing was attached, so the verifier is shown
    response = _login(client, request_creds["oauth_token"])
    assert response.status_code == 200
    assert re.search(r"<code>([A-Za-z0-9]+)</code>", response.text)


def test_login_posted_callback_is_used_for_redirect(client, seeded):
    request_creds = _request_token_without_callback(client)
    response = client.post(
        "/oauth1/login",
        data={
            "oauth_token": request_creds["oauth_token"],
            "username": "alice",
            "password": PASSWORD,
            "oauth_callback": CALLBACK,
        },
        follow_redirects=False,
    )
    assert response.status_code == 302
    assert response.headers["location"].startswith(CALLBACK + "?oauth_token=")


def test_cancel_leaves_request_token(client, seeded):
    request_creds = _request_token(client)
    response = _login(client, request_creds["oauth_token"], action="cancel")
    assert response.status_code == 200
    assert "cancelled" in response.text
    assert "token_authorized" not in _audit_events()

    verifier = _verifier_from_redirect(_login(client, request_creds["oauth_token"]))
    assert _access_token(client, request_creds, verifier).status_code == 200


def test_out_of_band_shows_verifier(client, seeded):
    db = SessionLocal()
    try:
        create_consumer(db, "Desktop app", callback="oob", key="oobKey", secret="oobSecret")
    finally:
        db.close()

    request_creds = _request_token(client, callback="oob", key="oobKey", secret="oobSecret")

    response = _login(client, request_creds["oauth_token"])
    assert response.status_code == 200
    match = re.search(r"<code>([A-Za-z0-9]+)</code>", response.text)
    assert match

    oauth_client = _oauth_client(
        key="oobKey",
        secret="oobSecret",
        resource_owner_key=request_creds["oauth_token"],
        resource_owner_secret=request_creds["oauth_token_secret"],
        verifier=match.group(1),
    )
    response = _signed(client, "POST", "/oauth1/access", oauth_client)
    assert response.status_code == 200, response.text


def test_seed_from_env(client, monkeypatch):
    monkeypatch.setenv("OAUTH1_SEED_USER", "bob")
    monkeypatch.setenv("OAUTH1_SEED_PASSWORD", "builder")
    monkeypatch.setenv("OAUTH1_SEED_CONSUMER_KEY", "seedKey")
    monkeypatch.setenv("OAUTH1_SEED_CONSUMER_SECRET", "seedSecret")
    db = SessionLocal()
    try:
        seed_from_env(db)
        seed_from_env(db)
        assert db.query(User).filter(User.username == "bob").count() == 1
        consumer = db.query(OAuthConsumer).filter(OAuthConsumer.key == "seedKey").one()
        assert consumer.secret == "seedSecret"
        assert consumer.callback is None
    finally:
        db.close()
