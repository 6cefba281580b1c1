"""
OAuth 1.0a error taxonomy. Every failure is terminal for the current request;
the HTTP layer decides how to render it.
"Not an OAuth request" is not an error: parameter extraction returns None instead.
"""


class OAuth1Error(Exception):
    """Base error: machine-readable code, human message, HTTP-like status hint."""

    code = "oauth1_error"
    message = "OAuth request failed"
    status = 400
    # Set once the signing consumer is known, for audit records
    consumer_id: int | None = None

    def __init__(self, message: str | None = None, *, status: int | None = None):
        if message is not None:
            self.message = message
        if status is not None:
            self.status = status
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.code, "error_description": self.message}


class MissingParameters(OAuth1Error):
    code = "missing_parameter"
    message = "Missing OAuth parameters"
    status = 401

    def __init__(self, missing: list[str] | None = None, message: str | None = None, *, status: int | None = None):
        self.missing = list(missing or [])
        if message is None and self.missing:
            noun = "parameter" if len(self.missing) == 1 else "parameters"
            message = f"Missing OAuth {noun} {', '.join(self.missing)}"
        super().__init__(message, status=status)


class InvalidConsumer(OAuth1Error):
    code = "invalid_consumer"
    message = "Consumer is not registered"
    status = 401


class InvalidToken(OAuth1Error):
    code = "invalid_token"
    message = "Invalid token"
    status = 400


class ExpiredToken(OAuth1Error):
    code = "expired_token"
    message = "OAuth request token has expired"
    status = 401


class ConsumerMismatch(OAuth1Error):
    code = "consumer_mismatch"
    message = "Token is not registered for the given consumer"
    status = 401


class InvalidSignatureMethod(OAuth1Error):
    code = "invalid_signature_method"
    message = "Signature method is invalid"
    status = 401


class SignatureMismatch(OAuth1Error):
    code = "signature_mismatch"
    message = "OAuth signature does not match"
    status = 401


class InvalidTimestamp(OAuth1Error):
    code = "invalid_timestamp"
    message = "Invalid timestamp"
    status = 401


class NonceReused(OAuth1Error):
    code = "nonce_already_used"
    message = "Invalid nonce - nonce has already been used"
    status = 401


class InvalidCallback(OAuth1Error):
    code = "invalid_callback"
    message = "Callback URL is invalid"
    status = 400


class UnauthorizedToken(OAuth1Error):
    code = "unauthorized_token"
    message = "OAuth token has not been authorized"
    status = 401


class VerifierMismatch(OAuth1Error):
    code = "invalid_verifier"
    message = "OAuth verifier does not match"
    status = 400


class InvalidUser(OAuth1Error):
    code = "invalid_user"
    message = "Invalid user specified for access token"
    status = 401


class UnknownOperation(OAuth1Error):
    code = "invalid_route"
    message = "Route is invalid"
    status = 404


class UnknownHttpMethod(OAuth1Error):
    code = "unknown_http_method"
    message = "Unknown http method"
    status = 401
