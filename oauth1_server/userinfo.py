"""
Protected resource (GET /me). OAuth 1.0a signed request with an access token required;
returns the token owner's profile.
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from oauth1_server.context import RequestContext
from oauth1_server.database import get_db
from oauth1_server.provider import authenticated_context
from oauth1_server.storage import SqlUserDirectory

router = APIRouter()


@router.get("/me")
def me(
    context: RequestContext = Depends(authenticated_context),
    db: Session = Depends(get_db),
):
    profile = SqlUserDirectory(db).get_user(context.user_id)
    if profile is None:
        raise HTTPException(status_code=401, detail={"error": "invalid_user", "error_description": "User not found"})
    return {
        "id": profile.id,
        "login": profile.login,
        "email": profile.email,
        "display_name": profile.display_name,
    }
