"""
OAuth 1.0a provider host application.
Handshake (/oauth1/request, /oauth1/authorize, /oauth1/access), login page,
token revocation and a protected /me resource.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from oauth1_server.authorize import router as authorize_router
from oauth1_server.database import SessionLocal, init_db
from oauth1_server.oauth1_endpoint import router as oauth1_router
from oauth1_server.revoke import router as revoke_router
from oauth1_server.seed import seed_from_env
from oauth1_server.userinfo import router as userinfo_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and seed user/consumer from env on startup."""
    init_db()
    db = SessionLocal()
    try:
        seed_from_env(db)
    finally:
        db.close()
    yield


app = FastAPI(title="OAuth1 Server", version="0.1.0", lifespan=lifespan)
app.include_router(authorize_router, tags=["authorize"])
app.include_router(revoke_router, tags=["revoke"])
app.include_router(userinfo_router, tags=["userinfo"])
# Catch-all /oauth1/{operation} goes last so /oauth1/login and /oauth1/revoke match first
app.include_router(oauth1_router, tags=["oauth1"])


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "oauth1_server"}


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.INFO)
    uvicorn.run(
        "oauth1_server.main:app",
        host="127.0.0.1",
        port=9000,
        reload=True,
    )
