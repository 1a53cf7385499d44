from urllib.parse import urlparse

from fastapi import Depends, FastAPI
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session
from starlette.middleware.cors import CORSMiddleware

from app.api.deps import get_db
from app.api.exception_handlers import register_exception_handlers
from app.api.v1.router import api_router
from app.core.config import settings
from app.errors import ExternalStoreUnavailableError

app = FastAPI(
    title="Membership Onboarding API",
    description="Registration and membership onboarding sessions for the association.",
    version="0.1.0",
)

if settings.frontend_url:
    # The applicant frontend calls the public onboarding endpoints directly.
    parsed = urlparse(settings.frontend_url)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[f"{parsed.scheme}://{parsed.netloc}"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

register_exception_handlers(app)
app.include_router(api_router, prefix="/api/v1")


@app.get("/health")
def health(db: Session = Depends(get_db)):
    """Liveness plus a round trip to the session store."""
    try:
        db.execute(text("SELECT 1"))
    except DBAPIError as e:
        raise ExternalStoreUnavailableError("Session store is unavailable") from e
    return {"status": "ok", "session_store": "ok"}
