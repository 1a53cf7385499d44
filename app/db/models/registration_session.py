from sqlalchemy import JSON, Column, DateTime, Integer, String

from app.db.base import Base


class RegistrationSessionRecord(Base):
    __tablename__ = "registration_sessions"

    session_id = Column(String(64), primary_key=True)
    flow = Column(String(32), nullable=False)
    natural_key = Column(String(320), nullable=False, index=True)
    # "<flow>:<natural_key>" while the session is live, NULL once terminal.
    # The unique index enforces one live session per natural key.
    active_key = Column(String(360), nullable=True, unique=True)
    state = Column(String(32), nullable=False, index=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    lease_until = Column(DateTime, nullable=True)
    staged_data = Column(JSON, nullable=False, default=dict)
    progress = Column(JSON, nullable=False, default=list)
    history = Column(JSON, nullable=False, default=list)
    last_error = Column(JSON, nullable=True)
    context = Column(JSON, nullable=False, default=dict)
