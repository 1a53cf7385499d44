from app.db.base import Base, SessionLocal, engine, normalize_database_url

__all__ = ["Base", "SessionLocal", "engine", "normalize_database_url"]
