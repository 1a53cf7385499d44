from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from app.db.models.staff import User as UserModel


def get_user_by_email(db: Session, email: str) -> UserModel | None:
    """Get a staff user by email, ignoring case."""
    return (
        db.query(UserModel)
        .options(joinedload(UserModel.role))
        .filter(func.lower(UserModel.email) == email.strip().lower())
        .first()
    )


def get_user_by_id(db: Session, user_id: int) -> UserModel | None:
    """Get a staff user by ID, with the role needed for permission checks."""
    return db.query(UserModel).options(joinedload(UserModel.role)).filter(UserModel.id == user_id).first()
