from app.db.models.registration_session import RegistrationSessionRecord
from app.db.models.staff import Role, User

__all__ = ["RegistrationSessionRecord", "Role", "User"]
