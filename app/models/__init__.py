from app.models.user_model import User, UserRole
from app.models.db_models import Prediction

__all__ = ["User", "UserRole", "Prediction"]
