"""SQL table models for the food-log record store."""
from app.models.database import Base
from app.models.user import User
from app.models.meal import Meal

# Collection name -> model, used by the SQL record store
MODELS = {
    Meal.__tablename__: Meal,
    User.__tablename__: User,
}

__all__ = ["User", "Meal", "Base", "MODELS"]
